"""
Bootstrap - Wire the Repository and Services Together
=====================================================

The only place that turns Settings into live objects. The route layer
creates one TchoufApp at process start and closes it at shutdown.

USAGE:
    with create_app() as app:
        business = app.directory.get_business(1)
        app.reviews.create_review(NewReview(business_id=1, user_id=2, rating=5))
"""

import logging
from dataclasses import dataclass
from typing import Optional

from tchouf.application import (
    ClaimLifecycleManager,
    DirectoryService,
    RatingAggregator,
    ReviewService,
    UserService,
)
from tchouf.infrastructure.config import Settings, get_settings
from tchouf.infrastructure.persistence import Repository, create_repository

logger = logging.getLogger(__name__)


@dataclass
class TchoufApp:
    """Services sharing one Repository instance."""
    repository: Repository
    users: UserService
    directory: DirectoryService
    reviews: ReviewService
    ratings: RatingAggregator
    claims: ClaimLifecycleManager

    def close(self) -> None:
        self.repository.close()

    def __enter__(self) -> "TchoufApp":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def build_app(repository: Repository, settings: Optional[Settings] = None) -> TchoufApp:
    """Assemble the services around an already initialized repository."""
    settings = settings or Settings()
    ratings = RatingAggregator(repository)
    reviews = ReviewService(repository, ratings, settings.listing)
    return TchoufApp(
        repository=repository,
        users=UserService(repository),
        directory=DirectoryService(repository, reviews, settings.listing),
        reviews=reviews,
        ratings=ratings,
        claims=ClaimLifecycleManager(repository),
    )


def create_app(settings: Optional[Settings] = None) -> TchoufApp:
    """Build the configured repository and the services on top of it."""
    settings = settings or get_settings()

    for issue in settings.validate():
        if issue.startswith("ERROR"):
            logger.error(issue)
        else:
            logger.warning(issue)

    repository = create_repository(settings.storage)
    return build_app(repository, settings)
