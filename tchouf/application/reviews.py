"""
Review Service - Review Writes with Synchronous Rating Recompute
================================================================

Every write that changes a business's review set (create, rating edit,
delete) hands RatingAggregator.derive_fields to the repository, which
refreshes the business in the same atomic unit as the review write. If
the refresh fails the review write is rolled back with it.

A review whose business or author does not exist is rejected by the
repository with ConstraintViolationError; no orphan review is stored.
"""

import logging
from typing import List, Optional

from tchouf.domain.errors import NotFoundError
from tchouf.domain.models import Review, ReviewWithUser
from tchouf.domain.schemas import NewReview, ReviewUpdate
from tchouf.infrastructure.config import ListingSettings
from tchouf.infrastructure.persistence import Repository

from .rating_aggregator import RatingAggregator

logger = logging.getLogger(__name__)


class ReviewService:
    """
    USAGE:
        reviews = ReviewService(repository, RatingAggregator(repository))
        review = reviews.create_review(NewReview(business_id=1, user_id=2, rating=5))
    """

    def __init__(
        self,
        repository: Repository,
        aggregator: RatingAggregator,
        listing: Optional[ListingSettings] = None,
    ):
        self.repository = repository
        self.aggregator = aggregator
        self.listing = listing or ListingSettings()

    # ── Writes ─────────────────────────────────────────────────────

    def create_review(self, data: NewReview) -> Review:
        review = self.repository.create_review(data, derive=self.aggregator.derive_fields)
        logger.info(f"Review {review.id} ({review.rating}/5) on business {review.business_id}")
        return review

    def update_review(self, review_id: int, data: ReviewUpdate) -> Review:
        updates = data.model_dump(exclude_unset=True)
        if updates.get("rating", 0) is None:
            del updates["rating"]
        if not updates:
            return self.repository.get_review(review_id)

        derive = self.aggregator.derive_fields if "rating" in updates else None
        return self.repository.update_review(review_id, derive=derive, **updates)

    def delete_review(self, review_id: int) -> Review:
        review = self.repository.delete_review(review_id, derive=self.aggregator.derive_fields)
        logger.info(f"Deleted review {review_id} from business {review.business_id}")
        return review

    # ── Queries ────────────────────────────────────────────────────

    def get_review(self, review_id: int) -> Review:
        return self.repository.get_review(review_id)

    def _with_authors(self, reviews: List[Review]) -> List[ReviewWithUser]:
        joined = []
        for review in reviews:
            try:
                user = self.repository.get_user(review.user_id)
            except NotFoundError:
                logger.warning(f"Review {review.id} has no author {review.user_id}; skipped")
                continue
            joined.append(ReviewWithUser(review=review, user=user))
        return joined

    def reviews_for_business(self, business_id: int) -> List[ReviewWithUser]:
        return self._with_authors(self.repository.reviews_for_business(business_id))

    def recent_reviews(self, limit: Optional[int] = None) -> List[ReviewWithUser]:
        limit = self.listing.recent_reviews_limit if limit is None else limit
        return self._with_authors(self.repository.recent_reviews(limit))

    def reviews_for_user(self, user_id: int) -> List[Review]:
        return self.repository.reviews_for_user(user_id)

    def user_review_for_business(self, user_id: int, business_id: int) -> Optional[Review]:
        return self.repository.find_user_review(user_id, business_id)
