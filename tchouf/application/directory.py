"""
Directory Service - Business Listings, Search and Detail Pages
==============================================================

ARCHITECTURAL DECISION:
- Search, category and featured queries read the whole collection and
  filter in process. That is O(collection size) per call; fine for a
  city directory, and the first thing to push down into the store if
  the dataset grows
- List queries degrade to an empty list when the backend is down;
  single-entity lookups always raise
- BusinessUpdate carries editable listing fields only. Ratings, owner
  and verification are written by the rating aggregator and the claim
  lifecycle manager
"""

import logging
from typing import List, Optional, Union

from tchouf.domain.errors import NotFoundError
from tchouf.domain.models import Business, BusinessDetails, User
from tchouf.domain.schemas import BusinessUpdate, NewBusiness
from tchouf.infrastructure.config import ListingSettings
from tchouf.infrastructure.persistence import Repository

from .reviews import ReviewService

logger = logging.getLogger(__name__)

# Fields a listing must always have; an explicit null is ignored
_REQUIRED_FIELDS = ("name", "category", "city", "address", "photos")


class DirectoryService:
    """
    USAGE:
        directory = DirectoryService(repository, reviews, settings.listing)
        cafes = directory.search("cafe", city="Alger")
    """

    def __init__(
        self,
        repository: Repository,
        reviews: ReviewService,
        listing: Optional[ListingSettings] = None,
    ):
        self.repository = repository
        self.reviews = reviews
        self.listing = listing or ListingSettings()

    # ── Writes ─────────────────────────────────────────────────────

    def create_business(self, data: NewBusiness) -> Business:
        business = self.repository.create_business(data)
        logger.info(f"Created business {business.id}: {business.name} ({business.city})")
        return business

    def update_business(self, business_id: int, data: BusinessUpdate) -> Business:
        updates = data.model_dump(exclude_unset=True)
        for name in _REQUIRED_FIELDS:
            if name in updates and updates[name] is None:
                del updates[name]
        if not updates:
            return self.repository.get_business(business_id)
        return self.repository.update_business(business_id, **updates)

    def delete_business(self, business_id: int) -> Business:
        """Remove the listing with its reviews and claims. Raises NotFoundError."""
        business = self.repository.delete_business(business_id)
        logger.info(f"Deleted business {business.id}: {business.name}")
        return business

    # ── Lookups ────────────────────────────────────────────────────

    def get_business(self, business_id: int) -> Business:
        return self.repository.get_business(business_id)

    def get_business_by_slug(self, slug: str) -> Business:
        business = self.repository.find_business_by_slug(slug)
        if business is None:
            raise NotFoundError("Business", slug)
        return business

    def get_business_by_identifier(self, identifier: Union[int, str]) -> Business:
        """Resolve a numeric id or a slug, as business page URLs use either."""
        if isinstance(identifier, int) or str(identifier).isdigit():
            return self.repository.get_business(int(identifier))
        return self.get_business_by_slug(identifier)

    def business_details(self, identifier: Union[int, str]) -> BusinessDetails:
        business = self.get_business_by_identifier(identifier)
        return BusinessDetails(
            business=business,
            reviews=self.reviews.reviews_for_business(business.id),
            created_by_user=self._optional_user(business.created_by),
            claimed_by_user=self._optional_user(business.claimed_by),
        )

    def _optional_user(self, user_id: Optional[int]) -> Optional[User]:
        if user_id is None:
            return None
        try:
            return self.repository.get_user(user_id)
        except NotFoundError:
            logger.warning(f"Business references missing user {user_id}")
            return None

    # ── Listings ───────────────────────────────────────────────────

    def list_businesses(self, limit: Optional[int] = None, offset: int = 0) -> List[Business]:
        return self.repository.list_businesses(
            self.listing.page_size if limit is None else limit, offset
        )

    def search(
        self, query: str = "", city: Optional[str] = None, category: Optional[str] = None
    ) -> List[Business]:
        return self.repository.search_businesses(query.strip(), city, category)

    def by_category(self, category: str) -> List[Business]:
        return self.repository.businesses_by_category(category)

    def featured(self, limit: Optional[int] = None) -> List[Business]:
        return self.repository.featured_businesses(
            self.listing.featured_limit if limit is None else limit
        )

    def for_user(self, user_id: int) -> List[Business]:
        return self.repository.businesses_for_user(user_id)
