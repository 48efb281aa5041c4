"""
Rating Aggregator - Keep Business Ratings Consistent with Reviews
=================================================================

ARCHITECTURAL DECISION:
- The aggregate is always recomputed from the full review set, never
  incremented, so a recompute repairs any drift and is idempotent
- Read and write happen inside one repository operation
  (refresh_business_from_reviews, or a review write given derive_fields),
  so two concurrent recomputes of the same business cannot interleave a
  stale read with a fresh write
- Plain arithmetic mean: no weighting, no rounding, no smoothing
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List

from tchouf.domain.models import Business, Review
from tchouf.infrastructure.persistence import Repository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RatingSummary:
    avg_rating: float
    review_count: int

    def as_fields(self) -> Dict[str, Any]:
        return {"avg_rating": self.avg_rating, "review_count": self.review_count}


def summarize(ratings: Iterable[int]) -> RatingSummary:
    """Mean and count of the given ratings; 0.0 when there are none."""
    values = list(ratings)
    if not values:
        return RatingSummary(avg_rating=0.0, review_count=0)
    return RatingSummary(avg_rating=sum(values) / len(values), review_count=len(values))


class RatingAggregator:
    """
    Recomputes avg_rating and review_count of a business.

    USAGE:
        aggregator = RatingAggregator(repository)
        business = aggregator.recompute(business_id)
    """

    def __init__(self, repository: Repository):
        self.repository = repository

    @staticmethod
    def derive_fields(reviews: List[Review]) -> Dict[str, Any]:
        """Business fields derived from its full review set."""
        return summarize(r.rating for r in reviews).as_fields()

    def recompute(self, business_id: int) -> Business:
        """Raises NotFoundError if the business does not exist."""
        business = self.repository.refresh_business_from_reviews(business_id, self.derive_fields)
        logger.info(
            f"Business {business_id}: avg_rating={business.avg_rating:.2f} "
            f"over {business.review_count} review(s)"
        )
        return business
