# Application Layer
# =================
# Use cases over the Repository: rating aggregation, claim lifecycle,
# reviews, users and the directory listings.
#
# Each service receives its Repository at construction time and holds no
# entity data beyond a single call.

from .rating_aggregator import RatingAggregator, RatingSummary, summarize
from .claims import ClaimLifecycleManager, parse_outcome
from .reviews import ReviewService
from .users import UserService
from .directory import DirectoryService

__all__ = [
    "RatingAggregator",
    "RatingSummary",
    "summarize",
    "ClaimLifecycleManager",
    "parse_outcome",
    "ReviewService",
    "UserService",
    "DirectoryService",
]
