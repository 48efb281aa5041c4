# Domain Layer
# ============
# Pure data: entity records, input payload schemas and the error taxonomy.
# Nothing here performs I/O.

from .errors import (
    TchoufError,
    NotFoundError,
    InvalidTransitionError,
    ConstraintViolationError,
    BackendUnavailableError,
)
from .models import (
    ClaimStatus,
    User,
    Business,
    Review,
    Claim,
    ReviewWithUser,
    ClaimWithData,
    BusinessDetails,
    slugify,
    utcnow,
)
from .schemas import (
    NewUser,
    UserProfileUpdate,
    NewBusiness,
    BusinessUpdate,
    NewReview,
    ReviewUpdate,
    NewClaim,
    ClaimUpdate,
    ClaimDecision,
)

__all__ = [
    "TchoufError",
    "NotFoundError",
    "InvalidTransitionError",
    "ConstraintViolationError",
    "BackendUnavailableError",
    "ClaimStatus",
    "User",
    "Business",
    "Review",
    "Claim",
    "ReviewWithUser",
    "ClaimWithData",
    "BusinessDetails",
    "slugify",
    "utcnow",
    "NewUser",
    "UserProfileUpdate",
    "NewBusiness",
    "BusinessUpdate",
    "NewReview",
    "ReviewUpdate",
    "NewClaim",
    "ClaimUpdate",
    "ClaimDecision",
]
