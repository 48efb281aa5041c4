"""
Domain Models - Users, Businesses, Reviews and Claims
======================================================

ARCHITECTURAL DECISION:
- Entities are frozen dataclasses; a stored entity is never mutated in
  place, repositories hand out replacements via dataclasses.replace()
- Server-owned fields (ids, timestamps, aggregates, verification flags)
  are filled by the ``new()`` constructors, never by the caller
- Identifiers are positive integers assigned by the repository

INVARIANTS:
- Business.verified implies Business.claimed_by is not None
- Business.avg_rating is the mean of its review ratings, 0 with no reviews
- Business.review_count equals the number of reviews referencing it
- Review.rating is in 1..5
"""

import re
import unicodedata
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Tuple

from .schemas import NewBusiness, NewClaim, NewReview, NewUser


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def slugify(name: str) -> str:
    """ASCII-fold a business name into a URL slug ("Café Aroma" -> "cafe-aroma")."""
    folded = unicodedata.normalize("NFKD", name).encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9\s-]", "", folded.lower())
    slug = re.sub(r"[\s-]+", "-", slug)
    return slug.strip("-")


class ClaimStatus(Enum):
    """Ownership claim state. PENDING is initial, the other two are terminal."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self is not ClaimStatus.PENDING


@dataclass(frozen=True)
class User:
    """Directory user, created on first sign-in from an external identity."""
    id: int
    uid: str
    email: str
    display_name: Optional[str]
    photo_url: Optional[str]
    is_admin: bool
    created_at: datetime

    @classmethod
    def new(cls, user_id: int, data: NewUser, now: datetime) -> "User":
        return cls(
            id=user_id,
            uid=data.uid,
            email=str(data.email),
            display_name=data.display_name,
            photo_url=data.photo_url,
            is_admin=False,
            created_at=now,
        )


@dataclass(frozen=True)
class Business:
    """Business listing; root aggregate for rating and verification data."""
    id: int
    name: str
    slug: str
    category: str
    description: Optional[str]
    city: str
    address: str
    phone: Optional[str]
    email: Optional[str]
    website: Optional[str]
    photos: Tuple[str, ...]
    created_by: int
    claimed_by: Optional[int]
    verified: bool
    avg_rating: float
    review_count: int
    created_at: datetime

    @classmethod
    def new(cls, business_id: int, data: NewBusiness, now: datetime) -> "Business":
        slug = data.slug or slugify(data.name) or f"business-{business_id}"
        return cls(
            id=business_id,
            name=data.name,
            slug=slug,
            category=data.category,
            description=data.description,
            city=data.city,
            address=data.address,
            phone=data.phone,
            email=data.email,
            website=data.website,
            photos=tuple(data.photos),
            created_by=data.created_by,
            claimed_by=None,
            verified=False,
            avg_rating=0.0,
            review_count=0,
            created_at=now,
        )

    @property
    def is_claimed(self) -> bool:
        return self.claimed_by is not None


@dataclass(frozen=True)
class Review:
    """Star rating (1-5) left by a user on a business."""
    id: int
    business_id: int
    user_id: int
    rating: int
    comment: Optional[str]
    photo_url: Optional[str]
    created_at: datetime
    updated_at: Optional[datetime] = None

    @classmethod
    def new(cls, review_id: int, data: NewReview, now: datetime) -> "Review":
        return cls(
            id=review_id,
            business_id=data.business_id,
            user_id=data.user_id,
            rating=data.rating,
            comment=data.comment,
            photo_url=data.photo_url,
            created_at=now,
        )


@dataclass(frozen=True)
class Claim:
    """A user's request to be recognised as owner of a business."""
    id: int
    business_id: int
    user_id: int
    status: ClaimStatus
    proof_url: Optional[str]
    submitted_at: datetime
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[int] = None

    @classmethod
    def new(cls, claim_id: int, data: NewClaim, now: datetime) -> "Claim":
        return cls(
            id=claim_id,
            business_id=data.business_id,
            user_id=data.user_id,
            status=ClaimStatus.PENDING,
            proof_url=data.proof_url,
            submitted_at=now,
        )

    @property
    def created_at(self) -> datetime:
        return self.submitted_at


# ── Read models ────────────────────────────────────────────────────

@dataclass(frozen=True)
class ReviewWithUser:
    review: Review
    user: User


@dataclass(frozen=True)
class ClaimWithData:
    claim: Claim
    business: Business
    user: User


@dataclass(frozen=True)
class BusinessDetails:
    """Business page: the listing, its reviews with authors, creator and owner."""
    business: Business
    reviews: List[ReviewWithUser] = field(default_factory=list)
    created_by_user: Optional[User] = None
    claimed_by_user: Optional[User] = None
