"""
Repository - Storage Abstraction over Users, Businesses, Reviews, Claims
========================================================================

Provides a unified interface for the four entity collections.
Backends: in-memory (tests/dev), SQLite (single host), Firestore (production).

CONTRACT (identical for every backend):
- create_*() assigns the next id of its collection (strictly increasing,
  never reused, race-free under concurrent callers) and fills server-owned
  defaults
- get_*() raises NotFoundError; find_*() returns None when absent
- update_*() merges fields into the stored entity, NotFoundError if absent
- List queries order newest first. On a backend failure they log and
  return an empty list (degraded list view); every other operation
  raises BackendUnavailableError
- refresh_business_from_reviews(), transition_claim() and the review
  writes given a ``derive`` callback are read-modify-write operations; each
  runs atomically with respect to concurrent readers and writers, so a
  review and the business aggregate it feeds are committed together
- Every stored business satisfies check_business_invariants()
- delete_business() removes the business with its reviews and claims in
  one unit

USAGE:
    repository = create_repository(settings.storage)
    repository.init()
    business = repository.create_business(NewBusiness(...))
"""

import functools
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, fields as dataclass_fields
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

from tchouf.domain.errors import BackendUnavailableError, ConstraintViolationError
from tchouf.domain.models import Business, Claim, Review, User
from tchouf.domain.schemas import NewBusiness, NewClaim, NewReview, NewUser

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ClaimTransition:
    """Field changes a claim decision applies to the claim and its business."""
    claim_fields: Dict[str, Any]
    business_fields: Dict[str, Any] = field(default_factory=dict)


# Reviews of one business -> fields to write on that business
DeriveBusinessFields = Callable[[List[Review]], Dict[str, Any]]

# (claim, business or None) -> transition; may raise to abort
DecideClaim = Callable[[Claim, Optional[Business]], ClaimTransition]

# Inspects a claim before it is deleted; raises to abort
CheckClaim = Callable[[Claim], None]


def degraded_list(operation: Callable[..., List[T]]) -> Callable[..., List[T]]:
    """Turn a backend failure on a list query into a logged empty list."""

    @functools.wraps(operation)
    def wrapper(self, *args, **kwargs) -> List[T]:
        try:
            return operation(self, *args, **kwargs)
        except BackendUnavailableError as e:
            logger.error(f"{type(self).__name__}.{operation.__name__} degraded to empty list: {e}")
            return []

    return wrapper


# ── Shared query helpers ───────────────────────────────────────────

def newest_first(items: Iterable[T]) -> List[T]:
    """Order by creation time descending; ties go to the higher id."""
    return sorted(items, key=lambda item: (item.created_at, item.id), reverse=True)


def paginate(items: List[T], limit: int, offset: int = 0) -> List[T]:
    offset = max(offset, 0)
    return items[offset:offset + max(limit, 0)]


def business_matches(
    business: Business,
    query: str = "",
    city: Optional[str] = None,
    category: Optional[str] = None,
) -> bool:
    """
    Search predicate: case-insensitive substring on name/description,
    substring on city, case-insensitive equality on category.
    """
    if query:
        needle = query.casefold()
        in_name = needle in business.name.casefold()
        in_description = needle in (business.description or "").casefold()
        if not (in_name or in_description):
            return False
    if city and city.casefold() not in business.city.casefold():
        return False
    if category and category.casefold() != business.category.casefold():
        return False
    return True


def featured_order(businesses: Iterable[Business], limit: int) -> List[Business]:
    """Highest rated first, then most reviewed, then newest."""
    ranked = sorted(
        businesses,
        key=lambda b: (b.avg_rating, b.review_count, b.created_at, b.id),
        reverse=True,
    )
    return ranked[:max(limit, 0)]


_IMMUTABLE_FIELDS = {"id", "created_at", "submitted_at"}

# Identity fields belong to the external auth provider
_IMMUTABLE_BY_TYPE = {User: {"uid", "email"}}


def check_update_fields(entity_type: type, updates: Dict[str, Any]) -> Dict[str, Any]:
    """Reject unknown or immutable field names; normalise list values to tuples."""
    known = {f.name for f in dataclass_fields(entity_type)}
    names = set(updates)
    immutable = _IMMUTABLE_FIELDS | _IMMUTABLE_BY_TYPE.get(entity_type, set())
    bad = sorted((names - known) | (names & immutable))
    if bad:
        raise ConstraintViolationError(
            f"Cannot update {entity_type.__name__} field(s): {', '.join(bad)}",
            fields=bad,
        )
    return {k: tuple(v) if isinstance(v, list) else v for k, v in updates.items()}


def check_business_invariants(business: Business) -> Business:
    """Reject a business state no backend may store."""
    if business.verified and business.claimed_by is None:
        raise ConstraintViolationError(
            f"Business {business.id} cannot be verified without an owner",
            business_id=business.id,
        )
    if business.review_count < 0:
        raise ConstraintViolationError(
            f"Business {business.id} review_count cannot be negative",
            business_id=business.id,
        )
    return business


class Repository(ABC):
    """
    Abstract storage for the four entity collections.
    Implement this interface to add new storage backends.
    """

    def init(self) -> None:
        """Prepare the backing store (create tables, etc.)."""

    def close(self) -> None:
        """Release backend resources."""

    # ── Users ──────────────────────────────────────────────────────

    @abstractmethod
    def get_user(self, user_id: int) -> User:
        ...

    @abstractmethod
    def find_user_by_uid(self, uid: str) -> Optional[User]:
        ...

    @abstractmethod
    def find_user_by_email(self, email: str) -> Optional[User]:
        ...

    @abstractmethod
    def create_user(self, data: NewUser) -> User:
        """Create a user. Duplicate uid or email is a ConstraintViolationError."""
        ...

    @abstractmethod
    def update_user(self, user_id: int, **updates: Any) -> User:
        ...

    # ── Businesses ─────────────────────────────────────────────────

    @abstractmethod
    def get_business(self, business_id: int) -> Business:
        ...

    @abstractmethod
    def find_business_by_slug(self, slug: str) -> Optional[Business]:
        ...

    @abstractmethod
    def list_businesses(self, limit: int = 20, offset: int = 0) -> List[Business]:
        ...

    @abstractmethod
    def search_businesses(
        self, query: str = "", city: Optional[str] = None, category: Optional[str] = None
    ) -> List[Business]:
        ...

    @abstractmethod
    def businesses_by_category(self, category: str) -> List[Business]:
        ...

    @abstractmethod
    def featured_businesses(self, limit: int = 6) -> List[Business]:
        ...

    @abstractmethod
    def businesses_for_user(self, user_id: int) -> List[Business]:
        """Businesses the user created or has claimed."""
        ...

    @abstractmethod
    def create_business(self, data: NewBusiness) -> Business:
        """Create a business. Unknown creator is a ConstraintViolationError."""
        ...

    @abstractmethod
    def update_business(self, business_id: int, **updates: Any) -> Business:
        """Merge fields; the result must pass check_business_invariants()."""
        ...

    @abstractmethod
    def delete_business(self, business_id: int) -> Business:
        """Delete the business together with its reviews and claims; return it."""
        ...

    @abstractmethod
    def refresh_business_from_reviews(
        self, business_id: int, derive: DeriveBusinessFields
    ) -> Business:
        """
        Atomically read every review of the business, pass them to
        ``derive`` and write the returned fields back in one update.
        """
        ...

    # ── Reviews ────────────────────────────────────────────────────

    @abstractmethod
    def get_review(self, review_id: int) -> Review:
        ...

    @abstractmethod
    def reviews_for_business(self, business_id: int) -> List[Review]:
        ...

    @abstractmethod
    def recent_reviews(self, limit: int = 6) -> List[Review]:
        ...

    @abstractmethod
    def reviews_for_user(self, user_id: int) -> List[Review]:
        ...

    @abstractmethod
    def find_user_review(self, user_id: int, business_id: int) -> Optional[Review]:
        ...

    @abstractmethod
    def create_review(
        self, data: NewReview, derive: Optional[DeriveBusinessFields] = None
    ) -> Review:
        """
        Create a review. Unknown business or author, or a second review by
        the same user on the same business, is a ConstraintViolationError.

        With ``derive``, the business is refreshed from its review set
        (new review included) in the same atomic unit; if ``derive`` or the
        refresh fails, the review is not stored either.
        """
        ...

    @abstractmethod
    def update_review(
        self, review_id: int, *, derive: Optional[DeriveBusinessFields] = None, **updates: Any
    ) -> Review:
        """Merge fields, refreshing the business atomically when ``derive`` is given."""
        ...

    @abstractmethod
    def delete_review(
        self, review_id: int, derive: Optional[DeriveBusinessFields] = None
    ) -> Review:
        """Delete and return the review, refreshing the business atomically when asked."""
        ...

    # ── Claims ─────────────────────────────────────────────────────

    @abstractmethod
    def get_claim(self, claim_id: int) -> Claim:
        ...

    @abstractmethod
    def claims_for_business(self, business_id: int) -> List[Claim]:
        ...

    @abstractmethod
    def claims_for_user(self, user_id: int) -> List[Claim]:
        ...

    @abstractmethod
    def pending_claims(self) -> List[Claim]:
        ...

    @abstractmethod
    def find_user_claim(self, user_id: int, business_id: int) -> Optional[Claim]:
        ...

    @abstractmethod
    def create_claim(self, data: NewClaim) -> Claim:
        """
        Create a pending claim. Unknown business or claimant, or a second
        claim by the same user on the same business, is a ConstraintViolationError.
        """
        ...

    @abstractmethod
    def transition_claim(
        self, claim_id: int, decide: DecideClaim
    ) -> Tuple[Claim, Optional[Business]]:
        """
        Atomically load the claim and its business, ask ``decide`` for the
        transition and apply both writes together. Exceptions raised by
        ``decide`` abort the operation with nothing written.
        """
        ...

    @abstractmethod
    def delete_claim(self, claim_id: int, check: Optional[CheckClaim] = None) -> Claim:
        """
        Delete and return the claim. ``check`` sees the stored claim inside
        the same atomic unit and may raise to keep it.
        """
        ...
