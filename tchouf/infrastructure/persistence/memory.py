"""
In-Memory Repository - Dict-Backed Storage for Tests and Development
====================================================================

All four collections live in plain dicts owned by one instance (no
module-level state). A single re-entrant lock is the serialization point:
every operation, including the compound read-modify-write ones, runs
entirely under it, so id assignment is race-free and no reader can
observe a half-applied claim approval or rating refresh.
"""

import itertools
import logging
import threading
from dataclasses import replace
from typing import Any, Dict, List, Optional, Tuple

from tchouf.domain.errors import ConstraintViolationError, NotFoundError
from tchouf.domain.models import Business, Claim, ClaimStatus, Review, User, utcnow
from tchouf.domain.schemas import NewBusiness, NewClaim, NewReview, NewUser

from .repository import (
    CheckClaim,
    DecideClaim,
    DeriveBusinessFields,
    Repository,
    business_matches,
    check_business_invariants,
    check_update_fields,
    featured_order,
    newest_first,
    paginate,
)

logger = logging.getLogger(__name__)


class MemoryRepository(Repository):
    """
    Repository backed by in-process dictionaries.

    Usage:
        repo = MemoryRepository()
        user = repo.create_user(NewUser(uid="abc", email="a@example.com"))
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._users: Dict[int, User] = {}
        self._businesses: Dict[int, Business] = {}
        self._reviews: Dict[int, Review] = {}
        self._claims: Dict[int, Claim] = {}
        self._user_ids = itertools.count(1)
        self._business_ids = itertools.count(1)
        self._review_ids = itertools.count(1)
        self._claim_ids = itertools.count(1)

    # ── Users ──────────────────────────────────────────────────────

    def get_user(self, user_id: int) -> User:
        with self._lock:
            user = self._users.get(user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    def find_user_by_uid(self, uid: str) -> Optional[User]:
        with self._lock:
            return next((u for u in self._users.values() if u.uid == uid), None)

    def find_user_by_email(self, email: str) -> Optional[User]:
        with self._lock:
            return next((u for u in self._users.values() if u.email == email), None)

    def create_user(self, data: NewUser) -> User:
        with self._lock:
            for existing in self._users.values():
                if existing.uid == data.uid:
                    raise ConstraintViolationError(f"User with uid {data.uid!r} already exists")
                if existing.email == str(data.email):
                    raise ConstraintViolationError(f"Email {data.email} is already registered")
            user = User.new(next(self._user_ids), data, utcnow())
            self._users[user.id] = user
        logger.debug(f"Created user {user.id}")
        return user

    def update_user(self, user_id: int, **updates: Any) -> User:
        updates = check_update_fields(User, updates)
        with self._lock:
            user = replace(self.get_user(user_id), **updates)
            self._users[user_id] = user
            return user

    # ── Businesses ─────────────────────────────────────────────────

    def get_business(self, business_id: int) -> Business:
        with self._lock:
            business = self._businesses.get(business_id)
        if business is None:
            raise NotFoundError("Business", business_id)
        return business

    def find_business_by_slug(self, slug: str) -> Optional[Business]:
        with self._lock:
            matches = [b for b in self._businesses.values() if b.slug == slug]
        return min(matches, key=lambda b: b.id) if matches else None

    def _all_businesses(self) -> List[Business]:
        with self._lock:
            return list(self._businesses.values())

    def list_businesses(self, limit: int = 20, offset: int = 0) -> List[Business]:
        return paginate(newest_first(self._all_businesses()), limit, offset)

    def search_businesses(
        self, query: str = "", city: Optional[str] = None, category: Optional[str] = None
    ) -> List[Business]:
        return newest_first(
            b for b in self._all_businesses() if business_matches(b, query, city, category)
        )

    def businesses_by_category(self, category: str) -> List[Business]:
        return self.search_businesses(category=category)

    def featured_businesses(self, limit: int = 6) -> List[Business]:
        return featured_order(self._all_businesses(), limit)

    def businesses_for_user(self, user_id: int) -> List[Business]:
        return newest_first(
            b for b in self._all_businesses()
            if b.created_by == user_id or b.claimed_by == user_id
        )

    def create_business(self, data: NewBusiness) -> Business:
        with self._lock:
            if data.created_by not in self._users:
                raise ConstraintViolationError(
                    f"Business creator {data.created_by} does not exist"
                )
            business = Business.new(next(self._business_ids), data, utcnow())
            self._businesses[business.id] = business
        logger.debug(f"Created business {business.id} ({business.slug})")
        return business

    def update_business(self, business_id: int, **updates: Any) -> Business:
        updates = check_update_fields(Business, updates)
        with self._lock:
            business = check_business_invariants(
                replace(self.get_business(business_id), **updates)
            )
            self._businesses[business_id] = business
            return business

    def delete_business(self, business_id: int) -> Business:
        with self._lock:
            business = self.get_business(business_id)
            self._reviews = {k: r for k, r in self._reviews.items() if r.business_id != business_id}
            self._claims = {k: c for k, c in self._claims.items() if c.business_id != business_id}
            del self._businesses[business_id]
        logger.debug(f"Deleted business {business_id} with its reviews and claims")
        return business

    def _derived_business(
        self, business_id: int, reviews: List[Review], derive: Optional[DeriveBusinessFields]
    ) -> Optional[Business]:
        """Business as it would be after ``derive``; caller holds the lock and stores it."""
        if derive is None:
            return None
        business = self.get_business(business_id)
        updates = check_update_fields(Business, derive(reviews))
        return check_business_invariants(replace(business, **updates))

    def _reviews_of(self, business_id: int) -> List[Review]:
        return [r for r in self._reviews.values() if r.business_id == business_id]

    def refresh_business_from_reviews(
        self, business_id: int, derive: DeriveBusinessFields
    ) -> Business:
        with self._lock:
            business = self._derived_business(business_id, self._reviews_of(business_id), derive)
            self._businesses[business_id] = business
            return business

    # ── Reviews ────────────────────────────────────────────────────

    def get_review(self, review_id: int) -> Review:
        with self._lock:
            review = self._reviews.get(review_id)
        if review is None:
            raise NotFoundError("Review", review_id)
        return review

    def _all_reviews(self) -> List[Review]:
        with self._lock:
            return list(self._reviews.values())

    def reviews_for_business(self, business_id: int) -> List[Review]:
        return newest_first(r for r in self._all_reviews() if r.business_id == business_id)

    def recent_reviews(self, limit: int = 6) -> List[Review]:
        return paginate(newest_first(self._all_reviews()), limit)

    def reviews_for_user(self, user_id: int) -> List[Review]:
        return newest_first(r for r in self._all_reviews() if r.user_id == user_id)

    def find_user_review(self, user_id: int, business_id: int) -> Optional[Review]:
        with self._lock:
            return next(
                (r for r in self._reviews.values()
                 if r.user_id == user_id and r.business_id == business_id),
                None,
            )

    def create_review(
        self, data: NewReview, derive: Optional[DeriveBusinessFields] = None
    ) -> Review:
        with self._lock:
            if data.business_id not in self._businesses:
                raise ConstraintViolationError(
                    f"Review references unknown business {data.business_id}"
                )
            if data.user_id not in self._users:
                raise ConstraintViolationError(f"Review author {data.user_id} does not exist")
            if self.find_user_review(data.user_id, data.business_id) is not None:
                raise ConstraintViolationError(
                    "User already has a review for this business; update it instead"
                )
            review = Review.new(next(self._review_ids), data, utcnow())
            reviews = self._reviews_of(review.business_id) + [review]
            business = self._derived_business(review.business_id, reviews, derive)

            self._reviews[review.id] = review
            if business is not None:
                self._businesses[business.id] = business
        return review

    def update_review(
        self, review_id: int, *, derive: Optional[DeriveBusinessFields] = None, **updates: Any
    ) -> Review:
        updates = check_update_fields(Review, {"updated_at": utcnow(), **updates})
        with self._lock:
            review = replace(self.get_review(review_id), **updates)
            reviews = [
                review if r.id == review_id else r for r in self._reviews_of(review.business_id)
            ]
            business = self._derived_business(review.business_id, reviews, derive)

            self._reviews[review_id] = review
            if business is not None:
                self._businesses[business.id] = business
            return review

    def delete_review(
        self, review_id: int, derive: Optional[DeriveBusinessFields] = None
    ) -> Review:
        with self._lock:
            review = self.get_review(review_id)
            reviews = [r for r in self._reviews_of(review.business_id) if r.id != review_id]
            business = self._derived_business(review.business_id, reviews, derive)

            del self._reviews[review_id]
            if business is not None:
                self._businesses[business.id] = business
        return review

    # ── Claims ─────────────────────────────────────────────────────

    def get_claim(self, claim_id: int) -> Claim:
        with self._lock:
            claim = self._claims.get(claim_id)
        if claim is None:
            raise NotFoundError("Claim", claim_id)
        return claim

    def _all_claims(self) -> List[Claim]:
        with self._lock:
            return list(self._claims.values())

    def claims_for_business(self, business_id: int) -> List[Claim]:
        return newest_first(c for c in self._all_claims() if c.business_id == business_id)

    def claims_for_user(self, user_id: int) -> List[Claim]:
        return newest_first(c for c in self._all_claims() if c.user_id == user_id)

    def pending_claims(self) -> List[Claim]:
        return newest_first(c for c in self._all_claims() if c.status is ClaimStatus.PENDING)

    def find_user_claim(self, user_id: int, business_id: int) -> Optional[Claim]:
        with self._lock:
            return next(
                (c for c in self._claims.values()
                 if c.user_id == user_id and c.business_id == business_id),
                None,
            )

    def create_claim(self, data: NewClaim) -> Claim:
        with self._lock:
            if data.business_id not in self._businesses:
                raise ConstraintViolationError(
                    f"Claim references unknown business {data.business_id}"
                )
            if data.user_id not in self._users:
                raise ConstraintViolationError(f"Claimant {data.user_id} does not exist")
            if self.find_user_claim(data.user_id, data.business_id) is not None:
                raise ConstraintViolationError(
                    "You have already submitted a claim for this business"
                )
            claim = Claim.new(next(self._claim_ids), data, utcnow())
            self._claims[claim.id] = claim
        return claim

    def transition_claim(
        self, claim_id: int, decide: DecideClaim
    ) -> Tuple[Claim, Optional[Business]]:
        with self._lock:
            claim = self.get_claim(claim_id)
            business = self._businesses.get(claim.business_id)
            transition = decide(claim, business)
            claim_updates = check_update_fields(Claim, transition.claim_fields)
            business_updates = check_update_fields(Business, transition.business_fields)

            claim = replace(claim, **claim_updates)
            if business is not None and business_updates:
                business = check_business_invariants(replace(business, **business_updates))
                self._businesses[business.id] = business
            self._claims[claim_id] = claim
            return claim, business

    def delete_claim(self, claim_id: int, check: Optional[CheckClaim] = None) -> Claim:
        with self._lock:
            claim = self.get_claim(claim_id)
            if check is not None:
                check(claim)
            del self._claims[claim_id]
        return claim
