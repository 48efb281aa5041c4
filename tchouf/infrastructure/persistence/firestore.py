"""
Firestore Repository - Document Database Storage for Production
===============================================================

One Firestore collection per entity, documents keyed by the integer id as
a string. Ids come from a per-collection counter document in ``counters``
that is read and bumped inside the same transaction that writes the new
entity, so two concurrent creates can never receive the same id.

ARCHITECTURAL DECISION:
- Every write that reads first (rating refresh, review writes with their
  refresh, claim decision, cascading business delete) runs inside one
  Firestore transaction with all reads before any write:
  on contention Firestore retries the whole read-modify-write, so the
  second of two concurrent decisions re-reads the claim and sees it is
  no longer pending
- List queries read the collection (optionally narrowed by an equality
  filter) and filter/sort in Python; fine for a city-sized directory
- Google API errors become BackendUnavailableError; list queries log
  and degrade to an empty list, everything else propagates
"""

import json
import logging
from contextlib import contextmanager
from dataclasses import MISSING, fields, replace
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Tuple, Type, TypeVar

import firebase_admin
from firebase_admin import credentials
from firebase_admin import firestore as firebase_firestore
from google.api_core import exceptions as google_exceptions
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter

from tchouf.domain.errors import BackendUnavailableError, ConstraintViolationError, NotFoundError
from tchouf.domain.models import Business, Claim, ClaimStatus, Review, User, utcnow
from tchouf.domain.schemas import NewBusiness, NewClaim, NewReview, NewUser
from tchouf.infrastructure.config import StorageSettings

from .repository import (
    CheckClaim,
    DecideClaim,
    DeriveBusinessFields,
    Repository,
    business_matches,
    check_business_invariants,
    check_update_fields,
    degraded_list,
    featured_order,
    newest_first,
    paginate,
)

logger = logging.getLogger(__name__)

FIREBASE_APP_NAME = "tchouf"

COLLECTION_COUNTERS = "counters"
COLLECTIONS = {User: "users", Business: "businesses", Review: "reviews", Claim: "claims"}

E = TypeVar("E", User, Business, Review, Claim)


class RefreshPlan(NamedTuple):
    """A business update computed inside a transaction, applied after its other writes."""
    ref: Any
    fields: Dict[str, Any]
    business: Business


@contextmanager
def _translate_errors(operation: str):
    try:
        yield
    except google_exceptions.GoogleAPIError as e:
        raise BackendUnavailableError(operation, str(e)) from e


def _encode(value: Any) -> Any:
    if isinstance(value, ClaimStatus):
        return value.value
    if isinstance(value, tuple):
        return list(value)
    return value


def _to_document(entity: Any) -> Dict[str, Any]:
    return {f.name: _encode(getattr(entity, f.name)) for f in fields(entity)}


def _from_document(entity_type: Type[E], data: Dict[str, Any]) -> E:
    """Build an entity from a document, filling defaults for missing fields."""
    values: Dict[str, Any] = {}
    for f in fields(entity_type):
        value = data.get(f.name, None if f.default is MISSING else f.default)
        if f.name == "photos":
            value = tuple(value or ())
        elif f.name == "status":
            value = ClaimStatus(value or ClaimStatus.PENDING.value)
        elif f.name in ("verified", "is_admin"):
            value = bool(value)
        elif f.name == "avg_rating":
            value = float(value or 0)
        elif f.name == "review_count":
            value = int(value or 0)
        values[f.name] = value
    return entity_type(**values)


class FirestoreRepository(Repository):
    """
    Firestore-backed repository.

    Usage:
        repo = FirestoreRepository.from_settings(settings.storage)
        claim = repo.get_claim(3)

    Tests may pass any object shaped like ``google.cloud.firestore.Client``.
    """

    def __init__(self, client, app: Optional[firebase_admin.App] = None):
        self._client = client
        self._app = app

    @classmethod
    def from_settings(cls, storage: StorageSettings) -> "FirestoreRepository":
        if not storage.firebase_service_account_key:
            raise ValueError("FIREBASE_SERVICE_ACCOUNT_KEY is required for the firestore backend")
        service_account = json.loads(storage.firebase_service_account_key)
        project_id = storage.firebase_project_id or service_account.get("project_id")
        try:
            app = firebase_admin.get_app(FIREBASE_APP_NAME)
        except ValueError:
            app = firebase_admin.initialize_app(
                credentials.Certificate(service_account),
                {"projectId": project_id},
                name=FIREBASE_APP_NAME,
            )
        logger.info(f"Connected to Firestore project {project_id}")
        return cls(firebase_firestore.client(app), app=app)

    def close(self) -> None:
        if self._app is not None:
            firebase_admin.delete_app(self._app)
            self._app = None

    # ── Document helpers ───────────────────────────────────────────

    def _doc(self, entity_type: type, entity_id: int):
        return self._client.collection(COLLECTIONS[entity_type]).document(str(entity_id))

    def _query(self, entity_type: type, *filters: FieldFilter):
        query = self._client.collection(COLLECTIONS[entity_type])
        for field_filter in filters:
            query = query.where(filter=field_filter)
        return query

    def _stream(self, entity_type: Type[E], *filters: FieldFilter, transaction=None) -> List[E]:
        query = self._query(entity_type, *filters)
        with _translate_errors(f"query {COLLECTIONS[entity_type]}"):
            snapshots = list(query.stream(transaction=transaction))
        return [_from_document(entity_type, s.to_dict()) for s in snapshots]

    def _get(self, entity_type: Type[E], entity_id: int) -> E:
        with _translate_errors(f"get_{entity_type.__name__.lower()}"):
            snapshot = self._doc(entity_type, entity_id).get()
        if not snapshot.exists:
            raise NotFoundError(entity_type.__name__, entity_id)
        return _from_document(entity_type, snapshot.to_dict())

    def _read(self, transaction, entity_type: Type[E], entity_id: int) -> E:
        snapshot = self._doc(entity_type, entity_id).get(transaction=transaction)
        if not snapshot.exists:
            raise NotFoundError(entity_type.__name__, entity_id)
        return _from_document(entity_type, snapshot.to_dict())

    def _update_one(self, entity_type: Type[E], entity_id: int, updates: Dict[str, Any]) -> E:
        """Merge fields into a stored document, validating the merged entity first."""
        updates = check_update_fields(entity_type, updates)
        ref = self._doc(entity_type, entity_id)

        def work(transaction) -> E:
            entity = replace(self._read(transaction, entity_type, entity_id), **updates)
            if entity_type is Business:
                check_business_invariants(entity)
            if updates:
                transaction.update(ref, {k: _encode(v) for k, v in updates.items()})
            return entity

        return self._transact(f"update_{entity_type.__name__.lower()}", work)

    def _transact(self, operation: str, work: Callable[[Any], Any]) -> Any:
        """Run ``work(transaction)`` in a Firestore transaction with retries."""
        with _translate_errors(operation):
            return firestore.transactional(work)(self._client.transaction())

    def _plan_refresh(
        self,
        transaction,
        business_id: int,
        derive: Optional[DeriveBusinessFields],
        adjust: Callable[[List[Review]], List[Review]] = list,
    ) -> Optional[RefreshPlan]:
        """
        Read the business and its reviews and compute the derived update.

        ``adjust`` applies the pending review write to the stored review set,
        since a transaction does not see its own writes. Only reads happen
        here; the caller applies the plan after its other writes.
        """
        if derive is None:
            return None
        business = self._read(transaction, Business, business_id)
        reviews = self._stream(
            Review, FieldFilter("business_id", "==", business_id), transaction=transaction
        )
        updates = check_update_fields(Business, derive(adjust(reviews)))
        business = check_business_invariants(replace(business, **updates))
        fields_ = {k: _encode(v) for k, v in updates.items()}
        return RefreshPlan(self._doc(Business, business_id), fields_, business)

    @staticmethod
    def _apply(transaction, plan: Optional[RefreshPlan]) -> None:
        if plan is not None:
            transaction.update(plan.ref, plan.fields)

    def _insert(
        self,
        entity_type: Type[E],
        build: Callable[[Any, int], E],
        plan: Optional[Callable[[Any, E], Optional[RefreshPlan]]] = None,
    ) -> E:
        """Create an entity under the next counter id, atomically."""
        collection = COLLECTIONS[entity_type]
        counter_ref = self._client.collection(COLLECTION_COUNTERS).document(collection)

        def work(transaction) -> E:
            counter = counter_ref.get(transaction=transaction)
            current = (counter.to_dict() or {}).get("count", 0) if counter.exists else 0
            entity = build(transaction, current + 1)
            refresh = plan(transaction, entity) if plan is not None else None
            transaction.set(counter_ref, {"count": entity.id})
            transaction.set(self._doc(entity_type, entity.id), _to_document(entity))
            self._apply(transaction, refresh)
            return entity

        entity = self._transact(f"create in {collection}", work)
        logger.debug(f"Created {collection}/{entity.id}")
        return entity

    def _exists(self, transaction, entity_type: type, entity_id: int) -> bool:
        return self._doc(entity_type, entity_id).get(transaction=transaction).exists

    # ── Users ──────────────────────────────────────────────────────

    def get_user(self, user_id: int) -> User:
        return self._get(User, user_id)

    def find_user_by_uid(self, uid: str) -> Optional[User]:
        users = self._stream(User, FieldFilter("uid", "==", uid))
        return min(users, key=lambda u: u.id) if users else None

    def find_user_by_email(self, email: str) -> Optional[User]:
        users = self._stream(User, FieldFilter("email", "==", email))
        return min(users, key=lambda u: u.id) if users else None

    def create_user(self, data: NewUser) -> User:
        now = utcnow()

        def build(transaction, user_id: int) -> User:
            if self._stream(User, FieldFilter("uid", "==", data.uid), transaction=transaction):
                raise ConstraintViolationError(f"User with uid {data.uid!r} already exists")
            if self._stream(User, FieldFilter("email", "==", str(data.email)), transaction=transaction):
                raise ConstraintViolationError(f"Email {data.email} is already registered")
            return User.new(user_id, data, now)

        return self._insert(User, build)

    def update_user(self, user_id: int, **updates: Any) -> User:
        return self._update_one(User, user_id, updates)

    # ── Businesses ─────────────────────────────────────────────────

    def get_business(self, business_id: int) -> Business:
        return self._get(Business, business_id)

    def find_business_by_slug(self, slug: str) -> Optional[Business]:
        found = self._stream(Business, FieldFilter("slug", "==", slug))
        return min(found, key=lambda b: b.id) if found else None

    @degraded_list
    def list_businesses(self, limit: int = 20, offset: int = 0) -> List[Business]:
        return paginate(newest_first(self._stream(Business)), limit, offset)

    @degraded_list
    def search_businesses(
        self, query: str = "", city: Optional[str] = None, category: Optional[str] = None
    ) -> List[Business]:
        return newest_first(
            b for b in self._stream(Business) if business_matches(b, query, city, category)
        )

    def businesses_by_category(self, category: str) -> List[Business]:
        return self.search_businesses(category=category)

    @degraded_list
    def featured_businesses(self, limit: int = 6) -> List[Business]:
        return featured_order(self._stream(Business), limit)

    @degraded_list
    def businesses_for_user(self, user_id: int) -> List[Business]:
        created = self._stream(Business, FieldFilter("created_by", "==", user_id))
        claimed = self._stream(Business, FieldFilter("claimed_by", "==", user_id))
        merged = {b.id: b for b in created + claimed}
        return newest_first(merged.values())

    def create_business(self, data: NewBusiness) -> Business:
        now = utcnow()

        def build(transaction, business_id: int) -> Business:
            if not self._exists(transaction, User, data.created_by):
                raise ConstraintViolationError(
                    f"Business creator {data.created_by} does not exist"
                )
            return Business.new(business_id, data, now)

        return self._insert(Business, build)

    def update_business(self, business_id: int, **updates: Any) -> Business:
        return self._update_one(Business, business_id, updates)

    def delete_business(self, business_id: int) -> Business:
        by_business = FieldFilter("business_id", "==", business_id)

        def work(transaction) -> Business:
            business = self._read(transaction, Business, business_id)
            reviews = self._stream(Review, by_business, transaction=transaction)
            claims = self._stream(Claim, by_business, transaction=transaction)
            for review in reviews:
                transaction.delete(self._doc(Review, review.id))
            for claim in claims:
                transaction.delete(self._doc(Claim, claim.id))
            transaction.delete(self._doc(Business, business_id))
            return business

        business = self._transact("delete_business", work)
        logger.debug(f"Deleted business {business_id} with its reviews and claims")
        return business

    def refresh_business_from_reviews(
        self, business_id: int, derive: DeriveBusinessFields
    ) -> Business:
        def work(transaction) -> Business:
            plan = self._plan_refresh(transaction, business_id, derive)
            self._apply(transaction, plan)
            return plan.business

        return self._transact("refresh_business_from_reviews", work)

    # ── Reviews ────────────────────────────────────────────────────

    def get_review(self, review_id: int) -> Review:
        return self._get(Review, review_id)

    @degraded_list
    def reviews_for_business(self, business_id: int) -> List[Review]:
        return newest_first(self._stream(Review, FieldFilter("business_id", "==", business_id)))

    @degraded_list
    def recent_reviews(self, limit: int = 6) -> List[Review]:
        return paginate(newest_first(self._stream(Review)), limit)

    @degraded_list
    def reviews_for_user(self, user_id: int) -> List[Review]:
        return newest_first(self._stream(Review, FieldFilter("user_id", "==", user_id)))

    def find_user_review(self, user_id: int, business_id: int) -> Optional[Review]:
        found = self._stream(
            Review,
            FieldFilter("user_id", "==", user_id),
            FieldFilter("business_id", "==", business_id),
        )
        return found[0] if found else None

    def create_review(
        self, data: NewReview, derive: Optional[DeriveBusinessFields] = None
    ) -> Review:
        now = utcnow()

        def build(transaction, review_id: int) -> Review:
            if not self._exists(transaction, Business, data.business_id):
                raise ConstraintViolationError(
                    f"Review references unknown business {data.business_id}"
                )
            if not self._exists(transaction, User, data.user_id):
                raise ConstraintViolationError(f"Review author {data.user_id} does not exist")
            duplicate = self._stream(
                Review,
                FieldFilter("user_id", "==", data.user_id),
                FieldFilter("business_id", "==", data.business_id),
                transaction=transaction,
            )
            if duplicate:
                raise ConstraintViolationError(
                    "User already has a review for this business; update it instead"
                )
            return Review.new(review_id, data, now)

        def plan(transaction, review: Review) -> Optional[RefreshPlan]:
            return self._plan_refresh(
                transaction, review.business_id, derive, lambda reviews: reviews + [review]
            )

        return self._insert(Review, build, plan)

    def update_review(
        self, review_id: int, *, derive: Optional[DeriveBusinessFields] = None, **updates: Any
    ) -> Review:
        if derive is None:
            return self._update_one(Review, review_id, {"updated_at": utcnow(), **updates})
        updates = check_update_fields(Review, {"updated_at": utcnow(), **updates})
        ref = self._doc(Review, review_id)

        def work(transaction) -> Review:
            review = replace(self._read(transaction, Review, review_id), **updates)
            plan = self._plan_refresh(
                transaction,
                review.business_id,
                derive,
                lambda reviews: [review if r.id == review_id else r for r in reviews],
            )
            transaction.update(ref, {k: _encode(v) for k, v in updates.items()})
            self._apply(transaction, plan)
            return review

        return self._transact("update_review", work)

    def delete_review(
        self, review_id: int, derive: Optional[DeriveBusinessFields] = None
    ) -> Review:
        ref = self._doc(Review, review_id)

        def work(transaction) -> Review:
            review = self._read(transaction, Review, review_id)
            plan = self._plan_refresh(
                transaction,
                review.business_id,
                derive,
                lambda reviews: [r for r in reviews if r.id != review_id],
            )
            transaction.delete(ref)
            self._apply(transaction, plan)
            return review

        return self._transact("delete_review", work)

    # ── Claims ─────────────────────────────────────────────────────

    def get_claim(self, claim_id: int) -> Claim:
        return self._get(Claim, claim_id)

    @degraded_list
    def claims_for_business(self, business_id: int) -> List[Claim]:
        return newest_first(self._stream(Claim, FieldFilter("business_id", "==", business_id)))

    @degraded_list
    def claims_for_user(self, user_id: int) -> List[Claim]:
        return newest_first(self._stream(Claim, FieldFilter("user_id", "==", user_id)))

    @degraded_list
    def pending_claims(self) -> List[Claim]:
        return newest_first(
            self._stream(Claim, FieldFilter("status", "==", ClaimStatus.PENDING.value))
        )

    def find_user_claim(self, user_id: int, business_id: int) -> Optional[Claim]:
        found = self._stream(
            Claim,
            FieldFilter("user_id", "==", user_id),
            FieldFilter("business_id", "==", business_id),
        )
        return found[0] if found else None

    def create_claim(self, data: NewClaim) -> Claim:
        now = utcnow()

        def build(transaction, claim_id: int) -> Claim:
            if not self._exists(transaction, Business, data.business_id):
                raise ConstraintViolationError(
                    f"Claim references unknown business {data.business_id}"
                )
            if not self._exists(transaction, User, data.user_id):
                raise ConstraintViolationError(f"Claimant {data.user_id} does not exist")
            duplicate = self._stream(
                Claim,
                FieldFilter("user_id", "==", data.user_id),
                FieldFilter("business_id", "==", data.business_id),
                transaction=transaction,
            )
            if duplicate:
                raise ConstraintViolationError(
                    "You have already submitted a claim for this business"
                )
            return Claim.new(claim_id, data, now)

        return self._insert(Claim, build)

    def transition_claim(
        self, claim_id: int, decide: DecideClaim
    ) -> Tuple[Claim, Optional[Business]]:
        claim_ref = self._doc(Claim, claim_id)

        def work(transaction) -> Tuple[Claim, Optional[Business]]:
            claim_snapshot = claim_ref.get(transaction=transaction)
            if not claim_snapshot.exists:
                raise NotFoundError("Claim", claim_id)
            claim = _from_document(Claim, claim_snapshot.to_dict())

            business_ref = self._doc(Business, claim.business_id)
            business_snapshot = business_ref.get(transaction=transaction)
            business = (
                _from_document(Business, business_snapshot.to_dict())
                if business_snapshot.exists else None
            )

            transition = decide(claim, business)
            claim_updates = check_update_fields(Claim, transition.claim_fields)
            business_updates = check_update_fields(Business, transition.business_fields)
            write_business = business is not None and bool(business_updates)
            if write_business:
                business = check_business_invariants(replace(business, **business_updates))

            transaction.update(claim_ref, {k: _encode(v) for k, v in claim_updates.items()})
            if write_business:
                transaction.update(
                    business_ref, {k: _encode(v) for k, v in business_updates.items()}
                )
            return replace(claim, **claim_updates), business

        return self._transact("transition_claim", work)

    def delete_claim(self, claim_id: int, check: Optional[CheckClaim] = None) -> Claim:
        def work(transaction) -> Claim:
            claim = self._read(transaction, Claim, claim_id)
            if check is not None:
                check(claim)
            transaction.delete(self._doc(Claim, claim_id))
            return claim

        return self._transact("delete_claim", work)
