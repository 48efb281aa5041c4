"""
SQLite Repository - Durable Single-Host Storage
===============================================

Stores users, businesses, reviews and claims in one SQLite file.

ARCHITECTURAL DECISION:
- A fresh connection per operation, so the repository is safe to share
  between threads
- Writes open the transaction with BEGIN IMMEDIATE, taking the database
  write lock up front: AUTOINCREMENT ids are never handed out twice and
  the compound rating refresh, review-plus-refresh writes, cascading
  business delete and claim decision cannot interleave
- WAL journal so readers are not blocked by the writer
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import fields, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar, Union

from tchouf.domain.errors import BackendUnavailableError, ConstraintViolationError, NotFoundError
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
    degraded_list,
    newest_first,
)

logger = logging.getLogger(__name__)

DATABASE_FILE = "tchouf.db"

E = TypeVar("E", User, Business, Review, Claim)

_TABLES = {User: "users", Business: "businesses", Review: "reviews", Claim: "claims"}
_DATETIME_FIELDS = {"created_at", "updated_at", "submitted_at", "reviewed_at"}
_BOOL_FIELDS = {"is_admin", "verified"}
_NEWEST = "ORDER BY created_at DESC, id DESC"

SCHEMA = """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        uid TEXT UNIQUE NOT NULL,
        email TEXT UNIQUE NOT NULL,
        display_name TEXT,
        photo_url TEXT,
        is_admin INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS businesses (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        slug TEXT NOT NULL,
        category TEXT NOT NULL,
        description TEXT,
        city TEXT NOT NULL,
        address TEXT NOT NULL,
        phone TEXT,
        email TEXT,
        website TEXT,
        photos TEXT NOT NULL DEFAULT '[]',
        created_by INTEGER NOT NULL REFERENCES users(id),
        claimed_by INTEGER REFERENCES users(id),
        verified INTEGER NOT NULL DEFAULT 0,
        avg_rating REAL NOT NULL DEFAULT 0,
        review_count INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        CHECK (verified = 0 OR claimed_by IS NOT NULL)
    );
    CREATE INDEX IF NOT EXISTS idx_businesses_slug ON businesses(slug);

    CREATE TABLE IF NOT EXISTS reviews (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        business_id INTEGER NOT NULL REFERENCES businesses(id),
        user_id INTEGER NOT NULL REFERENCES users(id),
        rating INTEGER NOT NULL CHECK (rating BETWEEN 1 AND 5),
        comment TEXT,
        photo_url TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT,
        UNIQUE(business_id, user_id)
    );

    CREATE TABLE IF NOT EXISTS claims (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        business_id INTEGER NOT NULL REFERENCES businesses(id),
        user_id INTEGER NOT NULL REFERENCES users(id),
        status TEXT NOT NULL DEFAULT 'pending'
            CHECK (status IN ('pending', 'approved', 'rejected')),
        proof_url TEXT,
        submitted_at TEXT NOT NULL,
        reviewed_at TEXT,
        reviewed_by INTEGER REFERENCES users(id),
        UNIQUE(business_id, user_id)
    );
"""


def _encode(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat(timespec="microseconds")
    if isinstance(value, ClaimStatus):
        return value.value
    if isinstance(value, (list, tuple)):
        return json.dumps(list(value))
    if isinstance(value, bool):
        return int(value)
    return value


def _to_row(entity: Any) -> Dict[str, Any]:
    return {f.name: _encode(getattr(entity, f.name)) for f in fields(entity)}


def _row_to_entity(entity_type: Type[E], row: sqlite3.Row) -> E:
    """Convert database row to an entity record."""
    values: Dict[str, Any] = {}
    for f in fields(entity_type):
        value = row[f.name]
        if f.name in _DATETIME_FIELDS and value is not None:
            value = datetime.fromisoformat(value)
        elif f.name in _BOOL_FIELDS:
            value = bool(value)
        elif f.name == "photos":
            value = tuple(json.loads(value or "[]"))
        elif f.name == "status":
            value = ClaimStatus(value)
        elif f.name == "avg_rating":
            value = float(value)
        values[f.name] = value
    return entity_type(**values)


class SQLiteRepository(Repository):
    """
    SQLite-backed repository.

    Usage:
        repo = SQLiteRepository("tchouf.db")
        repo.init()
        business = repo.create_business(NewBusiness(...))
    """

    def __init__(self, db_path: Union[str, Path] = DATABASE_FILE, timeout: float = 30.0):
        self.db_path = str(db_path)
        self.timeout = timeout

    @contextmanager
    def _get_connection(self, operation: str, write: bool = False):
        """Run one transaction; storage errors leave as core errors."""
        try:
            conn = sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)
        except sqlite3.Error as e:
            raise BackendUnavailableError(operation, str(e)) from e
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys=ON")
            conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
            yield conn
            conn.execute("COMMIT")
        except sqlite3.IntegrityError as e:
            self._rollback(conn)
            raise ConstraintViolationError(f"{operation} rejected by storage: {e}") from e
        except sqlite3.Error as e:
            self._rollback(conn)
            raise BackendUnavailableError(operation, str(e)) from e
        except BaseException:
            self._rollback(conn)
            raise
        finally:
            conn.close()

    @staticmethod
    def _rollback(conn: sqlite3.Connection) -> None:
        if not conn.in_transaction:
            return
        try:
            conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            logger.warning(f"Rollback failed: {e}")

    def init(self) -> None:
        """Initialize database tables."""
        try:
            conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        except sqlite3.Error as e:
            raise BackendUnavailableError("init", str(e)) from e
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(SCHEMA)
            conn.commit()
        except sqlite3.Error as e:
            raise BackendUnavailableError("init", str(e)) from e
        finally:
            conn.close()
        logger.info(f"Database initialized: {self.db_path}")

    # ── Row helpers ────────────────────────────────────────────────

    def _fetch(self, conn, entity_type: Type[E], entity_id: int) -> Optional[E]:
        row = conn.execute(
            f"SELECT * FROM {_TABLES[entity_type]} WHERE id = ?", (entity_id,)
        ).fetchone()
        return _row_to_entity(entity_type, row) if row else None

    def _require(self, conn, entity_type: Type[E], entity_id: int) -> E:
        entity = self._fetch(conn, entity_type, entity_id)
        if entity is None:
            raise NotFoundError(entity_type.__name__, entity_id)
        return entity

    def _select(self, conn, entity_type: Type[E], where: str = "", params: tuple = ()) -> List[E]:
        sql = f"SELECT * FROM {_TABLES[entity_type]} {where}"
        return [_row_to_entity(entity_type, row) for row in conn.execute(sql, params).fetchall()]

    def _exists(self, conn, entity_type: type, entity_id: int) -> bool:
        row = conn.execute(
            f"SELECT 1 FROM {_TABLES[entity_type]} WHERE id = ?", (entity_id,)
        ).fetchone()
        return row is not None

    def _insert(self, conn, entity: Any) -> int:
        row = _to_row(entity)
        row.pop("id")
        columns = ", ".join(row)
        marks = ", ".join("?" for _ in row)
        cursor = conn.execute(
            f"INSERT INTO {_TABLES[type(entity)]} ({columns}) VALUES ({marks})",
            list(row.values()),
        )
        return cursor.lastrowid

    def _update(self, conn, entity_type: Type[E], entity_id: int, updates: Dict[str, Any]) -> E:
        if updates and entity_type is Business:
            current = self._require(conn, Business, entity_id)
            check_business_invariants(replace(current, **updates))
        if updates:
            set_clause = ", ".join(f"{k} = ?" for k in updates)
            values = [_encode(v) for v in updates.values()] + [entity_id]
            cursor = conn.execute(
                f"UPDATE {_TABLES[entity_type]} SET {set_clause} WHERE id = ?", values
            )
            if cursor.rowcount == 0:
                raise NotFoundError(entity_type.__name__, entity_id)
        return self._require(conn, entity_type, entity_id)

    def _get(self, entity_type: Type[E], entity_id: int) -> E:
        with self._get_connection(f"get_{entity_type.__name__.lower()}") as conn:
            return self._require(conn, entity_type, entity_id)

    def _update_one(self, entity_type: Type[E], entity_id: int, updates: Dict[str, Any]) -> E:
        updates = check_update_fields(entity_type, updates)
        with self._get_connection(f"update_{entity_type.__name__.lower()}", write=True) as conn:
            return self._update(conn, entity_type, entity_id, updates)

    def _refresh(
        self, conn, business_id: int, derive: Optional[DeriveBusinessFields]
    ) -> Optional[Business]:
        """Re-derive business fields from its reviews inside the open transaction."""
        if derive is None:
            return None
        self._require(conn, Business, business_id)
        reviews = self._select(conn, Review, "WHERE business_id = ?", (business_id,))
        updates = check_update_fields(Business, derive(reviews))
        return self._update(conn, Business, business_id, updates)

    # ── Users ──────────────────────────────────────────────────────

    def get_user(self, user_id: int) -> User:
        return self._get(User, user_id)

    def find_user_by_uid(self, uid: str) -> Optional[User]:
        with self._get_connection("find_user_by_uid") as conn:
            users = self._select(conn, User, "WHERE uid = ?", (uid,))
        return users[0] if users else None

    def find_user_by_email(self, email: str) -> Optional[User]:
        with self._get_connection("find_user_by_email") as conn:
            users = self._select(conn, User, "WHERE email = ?", (email,))
        return users[0] if users else None

    def create_user(self, data: NewUser) -> User:
        now = utcnow()
        with self._get_connection("create_user", write=True) as conn:
            duplicate = conn.execute(
                "SELECT uid FROM users WHERE uid = ? OR email = ?", (data.uid, str(data.email))
            ).fetchone()
            if duplicate is not None:
                if duplicate["uid"] == data.uid:
                    raise ConstraintViolationError(f"User with uid {data.uid!r} already exists")
                raise ConstraintViolationError(f"Email {data.email} is already registered")
            user_id = self._insert(conn, User.new(0, data, now))
        logger.debug(f"Created user {user_id}")
        return User.new(user_id, data, now)

    def update_user(self, user_id: int, **updates: Any) -> User:
        return self._update_one(User, user_id, updates)

    # ── Businesses ─────────────────────────────────────────────────

    def get_business(self, business_id: int) -> Business:
        return self._get(Business, business_id)

    def find_business_by_slug(self, slug: str) -> Optional[Business]:
        with self._get_connection("find_business_by_slug") as conn:
            found = self._select(conn, Business, "WHERE slug = ? ORDER BY id LIMIT 1", (slug,))
        return found[0] if found else None

    @degraded_list
    def list_businesses(self, limit: int = 20, offset: int = 0) -> List[Business]:
        with self._get_connection("list_businesses") as conn:
            return self._select(
                conn, Business, f"{_NEWEST} LIMIT ? OFFSET ?", (max(limit, 0), max(offset, 0))
            )

    @degraded_list
    def search_businesses(
        self, query: str = "", city: Optional[str] = None, category: Optional[str] = None
    ) -> List[Business]:
        # Case folding happens in Python: SQLite's lower() is ASCII-only
        with self._get_connection("search_businesses") as conn:
            businesses = self._select(conn, Business, _NEWEST)
        return [b for b in businesses if business_matches(b, query, city, category)]

    def businesses_by_category(self, category: str) -> List[Business]:
        return self.search_businesses(category=category)

    @degraded_list
    def featured_businesses(self, limit: int = 6) -> List[Business]:
        with self._get_connection("featured_businesses") as conn:
            return self._select(
                conn,
                Business,
                "ORDER BY avg_rating DESC, review_count DESC, created_at DESC, id DESC LIMIT ?",
                (max(limit, 0),),
            )

    @degraded_list
    def businesses_for_user(self, user_id: int) -> List[Business]:
        with self._get_connection("businesses_for_user") as conn:
            return self._select(
                conn, Business, f"WHERE created_by = ? OR claimed_by = ? {_NEWEST}",
                (user_id, user_id),
            )

    def create_business(self, data: NewBusiness) -> Business:
        now = utcnow()
        draft = Business.new(0, data, now)
        with self._get_connection("create_business", write=True) as conn:
            if not self._exists(conn, User, data.created_by):
                raise ConstraintViolationError(
                    f"Business creator {data.created_by} does not exist"
                )
            business_id = self._insert(conn, draft)
            business = Business.new(business_id, data, now)
            if business.slug != draft.slug:
                conn.execute(
                    "UPDATE businesses SET slug = ? WHERE id = ?", (business.slug, business_id)
                )
        logger.debug(f"Created business {business.id} ({business.slug})")
        return business

    def update_business(self, business_id: int, **updates: Any) -> Business:
        return self._update_one(Business, business_id, updates)

    def delete_business(self, business_id: int) -> Business:
        with self._get_connection("delete_business", write=True) as conn:
            business = self._require(conn, Business, business_id)
            conn.execute("DELETE FROM reviews WHERE business_id = ?", (business_id,))
            conn.execute("DELETE FROM claims WHERE business_id = ?", (business_id,))
            conn.execute("DELETE FROM businesses WHERE id = ?", (business_id,))
        logger.debug(f"Deleted business {business_id} with its reviews and claims")
        return business

    def refresh_business_from_reviews(
        self, business_id: int, derive: DeriveBusinessFields
    ) -> Business:
        with self._get_connection("refresh_business_from_reviews", write=True) as conn:
            return self._refresh(conn, business_id, derive)

    # ── Reviews ────────────────────────────────────────────────────

    def get_review(self, review_id: int) -> Review:
        return self._get(Review, review_id)

    @degraded_list
    def reviews_for_business(self, business_id: int) -> List[Review]:
        with self._get_connection("reviews_for_business") as conn:
            return self._select(conn, Review, f"WHERE business_id = ? {_NEWEST}", (business_id,))

    @degraded_list
    def recent_reviews(self, limit: int = 6) -> List[Review]:
        with self._get_connection("recent_reviews") as conn:
            return self._select(conn, Review, f"{_NEWEST} LIMIT ?", (max(limit, 0),))

    @degraded_list
    def reviews_for_user(self, user_id: int) -> List[Review]:
        with self._get_connection("reviews_for_user") as conn:
            return self._select(conn, Review, f"WHERE user_id = ? {_NEWEST}", (user_id,))

    def find_user_review(self, user_id: int, business_id: int) -> Optional[Review]:
        with self._get_connection("find_user_review") as conn:
            found = self._select(
                conn, Review, "WHERE user_id = ? AND business_id = ?", (user_id, business_id)
            )
        return found[0] if found else None

    def create_review(
        self, data: NewReview, derive: Optional[DeriveBusinessFields] = None
    ) -> Review:
        now = utcnow()
        with self._get_connection("create_review", write=True) as conn:
            if not self._exists(conn, Business, data.business_id):
                raise ConstraintViolationError(
                    f"Review references unknown business {data.business_id}"
                )
            if not self._exists(conn, User, data.user_id):
                raise ConstraintViolationError(f"Review author {data.user_id} does not exist")
            duplicate = conn.execute(
                "SELECT 1 FROM reviews WHERE user_id = ? AND business_id = ?",
                (data.user_id, data.business_id),
            ).fetchone()
            if duplicate is not None:
                raise ConstraintViolationError(
                    "User already has a review for this business; update it instead"
                )
            review_id = self._insert(conn, Review.new(0, data, now))
            self._refresh(conn, data.business_id, derive)
        return Review.new(review_id, data, now)

    def update_review(
        self, review_id: int, *, derive: Optional[DeriveBusinessFields] = None, **updates: Any
    ) -> Review:
        updates = check_update_fields(Review, {"updated_at": utcnow(), **updates})
        with self._get_connection("update_review", write=True) as conn:
            review = self._update(conn, Review, review_id, updates)
            self._refresh(conn, review.business_id, derive)
        return review

    def delete_review(
        self, review_id: int, derive: Optional[DeriveBusinessFields] = None
    ) -> Review:
        with self._get_connection("delete_review", write=True) as conn:
            review = self._require(conn, Review, review_id)
            conn.execute("DELETE FROM reviews WHERE id = ?", (review_id,))
            self._refresh(conn, review.business_id, derive)
        return review

    # ── Claims ─────────────────────────────────────────────────────

    def get_claim(self, claim_id: int) -> Claim:
        return self._get(Claim, claim_id)

    @degraded_list
    def claims_for_business(self, business_id: int) -> List[Claim]:
        with self._get_connection("claims_for_business") as conn:
            return self._select(
                conn, Claim, "WHERE business_id = ? ORDER BY submitted_at DESC, id DESC",
                (business_id,),
            )

    @degraded_list
    def claims_for_user(self, user_id: int) -> List[Claim]:
        with self._get_connection("claims_for_user") as conn:
            return self._select(
                conn, Claim, "WHERE user_id = ? ORDER BY submitted_at DESC, id DESC", (user_id,)
            )

    @degraded_list
    def pending_claims(self) -> List[Claim]:
        with self._get_connection("pending_claims") as conn:
            claims = self._select(conn, Claim, "WHERE status = ?", (ClaimStatus.PENDING.value,))
        return newest_first(claims)

    def find_user_claim(self, user_id: int, business_id: int) -> Optional[Claim]:
        with self._get_connection("find_user_claim") as conn:
            found = self._select(
                conn, Claim, "WHERE user_id = ? AND business_id = ?", (user_id, business_id)
            )
        return found[0] if found else None

    def create_claim(self, data: NewClaim) -> Claim:
        now = utcnow()
        with self._get_connection("create_claim", write=True) as conn:
            if not self._exists(conn, Business, data.business_id):
                raise ConstraintViolationError(
                    f"Claim references unknown business {data.business_id}"
                )
            if not self._exists(conn, User, data.user_id):
                raise ConstraintViolationError(f"Claimant {data.user_id} does not exist")
            duplicate = conn.execute(
                "SELECT 1 FROM claims WHERE user_id = ? AND business_id = ?",
                (data.user_id, data.business_id),
            ).fetchone()
            if duplicate is not None:
                raise ConstraintViolationError(
                    "You have already submitted a claim for this business"
                )
            claim_id = self._insert(conn, Claim.new(0, data, now))
        return Claim.new(claim_id, data, now)

    def transition_claim(
        self, claim_id: int, decide: DecideClaim
    ) -> Tuple[Claim, Optional[Business]]:
        with self._get_connection("transition_claim", write=True) as conn:
            claim = self._require(conn, Claim, claim_id)
            business = self._fetch(conn, Business, claim.business_id)
            transition = decide(claim, business)
            claim_updates = check_update_fields(Claim, transition.claim_fields)
            business_updates = check_update_fields(Business, transition.business_fields)

            claim = self._update(conn, Claim, claim_id, claim_updates)
            if business is not None and business_updates:
                business = self._update(conn, Business, business.id, business_updates)
            return claim, business

    def delete_claim(self, claim_id: int, check: Optional[CheckClaim] = None) -> Claim:
        with self._get_connection("delete_claim", write=True) as conn:
            claim = self._require(conn, Claim, claim_id)
            if check is not None:
                check(claim)
            conn.execute("DELETE FROM claims WHERE id = ?", (claim_id,))
        return claim
