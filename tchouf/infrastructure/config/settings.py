"""
Settings Module - Centralized Configuration Management
=======================================================

ARCHITECTURAL DECISION:
- All configuration is loaded from environment variables (no hardcoded secrets)
- Settings are immutable dataclasses for safety and clarity
- The storage backend is an explicit value handed to
  create_repository(), never inspected at import time

EXTENSIBILITY:
- To add a backend: add its connection settings to StorageSettings and a
  branch in tchouf.infrastructure.persistence.factory
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv

BACKEND_MEMORY = "memory"
BACKEND_SQLITE = "sqlite"
BACKEND_FIRESTORE = "firestore"
BACKENDS = (BACKEND_MEMORY, BACKEND_SQLITE, BACKEND_FIRESTORE)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else default


@dataclass(frozen=True)
class StorageSettings:
    """Which repository backend to build and how to reach it."""

    backend: str = field(
        default_factory=lambda: os.getenv("TCHOUF_STORAGE_BACKEND", BACKEND_MEMORY).strip().lower()
    )

    # SQLite
    sqlite_path: Path = field(
        default_factory=lambda: Path(os.getenv("TCHOUF_SQLITE_PATH", "tchouf.db"))
    )
    sqlite_timeout_seconds: float = 30.0

    # Firestore: service account JSON, as the Firebase console exports it
    firebase_service_account_key: str = field(
        default_factory=lambda: os.getenv("FIREBASE_SERVICE_ACCOUNT_KEY", "")
    )
    firebase_project_id: str = field(default_factory=lambda: os.getenv("FIREBASE_PROJECT_ID", ""))


@dataclass(frozen=True)
class ListingSettings:
    """Default page sizes for list views."""

    page_size: int = field(default_factory=lambda: _env_int("TCHOUF_PAGE_SIZE", 20))
    featured_limit: int = 6
    recent_reviews_limit: int = 6


@dataclass(frozen=True)
class Settings:
    """
    Root settings container - Single source of truth for all configuration.

    Usage:
        from tchouf.infrastructure.config import get_settings
        settings = get_settings()
        print(settings.storage.backend)
    """

    storage: StorageSettings = field(default_factory=StorageSettings)
    listing: ListingSettings = field(default_factory=ListingSettings)
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())

    def validate(self) -> list[str]:
        """
        Validate settings and return list of warnings/errors.
        Returns empty list if all settings are valid.
        """
        issues = []

        if self.storage.backend not in BACKENDS:
            issues.append(
                f"ERROR: Unknown TCHOUF_STORAGE_BACKEND '{self.storage.backend}'. "
                f"Expected one of: {', '.join(BACKENDS)}."
            )

        if self.storage.backend == BACKEND_FIRESTORE and not self.storage.firebase_service_account_key:
            issues.append(
                "ERROR: Firestore backend selected but FIREBASE_SERVICE_ACCOUNT_KEY is not set."
            )

        if self.storage.backend == BACKEND_MEMORY:
            issues.append(
                "WARNING: In-memory storage selected. Data is lost when the process exits."
            )

        return issues


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get singleton Settings instance for process entry points.
    Library code receives Settings explicitly instead of calling this.
    """
    load_dotenv()
    return Settings()
