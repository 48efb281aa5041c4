"""
Repository Factory - Pick a Storage Backend from Settings
=========================================================

The backend is an explicit configuration value; nothing here looks at the
environment on import.
"""

import logging

from tchouf.infrastructure.config import (
    BACKEND_FIRESTORE,
    BACKEND_MEMORY,
    BACKEND_SQLITE,
    BACKENDS,
    StorageSettings,
)

from .repository import Repository

logger = logging.getLogger(__name__)


def create_repository(storage: StorageSettings) -> Repository:
    """Build (and initialize) the repository named by ``storage.backend``."""
    backend = storage.backend

    if backend == BACKEND_MEMORY:
        from .memory import MemoryRepository
        repository: Repository = MemoryRepository()
    elif backend == BACKEND_SQLITE:
        from .database import SQLiteRepository
        repository = SQLiteRepository(storage.sqlite_path, timeout=storage.sqlite_timeout_seconds)
    elif backend == BACKEND_FIRESTORE:
        from .firestore import FirestoreRepository
        repository = FirestoreRepository.from_settings(storage)
    else:
        raise ValueError(f"Unknown storage backend {backend!r}; expected one of {BACKENDS}")

    repository.init()
    logger.info(f"Storage backend ready: {backend}")
    return repository
