# Persistence
# ===========
# Repository interface and its interchangeable backends:
# - memory.py:    dict-backed store for tests and development
# - database.py:  SQLite store for a single host
# - firestore.py: Cloud Firestore store for production
#
# Pick one with create_repository(settings.storage). FirestoreRepository is
# imported from its own module so firebase-admin loads only when used.

from .repository import ClaimTransition, Repository
from .memory import MemoryRepository
from .database import SQLiteRepository
from .factory import create_repository

__all__ = [
    "ClaimTransition",
    "Repository",
    "MemoryRepository",
    "SQLiteRepository",
    "create_repository",
]
