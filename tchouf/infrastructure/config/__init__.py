from .settings import (
    BACKEND_FIRESTORE,
    BACKEND_MEMORY,
    BACKEND_SQLITE,
    BACKENDS,
    ListingSettings,
    Settings,
    StorageSettings,
    get_settings,
)

__all__ = [
    "BACKEND_FIRESTORE",
    "BACKEND_MEMORY",
    "BACKEND_SQLITE",
    "BACKENDS",
    "ListingSettings",
    "Settings",
    "StorageSettings",
    "get_settings",
]
