"""Tests for settings loading and the repository factory."""

import pytest

from tchouf.bootstrap import create_app
from tchouf.infrastructure.config import Settings, StorageSettings, get_settings
from tchouf.infrastructure.persistence import (
    MemoryRepository,
    SQLiteRepository,
    create_repository,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("TCHOUF_STORAGE_BACKEND", "TCHOUF_SQLITE_PATH", "TCHOUF_PAGE_SIZE",
                 "FIREBASE_SERVICE_ACCOUNT_KEY", "FIREBASE_PROJECT_ID", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_defaults():
    settings = Settings()
    assert settings.storage.backend == "memory"
    assert settings.listing.page_size == 20
    assert settings.listing.featured_limit == 6
    assert settings.log_level == "INFO"


def test_environment_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("TCHOUF_STORAGE_BACKEND", " SQLite ")
    monkeypatch.setenv("TCHOUF_SQLITE_PATH", str(tmp_path / "dir.db"))
    monkeypatch.setenv("TCHOUF_PAGE_SIZE", "50")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = Settings()

    assert settings.storage.backend == "sqlite"
    assert settings.storage.sqlite_path == tmp_path / "dir.db"
    assert settings.listing.page_size == 50
    assert settings.log_level == "DEBUG"


def test_get_settings_is_cached():
    assert get_settings() is get_settings()


def test_validate_reports_unknown_backend():
    issues = Settings(storage=StorageSettings(backend="postgres")).validate()
    assert any(issue.startswith("ERROR") and "postgres" in issue for issue in issues)


def test_validate_requires_firestore_key():
    issues = Settings(storage=StorageSettings(backend="firestore")).validate()
    assert any("FIREBASE_SERVICE_ACCOUNT_KEY" in issue for issue in issues)


def test_validate_warns_about_memory_backend():
    issues = Settings().validate()
    assert issues and all(issue.startswith("WARNING") for issue in issues)


def test_sqlite_settings_are_clean(tmp_path):
    settings = Settings(storage=StorageSettings(backend="sqlite", sqlite_path=tmp_path / "x.db"))
    assert settings.validate() == []


# --- Factory ---

def test_factory_builds_memory_repository():
    assert isinstance(create_repository(StorageSettings(backend="memory")), MemoryRepository)


def test_factory_builds_initialized_sqlite_repository(tmp_path):
    path = tmp_path / "factory.db"

    repo = create_repository(StorageSettings(backend="sqlite", sqlite_path=path))

    assert isinstance(repo, SQLiteRepository)
    assert path.exists()
    assert repo.list_businesses() == []


def test_factory_rejects_unknown_backend():
    with pytest.raises(ValueError):
        create_repository(StorageSettings(backend="postgres"))


def test_create_app_wires_services_on_one_repository(tmp_path):
    settings = Settings(storage=StorageSettings(backend="sqlite", sqlite_path=tmp_path / "app.db"))

    with create_app(settings) as app:
        assert app.directory.repository is app.repository
        assert app.reviews.aggregator is app.ratings
        assert app.claims.repository is app.repository
