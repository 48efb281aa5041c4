"""Shared fixtures: every repository test runs against each local backend."""

import itertools

import pytest

from tchouf.bootstrap import build_app
from tchouf.domain import NewBusiness, NewUser
from tchouf.infrastructure.persistence import MemoryRepository, SQLiteRepository

_seq = itertools.count(1)


@pytest.fixture(params=["memory", "sqlite"])
def repository(request, tmp_path):
    if request.param == "memory":
        repo = MemoryRepository()
    else:
        repo = SQLiteRepository(tmp_path / "tchouf-test.db")
    repo.init()
    yield repo
    repo.close()


@pytest.fixture
def app(repository):
    return build_app(repository)


@pytest.fixture
def make_user(repository):
    def _make(**overrides):
        n = next(_seq)
        data = {"uid": f"uid-{n}", "email": f"user{n}@example.com", "display_name": f"User {n}"}
        data.update(overrides)
        return repository.create_user(NewUser(**data))
    return _make


@pytest.fixture
def make_business(repository, make_user):
    def _make(created_by=None, **overrides):
        if created_by is None:
            created_by = make_user().id
        data = {
            "name": "Café Aroma",
            "category": "restaurant",
            "description": "A cozy coffee shop with delicious pastries",
            "city": "Algiers",
            "address": "123 Main Street, Algiers",
        }
        data.update(overrides)
        return repository.create_business(NewBusiness(created_by=created_by, **data))
    return _make
