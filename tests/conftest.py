"""
Shared pytest fixtures for tagkeep tests.

Every store lives under tmp_path; nothing touches ~/.tagkeep.
"""

import random
from pathlib import Path

import pytest

from tagkeep.api import TagKeeper
from tagkeep.file_store import TaggedFileStore


@pytest.fixture(autouse=True)
def isolated_store_env(tmp_path, monkeypatch):
    """Point the default store and error log at a temp directory."""
    monkeypatch.setenv("TAGKEEP_STORE_PATH", str(tmp_path / "default-store"))


@pytest.fixture
def db_path(tmp_path) -> Path:
    return tmp_path / "tagease.db"


@pytest.fixture
def store(db_path):
    """A fresh store with a seeded color source."""
    s = TaggedFileStore(db_path, rng=random.Random(42))
    yield s
    s.close()


@pytest.fixture
def keeper(tmp_path):
    """A TagKeeper over a fresh store directory, no reconciliation on open."""
    kp = TagKeeper(tmp_path / "store", reconcile_on_open=False)
    yield kp
    kp.close()


@pytest.fixture
def real_file(tmp_path):
    """Factory for files that exist on disk."""
    def make(name: str, content: str = "content") -> Path:
        path = tmp_path / "files" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        return path
    return make
