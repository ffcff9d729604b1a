"""Shared pytest fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from jsontabs.editor.workspace import TabRegistry
from jsontabs.services.settings import Settings
from jsontabs.services.storage import KeyValueStore


@pytest.fixture
def kv_store() -> KeyValueStore:
    store = KeyValueStore()
    yield store
    store.close()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "jsontabs.sqlite3"


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def registry() -> TabRegistry:
    return TabRegistry()
