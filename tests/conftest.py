from __future__ import annotations

from pathlib import Path

import pytest
from flask import Flask

from box_manager.app import create_app
from box_manager.backends import MemoryBackend
from box_manager.config import Settings
from box_manager.store import InventoryStore


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        environment="test",
        storage_backend="memory",
        app_name="Test Box Manager",
        data_path=tmp_path / "data.json",
        export_dir=tmp_path / "exports",
    )


@pytest.fixture()
def backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture()
def store(backend: MemoryBackend) -> InventoryStore:
    store = InventoryStore(backend=backend)
    store.init()
    return store


@pytest.fixture()
def app(settings: Settings, store: InventoryStore) -> Flask:
    app = create_app(settings, store=store)
    app.config.update(TESTING=True)
    return app


@pytest.fixture()
def client(app: Flask):
    return app.test_client()
