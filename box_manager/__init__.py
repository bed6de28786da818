"""Box manager package."""
from __future__ import annotations

from .models import Box, BoxLine, Item
from .store import InventoryStore, LoadResult, SaveResult, build_store

__all__ = [
    "create_app",
    "Box",
    "BoxLine",
    "Item",
    "InventoryStore",
    "LoadResult",
    "SaveResult",
    "build_store",
]


def create_app(*args, **kwargs):
    from .app import create_app as _create_app

    return _create_app(*args, **kwargs)
