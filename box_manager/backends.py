"""Key-value storage backends used to persist the inventory snapshot."""
from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from copy import deepcopy
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional

from .exceptions import StorageError
from .models import _now

if TYPE_CHECKING:
    from .config import Settings

logger = logging.getLogger(__name__)


class StorageBackend(ABC):
    """A durable string-keyed store.

    Values are JSON-compatible: the inventory keeps a JSON string under its
    primary key and may find a structured mapping under the legacy key.
    ``flush`` returns only once every prior ``put``/``delete`` is durable.
    """

    def open(self) -> None:
        """Prepare the backend for use."""

    @abstractmethod
    def get(self, key: str) -> Any:
        """Return the stored value or ``None`` when the key is absent."""

    @abstractmethod
    def put(self, key: str, value: Any) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def flush(self) -> None:
        ...

    def close(self) -> None:
        """Release any resources held by the backend."""


class MemoryBackend(StorageBackend):
    """Keeps values in a plain dict; nothing survives the process."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        self._data: Dict[str, Any] = deepcopy(initial) if initial else {}

    def get(self, key: str) -> Any:
        return deepcopy(self._data.get(key))

    def put(self, key: str, value: Any) -> None:
        self._data[key] = deepcopy(value)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def flush(self) -> None:
        return None

    def keys(self) -> list[str]:
        return sorted(self._data)


class JsonFileBackend(StorageBackend):
    """Stores every key in one JSON document, rewritten atomically on flush."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._data: Dict[str, Any] = {}
        self._dirty = False

    def open(self) -> None:
        self._data = {}
        self._dirty = False
        if not self.path.exists():
            return
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"Cannot read {self.path}: {exc}") from exc
        if not raw.strip():
            return
        try:
            data = json.loads(raw)
        except (ValueError, RecursionError):
            data = None
        if not isinstance(data, dict):
            # Keep the unreadable file for inspection instead of overwriting it
            stamp = _now().strftime("%Y%m%d-%H%M%S")
            aside = self.path.with_name(f"{self.path.name}.corrupt-{stamp}")
            try:
                self.path.replace(aside)
            except OSError as exc:
                raise StorageError(f"Cannot move corrupt store {self.path}: {exc}") from exc
            logger.warning("Storage file %s was unreadable; moved to %s", self.path, aside)
            return
        self._data = data

    def get(self, key: str) -> Any:
        return deepcopy(self._data.get(key))

    def put(self, key: str, value: Any) -> None:
        self._data[key] = deepcopy(value)
        self._dirty = True

    def delete(self, key: str) -> None:
        if key in self._data:
            del self._data[key]
            self._dirty = True

    def flush(self) -> None:
        if not self._dirty:
            return
        temp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with temp_path.open("w", encoding="utf-8") as handle:
                handle.write(json.dumps(self._data, indent=2, ensure_ascii=False))
                handle.flush()
                os.fsync(handle.fileno())
            temp_path.replace(self.path)
        except (OSError, TypeError, ValueError) as exc:
            raise StorageError(f"Cannot write {self.path}: {exc}") from exc
        self._dirty = False


def build_backend(settings: "Settings") -> StorageBackend:
    """Create the backend selected by ``settings.storage_backend``."""

    if settings.storage_backend == "memory":
        return MemoryBackend()
    if settings.storage_backend == "sql":
        from .database import SqlBackend

        return SqlBackend.from_url(settings.database_url, echo=settings.echo_sql)
    return JsonFileBackend(settings.data_path)


__all__ = [
    "StorageBackend",
    "MemoryBackend",
    "JsonFileBackend",
    "build_backend",
]
