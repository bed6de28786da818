"""SQLAlchemy-backed key-value storage."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Engine, String, create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column

from .backends import StorageBackend
from .exceptions import StorageError
from .models import _now


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""


class KeyValueEntry(Base):
    __tablename__ = "kv_entries"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[Any] = mapped_column(JSON, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_now, onupdate=_now, nullable=False
    )


class SqlBackend(StorageBackend):
    """Stores each key as a row; ``flush`` commits the pending changes."""

    def __init__(self, engine: Engine, *, owns_engine: bool = False) -> None:
        self.engine = engine
        self._owns_engine = owns_engine
        self._session: Optional[Session] = None

    @classmethod
    def from_url(cls, database_url: str, *, echo: bool = False) -> "SqlBackend":
        return cls(create_engine(database_url, echo=echo), owns_engine=True)

    @property
    def session(self) -> Session:
        if self._session is None:
            raise StorageError("SqlBackend used before open()")
        return self._session

    def open(self) -> None:
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise StorageError(f"Cannot prepare database: {exc}") from exc
        self._session = Session(self.engine, expire_on_commit=False)

    def get(self, key: str) -> Any:
        try:
            entry = self.session.get(KeyValueEntry, key)
        except SQLAlchemyError as exc:
            raise StorageError(f"Cannot read key {key!r}: {exc}") from exc
        return None if entry is None else entry.value

    def put(self, key: str, value: Any) -> None:
        session = self.session
        try:
            entry = session.get(KeyValueEntry, key)
            if entry is None:
                session.add(KeyValueEntry(key=key, value=value))
            else:
                entry.value = value
            session.flush()
        except SQLAlchemyError as exc:
            session.rollback()
            raise StorageError(f"Cannot write key {key!r}: {exc}") from exc

    def delete(self, key: str) -> None:
        session = self.session
        try:
            entry = session.get(KeyValueEntry, key)
            if entry is not None:
                session.delete(entry)
                session.flush()
        except SQLAlchemyError as exc:
            session.rollback()
            raise StorageError(f"Cannot delete key {key!r}: {exc}") from exc

    def flush(self) -> None:
        session = self.session
        try:
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise StorageError(f"Cannot commit: {exc}") from exc

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None
        if self._owns_engine:
            self.engine.dispose()


__all__ = ["Base", "KeyValueEntry", "SqlBackend"]
