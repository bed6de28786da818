"""Exception types raised by the box manager package."""
from __future__ import annotations


class BoxManagerError(Exception):
    """Base class for all box manager errors."""


class SnapshotError(BoxManagerError, ValueError):
    """Raised when a serialized snapshot cannot be parsed or validated."""


class StorageError(BoxManagerError):
    """Raised by a storage backend when a read or write fails."""


class ImportFormatError(BoxManagerError, ValueError):
    """Raised when an interchange file cannot be imported.

    ``column`` names the offending column when the failure is tied to one,
    ``row`` is the 1-based data row number for cell-level failures.
    """

    def __init__(self, message: str, *, column: str | None = None, row: int | None = None) -> None:
        super().__init__(message)
        self.column = column
        self.row = row


__all__ = ["BoxManagerError", "SnapshotError", "StorageError", "ImportFormatError"]
