"""Pydantic schemas for the persisted snapshot format."""
from __future__ import annotations

import json
from datetime import date
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import SnapshotError


class BoxRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    barcode: str
    name: str = ""
    van: str = ""


class ItemRecord(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    barcode: str
    name: str = ""
    unit_price_cents: int = Field(0, alias="unitPriceCents")
    expires_on: date | None = Field(None, alias="expiresOn")
    expiry_warning_days: int | None = Field(None, ge=0, alias="expiryWarningDays")

    @field_validator("expires_on", mode="before")
    @classmethod
    def _date_part_only(cls, value: Any) -> Any:
        # Older snapshots stored a full timestamp such as 2025-01-31T00:00:00.000
        if isinstance(value, str):
            candidate = value.strip()
            if candidate == "":
                return None
            if len(candidate) > 10 and candidate[10] in {"T", " "}:
                return candidate[:10]
            return candidate
        return value


class Snapshot(BaseModel):
    """Full serialized state: boxes, items, stock matrix and vans."""

    model_config = ConfigDict(extra="ignore")

    boxes: list[BoxRecord] = Field(default_factory=list)
    items: list[ItemRecord] = Field(default_factory=list)
    inv: dict[str, dict[str, int]] = Field(default_factory=dict)
    vans: list[str] | None = None

    @field_validator("boxes", "items", mode="before")
    @classmethod
    def _null_list(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("inv", mode="before")
    @classmethod
    def _null_matrix(cls, value: Any) -> Any:
        if value is None:
            return {}
        if isinstance(value, Mapping):
            return {key: ({} if row is None else row) for key, row in value.items()}
        return value


def parse_snapshot(raw: str | Mapping[str, Any]) -> Snapshot:
    """Parse JSON text or an already-decoded mapping into a :class:`Snapshot`.

    Raises :class:`SnapshotError` on malformed JSON or any shape mismatch, so
    callers never apply a partially valid snapshot.
    """

    if isinstance(raw, str):
        try:
            data = json.loads(raw)
        except (ValueError, RecursionError) as exc:
            raise SnapshotError(f"Snapshot is not valid JSON: {exc}") from exc
    else:
        data = raw
    if not isinstance(data, Mapping):
        raise SnapshotError("Snapshot must be a JSON object")
    try:
        return Snapshot.model_validate(dict(data))
    except ValidationError as exc:
        raise SnapshotError(f"Snapshot failed validation: {exc}") from exc


__all__ = ["BoxRecord", "ItemRecord", "Snapshot", "parse_snapshot"]
