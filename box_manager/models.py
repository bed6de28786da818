"""Domain records for boxes, items and stock lines."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat()


def _serialize_date(value: Optional[date]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def days_until(value: Optional[date], today: Optional[date] = None) -> Optional[int]:
    """Return whole days from ``today`` to ``value`` (negative once past)."""

    if value is None:
        return None
    reference = today or date.today()
    return (value - reference).days


@dataclass
class Box:
    """A physical container identified by its barcode."""

    barcode: str
    name: str
    van: str

    def to_record(self) -> Dict[str, Any]:
        return {"barcode": self.barcode, "name": self.name, "van": self.van}


@dataclass
class Item:
    """A product type; quantities live in the stock matrix, not here."""

    barcode: str
    name: str
    unit_price_cents: int
    expires_on: Optional[date] = None
    expiry_warning_days: Optional[int] = None

    def to_record(self) -> Dict[str, Any]:
        return {
            "barcode": self.barcode,
            "name": self.name,
            "unitPriceCents": self.unit_price_cents,
            "expiresOn": _serialize_date(self.expires_on),
            "expiryWarningDays": self.expiry_warning_days,
        }

    def expiry_status(self, today: Optional[date] = None) -> Optional[str]:
        """Return ``"expired"``, ``"expiring"`` or ``None``."""

        remaining = days_until(self.expires_on, today)
        if remaining is None:
            return None
        if remaining < 0:
            return "expired"
        if self.expiry_warning_days is not None and remaining <= self.expiry_warning_days:
            return "expiring"
        return None


@dataclass
class BoxLine:
    """One item and the quantity of it held by a box."""

    item: Item
    quantity: int

    def to_dict(self) -> Dict[str, Any]:
        payload = self.item.to_record()
        payload["quantity"] = self.quantity
        return payload


__all__ = ["Box", "Item", "BoxLine", "days_until"]
