"""Inventory store: boxes, items, the stock matrix and their persistence."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from threading import RLock
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from .backends import StorageBackend, build_backend
from .exceptions import SnapshotError, StorageError
from .models import Box, BoxLine, Item, _now, _serialize_timestamp
from .schemas import Snapshot, parse_snapshot

if TYPE_CHECKING:
    from .config import Settings

logger = logging.getLogger(__name__)

PRIMARY_KEY = "state_json"
LEGACY_KEY = "state"
DEFAULT_VANS: Tuple[str, ...] = ("Van 1", "Van 2", "Van 3")

Listener = Callable[[], None]


@dataclass(frozen=True)
class LoadResult:
    """Outcome of a load, reload or restore.

    ``source`` is ``"primary"``, ``"legacy"``, ``"empty"``, ``"restore"``,
    ``"snapshot"`` or ``"error"``. ``reason`` carries the failure text, or a
    warning when the state was applied but could not be written back.
    """

    ok: bool
    source: str
    reason: Optional[str] = None


@dataclass(frozen=True)
class SaveResult:
    """Outcome of writing the snapshot to the backend."""

    ok: bool
    reason: Optional[str] = None


def _sorted_vans(names: Iterable[str]) -> List[str]:
    return sorted(set(names), key=lambda name: (name.casefold(), name))


@dataclass
class InventoryStore:
    """Owns boxes, items and per-box quantities, persisted as one JSON snapshot.

    Every mutation is applied in memory, observers are notified, and the full
    state is saved before the call returns. Queries hand out copies only.
    """

    backend: StorageBackend
    default_vans: Tuple[str, ...] = DEFAULT_VANS
    last_loaded_at: Optional[datetime] = field(default=None, init=False)
    last_saved_at: Optional[datetime] = field(default=None, init=False)
    _boxes: Dict[str, Box] = field(default_factory=dict, init=False)
    _items: Dict[str, Item] = field(default_factory=dict, init=False)
    _stock: Dict[str, Dict[str, int]] = field(default_factory=dict, init=False)
    _vans: List[str] = field(default_factory=list, init=False)
    _listeners: List[Listener] = field(default_factory=list, init=False)
    _lock: RLock = field(default_factory=RLock, init=False)

    def __post_init__(self) -> None:
        self.default_vans = tuple(self.default_vans) or DEFAULT_VANS
        self._vans = _sorted_vans(self.default_vans)

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` for change notifications; returns an unsubscribe."""

        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Store listener %r failed", listener)

    # ------------------------------------------------------------------
    # Persistence lifecycle
    # ------------------------------------------------------------------
    def init(self) -> LoadResult:
        """Open the backend and load the saved state. Call once at startup."""

        with self._lock:
            try:
                self.backend.open()
            except StorageError as exc:
                logger.error("Cannot open storage backend: %s", exc)
                self.last_loaded_at = _now()
                self._notify()
                return LoadResult(ok=False, source="error", reason=str(exc))
            return self.load_from_disk()

    def load_from_disk(self) -> LoadResult:
        with self._lock:
            result = self._load_locked()
            self.last_loaded_at = _now()
            self._notify()
            return result

    def reload_now(self) -> LoadResult:
        return self.load_from_disk()

    def _load_locked(self) -> LoadResult:
        try:
            raw = self.backend.get(PRIMARY_KEY)
            if isinstance(raw, str) and raw.strip():
                self._apply_snapshot_locked(parse_snapshot(raw))
                logger.info(
                    "Loaded snapshot: boxes=%d items=%d", len(self._boxes), len(self._items)
                )
                return LoadResult(ok=True, source="primary")

            legacy = self.backend.get(LEGACY_KEY)
            if not isinstance(legacy, Mapping):
                logger.info("No saved state found")
                return LoadResult(ok=True, source="empty")
            self._apply_snapshot_locked(parse_snapshot(legacy))
        except (SnapshotError, StorageError) as exc:
            logger.warning("Load failed, keeping current state: %s", exc)
            return LoadResult(ok=False, source="error", reason=str(exc))

        logger.info("Loaded legacy state: boxes=%d items=%d", len(self._boxes), len(self._items))
        try:
            self.backend.put(PRIMARY_KEY, self._snapshot_json_locked())
            self.backend.flush()
        except StorageError as exc:
            logger.warning("Legacy state loaded but not migrated: %s", exc)
            return LoadResult(ok=True, source="legacy", reason=f"Migration not written: {exc}")
        return LoadResult(ok=True, source="legacy")

    def save_to_disk(self) -> SaveResult:
        with self._lock:
            try:
                self.backend.put(PRIMARY_KEY, self._snapshot_json_locked())
                self.backend.flush()
            except StorageError as exc:
                logger.error("Save failed: %s", exc)
                return SaveResult(ok=False, reason=str(exc))
            self.last_saved_at = _now()
            logger.debug("Saved snapshot: boxes=%d", len(self._boxes))
            self._notify()
            return SaveResult(ok=True)

    def save_now(self) -> SaveResult:
        return self.save_to_disk()

    def apply_snapshot(self, snapshot: Snapshot | Mapping[str, Any] | str) -> LoadResult:
        """Replace all in-memory state with ``snapshot`` without saving it.

        A snapshot that does not validate leaves the current state untouched
        and is reported with ``ok=False``.
        """

        if not isinstance(snapshot, Snapshot):
            try:
                snapshot = parse_snapshot(snapshot)
            except SnapshotError as exc:
                logger.warning("Snapshot rejected: %s", exc)
                return LoadResult(ok=False, source="error", reason=str(exc))
        with self._lock:
            self._apply_snapshot_locked(snapshot)
            self._notify()
            return LoadResult(ok=True, source="snapshot")

    def restore_from_json(self, text: str) -> LoadResult:
        """Replace state from backup JSON and persist the text as given."""

        with self._lock:
            try:
                snapshot = parse_snapshot(text)
            except SnapshotError as exc:
                logger.warning("Restore rejected: %s", exc)
                return LoadResult(ok=False, source="error", reason=str(exc))
            self._apply_snapshot_locked(snapshot)
            self._notify()
            try:
                self.backend.put(PRIMARY_KEY, text)
                self.backend.flush()
            except StorageError as exc:
                logger.error("Restored state could not be saved: %s", exc)
                return LoadResult(ok=True, source="restore", reason=f"Not persisted: {exc}")
            self.last_saved_at = _now()
            logger.info("Restored snapshot: boxes=%d items=%d", len(self._boxes), len(self._items))
            return LoadResult(ok=True, source="restore")

    def import_snapshot(self, snapshot: Snapshot) -> SaveResult:
        """Destructively replace state with ``snapshot`` and save it.

        Used by spreadsheet imports: the van list restarts from the defaults
        plus whatever vans the imported boxes use.
        """

        with self._lock:
            self._apply_snapshot_locked(snapshot)
            try:
                self.backend.delete(LEGACY_KEY)
            except StorageError as exc:
                logger.warning("Could not drop legacy state during import: %s", exc)
            self._notify()
            return self.save_to_disk()

    def wipe_all(self) -> SaveResult:
        """Forget everything, in memory and in the backend."""

        with self._lock:
            self._boxes.clear()
            self._items.clear()
            self._stock.clear()
            self._vans = _sorted_vans(self.default_vans)
            result = SaveResult(ok=True)
            try:
                self.backend.delete(PRIMARY_KEY)
                self.backend.delete(LEGACY_KEY)
                self.backend.flush()
            except StorageError as exc:
                logger.error("Wipe could not clear storage: %s", exc)
                result = SaveResult(ok=False, reason=str(exc))
            else:
                self.last_saved_at = _now()
                logger.info("Wiped all inventory data")
            self._notify()
            return result

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return self._snapshot_locked()

    def snapshot_json(self) -> str:
        with self._lock:
            return self._snapshot_json_locked()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    @property
    def vans(self) -> List[str]:
        with self._lock:
            return list(self._vans)

    def all_boxes(self) -> List[Box]:
        with self._lock:
            return [replace(box) for box in self._boxes.values()]

    def all_items(self) -> List[Item]:
        with self._lock:
            items = [replace(item) for item in self._items.values()]
        items.sort(key=lambda item: item.name.casefold())
        return items

    def find_box(self, barcode: str) -> Optional[Box]:
        with self._lock:
            box = self._boxes.get(barcode)
            return None if box is None else replace(box)

    def find_item(self, barcode: str) -> Optional[Item]:
        with self._lock:
            item = self._items.get(barcode)
            return None if item is None else replace(item)

    def contents(self, box_barcode: str) -> List[BoxLine]:
        """Stock lines of a box, sorted by item name ignoring case."""

        with self._lock:
            row = self._stock.get(box_barcode) or {}
            lines = [
                BoxLine(item=replace(self._items[item_barcode]), quantity=quantity)
                for item_barcode, quantity in row.items()
                if quantity > 0 and item_barcode in self._items
            ]
        lines.sort(key=lambda line: line.item.name.casefold())
        return lines

    def get_quantity(self, box_barcode: str, item_barcode: str) -> int:
        with self._lock:
            return self._stock.get(box_barcode, {}).get(item_barcode, 0)

    def box_value_cents(self, box_barcode: str) -> int:
        return sum(
            line.quantity * line.item.unit_price_cents for line in self.contents(box_barcode)
        )

    def orphan_entries(self) -> List[Tuple[str, str, int]]:
        """Stock entries whose item barcode is missing from the item registry."""

        with self._lock:
            return [
                (box_barcode, item_barcode, quantity)
                for box_barcode, row in self._stock.items()
                for item_barcode, quantity in row.items()
                if item_barcode not in self._items
            ]

    def expiring_lines(self, today: Optional[date] = None) -> List[Tuple[Box, BoxLine, str]]:
        """Lines whose item is expired or inside its warning window."""

        flagged: List[Tuple[Box, BoxLine, str]] = []
        for box in self.all_boxes():
            for line in self.contents(box.barcode):
                status = line.item.expiry_status(today)
                if status is not None:
                    flagged.append((box, line, status))
        flagged.sort(key=lambda entry: (entry[1].item.expires_on or date.max, entry[0].name.casefold()))
        return flagged

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "boxes": len(self._boxes),
                "items": len(self._items),
                "stock_lines": sum(len(row) for row in self._stock.values()),
                "units": sum(sum(row.values()) for row in self._stock.values()),
                "vans": len(self._vans),
                "last_loaded_at": _serialize_timestamp(self.last_loaded_at),
                "last_saved_at": _serialize_timestamp(self.last_saved_at),
            }

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def create_box(self, barcode: str, name: str, van: str) -> bool:
        """Register a new box; returns ``False`` if the barcode already exists."""

        with self._lock:
            if barcode in self._boxes:
                return False
            self._boxes[barcode] = Box(barcode=barcode, name=name, van=van)
            self._stock.setdefault(barcode, {})
            self._register_van_locked(van)
            self._notify()
            self.save_to_disk()
            return True

    def rename_box(self, barcode: str, new_name: str) -> None:
        with self._lock:
            box = self._boxes.get(barcode)
            if box is None:
                return
            box.name = new_name
            self._notify()
            self.save_to_disk()

    def move_box_to_van(self, barcode: str, new_van: str) -> None:
        with self._lock:
            box = self._boxes.get(barcode)
            if box is None:
                return
            box.van = new_van
            self._register_van_locked(new_van)
            self._notify()
            self.save_to_disk()

    def upsert_item(
        self,
        barcode: str,
        name: str,
        unit_price_cents: int,
        expires_on: Optional[date] = None,
        expiry_warning_days: Optional[int] = None,
    ) -> Item:
        if expiry_warning_days is not None and expiry_warning_days < 0:
            expiry_warning_days = None
        with self._lock:
            item = self._items.get(barcode)
            if item is None:
                item = Item(barcode=barcode, name=name, unit_price_cents=unit_price_cents)
                self._items[barcode] = item
            item.name = name
            item.unit_price_cents = unit_price_cents
            item.expires_on = expires_on
            item.expiry_warning_days = expiry_warning_days
            self._notify()
            self.save_to_disk()
            return replace(item)

    def add_to_box(self, box_barcode: str, item_barcode: str, quantity: int) -> None:
        if quantity <= 0:
            return
        with self._lock:
            self._add_locked(box_barcode, item_barcode, quantity)
            self._notify()
            self.save_to_disk()

    def remove_from_box(self, box_barcode: str, item_barcode: str, quantity: int) -> None:
        if quantity <= 0:
            return
        with self._lock:
            if box_barcode not in self._stock:
                return
            self._remove_locked(box_barcode, item_barcode, quantity)
            self._notify()
            self.save_to_disk()

    def move_between_boxes(
        self,
        src_box_barcode: str,
        dest_box_barcode: str,
        item_barcode: str,
        quantity: int,
    ) -> bool:
        """Transfer ``quantity`` of an item; ``False`` means nothing changed."""

        if quantity <= 0 or src_box_barcode == dest_box_barcode:
            return False
        with self._lock:
            available = self.get_quantity(src_box_barcode, item_barcode)
            if available < quantity:
                return False
            self._remove_locked(src_box_barcode, item_barcode, quantity)
            self._notify()
            self._add_locked(dest_box_barcode, item_barcode, quantity)
            self._notify()
            self.save_to_disk()
            return True

    def add_van(self, name: str) -> bool:
        candidate = (name or "").strip()
        with self._lock:
            if not candidate or candidate in self._vans:
                return False
            self._register_van_locked(candidate)
            self._notify()
            self.save_to_disk()
            return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _add_locked(self, box_barcode: str, item_barcode: str, quantity: int) -> None:
        row = self._stock.setdefault(box_barcode, {})
        row[item_barcode] = row.get(item_barcode, 0) + quantity

    def _remove_locked(self, box_barcode: str, item_barcode: str, quantity: int) -> None:
        row = self._stock.get(box_barcode)
        if row is None:
            return
        remaining = row.get(item_barcode, 0) - quantity
        if remaining <= 0:
            row.pop(item_barcode, None)
        else:
            row[item_barcode] = remaining

    def _register_van_locked(self, van: str) -> None:
        candidate = (van or "").strip()
        if candidate and candidate not in self._vans:
            self._vans = _sorted_vans([*self._vans, candidate])

    def _apply_snapshot_locked(self, snapshot: Snapshot) -> None:
        boxes = {
            record.barcode: Box(barcode=record.barcode, name=record.name, van=record.van)
            for record in snapshot.boxes
        }
        items = {
            record.barcode: Item(
                barcode=record.barcode,
                name=record.name,
                unit_price_cents=record.unit_price_cents,
                expires_on=record.expires_on,
                expiry_warning_days=record.expiry_warning_days,
            )
            for record in snapshot.items
        }
        stock = {
            box_barcode: {item: qty for item, qty in row.items() if qty > 0}
            for box_barcode, row in snapshot.inv.items()
        }
        van_names = [name.strip() for name in snapshot.vans or () if name and name.strip()]
        if not van_names:
            van_names = list(self.default_vans)
        van_names.extend(box.van.strip() for box in boxes.values() if box.van.strip())

        orphans = sum(1 for row in stock.values() for item in row if item not in items)
        if orphans:
            logger.warning("Snapshot holds %d stock entries for unknown items", orphans)

        self._boxes = boxes
        self._items = items
        self._stock = stock
        self._vans = _sorted_vans(van_names)

    def _snapshot_locked(self) -> Dict[str, Any]:
        return {
            "boxes": [box.to_record() for box in self._boxes.values()],
            "items": [item.to_record() for item in self._items.values()],
            "inv": {box: dict(row) for box, row in self._stock.items()},
            "vans": list(self._vans),
        }

    def _snapshot_json_locked(self) -> str:
        return json.dumps(self._snapshot_locked(), ensure_ascii=False)


def build_store(settings: "Settings", backend: Optional[StorageBackend] = None) -> InventoryStore:
    """Create and initialize a store configured by ``settings``."""

    store = InventoryStore(
        backend=backend or build_backend(settings),
        default_vans=tuple(settings.default_vans),
    )
    store.init()
    return store


__all__ = [
    "DEFAULT_VANS",
    "LEGACY_KEY",
    "PRIMARY_KEY",
    "InventoryStore",
    "LoadResult",
    "SaveResult",
    "build_store",
]
