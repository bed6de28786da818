from __future__ import annotations

import json
from datetime import date, timedelta

import pytest

from box_manager.backends import MemoryBackend
from box_manager.exceptions import SnapshotError, StorageError
from box_manager.schemas import parse_snapshot
from box_manager.store import LEGACY_KEY, PRIMARY_KEY, InventoryStore


class CountingBackend(MemoryBackend):
    def __init__(self, initial=None) -> None:
        super().__init__(initial)
        self.flushes = 0

    def flush(self) -> None:
        self.flushes += 1


class FailingBackend(MemoryBackend):
    def flush(self) -> None:
        raise StorageError("disk full")


def _stocked(store: InventoryStore) -> InventoryStore:
    store.create_box("BOX:1", "Tools", "Van 1")
    store.create_box("BOX:2", "Spares", "Van 2")
    store.upsert_item("4000001", "Tape", 250)
    store.upsert_item("4000002", "Gloves", 1000, date(2030, 1, 31), 14)
    store.add_to_box("BOX:1", "4000001", 3)
    store.add_to_box("BOX:1", "4000002", 2)
    return store


def _open(initial=None) -> InventoryStore:
    store = InventoryStore(backend=MemoryBackend(initial))
    store.init()
    return store


def test_fresh_store_is_empty_with_default_vans(store: InventoryStore) -> None:
    assert store.all_boxes() == []
    assert store.all_items() == []
    assert store.vans == ["Van 1", "Van 2", "Van 3"]
    assert store.last_loaded_at is not None


def test_duplicate_box_creation_is_a_no_op(store: InventoryStore) -> None:
    assert store.create_box("BOX:1", "A", "Van 1") is True
    assert store.create_box("BOX:1", "B", "Van 2") is False

    box = store.find_box("BOX:1")
    assert box.name == "A"
    assert box.van == "Van 1"
    assert len(store.all_boxes()) == 1


def test_create_box_registers_unknown_van(store: InventoryStore) -> None:
    store.create_box("BOX:9", "Far away", "Trailer")
    assert "Trailer" in store.vans


def test_over_removal_clears_entry(store: InventoryStore) -> None:
    _stocked(store)
    store.remove_from_box("BOX:1", "4000001", 5)

    assert store.get_quantity("BOX:1", "4000001") == 0
    assert "4000001" not in store.snapshot()["inv"]["BOX:1"]
    assert [line.item.barcode for line in store.contents("BOX:1")] == ["4000002"]


def test_non_positive_quantities_are_ignored(store: InventoryStore) -> None:
    _stocked(store)
    before = store.snapshot()

    store.add_to_box("BOX:1", "4000001", 0)
    store.add_to_box("BOX:1", "4000001", -4)
    store.remove_from_box("BOX:1", "4000001", 0)
    store.remove_from_box("BOX:1", "4000001", -1)
    assert store.move_between_boxes("BOX:1", "BOX:2", "4000001", 0) is False

    assert store.snapshot() == before


def test_remove_from_unknown_box_is_a_no_op(store: InventoryStore) -> None:
    store.remove_from_box("BOX:missing", "4000001", 1)
    assert store.snapshot()["inv"] == {}


def test_move_transfers_exact_quantity(store: InventoryStore) -> None:
    _stocked(store)
    assert store.move_between_boxes("BOX:1", "BOX:2", "4000001", 2) is True

    assert store.get_quantity("BOX:1", "4000001") == 1
    assert store.get_quantity("BOX:2", "4000001") == 2
    total = sum(row.get("4000001", 0) for row in store.snapshot()["inv"].values())
    assert total == 3


def test_move_of_everything_drops_source_entry(store: InventoryStore) -> None:
    _stocked(store)
    assert store.move_between_boxes("BOX:1", "BOX:2", "4000002", 2) is True
    assert "4000002" not in store.snapshot()["inv"]["BOX:1"]
    assert store.get_quantity("BOX:2", "4000002") == 2


def test_oversized_move_fails_without_mutation(store: InventoryStore) -> None:
    _stocked(store)
    before = store.snapshot()

    assert store.move_between_boxes("BOX:1", "BOX:2", "4000001", 5) is False
    assert store.move_between_boxes("BOX:1", "BOX:1", "4000001", 1) is False
    assert store.snapshot() == before


def test_move_saves_once() -> None:
    backend = CountingBackend()
    store = InventoryStore(backend=backend)
    store.init()
    _stocked(store)
    backend.flushes = 0

    store.move_between_boxes("BOX:1", "BOX:2", "4000001", 1)
    assert backend.flushes == 1


def test_every_mutation_is_persisted(store: InventoryStore, backend: MemoryBackend) -> None:
    _stocked(store)
    store.rename_box("BOX:2", "Spare parts")
    store.move_box_to_van("BOX:2", "Van 3")

    saved = json.loads(backend.get(PRIMARY_KEY))
    assert {"barcode": "BOX:2", "name": "Spare parts", "van": "Van 3"} in saved["boxes"]
    assert saved["inv"]["BOX:1"] == {"4000001": 3, "4000002": 2}
    assert store.last_saved_at is not None


def test_rename_and_move_unknown_box_do_nothing(store: InventoryStore) -> None:
    store.rename_box("BOX:missing", "New")
    store.move_box_to_van("BOX:missing", "Van 9")
    assert store.all_boxes() == []
    assert "Van 9" not in store.vans


def test_snapshot_round_trip_is_idempotent(store: InventoryStore) -> None:
    _stocked(store)
    text = store.snapshot_json()

    reloaded = _open({PRIMARY_KEY: text})
    assert reloaded.snapshot() == store.snapshot()
    assert json.loads(reloaded.snapshot_json()) == json.loads(text)


def test_upsert_is_idempotent(store: InventoryStore) -> None:
    store.upsert_item("4000003", "Cable ties", 99, date(2031, 5, 1), 7)
    first = store.snapshot()
    store.upsert_item("4000003", "Cable ties", 99, date(2031, 5, 1), 7)

    assert store.snapshot() == first
    assert len(store.all_items()) == 1


def test_upsert_replaces_all_fields(store: InventoryStore) -> None:
    store.upsert_item("4000003", "Cable ties", 99, date(2031, 5, 1), 7)
    updated = store.upsert_item("4000003", "Zip ties", 120)

    assert updated.name == "Zip ties"
    assert updated.unit_price_cents == 120
    assert updated.expires_on is None
    assert updated.expiry_warning_days is None


def test_queries_return_copies(store: InventoryStore) -> None:
    _stocked(store)
    box = store.find_box("BOX:1")
    box.name = "Changed outside"
    item = store.find_item("4000001")
    item.unit_price_cents = 1

    assert store.find_box("BOX:1").name == "Tools"
    assert store.find_item("4000001").unit_price_cents == 250


def test_contents_sorted_by_name_and_value(store: InventoryStore) -> None:
    _stocked(store)
    names = [line.item.name for line in store.contents("BOX:1")]

    assert names == ["Gloves", "Tape"]
    assert store.box_value_cents("BOX:1") == 3 * 250 + 2 * 1000
    assert store.box_value_cents("BOX:2") == 0
    assert store.contents("BOX:missing") == []


def test_orphan_entries_are_kept_but_hidden(store: InventoryStore) -> None:
    store.create_box("BOX:1", "Tools", "Van 1")
    store.add_to_box("BOX:1", "9999999", 4)

    assert store.contents("BOX:1") == []
    assert store.orphan_entries() == [("BOX:1", "9999999", 4)]

    reloaded = _open({PRIMARY_KEY: store.snapshot_json()})
    assert reloaded.orphan_entries() == [("BOX:1", "9999999", 4)]


def test_legacy_state_is_migrated() -> None:
    legacy = {
        "boxes": [{"barcode": "BOX:7", "name": "Old", "van": "Van 4"}],
        "items": [
            {
                "barcode": "111",
                "name": "Screws",
                "unitPriceCents": 5,
                "expiresOn": "2029-03-01T00:00:00.000",
            }
        ],
        "inv": {"BOX:7": {"111": 40}},
    }
    backend = MemoryBackend({LEGACY_KEY: legacy})
    store = InventoryStore(backend=backend)

    result = store.init()
    assert result.ok is True
    assert result.source == "legacy"
    assert store.get_quantity("BOX:7", "111") == 40
    assert store.find_item("111").expires_on == date(2029, 3, 1)
    assert store.vans == ["Van 1", "Van 2", "Van 3", "Van 4"]

    migrated = json.loads(backend.get(PRIMARY_KEY))
    assert migrated["inv"] == {"BOX:7": {"111": 40}}


def test_primary_key_wins_over_legacy() -> None:
    primary = json.dumps({"boxes": [{"barcode": "BOX:new", "name": "New", "van": "Van 1"}]})
    legacy = {"boxes": [{"barcode": "BOX:old", "name": "Old", "van": "Van 1"}]}
    store = _open({PRIMARY_KEY: primary, LEGACY_KEY: legacy})

    assert [box.barcode for box in store.all_boxes()] == ["BOX:new"]


def test_corrupt_primary_keeps_current_state(store: InventoryStore, backend: MemoryBackend) -> None:
    _stocked(store)
    before = store.snapshot()
    backend.put(PRIMARY_KEY, "{not json")

    result = store.reload_now()
    assert result.ok is False
    assert result.source == "error"
    assert result.reason
    assert store.snapshot() == before


def test_wrongly_typed_snapshot_is_rejected(store: InventoryStore) -> None:
    result = store.apply_snapshot({"boxes": "not a list"})
    assert result.ok is False
    assert result.source == "error"
    assert store.apply_snapshot({"inv": {"BOX:1": {"111": "lots"}}}).ok is False
    assert store.apply_snapshot("{not json").ok is False
    assert store.all_boxes() == []


def test_parse_snapshot_wraps_every_decoder_failure() -> None:
    with pytest.raises(SnapshotError):
        parse_snapshot('{"inv": {"BOX:1": {"111": ' + "1" * 5000 + "}}}")
    with pytest.raises(SnapshotError):
        parse_snapshot("[" * 100000 + "]" * 100000)


def test_load_with_oversized_number_keeps_running() -> None:
    backend = MemoryBackend({PRIMARY_KEY: '{"boxes": [], "n": ' + "9" * 5000 + "}"})
    store = InventoryStore(backend=backend)

    result = store.init()
    assert result.ok is False
    assert result.source == "error"
    assert store.all_boxes() == []


def test_restore_rejects_oversized_number_and_deep_nesting(store: InventoryStore) -> None:
    _stocked(store)
    before = store.snapshot()

    huge = store.restore_from_json('{"inv": {"BOX:1": {"4000001": ' + "1" * 5000 + "}}}")
    deep = store.restore_from_json("[" * 100000 + "]" * 100000)

    assert huge.ok is False
    assert deep.ok is False
    assert store.snapshot() == before


def test_apply_snapshot_does_not_save(store: InventoryStore, backend: MemoryBackend) -> None:
    store.apply_snapshot({"boxes": [{"barcode": "BOX:1", "name": "A", "van": "Van 1"}]})

    assert store.find_box("BOX:1") is not None
    assert backend.get(PRIMARY_KEY) is None


def test_restore_from_json_persists_text(store: InventoryStore, backend: MemoryBackend) -> None:
    text = '{"boxes": [{"barcode": "BOX:5", "name": "Restored", "van": "Van 2"}], "extra": 1}'
    result = store.restore_from_json(text)

    assert result.ok is True
    assert result.source == "restore"
    assert store.find_box("BOX:5").name == "Restored"
    assert backend.get(PRIMARY_KEY) == text


def test_restore_rejects_invalid_json(store: InventoryStore) -> None:
    _stocked(store)
    before = store.snapshot()

    result = store.restore_from_json("[1, 2, 3]")
    assert result.ok is False
    assert store.snapshot() == before


def test_wipe_all_resets_everything(store: InventoryStore, backend: MemoryBackend) -> None:
    _stocked(store)
    store.add_van("Trailer")
    backend.put(LEGACY_KEY, {"boxes": []})

    result = store.wipe_all()
    assert result.ok is True
    assert store.all_boxes() == []
    assert store.all_items() == []
    assert store.vans == ["Van 1", "Van 2", "Van 3"]
    assert backend.keys() == []


def test_add_van_trims_sorts_and_deduplicates(store: InventoryStore) -> None:
    assert store.add_van("  Van 10 ") is True
    assert store.add_van("Van 10") is False
    assert store.add_van("   ") is False
    assert store.add_van("bus") is True

    assert store.vans == ["bus", "Van 1", "Van 10", "Van 2", "Van 3"]


def test_vans_from_snapshot_include_box_vans() -> None:
    text = json.dumps(
        {
            "boxes": [{"barcode": "BOX:1", "name": "A", "van": "Truck"}],
            "vans": ["Van 2"],
        }
    )
    store = _open({PRIMARY_KEY: text})
    assert store.vans == ["Truck", "Van 2"]


def test_observers_are_notified_until_unsubscribed(store: InventoryStore) -> None:
    calls = []
    unsubscribe = store.subscribe(lambda: calls.append(1))

    store.create_box("BOX:1", "A", "Van 1")
    assert calls

    seen = len(calls)
    unsubscribe()
    store.create_box("BOX:2", "B", "Van 1")
    assert len(calls) == seen


def test_failing_listener_does_not_break_mutation(store: InventoryStore) -> None:
    def explode() -> None:
        raise RuntimeError("listener bug")

    store.subscribe(explode)
    assert store.create_box("BOX:1", "A", "Van 1") is True
    assert store.find_box("BOX:1") is not None


def test_failed_save_is_reported_and_state_kept() -> None:
    store = InventoryStore(backend=FailingBackend())
    store.init()

    store.create_box("BOX:1", "A", "Van 1")
    result = store.save_now()

    assert result.ok is False
    assert "disk full" in result.reason
    assert store.find_box("BOX:1") is not None
    assert store.last_saved_at is None


def test_expiring_lines_flag_expired_and_warning_window(store: InventoryStore) -> None:
    today = date(2030, 6, 15)
    store.create_box("BOX:1", "Food", "Van 1")
    store.upsert_item("1", "Milk", 120, today - timedelta(days=1))
    store.upsert_item("2", "Bread", 300, today + timedelta(days=3), 5)
    store.upsert_item("3", "Rice", 200, today + timedelta(days=30), 5)
    store.upsert_item("4", "Salt", 80, today + timedelta(days=2))
    for barcode in ("1", "2", "3", "4"):
        store.add_to_box("BOX:1", barcode, 1)

    flagged = [(line.item.name, state) for _, line, state in store.expiring_lines(today)]
    assert flagged == [("Milk", "expired"), ("Bread", "expiring")]


def test_stats_counts(store: InventoryStore) -> None:
    _stocked(store)
    stats = store.stats()

    assert stats["boxes"] == 2
    assert stats["items"] == 2
    assert stats["units"] == 5
    assert stats["last_saved_at"] is not None


def test_days_until_and_item_status() -> None:
    from box_manager.models import Item, days_until

    today = date(2030, 1, 10)
    assert days_until(date(2030, 1, 15), today) == 5
    assert days_until(date(2030, 1, 9), today) == -1
    assert days_until(None, today) is None

    item = Item(barcode="1", name="Yoghurt", unit_price_cents=90, expires_on=today)
    assert item.expiry_status(today) is None
    item.expiry_warning_days = 0
    assert item.expiry_status(today) == "expiring"


def test_negative_warning_days_are_dropped(store: InventoryStore) -> None:
    item = store.upsert_item("555", "Milk", 100, date(2030, 1, 1), -1)

    assert item.expiry_warning_days is None
    assert store.find_item("555").expiry_warning_days is None


def test_fully_populated_state_survives_restart(store: InventoryStore, backend: MemoryBackend) -> None:
    _stocked(store)
    store.add_van("Trailer")
    store.move_box_to_van("BOX:2", "Trailer")
    store.rename_box("BOX:2", "Spare parts")
    store.upsert_item("555", "Milk", 100, date(2030, 1, 1), -1)
    store.upsert_item("666", "Cheese", 450, date(2030, 2, 1), 0)
    store.add_to_box("BOX:2", "555", 3)
    store.add_to_box("BOX:2", "666", 1)
    store.move_between_boxes("BOX:1", "BOX:2", "4000002", 1)

    restarted = InventoryStore(backend=backend)
    result = restarted.init()

    assert result.ok is True
    assert result.source == "primary"
    assert restarted.snapshot() == store.snapshot()
    assert restarted.get_quantity("BOX:2", "555") == 3
    assert restarted.find_item("666").expiry_warning_days == 0


def test_move_notifies_after_each_step(store: InventoryStore) -> None:
    _stocked(store)
    calls = []
    store.subscribe(lambda: calls.append(store.get_quantity("BOX:2", "4000001")))

    store.move_between_boxes("BOX:1", "BOX:2", "4000001", 2)

    assert calls == [0, 2, 2]
