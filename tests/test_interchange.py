from __future__ import annotations

from datetime import date

import pytest
import xlrd

from box_manager.backends import MemoryBackend
from box_manager.exceptions import ImportFormatError
from box_manager.interchange import (
    CSV_COLUMNS,
    export_csv,
    export_xls,
    format_euro,
    import_csv,
    import_xls,
    parse_euro_to_cents,
    parse_ymd,
    timestamped_filename,
)
from box_manager.store import LEGACY_KEY, InventoryStore

HEADER = ",".join(CSV_COLUMNS)


def _fresh() -> InventoryStore:
    store = InventoryStore(backend=MemoryBackend())
    store.init()
    return store


def _fill(store: InventoryStore) -> InventoryStore:
    store.create_box("BOX:1", "Tools", "Van 1")
    store.create_box("BOX:2", "Spares", "Van 2")
    store.create_box("BOX:3", "Empty", "Van 3")
    store.upsert_item("111", "Tape", 250)
    store.upsert_item("222", "Gloves", 1050, date(2030, 1, 31), 14)
    store.add_to_box("BOX:1", "111", 3)
    store.add_to_box("BOX:1", "222", 2)
    store.add_to_box("BOX:2", "111", 7)
    return store


def _state(store: InventoryStore) -> tuple:
    snapshot = store.snapshot()
    boxes = {box["barcode"]: box for box in snapshot["boxes"]}
    items = {item["barcode"]: item for item in snapshot["items"]}
    return boxes, items, snapshot["inv"]


def test_price_parsing() -> None:
    assert parse_euro_to_cents("10") == 1000
    assert parse_euro_to_cents("10.00") == 1000
    assert parse_euro_to_cents("10.5") == 1050
    assert parse_euro_to_cents("10,50") == 1050
    assert parse_euro_to_cents(" 0.07 ") == 7
    assert parse_euro_to_cents("10.123") is None
    assert parse_euro_to_cents("-1") is None
    assert parse_euro_to_cents("abc") is None
    assert parse_euro_to_cents(None) is None


def test_format_euro() -> None:
    assert format_euro(1050) == "10.50"
    assert format_euro(5) == "0.05"
    assert format_euro(0) == "0.00"


def test_parse_ymd() -> None:
    assert parse_ymd("2030-02-28") == date(2030, 2, 28)
    assert parse_ymd("2030-02-30") is None
    assert parse_ymd("28.02.2030") is None
    assert parse_ymd("") is None


def test_timestamped_filename() -> None:
    name = timestamped_filename("box_manager_inventory", "csv")
    assert name.startswith("box_manager_inventory_")
    assert name.endswith(".csv")


def test_export_csv_layout() -> None:
    store = _fill(_fresh())
    lines = export_csv(store).splitlines()

    assert lines[0] == HEADER
    assert "BOX:1,Tools,Van 1,222,Gloves,10.50,2,2030-01-31,14" in lines
    assert "BOX:1,Tools,Van 1,111,Tape,2.50,3,," in lines
    assert "BOX:3,Empty,Van 3,,,,0,," in lines
    assert len(lines) == 5


def test_csv_round_trip() -> None:
    source = _fill(_fresh())
    target = _fresh()

    summary = import_csv(target, export_csv(source))

    assert summary.saved is True
    assert summary.boxes == 3
    assert summary.items == 2
    assert _state(target) == _state(source)


def test_csv_import_accepts_reordered_headers_and_bom() -> None:
    text = (
        "\ufeffquantity,itembarcode,boxbarcode,boxname,van,itemname,unitpriceeur,expirydate,warndays\n"
        "4,111,BOX:1,Tools,Van 1,Tape,\"10,5\",,\n"
    )
    store = _fresh()
    import_csv(store, text)

    assert store.get_quantity("BOX:1", "111") == 4
    assert store.find_item("111").unit_price_cents == 1050


def test_csv_import_missing_column_aborts() -> None:
    store = _fill(_fresh())
    before = store.snapshot()
    text = "BoxBarcode,BoxName,Van,ItemBarcode,ItemName,UnitPriceEUR,ExpiryDate,WarnDays\nBOX:9,X,Van 1,1,A,1,,\n"

    with pytest.raises(ImportFormatError) as excinfo:
        import_csv(store, text)

    assert excinfo.value.column == "Quantity"
    assert "Quantity" in str(excinfo.value)
    assert store.snapshot() == before


def test_csv_import_skips_blank_rows_and_rows_without_box() -> None:
    text = "\n".join(
        [
            HEADER,
            "BOX:1,Tools,Van 1,111,Tape,10,2,,",
            ",,,,,,,,",
            ",,,111,Tape,10,5,,",
            "BOX:1,Tools,Van 1,111,Tape,10.00,3,,",
        ]
    )
    store = _fresh()
    summary = import_csv(store, text)

    assert summary.skipped_rows == 2
    assert store.get_quantity("BOX:1", "111") == 5
    assert store.find_item("111").unit_price_cents == 1000


def test_csv_import_bad_cell_names_row_and_column() -> None:
    store = _fill(_fresh())
    before = store.snapshot()
    text = HEADER + "\nBOX:1,Tools,Van 1,111,Tape,ten,2,,\n"

    with pytest.raises(ImportFormatError) as excinfo:
        import_csv(store, text)

    assert excinfo.value.column == "UnitPriceEUR"
    assert excinfo.value.row == 1
    assert store.snapshot() == before


def test_csv_import_rejects_bad_date_and_quantity() -> None:
    store = _fresh()
    with pytest.raises(ImportFormatError) as excinfo:
        import_csv(store, HEADER + "\nBOX:1,Tools,Van 1,111,Tape,1,2,31/01/2030,\n")
    assert excinfo.value.column == "ExpiryDate"

    with pytest.raises(ImportFormatError) as excinfo:
        import_csv(store, HEADER + "\nBOX:1,Tools,Van 1,111,Tape,1,-2,,\n")
    assert excinfo.value.column == "Quantity"


def test_csv_import_replaces_state_and_drops_legacy_key() -> None:
    backend = MemoryBackend()
    store = InventoryStore(backend=backend)
    store.init()
    _fill(store)
    store.add_van("Trailer")
    backend.put(LEGACY_KEY, {"boxes": []})

    import_csv(store, HEADER + "\nBOX:9,New,Van 5,,,,0,,\n")

    assert [box.barcode for box in store.all_boxes()] == ["BOX:9"]
    assert store.all_items() == []
    assert store.vans == ["Van 1", "Van 2", "Van 3", "Van 5"]
    assert backend.get(LEGACY_KEY) is None


def test_xls_round_trip() -> None:
    source = _fill(_fresh())
    data = export_xls(source)

    sheet = xlrd.open_workbook(file_contents=data).sheet_by_index(0)
    assert [str(value) for value in sheet.row_values(0)] == CSV_COLUMNS

    target = _fresh()
    summary = import_xls(target, data)

    assert summary.boxes == 3
    assert _state(target) == _state(source)


def test_xls_import_rejects_garbage() -> None:
    store = _fresh()
    with pytest.raises(ImportFormatError):
        import_xls(store, b"definitely not a workbook")
