"""CSV and XLS export/import of the box inventory."""
from __future__ import annotations

import csv
import re
from dataclasses import dataclass
from datetime import date, datetime
from io import BytesIO, StringIO
from typing import Any, Dict, Iterable, List, Optional, Sequence

import xlrd
import xlwt

from .exceptions import ImportFormatError
from .schemas import BoxRecord, ItemRecord, Snapshot
from .store import InventoryStore

CSV_COLUMNS: List[str] = [
    "BoxBarcode",
    "BoxName",
    "Van",
    "ItemBarcode",
    "ItemName",
    "UnitPriceEUR",
    "Quantity",
    "ExpiryDate",
    "WarnDays",
]

JSON_MIME = "application/json"
CSV_MIME = "text/csv"
XLS_MIME = "application/vnd.ms-excel"

_PRICE_PATTERN = re.compile(r"^\d+(\.\d{1,2})?$")


def _normalize_header(value: Any) -> str:
    if value is None:
        return ""
    return str(value).replace("\ufeff", "").strip().lower()


_COLUMNS_BY_KEY: Dict[str, str] = {_normalize_header(name): name for name in CSV_COLUMNS}


def format_euro(cents: int) -> str:
    """Render cents as a decimal string such as ``10.50``."""

    sign = "-" if cents < 0 else ""
    whole, remainder = divmod(abs(cents), 100)
    return f"{sign}{whole}.{remainder:02d}"


def parse_euro_to_cents(value: Any) -> Optional[int]:
    """Parse ``10``, ``10.5`` or ``10,50`` into integer cents; ``None`` if invalid."""

    if value is None:
        return None
    text = str(value).strip().replace(",", ".")
    if not _PRICE_PATTERN.match(text):
        return None
    whole, _, fraction = text.partition(".")
    return int(whole) * 100 + int(fraction.ljust(2, "0") or 0)


def parse_ymd(value: Any) -> Optional[date]:
    """Parse a ``YYYY-MM-DD`` string; ``None`` for anything else."""

    if value is None:
        return None
    parts = str(value).strip().split("-")
    if len(parts) != 3:
        return None
    try:
        year, month, day = (int(part) for part in parts)
        return date(year, month, day)
    except ValueError:
        return None


def timestamped_filename(prefix: str, extension: str) -> str:
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    return f"{prefix}_{timestamp}.{extension}"


@dataclass(frozen=True)
class ImportSummary:
    boxes: int
    items: int
    stock_lines: int
    skipped_rows: int
    saved: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "boxes": self.boxes,
            "items": self.items,
            "stock_lines": self.stock_lines,
            "skipped_rows": self.skipped_rows,
            "saved": self.saved,
        }


# ----------------------------------------------------------------------
# Export
# ----------------------------------------------------------------------
def export_rows(store: InventoryStore) -> List[Dict[str, str]]:
    """One row per stock line; empty boxes get a single row with Quantity 0."""

    rows: List[Dict[str, str]] = []
    for box in store.all_boxes():
        base = {"BoxBarcode": box.barcode, "BoxName": box.name, "Van": box.van}
        lines = store.contents(box.barcode)
        if not lines:
            row = {column: "" for column in CSV_COLUMNS}
            row.update(base)
            row["Quantity"] = "0"
            rows.append(row)
            continue
        for line in lines:
            item = line.item
            row = dict(base)
            row.update(
                {
                    "ItemBarcode": item.barcode,
                    "ItemName": item.name,
                    "UnitPriceEUR": format_euro(item.unit_price_cents),
                    "Quantity": str(line.quantity),
                    "ExpiryDate": item.expires_on.isoformat() if item.expires_on else "",
                    "WarnDays": (
                        "" if item.expiry_warning_days is None else str(item.expiry_warning_days)
                    ),
                }
            )
            rows.append(row)
    return rows


def export_csv(store: InventoryStore) -> str:
    buffer = StringIO()
    writer = csv.DictWriter(buffer, fieldnames=CSV_COLUMNS, lineterminator="\n")
    writer.writeheader()
    writer.writerows(export_rows(store))
    return buffer.getvalue()


def export_xls(store: InventoryStore) -> bytes:
    workbook = xlwt.Workbook()
    sheet = workbook.add_sheet("Inventory")
    header_style = xlwt.easyxf(
        "font: bold on; align: horiz center, vert center;"
        "borders: left thin, right thin, top thin, bottom thin"
    )
    text_style = xlwt.easyxf(
        "align: horiz left, vert center;"
        "borders: left thin, right thin, top thin, bottom thin"
    )
    number_style = xlwt.easyxf(
        "align: horiz center, vert center;"
        "borders: left thin, right thin, top thin, bottom thin"
    )

    column_widths = [18, 18, 10, 18, 28, 12, 10, 12, 10]
    for index, width in enumerate(column_widths):
        sheet.col(index).width = 256 * width

    for col_index, column in enumerate(CSV_COLUMNS):
        sheet.write(0, col_index, column, header_style)
    for row_index, row in enumerate(export_rows(store), start=1):
        for col_index, column in enumerate(CSV_COLUMNS):
            value = row.get(column, "")
            if column == "Quantity":
                sheet.write(row_index, col_index, int(value or 0), number_style)
            else:
                sheet.write(row_index, col_index, value, text_style)

    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


# ----------------------------------------------------------------------
# Import
# ----------------------------------------------------------------------
def _resolve_header(labels: Iterable[Any]) -> Dict[str, str]:
    """Map raw header labels to canonical column names, checking none is missing."""

    mapping: Dict[str, str] = {}
    for label in labels:
        canonical = _COLUMNS_BY_KEY.get(_normalize_header(label))
        if canonical is not None and canonical not in mapping.values():
            mapping[str(label)] = canonical
    present = set(mapping.values())
    for column in CSV_COLUMNS:
        if column not in present:
            raise ImportFormatError(f"Missing required column: {column}", column=column)
    return mapping


def parse_csv_rows(text: str) -> List[Dict[str, str]]:
    reader = csv.DictReader(StringIO(text))
    if reader.fieldnames is None:
        raise ImportFormatError("Missing header row")
    mapping = _resolve_header(reader.fieldnames)
    rows: List[Dict[str, str]] = []
    for raw in reader:
        rows.append(
            {
                canonical: str(raw.get(label) or "").strip()
                for label, canonical in mapping.items()
            }
        )
    return rows


def parse_xls_rows(data: bytes) -> List[Dict[str, str]]:
    try:
        workbook = xlrd.open_workbook(file_contents=data)
    except Exception as exc:
        raise ImportFormatError("Invalid XLS file") from exc
    if workbook.nsheets == 0:
        raise ImportFormatError("Missing worksheet")
    sheet = workbook.sheet_by_index(0)
    if sheet.nrows == 0:
        raise ImportFormatError("Missing header row")
    labels = [str(sheet.cell_value(0, col)).strip() for col in range(sheet.ncols)]
    mapping = _resolve_header(labels)

    rows: List[Dict[str, str]] = []
    for row_index in range(1, sheet.nrows):
        record: Dict[str, str] = {}
        for col_index, label in enumerate(labels):
            canonical = mapping.get(label)
            if canonical is None:
                continue
            cell = sheet.cell(row_index, col_index)
            if cell.ctype in (xlrd.XL_CELL_EMPTY, xlrd.XL_CELL_BLANK):
                processed = ""
            elif cell.ctype == xlrd.XL_CELL_NUMBER:
                value = float(cell.value)
                processed = str(int(value)) if value.is_integer() else str(value)
            else:
                processed = str(cell.value).strip()
            record[canonical] = processed
        rows.append(record)
    return rows


def _parse_count(value: str, *, row: int, column: str, default: Optional[int]) -> Optional[int]:
    if value == "":
        return default
    try:
        parsed = int(value)
    except ValueError:
        parsed = -1
    if parsed < 0:
        raise ImportFormatError(
            f"Row {row}: {column} must be a non-negative whole number", column=column, row=row
        )
    return parsed


def rows_to_snapshot(rows: Sequence[Dict[str, str]]) -> tuple[Snapshot, int]:
    """Validate every row and build the snapshot to import.

    Returns the snapshot and the number of skipped rows. Nothing is applied
    here, so a bad cell aborts the import before any state changes.
    """

    boxes: Dict[str, BoxRecord] = {}
    items: Dict[str, ItemRecord] = {}
    inv: Dict[str, Dict[str, int]] = {}
    skipped = 0

    for index, row in enumerate(rows, start=1):
        if not any(value for value in row.values()):
            skipped += 1
            continue
        box_barcode = row.get("BoxBarcode", "")
        if not box_barcode:
            skipped += 1
            continue
        if box_barcode not in boxes:
            boxes[box_barcode] = BoxRecord(
                barcode=box_barcode,
                name=row.get("BoxName", "") or box_barcode,
                van=row.get("Van", ""),
            )
        inv.setdefault(box_barcode, {})

        item_barcode = row.get("ItemBarcode", "")
        if not item_barcode:
            continue
        raw_price = row.get("UnitPriceEUR", "")
        cents = parse_euro_to_cents(raw_price) if raw_price else 0
        if cents is None:
            raise ImportFormatError(
                f"Row {index}: invalid UnitPriceEUR {raw_price!r}", column="UnitPriceEUR", row=index
            )
        raw_expiry = row.get("ExpiryDate", "")
        expires_on = parse_ymd(raw_expiry) if raw_expiry else None
        if raw_expiry and expires_on is None:
            raise ImportFormatError(
                f"Row {index}: ExpiryDate must be YYYY-MM-DD", column="ExpiryDate", row=index
            )
        quantity = _parse_count(row.get("Quantity", ""), row=index, column="Quantity", default=0)
        warn_days = _parse_count(row.get("WarnDays", ""), row=index, column="WarnDays", default=None)

        items[item_barcode] = ItemRecord(
            barcode=item_barcode,
            name=row.get("ItemName", "") or item_barcode,
            unit_price_cents=cents,
            expires_on=expires_on,
            expiry_warning_days=warn_days,
        )
        if quantity:
            stock = inv[box_barcode]
            stock[item_barcode] = stock.get(item_barcode, 0) + quantity

    snapshot = Snapshot(boxes=list(boxes.values()), items=list(items.values()), inv=inv)
    return snapshot, skipped


def _import_rows(store: InventoryStore, rows: Sequence[Dict[str, str]]) -> ImportSummary:
    snapshot, skipped = rows_to_snapshot(rows)
    result = store.import_snapshot(snapshot)
    return ImportSummary(
        boxes=len(snapshot.boxes),
        items=len(snapshot.items),
        stock_lines=sum(len(row) for row in snapshot.inv.values()),
        skipped_rows=skipped,
        saved=result.ok,
    )


def import_csv(store: InventoryStore, text: str) -> ImportSummary:
    """Replace the whole inventory with the CSV contents.

    Raises :class:`ImportFormatError` (state untouched) when a column is
    missing or a cell cannot be parsed.
    """

    return _import_rows(store, parse_csv_rows(text))


def import_xls(store: InventoryStore, data: bytes) -> ImportSummary:
    return _import_rows(store, parse_xls_rows(data))


__all__ = [
    "CSV_COLUMNS",
    "CSV_MIME",
    "JSON_MIME",
    "XLS_MIME",
    "ImportSummary",
    "export_csv",
    "export_rows",
    "export_xls",
    "format_euro",
    "import_csv",
    "import_xls",
    "parse_csv_rows",
    "parse_euro_to_cents",
    "parse_xls_rows",
    "parse_ymd",
    "rows_to_snapshot",
    "timestamped_filename",
]
