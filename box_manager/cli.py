"""Command line interface for the box inventory."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from .config import Settings, get_settings
from .exceptions import ImportFormatError
from .fileio import FileIO, LocalFileIO
from .interchange import (
    CSV_MIME,
    JSON_MIME,
    XLS_MIME,
    export_csv,
    export_xls,
    format_euro,
    import_csv,
    import_xls,
    timestamped_filename,
)
from .logging_utils import setup_logger
from .store import InventoryStore, build_store

logger = logging.getLogger(__name__)

FORMATS = ("json", "csv", "xls")


def create_parser() -> argparse.ArgumentParser:
    """Create command line argument parser."""
    parser = argparse.ArgumentParser(
        prog="box-manager",
        description="Track boxes, the vans carrying them and the items inside.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", help="Bind address (defaults to settings)")
    serve_parser.add_argument("--port", type=int, help="Port (defaults to settings)")
    serve_parser.add_argument("--debug", action="store_true", help="Enable Flask debug mode")

    subparsers.add_parser("summary", help="Print vans, boxes and their values")

    export_parser = subparsers.add_parser(
        "export",
        help="Write the inventory to a file",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description="""
Write a backup (json) or a spreadsheet (csv, xls) of the whole inventory.

Examples:
  box-manager export json                 Backup into the configured export dir
  box-manager export csv --out ./reports  Spreadsheet into ./reports
        """,
    )
    export_parser.add_argument("format", choices=FORMATS)
    export_parser.add_argument("--out", type=Path, help="Target directory")

    import_parser = subparsers.add_parser(
        "import",
        help="Replace the inventory with the contents of a file",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description="""
Replace ALL boxes, items and quantities with the contents of PATH.

Examples:
  box-manager import json backup.json --yes-i-am-sure
  box-manager import csv inventory.csv --yes-i-am-sure
        """,
    )
    import_parser.add_argument("format", choices=FORMATS)
    import_parser.add_argument("path", type=Path)
    import_parser.add_argument(
        "--yes-i-am-sure",
        action="store_true",
        help="Required safety flag, the current data is discarded",
    )

    wipe_parser = subparsers.add_parser("wipe", help="Delete all inventory data")
    wipe_parser.add_argument(
        "--yes-i-am-sure",
        action="store_true",
        help="Required safety flag to confirm deleting everything",
    )

    return parser


def handle_serve(settings: Settings, store: InventoryStore, args: argparse.Namespace) -> int:
    from .app import create_app

    app = create_app(settings, store=store)
    host = args.host or settings.host
    port = args.port or settings.port
    logger.info("Serving %s on %s:%s", settings.app_name, host, port)
    app.run(host=host, port=port, debug=args.debug)
    return 0


def handle_summary(store: InventoryStore) -> int:
    stats = store.stats()
    print(f"{stats['boxes']} boxes, {stats['items']} items, {stats['units']} units")
    for van in store.vans:
        boxes = [box for box in store.all_boxes() if box.van == van]
        print(f"{van}: {len(boxes)} box(es)")
        for box in sorted(boxes, key=lambda entry: entry.name.casefold()):
            value = format_euro(store.box_value_cents(box.barcode))
            print(f"  {box.barcode}  {box.name}  €{value}")
    expiring = store.expiring_lines()
    if expiring:
        print("Expiring:")
        for box, line, state in expiring:
            print(f"  [{state}] {line.item.name} x{line.quantity} in {box.name} ({line.item.expires_on})")
    orphans = store.orphan_entries()
    if orphans:
        print(f"Warning: {len(orphans)} stock entries reference unknown items")
    return 0


def handle_export(store: InventoryStore, fmt: str, fileio: FileIO) -> int:
    if fmt == "json":
        result = fileio.download_bytes(
            "box_manager_backup.json", store.snapshot_json().encode("utf-8"), JSON_MIME
        )
    elif fmt == "csv":
        result = fileio.download_bytes(
            timestamped_filename("box_manager_inventory", "csv"),
            export_csv(store).encode("utf-8"),
            CSV_MIME,
        )
    else:
        result = fileio.download_bytes(
            timestamped_filename("box_manager_inventory", "xls"), export_xls(store), XLS_MIME
        )
    if not result.ok:
        print(f"Export failed: {result.message}", file=sys.stderr)
        return 1
    print(result.message)
    return 0


def handle_import(
    store: InventoryStore, fmt: str, path: Path, fileio: FileIO, confirmed: bool = False
) -> int:
    if not confirmed:
        print("--yes-i-am-sure flag is required for safety", file=sys.stderr)
        print("   Importing replaces ALL existing boxes, items and quantities!", file=sys.stderr)
        return 1

    if fmt == "xls":
        try:
            data = path.read_bytes()
        except OSError as exc:
            print(f"Cannot read {path}: {exc}", file=sys.stderr)
            return 1
        try:
            summary = import_xls(store, data)
        except ImportFormatError as exc:
            print(f"Import failed: {exc}", file=sys.stderr)
            return 1
        print(f"Imported {summary.boxes} boxes, {summary.items} items")
        return 0 if summary.saved else 1

    picked = fileio.pick_text_file([f".{fmt}"])
    if not picked.ok or picked.text is None:
        print(f"Import failed: {picked.message}", file=sys.stderr)
        return 1

    if fmt == "json":
        result = store.restore_from_json(picked.text)
        if not result.ok:
            print(f"Import failed: {result.reason}", file=sys.stderr)
            return 1
        if result.reason:
            print(f"Warning: {result.reason}", file=sys.stderr)
        stats = store.stats()
        print(f"Restored {stats['boxes']} boxes, {stats['items']} items")
        return 0

    try:
        summary = import_csv(store, picked.text)
    except ImportFormatError as exc:
        print(f"Import failed: {exc}", file=sys.stderr)
        return 1
    print(
        f"Imported {summary.boxes} boxes, {summary.items} items"
        f" ({summary.skipped_rows} rows skipped)"
    )
    return 0 if summary.saved else 1


def handle_wipe(store: InventoryStore, confirmed: bool = False) -> int:
    if not confirmed:
        print("--yes-i-am-sure flag is required for safety", file=sys.stderr)
        print("   This will permanently delete all inventory data!", file=sys.stderr)
        return 1
    result = store.wipe_all()
    if not result.ok:
        print(f"Wipe failed: {result.reason}", file=sys.stderr)
        return 1
    print("All inventory data deleted")
    return 0


def main(
    argv: Optional[Sequence[str]] = None,
    settings: Optional[Settings] = None,
    store: Optional[InventoryStore] = None,
) -> int:
    """Main CLI entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    settings = settings or get_settings()
    setup_logger(level=settings.log_level)
    if store is None:
        store = build_store(settings)

    try:
        if args.command == "serve":
            return handle_serve(settings, store, args)
        if args.command == "summary":
            return handle_summary(store)
        if args.command == "export":
            return handle_export(store, args.format, LocalFileIO(args.out or settings.export_dir))
        if args.command == "import":
            fileio = LocalFileIO(settings.export_dir, import_path=args.path)
            return handle_import(store, args.format, args.path, fileio, args.yes_i_am_sure)
        if args.command == "wipe":
            return handle_wipe(store, args.yes_i_am_sure)
    finally:
        store.backend.close()

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
