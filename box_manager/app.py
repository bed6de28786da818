"""Flask application exposing the box inventory as a small JSON API."""
from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Any, Dict, Optional

from flask import Flask, Response, jsonify, request

from .config import Settings, get_settings
from .exceptions import ImportFormatError
from .interchange import (
    CSV_MIME,
    JSON_MIME,
    XLS_MIME,
    export_csv,
    export_xls,
    format_euro,
    import_csv,
    import_xls,
    parse_euro_to_cents,
    parse_ymd,
    timestamped_filename,
)
from .logging_utils import setup_logger
from .models import Box, Item
from .store import InventoryStore, build_store

BOX_PREFIX = "BOX:"


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[InventoryStore] = None,
) -> Flask:
    settings = settings or get_settings()
    setup_logger(level=settings.log_level)
    if store is None:
        store = build_store(settings)

    app = Flask(__name__)
    app.config["SETTINGS"] = settings
    app.extensions["box_store"] = store

    def _json_error(message: str, status: int = 400, *, code: Optional[str] = None, **extra: Any) -> Any:
        payload: Dict[str, Any] = {"error": message}
        if code:
            payload["code"] = code
        payload.update(extra)
        return jsonify(payload), status

    def _box_summary(box: Box) -> Dict[str, Any]:
        payload = box.to_record()
        payload["value_cents"] = store.box_value_cents(box.barcode)
        payload["value"] = format_euro(payload["value_cents"])
        return payload

    def _box_detail(box: Box) -> Dict[str, Any]:
        payload = _box_summary(box)
        today = date.today()
        payload["lines"] = []
        for line in store.contents(box.barcode):
            entry = line.to_dict()
            entry["expiry_status"] = line.item.expiry_status(today)
            payload["lines"].append(entry)
        return payload

    def _require_box(barcode: str) -> Optional[Box]:
        return store.find_box(barcode)

    def _confirmed(payload: Dict[str, Any]) -> bool:
        raw = payload.get("confirm", request.args.get("confirm"))
        if isinstance(raw, bool):
            return raw
        return str(raw or "").strip().lower() in {"1", "true", "yes"}

    def _item_fields(payload: Dict[str, Any]) -> Dict[str, Any]:
        """Validate item fields from a request; raises ``ValueError`` with a message."""

        name = str(payload.get("name") or "").strip()
        if not name:
            raise ValueError("Missing item name")
        if "unitPriceCents" in payload:
            cents = _parse_non_negative_int(payload.get("unitPriceCents"))
        else:
            cents = parse_euro_to_cents(payload.get("price"))
        if cents is None:
            raise ValueError("Invalid price")
        raw_expiry = str(payload.get("expiresOn") or "").strip()
        expires_on = parse_ymd(raw_expiry) if raw_expiry else None
        if raw_expiry and expires_on is None:
            raise ValueError("Use format YYYY-MM-DD for expiresOn")
        raw_warn = payload.get("expiryWarningDays")
        warn_days = None
        if raw_warn not in (None, ""):
            warn_days = _parse_non_negative_int(raw_warn)
            if warn_days is None:
                raise ValueError("expiryWarningDays must be a non-negative integer")
        return {
            "name": name,
            "unit_price_cents": cents,
            "expires_on": expires_on,
            "expiry_warning_days": warn_days,
        }

    @app.get("/health")
    def health_check() -> Any:
        return jsonify({"status": "ok", "environment": settings.environment})

    @app.get("/api/status")
    def status() -> Any:
        payload = store.stats()
        payload["app_name"] = settings.app_name
        payload["orphan_entries"] = len(store.orphan_entries())
        return jsonify(payload)

    # ------------------------------------------------------------------
    # Vans
    # ------------------------------------------------------------------
    @app.get("/api/vans")
    def list_vans() -> Any:
        return jsonify(store.vans)

    @app.post("/api/vans")
    def add_van() -> Any:
        payload = _get_payload(request)
        name = str(payload.get("name") or "").strip()
        if not name:
            return _json_error("Missing van name")
        created = store.add_van(name)
        return jsonify({"vans": store.vans, "created": created}), 201 if created else 200

    # ------------------------------------------------------------------
    # Boxes
    # ------------------------------------------------------------------
    @app.get("/api/boxes")
    def list_boxes() -> Any:
        van = request.args.get("van")
        boxes = [box for box in store.all_boxes() if not van or box.van == van]
        return jsonify([_box_summary(box) for box in boxes])

    @app.post("/api/boxes")
    def create_box() -> Any:
        payload = _get_payload(request)
        barcode = str(payload.get("barcode") or "").strip()
        name = str(payload.get("name") or "").strip()
        van = str(payload.get("van") or "").strip() or store.vans[0]
        if not barcode:
            return _json_error("Missing box barcode")
        if not name:
            return _json_error("Enter a name")
        created = store.create_box(barcode, name, van)
        box = store.find_box(barcode)
        return jsonify({"box": _box_detail(box), "created": created}), 201 if created else 200

    @app.get("/api/boxes/<path:barcode>")
    def get_box(barcode: str) -> Any:
        box = _require_box(barcode)
        if box is None:
            return _json_error("Box not found", 404, code="unknown_box")
        return jsonify(_box_detail(box))

    @app.patch("/api/boxes/<path:barcode>")
    def update_box(barcode: str) -> Any:
        if _require_box(barcode) is None:
            return _json_error("Box not found", 404, code="unknown_box")
        payload = _get_payload(request)
        if "name" in payload:
            name = str(payload.get("name") or "").strip()
            if not name:
                return _json_error("Enter a name")
            store.rename_box(barcode, name)
        if "van" in payload:
            van = str(payload.get("van") or "").strip()
            if not van:
                return _json_error("Missing van name")
            store.move_box_to_van(barcode, van)
        return jsonify(_box_detail(store.find_box(barcode)))

    @app.post("/api/scan")
    def scan() -> Any:
        payload = _get_payload(request)
        code = str(payload.get("code") or "").strip()
        if not code:
            return _json_error("Missing scanned code")
        if code.startswith(BOX_PREFIX):
            box = store.find_box(code)
            if box is None:
                return jsonify({"action": "create", "barcode": code, "vans": store.vans})
            return jsonify({"action": "open", "box": _box_detail(box)})
        item = store.find_item(code)
        return jsonify(
            {
                "action": "item",
                "barcode": code,
                "item": None if item is None else item.to_record(),
            }
        )

    # ------------------------------------------------------------------
    # Items and stock
    # ------------------------------------------------------------------
    @app.get("/api/items")
    def list_items() -> Any:
        return jsonify([item.to_record() for item in store.all_items()])

    @app.put("/api/items/<path:barcode>")
    def upsert_item(barcode: str) -> Any:
        payload = _get_payload(request)
        try:
            fields = _item_fields(payload)
        except ValueError as exc:
            return _json_error(str(exc))
        item = store.upsert_item(barcode, **fields)
        return jsonify(item.to_record())

    @app.post("/api/boxes/<path:barcode>/add")
    def add_to_box(barcode: str) -> Any:
        if _require_box(barcode) is None:
            return _json_error("Box not found", 404, code="unknown_box")
        payload = _get_payload(request)
        item_barcode = str(payload.get("item") or "").strip()
        quantity = _parse_non_negative_int(payload.get("quantity"))
        if not item_barcode:
            return _json_error("Missing item barcode")
        if not quantity:
            return _json_error("Enter a positive number")
        item: Optional[Item] = store.find_item(item_barcode)
        if item is None:
            if "name" not in payload:
                return _json_error("Unknown item", 404, code="unknown_item", barcode=item_barcode)
            try:
                fields = _item_fields(payload)
            except ValueError as exc:
                return _json_error(str(exc))
            store.upsert_item(item_barcode, **fields)
        store.add_to_box(barcode, item_barcode, quantity)
        return jsonify(_box_detail(store.find_box(barcode)))

    @app.post("/api/boxes/<path:barcode>/remove")
    def remove_from_box(barcode: str) -> Any:
        if _require_box(barcode) is None:
            return _json_error("Box not found", 404, code="unknown_box")
        payload = _get_payload(request)
        item_barcode = str(payload.get("item") or "").strip()
        quantity = _parse_non_negative_int(payload.get("quantity"))
        if not item_barcode:
            return _json_error("Missing item barcode")
        if not quantity:
            return _json_error("Enter a positive number")
        store.remove_from_box(barcode, item_barcode, quantity)
        return jsonify(_box_detail(store.find_box(barcode)))

    @app.post("/api/boxes/<path:barcode>/move")
    def move_item(barcode: str) -> Any:
        if _require_box(barcode) is None:
            return _json_error("Box not found", 404, code="unknown_box")
        payload = _get_payload(request)
        item_barcode = str(payload.get("item") or "").strip()
        dest = str(payload.get("dest") or "").strip()
        quantity = _parse_non_negative_int(payload.get("quantity"))
        if not item_barcode:
            return _json_error("Missing item barcode")
        if not dest:
            return _json_error("Pick a destination or type a barcode.")
        if not quantity:
            return _json_error("Enter a positive number")
        if dest == barcode:
            return _json_error("Source and destination boxes must differ")
        if store.find_box(dest) is None:
            dest_name = str(payload.get("dest_name") or "").strip()
            if not dest.startswith(BOX_PREFIX) or not dest_name:
                return _json_error("Destination box not found", 404, code="unknown_box", barcode=dest)
            dest_van = str(payload.get("dest_van") or "").strip() or store.vans[0]
            store.create_box(dest, dest_name, dest_van)
        available = store.get_quantity(barcode, item_barcode)
        if not store.move_between_boxes(barcode, dest, item_barcode, quantity):
            return _json_error(
                f"Cannot move more than available ({available})",
                409,
                code="insufficient_quantity",
                available=available,
            )
        return jsonify(
            {
                "source": _box_detail(store.find_box(barcode)),
                "destination": _box_detail(store.find_box(dest)),
            }
        )

    @app.get("/api/expiring")
    def expiring() -> Any:
        rows = []
        for box, line, state in store.expiring_lines():
            entry = line.to_dict()
            entry.update({"box": box.barcode, "box_name": box.name, "van": box.van, "status": state})
            rows.append(entry)
        return jsonify(rows)

    # ------------------------------------------------------------------
    # Persistence controls, export and import
    # ------------------------------------------------------------------
    @app.post("/api/save")
    def save_now() -> Any:
        result = store.save_now()
        if not result.ok:
            return _json_error(result.reason or "Save failed", 500, code="save_failed")
        return jsonify(store.stats())

    @app.post("/api/reload")
    def reload_now() -> Any:
        result = store.reload_now()
        payload = store.stats()
        payload.update({"ok": result.ok, "source": result.source, "reason": result.reason})
        return jsonify(payload), 200 if result.ok else 500

    @app.post("/api/wipe")
    def wipe_all() -> Any:
        if not _confirmed(_get_payload(request)):
            return _json_error("Wipe requires confirm=true", code="confirmation_required")
        result = store.wipe_all()
        if not result.ok:
            return _json_error(result.reason or "Wipe failed", 500, code="wipe_failed")
        return jsonify(store.stats())

    @app.get("/api/export/json")
    def export_json_route() -> Response:
        return _download(store.snapshot_json().encode("utf-8"), "box_manager_backup.json", JSON_MIME)

    @app.get("/api/export/csv")
    def export_csv_route() -> Response:
        filename = timestamped_filename("box_manager_inventory", "csv")
        return _download(export_csv(store).encode("utf-8"), filename, CSV_MIME)

    @app.get("/api/export/xls")
    def export_xls_route() -> Response:
        filename = timestamped_filename("box_manager_inventory", "xls")
        return _download(export_xls(store), filename, XLS_MIME)

    @app.post("/api/import/json")
    def import_json_route() -> Any:
        try:
            text = _uploaded_text(request)
        except ValueError as exc:
            return _json_error(str(exc))
        result = store.restore_from_json(text)
        if not result.ok:
            return _json_error(result.reason or "Invalid backup", code="invalid_snapshot")
        payload = store.stats()
        payload["warning"] = result.reason
        return jsonify(payload)

    @app.post("/api/import/<string:kind>")
    def import_table_route(kind: str) -> Any:
        if kind not in {"csv", "xls"}:
            return _json_error("Unsupported import format", 404)
        if not _confirmed(_get_payload(request)):
            return _json_error(
                "Import replaces all data and requires confirm=true", code="confirmation_required"
            )
        try:
            if kind == "xls":
                summary = import_xls(store, _uploaded_bytes(request))
            else:
                summary = import_csv(store, _uploaded_text(request))
        except ImportFormatError as exc:
            return _json_error(str(exc), code="invalid_import", column=exc.column, row=exc.row)
        except ValueError as exc:
            return _json_error(str(exc))
        return jsonify(summary.to_dict())

    return app


def get_store(app: Flask) -> InventoryStore:
    return app.extensions["box_store"]


def _get_payload(req: Any) -> Dict[str, Any]:
    if req.is_json:
        return req.get_json(silent=True) or {}
    if req.form:
        return req.form.to_dict()
    return req.get_json(silent=True) or {}


def _parse_non_negative_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = int(str(value).strip())
    except ValueError:
        return None
    if parsed < 0:
        return None
    return parsed


def _download(content: bytes, filename: str, mimetype: str) -> Response:
    response = Response(content, mimetype=mimetype)
    response.headers["Content-Disposition"] = f"attachment; filename={filename}"
    return response


def _uploaded_bytes(req: Any) -> bytes:
    upload = req.files.get("file") if req.files else None
    if upload is not None:
        if not upload.filename:
            raise ValueError("Missing upload file")
        data = upload.read()
    else:
        data = req.get_data()
    if not data:
        raise ValueError("Empty file")
    return data


def _uploaded_text(req: Any) -> str:
    upload = req.files.get("file") if req.files else None
    data = _uploaded_bytes(req)
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        name = Path(upload.filename).name if upload is not None else "request body"
        raise ValueError(f"{name} must be UTF-8 encoded") from exc


__all__ = ["create_app", "get_store"]
