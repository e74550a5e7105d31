from __future__ import annotations

from flask import Blueprint, jsonify, request

from medstock import gs1
from medstock.services.serials import (
    MaterialEntry,
    has_duplicate_serial,
    material_entry_from_scan,
    normalize_serial,
    serial_in_inventory,
)


bp = Blueprint("barcodes", __name__, url_prefix="/api")


@bp.post("/barcodes/decode")
def decode_barcode():
    data = request.get_json(silent=True) or {}
    raw = str(data.get("barcode") or "").strip()
    if not raw:
        return jsonify({"error": "Barcode is required."}), 400

    decoded = gs1.decode_or_none(raw)
    if decoded is None:
        return jsonify({"is_gs1": False, "raw": raw})

    payload = decoded.to_dict()
    payload["is_gs1"] = True
    payload["display"] = gs1.format_gs1_display(decoded)
    return jsonify(payload)


def _parse_entries(raw_entries: object) -> list[MaterialEntry] | None:
    if raw_entries is None:
        return []
    if not isinstance(raw_entries, list):
        return None

    entries: list[MaterialEntry] = []
    for raw in raw_entries:
        if not isinstance(raw, dict):
            return None
        entries.append(
            MaterialEntry(
                kind=str(raw.get("kind") or ""),
                entry_id=str(raw.get("entry_id") or raw.get("id") or ""),
                serial_number=normalize_serial(raw.get("serial_number")),
            )
        )
    return entries


@bp.post("/procedure-materials/check-serial")
def check_material_serial():
    """Report whether a material serial is already used on the form or in stock.

    Accepts the serial directly or a raw barcode to decode. ``exclude`` names
    the ``{kind, entry_id}`` being edited so it is not reported against itself.
    """

    data = request.get_json(silent=True) or {}
    entries = _parse_entries(data.get("entries"))
    if entries is None:
        return jsonify({"error": "Entries must be a list of objects."}), 400

    exclude = None
    raw_exclude = data.get("exclude")
    if isinstance(raw_exclude, dict):
        exclude = (str(raw_exclude.get("kind") or ""), str(raw_exclude.get("entry_id") or ""))

    serial = normalize_serial(data.get("serial_number"))
    barcode = str(data.get("barcode") or "").strip()
    if serial is None and barcode:
        serial = material_entry_from_scan(
            exclude[0] if exclude else "", exclude[1] if exclude else "", barcode
        ).serial_number
    if serial is None:
        return jsonify({"error": "A serial number or GS1 barcode with a serial is required."}), 400

    holder = serial_in_inventory(serial)
    return jsonify(
        {
            "serial_number": serial,
            "duplicate_in_form": has_duplicate_serial(entries, serial, exclude=exclude),
            "in_inventory": holder is not None,
            "inventory_item": holder.to_dict() if holder is not None else None,
        }
    )
