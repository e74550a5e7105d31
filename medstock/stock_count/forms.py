"""Payload parsing helpers for stock count requests."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from medstock.models import CountType, StockLocation

from .resolver import DERECOGNIZED, MARK_MISSING, AdjustmentPlan

FOUND_ACTIONS = ("transfer", "add_new", "clear_found")
MISSING_DECISIONS = (MARK_MISSING, DERECOGNIZED, "clear_missing", "delete_investigated")


@dataclass
class ScanPayload:
    barcode: str
    scanned_location: str
    quantity: int


@dataclass
class Decision:
    action: str
    scanned_item_id: int | None = None
    inventory_item_id: int | None = None
    quantity: int | None = None


def _optional_int(value: object, label: str, errors: list[str]) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        errors.append(f"{label} must be a whole number.")
        return None


def parse_session_payload(data: Mapping[str, object] | None) -> tuple[str | None, str | None, list[str]]:
    data = data or {}
    count_type = (str(data.get("count_type") or "")).strip().lower() or CountType.CAR
    person = (str(data.get("person") or "")).strip() or None
    if count_type not in CountType.ALL_TYPES:
        return None, None, [f"Count type must be one of: {', '.join(CountType.ALL_TYPES)}."]
    return count_type, person, []


def parse_scan_payload(data: Mapping[str, object] | None) -> tuple[ScanPayload | None, list[str]]:
    data = data or {}
    errors: list[str] = []

    barcode = str(data.get("barcode") or "").strip()
    if not barcode:
        errors.append("Barcode is required.")

    scanned_location = str(data.get("scanned_location") or "").strip().lower()
    if scanned_location not in StockLocation.ALL_LOCATIONS:
        errors.append(
            f"Scanned location must be one of: {', '.join(StockLocation.ALL_LOCATIONS)}."
        )

    quantity = _optional_int(data.get("quantity"), "Quantity", errors)
    if quantity is None:
        quantity = 1
    elif quantity <= 0:
        errors.append("Quantity must be greater than zero.")

    if errors:
        return None, errors
    return ScanPayload(barcode=barcode, scanned_location=scanned_location, quantity=quantity), []


def parse_plan(data: Mapping[str, object] | None) -> tuple[AdjustmentPlan | None, list[str]]:
    plan_data = (data or {}).get("plan")
    if plan_data is not None and not isinstance(plan_data, Mapping):
        return None, ["Plan must be an object."]
    try:
        return AdjustmentPlan.from_dict(plan_data), []
    except ValueError as exc:
        return None, [str(exc)]


def parse_decision(data: Mapping[str, object] | None) -> tuple[Decision | None, list[str]]:
    raw = (data or {}).get("decision")
    if not isinstance(raw, Mapping):
        return None, ["Decision is required."]

    errors: list[str] = []
    action = str(raw.get("action") or "").strip()
    scanned_item_id = _optional_int(raw.get("scanned_item_id"), "Scanned item id", errors)
    inventory_item_id = _optional_int(raw.get("inventory_item_id"), "Inventory item id", errors)
    quantity = _optional_int(raw.get("quantity"), "Quantity", errors)

    if action in FOUND_ACTIONS:
        if scanned_item_id is None and not errors:
            errors.append("Scanned item id is required for found decisions.")
    elif action in MISSING_DECISIONS:
        if inventory_item_id is None and not errors:
            errors.append("Inventory item id is required for missing decisions.")
    else:
        errors.append(
            "Action must be one of: "
            + ", ".join(FOUND_ACTIONS + MISSING_DECISIONS)
            + "."
        )

    if errors:
        return None, errors
    return Decision(
        action=action,
        scanned_item_id=scanned_item_id,
        inventory_item_id=inventory_item_id,
        quantity=quantity,
    ), []
