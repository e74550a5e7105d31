"""Serial number uniqueness checks shared by stock counts and procedure entry."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from medstock.extensions import db
from medstock.gs1 import decode_or_none
from medstock.models import InventoryItem


@dataclass(frozen=True)
class MaterialEntry:
    """A material line in an in-progress procedure form."""

    kind: str  # materials, leads, others
    entry_id: str
    serial_number: str | None = None

    @property
    def key(self) -> tuple[str, str]:
        return self.kind, self.entry_id


def normalize_serial(value: object | None) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def serial_in_inventory(serial_number: str | None, exclude_id: int | None = None) -> InventoryItem | None:
    """Return the inventory record already holding ``serial_number``."""

    serial = normalize_serial(serial_number)
    if serial is None:
        return None

    query = InventoryItem.query.filter(InventoryItem.serial_number == serial)
    if exclude_id is not None:
        query = query.filter(InventoryItem.id != exclude_id)
    return query.first()


def lock_serial_holder(serial_number: str) -> InventoryItem | None:
    return (
        db.session.query(InventoryItem)
        .filter(InventoryItem.serial_number == serial_number)
        .with_for_update()
        .first()
    )


def group_by_serial(records: Iterable[object]) -> dict[str, list[object]]:
    """Group records exposing ``serial_number`` by their normalized serial."""

    groups: dict[str, list[object]] = {}
    for record in records:
        serial = normalize_serial(getattr(record, "serial_number", None))
        if serial is None:
            continue
        groups.setdefault(serial, []).append(record)
    return groups


def has_duplicate_serial(
    entries: Sequence[MaterialEntry],
    serial_number: str | None,
    exclude: tuple[str, str] | None = None,
) -> bool:
    """Check whether ``serial_number`` is already used by another form entry.

    ``exclude`` is the ``(kind, entry_id)`` of the entry being edited so that
    re-scanning the same line does not report itself.
    """

    serial = normalize_serial(serial_number)
    if serial is None:
        return False

    for entry in entries:
        if exclude is not None and entry.key == exclude:
            continue
        if normalize_serial(entry.serial_number) == serial:
            return True
    return False


def material_entry_from_scan(kind: str, entry_id: str, raw_barcode: str) -> MaterialEntry:
    """Build a duplicate-detection entry from a raw barcode read."""

    decoded = decode_or_none(raw_barcode)
    serial = decoded.serial_number if decoded is not None else None
    return MaterialEntry(kind=kind, entry_id=entry_id, serial_number=serial)
