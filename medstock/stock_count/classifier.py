"""Classify a stock count's scans against recorded inventory.

Every scan and inventory record ends up in exactly one of three buckets:

* matched: the scan resolves to a record at the same location,
* found: scanned stock with no record at its location (it may exist at the
  other location, ``exists_in_home``),
* missing: recorded stock at a counted location that no scan accounts for.

Identity resolution runs from most to least specific: serial number and
product (always 1:1), lot number and product (quantities pool across records
and scans), then bare product for untracked stock. The functions here only
read attributes, so ORM rows and plain objects work alike.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from medstock.models import CountType, StockLocation, TrackingMode
from medstock.services.serials import group_by_serial, normalize_serial


@dataclass(frozen=True)
class Identity:
    product_id: int
    serial_number: str | None = None
    lot_number: str | None = None

    @property
    def tracking_mode(self) -> str:
        return TrackingMode.for_identity(self.serial_number, self.lot_number)


def identity_of(record: object) -> Identity:
    """Return the matching identity of a scan or inventory record.

    A serial number supersedes the lot number: serial-tracked stock is
    matched on serial and product only.
    """

    serial = normalize_serial(getattr(record, "serial_number", None))
    lot = normalize_serial(getattr(record, "lot_number", None))
    product_id = getattr(record, "product_id")
    if serial is not None:
        return Identity(product_id=product_id, serial_number=serial)
    return Identity(product_id=product_id, lot_number=lot)


def _quantity(record: object) -> int:
    return int(getattr(record, "quantity", 0) or 0)


def _iso(value: object | None) -> str | None:
    if value is None:
        return None
    return value.isoformat() if hasattr(value, "isoformat") else str(value)


@dataclass
class MatchedEntry:
    scanned_item: object
    inventory_item_ids: list[int]
    quantity: int

    @property
    def id(self) -> int:
        return self.scanned_item.id

    @property
    def location(self) -> str:
        return self.scanned_item.scanned_location

    def to_dict(self) -> dict[str, object]:
        return {
            "scanned_item_id": self.scanned_item.id,
            "product_id": self.scanned_item.product_id,
            "scanned_location": self.location,
            "quantity": self.quantity,
            "serial_number": self.scanned_item.serial_number,
            "lot_number": self.scanned_item.lot_number,
            "inventory_item_ids": list(self.inventory_item_ids),
        }


@dataclass
class FoundEntry:
    scanned_item: object
    quantity: int
    exists_in_home: bool = False
    other_location: str | None = None
    available_elsewhere: int = 0
    candidate_ids: list[int] = field(default_factory=list)
    ambiguous: bool = False
    duplicate_of: int | None = None

    @property
    def id(self) -> int:
        return self.scanned_item.id

    @property
    def scanned_location(self) -> str:
        return self.scanned_item.scanned_location

    @property
    def identity(self) -> Identity:
        return identity_of(self.scanned_item)

    @property
    def is_serial(self) -> bool:
        return self.identity.serial_number is not None

    def to_dict(self) -> dict[str, object]:
        scan = self.scanned_item
        return {
            "scanned_item_id": scan.id,
            "product_id": scan.product_id,
            "scanned_location": scan.scanned_location,
            "quantity": self.quantity,
            "serial_number": scan.serial_number,
            "lot_number": scan.lot_number,
            "expiration_date": _iso(getattr(scan, "expiration_date", None)),
            "exists_in_home": self.exists_in_home,
            "other_location": self.other_location,
            "available_elsewhere": self.available_elsewhere,
            "candidate_ids": list(self.candidate_ids),
            "ambiguous": self.ambiguous,
            "duplicate_of": self.duplicate_of,
        }


@dataclass
class MissingEntry:
    inventory_item: object
    quantity: int

    @property
    def id(self) -> int:
        return self.inventory_item.id

    @property
    def location(self) -> str:
        return self.inventory_item.location

    @property
    def identity(self) -> Identity:
        return identity_of(self.inventory_item)

    def to_dict(self) -> dict[str, object]:
        item = self.inventory_item
        return {
            "inventory_item_id": item.id,
            "product_id": item.product_id,
            "location": item.location,
            "quantity": self.quantity,
            "recorded_quantity": _quantity(item),
            "serial_number": item.serial_number,
            "lot_number": item.lot_number,
            "expiration_date": _iso(getattr(item, "expiration_date", None)),
        }


@dataclass
class Discrepancies:
    matched: list[MatchedEntry] = field(default_factory=list)
    found: list[FoundEntry] = field(default_factory=list)
    missing: list[MissingEntry] = field(default_factory=list)

    def found_entry(self, scanned_item_id: int) -> FoundEntry | None:
        for entry in self.found:
            if entry.id == scanned_item_id:
                return entry
        return None

    def missing_entry(self, inventory_item_id: int) -> MissingEntry | None:
        for entry in self.missing:
            if entry.id == inventory_item_id:
                return entry
        return None

    def to_dict(self) -> dict[str, object]:
        return {
            "matched": [entry.to_dict() for entry in self.matched],
            "found": [entry.to_dict() for entry in self.found],
            "missing": [entry.to_dict() for entry in self.missing],
            "matched_count": len(self.matched),
            "found_count": len(self.found),
            "missing_count": len(self.missing),
        }


def counted_locations(session: object | None) -> tuple[str, ...]:
    count_type = getattr(session, "count_type", None)
    if count_type is None:
        return tuple(StockLocation.ALL_LOCATIONS)
    return CountType.COUNTED_LOCATIONS.get(count_type, ())


def _authoritative_scan(scans: Sequence[object], records_by_serial: dict[str, list[object]]) -> object:
    """Pick the scan that owns a serial read more than once in a session."""

    for scan in scans:
        identity = identity_of(scan)
        for record in records_by_serial.get(identity.serial_number, []):
            if (
                record.product_id == identity.product_id
                and record.location == scan.scanned_location
            ):
                return scan
    return scans[0]


def _classify_serial(
    scans: Sequence[object],
    records: Sequence[object],
    matched: list[MatchedEntry],
    found: list[FoundEntry],
    covered: dict[int, int],
) -> None:
    records_by_serial = group_by_serial(records)

    for serial, group in group_by_serial(scans).items():
        owner = _authoritative_scan(group, records_by_serial)
        for scan in group:
            if scan is not owner:
                found.append(
                    FoundEntry(
                        scanned_item=scan,
                        quantity=1,
                        duplicate_of=owner.id,
                    )
                )

        candidates = [
            record
            for record in records_by_serial.get(serial, [])
            if record.product_id == owner.product_id
        ]
        if len(candidates) > 1:
            found.append(
                FoundEntry(
                    scanned_item=owner,
                    quantity=1,
                    candidate_ids=[record.id for record in candidates],
                    ambiguous=True,
                )
            )
            continue

        if not candidates:
            found.append(FoundEntry(scanned_item=owner, quantity=1))
            continue

        record = candidates[0]
        if record.location == owner.scanned_location:
            covered[record.id] = _quantity(record)
            matched.append(
                MatchedEntry(scanned_item=owner, inventory_item_ids=[record.id], quantity=1)
            )
            continue

        found.append(
            FoundEntry(
                scanned_item=owner,
                quantity=1,
                exists_in_home=True,
                other_location=record.location,
                available_elsewhere=1,
                candidate_ids=[record.id],
            )
        )


def _classify_pooled(
    scans: Sequence[object],
    records: Sequence[object],
    matched: list[MatchedEntry],
    found: list[FoundEntry],
    covered: dict[int, int],
) -> None:
    """Match lot or untracked scans whose quantities pool per identity."""

    records_by_key: dict[tuple[Identity, str], list[object]] = defaultdict(list)
    for record in records:
        records_by_key[(identity_of(record), record.location)].append(record)

    # Allocate all co-located scans first; only uncovered stock at the other
    # location can explain what is left.
    leftovers: list[tuple[object, int]] = []
    for scan in scans:
        identity = identity_of(scan)
        location = scan.scanned_location
        remaining = _quantity(scan)
        used_ids: list[int] = []

        for record in records_by_key.get((identity, location), []):
            if remaining <= 0:
                break
            capacity = _quantity(record) - covered.get(record.id, 0)
            if capacity <= 0:
                continue
            take = min(capacity, remaining)
            covered[record.id] = covered.get(record.id, 0) + take
            remaining -= take
            used_ids.append(record.id)

        allocated = _quantity(scan) - remaining
        if allocated > 0:
            matched.append(
                MatchedEntry(scanned_item=scan, inventory_item_ids=used_ids, quantity=allocated)
            )
        if remaining > 0:
            leftovers.append((scan, remaining))

    for scan, remaining in leftovers:
        other_location = StockLocation.opposite(scan.scanned_location)
        elsewhere = [
            (record, _quantity(record) - covered.get(record.id, 0))
            for record in records_by_key.get((identity_of(scan), other_location), [])
        ]
        elsewhere = [(record, uncovered) for record, uncovered in elsewhere if uncovered > 0]
        found.append(
            FoundEntry(
                scanned_item=scan,
                quantity=remaining,
                exists_in_home=bool(elsewhere),
                other_location=other_location if elsewhere else None,
                available_elsewhere=sum(uncovered for _, uncovered in elsewhere),
                candidate_ids=[record.id for record, _ in elsewhere],
            )
        )


def classify(
    session: object | None,
    scanned_items: Iterable[object],
    inventory: Iterable[object],
) -> Discrepancies:
    """Partition a session's scans and the recorded inventory into discrepancies."""

    scans = list(scanned_items)
    records = [record for record in inventory if _quantity(record) > 0]
    scan_order = {id(scan): index for index, scan in enumerate(scans)}

    serial_scans = []
    lot_scans = []
    bare_scans = []
    for scan in scans:
        identity = identity_of(scan)
        if identity.serial_number is not None:
            serial_scans.append(scan)
        elif identity.lot_number is not None:
            lot_scans.append(scan)
        else:
            bare_scans.append(scan)

    serial_records = []
    lot_records = []
    bare_records = []
    for record in records:
        identity = identity_of(record)
        if identity.serial_number is not None:
            serial_records.append(record)
        elif identity.lot_number is not None:
            lot_records.append(record)
        else:
            bare_records.append(record)

    matched: list[MatchedEntry] = []
    found: list[FoundEntry] = []
    covered: dict[int, int] = {}

    _classify_serial(serial_scans, serial_records, matched, found, covered)
    _classify_pooled(lot_scans, lot_records, matched, found, covered)
    _classify_pooled(bare_scans, bare_records, matched, found, covered)

    locations = counted_locations(session)
    missing = [
        MissingEntry(inventory_item=record, quantity=_quantity(record) - covered.get(record.id, 0))
        for record in records
        if record.location in locations and covered.get(record.id, 0) < _quantity(record)
    ]

    matched.sort(key=lambda entry: scan_order[id(entry.scanned_item)])
    found.sort(key=lambda entry: scan_order[id(entry.scanned_item)])
    return Discrepancies(matched=matched, found=found, missing=missing)
