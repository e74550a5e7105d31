from __future__ import annotations

from datetime import date, datetime

from medstock.extensions import db
from medstock.models import InventoryItem, InventoryMovement, TrackingMode
from medstock.services.serials import lock_serial_holder, serial_in_inventory
from medstock.stock_count.classifier import Identity
from medstock.stock_count.exceptions import (
    DuplicateSerialError,
    InsufficientStockError,
    StaleAdjustmentError,
)


def _identity_filters(identity: Identity) -> list:
    filters = [InventoryItem.product_id == identity.product_id]
    if identity.serial_number is not None:
        filters.append(InventoryItem.serial_number == identity.serial_number)
        return filters

    filters.append(InventoryItem.serial_number.is_(None))
    if identity.lot_number is None:
        filters.append(InventoryItem.lot_number.is_(None))
    else:
        filters.append(InventoryItem.lot_number == identity.lot_number)
    return filters


def _identity_label(identity: Identity) -> str:
    if identity.serial_number is not None:
        return f"serial {identity.serial_number}"
    if identity.lot_number is not None:
        return f"lot {identity.lot_number}"
    return "untracked stock"


def records_for_identity(identity: Identity, location: str, *, lock: bool = False) -> list[InventoryItem]:
    query = db.session.query(InventoryItem).filter(
        *_identity_filters(identity),
        InventoryItem.location == location,
        InventoryItem.quantity > 0,
    )
    if lock:
        query = query.with_for_update()
    return query.order_by(InventoryItem.id).all()


def record_movement(
    item: InventoryItem,
    quantity: int,
    movement_type: str,
    *,
    location: str | None = None,
    person: str | None = None,
    reference: str | None = None,
) -> InventoryMovement:
    movement = InventoryMovement(
        product_id=item.product_id,
        inventory_item_id=item.id,
        location=location or item.location,
        quantity=quantity,
        movement_type=movement_type,
        serial_number=item.serial_number,
        lot_number=item.lot_number,
        person=person,
        reference=reference,
    )
    db.session.add(movement)
    return movement


def _move_serial_unit(
    identity: Identity,
    from_location: str,
    to_location: str,
    *,
    person: str | None,
    reference: str | None,
    scanned_item_id: int | None,
) -> InventoryItem:
    holder = lock_serial_holder(identity.serial_number)
    if holder is None or holder.product_id != identity.product_id:
        raise StaleAdjustmentError(
            f"No inventory record holds {_identity_label(identity)}.",
            scanned_item_id=scanned_item_id,
            adjustment="transfer",
        )
    if holder.location != from_location or holder.quantity < 1:
        raise InsufficientStockError(
            f"Not enough stock for {_identity_label(identity)} at {from_location}. Available 0.",
            scanned_item_id=scanned_item_id,
            inventory_item_id=holder.id,
            adjustment="transfer",
        )

    record_movement(
        holder, -1, InventoryMovement.TRANSFER_OUT, person=person, reference=reference
    )
    holder.location = to_location
    holder.missing_since = None
    record_movement(
        holder, 1, InventoryMovement.TRANSFER_IN, person=person, reference=reference
    )
    return holder


def transfer_stock(
    identity: Identity,
    from_location: str,
    to_location: str,
    quantity: int,
    *,
    person: str | None = None,
    reference: str | None = None,
    scanned_item_id: int | None = None,
) -> InventoryItem:
    """Move ``quantity`` units of ``identity`` between locations.

    Availability is re-read under a row lock, so a source drained since the
    plan was built raises :class:`InsufficientStockError` before anything is
    changed. Emptied source records are deleted.
    """

    if from_location == to_location:
        raise ValueError("Move locations must be different.")
    if quantity <= 0:
        raise ValueError("Move quantities must be greater than zero.")

    if identity.serial_number is not None:
        return _move_serial_unit(
            identity,
            from_location,
            to_location,
            person=person,
            reference=reference,
            scanned_item_id=scanned_item_id,
        )

    sources = records_for_identity(identity, from_location, lock=True)
    available = sum(record.quantity for record in sources)
    if quantity > available:
        raise InsufficientStockError(
            f"Not enough stock for {_identity_label(identity)} at {from_location}. "
            f"Available {available}.",
            scanned_item_id=scanned_item_id,
            inventory_item_id=sources[0].id if sources else None,
            adjustment="transfer",
        )

    template = sources[0]
    remaining = quantity
    for record in sources:
        if remaining <= 0:
            break
        take = min(record.quantity, remaining)
        record.quantity -= take
        remaining -= take
        record_movement(
            record, -take, InventoryMovement.TRANSFER_OUT, person=person, reference=reference
        )
        if record.quantity == 0:
            db.session.delete(record)

    destination = next(iter(records_for_identity(identity, to_location, lock=True)), None)
    if destination is None:
        destination = InventoryItem(
            product_id=identity.product_id,
            location=to_location,
            quantity=0,
            tracking_mode=template.tracking_mode or identity.tracking_mode,
            lot_number=identity.lot_number,
            expiration_date=template.expiration_date,
        )
        db.session.add(destination)
    destination.quantity += quantity
    destination.missing_since = None
    db.session.flush()
    record_movement(
        destination, quantity, InventoryMovement.TRANSFER_IN, person=person, reference=reference
    )
    return destination


def receive_stock(
    identity: Identity,
    location: str,
    quantity: int,
    *,
    expiration_date: date | None = None,
    person: str | None = None,
    reference: str | None = None,
    scanned_item_id: int | None = None,
) -> InventoryItem:
    """Register previously unknown stock, merging into a matching lot record."""

    if quantity <= 0:
        raise ValueError("Quantities must be greater than zero.")

    if identity.serial_number is not None:
        if quantity != 1:
            raise ValueError("Serial-tracked stock is always received one unit at a time.")
        holder = serial_in_inventory(identity.serial_number)
        if holder is not None:
            raise DuplicateSerialError(
                f"Serial {identity.serial_number} is already recorded as inventory item "
                f"{holder.id} ({holder.location}).",
                scanned_item_id=scanned_item_id,
                inventory_item_id=holder.id,
                adjustment="new_item",
            )
        item = InventoryItem(
            product_id=identity.product_id,
            location=location,
            quantity=1,
            tracking_mode=TrackingMode.SERIAL,
            serial_number=identity.serial_number,
            expiration_date=expiration_date,
        )
        db.session.add(item)
    else:
        item = next(iter(records_for_identity(identity, location, lock=True)), None)
        if item is None:
            item = InventoryItem(
                product_id=identity.product_id,
                location=location,
                quantity=0,
                tracking_mode=identity.tracking_mode,
                lot_number=identity.lot_number,
                expiration_date=expiration_date,
            )
            db.session.add(item)
        item.quantity += quantity
        item.missing_since = None

    db.session.flush()
    record_movement(
        item, quantity, InventoryMovement.COUNT_NEW, person=person, reference=reference
    )
    return item


def get_record_for_update(inventory_item_id: int, *, adjustment: str) -> InventoryItem:
    item = (
        db.session.query(InventoryItem)
        .filter(InventoryItem.id == inventory_item_id)
        .with_for_update()
        .first()
    )
    if item is None:
        raise StaleAdjustmentError(
            f"Inventory item {inventory_item_id} no longer exists.",
            inventory_item_id=inventory_item_id,
            adjustment=adjustment,
        )
    return item


def flag_missing(
    item: InventoryItem,
    *,
    person: str | None = None,
    reference: str | None = None,
) -> InventoryItem:
    item.missing_since = item.missing_since or datetime.utcnow()
    record_movement(
        item, 0, InventoryMovement.COUNT_MISSING, person=person, reference=reference
    )
    return item


def remove_record(
    item: InventoryItem,
    movement_type: str,
    *,
    quantity: int | None = None,
    person: str | None = None,
    reference: str | None = None,
) -> InventoryItem | None:
    """Write off ``quantity`` units of ``item``, deleting it once nothing is left.

    Returns the record when units remain, otherwise ``None``.
    """

    if quantity is None or quantity >= item.quantity:
        record_movement(item, -item.quantity, movement_type, person=person, reference=reference)
        db.session.delete(item)
        return None
    if quantity <= 0:
        raise ValueError("Quantities must be greater than zero.")

    item.quantity -= quantity
    record_movement(item, -quantity, movement_type, person=person, reference=reference)
    return item
