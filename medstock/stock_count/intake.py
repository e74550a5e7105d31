"""Turn barcode reads into scanned items of a stock count."""

from __future__ import annotations

import logging

from sqlalchemy import func, or_

from medstock import gs1
from medstock.extensions import db
from medstock.models import (
    Product,
    ScannedItem,
    SessionStatus,
    StockCountSession,
    StockLocation,
    TrackingMode,
)
from medstock.services.serials import normalize_serial

from .exceptions import ScanError

logger = logging.getLogger(__name__)


def _gtin_candidates(gtin: str) -> list[str]:
    # Products are often keyed by the 13 digit EAN inside the GTIN-14.
    candidates = [gtin, gtin.zfill(14)]
    stripped = gtin.lstrip("0")
    if stripped:
        candidates.append(stripped)
        candidates.append(stripped.zfill(13))
    return list(dict.fromkeys(candidates))


def find_product_by_gtin(gtin: str) -> Product | None:
    candidates = _gtin_candidates(gtin)
    return (
        Product.query.filter(or_(Product.gtin.in_(candidates), Product.barcode.in_(candidates)))
        .order_by(Product.id)
        .first()
    )


def find_product_by_code(code: str) -> Product | None:
    """Resolve manual entry: a GTIN, a stored barcode or a model number."""

    code = code.strip()
    if not code:
        return None
    if code.isdigit():
        product = find_product_by_gtin(code)
        if product is not None:
            return product
    return (
        Product.query.filter(
            or_(
                Product.barcode == code,
                func.lower(Product.model_number) == code.lower(),
            )
        )
        .order_by(Product.id)
        .first()
    )


def record_scan(
    session: StockCountSession,
    raw: str,
    scanned_location: str,
    quantity: int = 1,
) -> ScannedItem:
    """Decode ``raw`` and store it as a scanned item of ``session``."""

    if session.status != SessionStatus.IN_PROGRESS:
        raise ScanError(
            f"Stock count {session.id} is {session.status}; scanning is closed."
        )
    if scanned_location not in StockLocation.ALL_LOCATIONS:
        raise ScanError(f"Unknown location '{scanned_location}'.")
    if scanned_location not in session.counted_locations:
        raise ScanError(
            f"A {session.count_type} count does not include the {scanned_location} location."
        )
    if quantity is None or quantity <= 0:
        raise ScanError("Quantity must be greater than zero.")

    raw = (raw or "").strip()
    if not raw:
        raise ScanError("Barcode is required.")

    decoded = gs1.decode_or_none(raw)
    serial_number = None
    lot_number = None
    expiration_date = None
    if decoded is not None:
        if not decoded.gtin:
            raise ScanError("Barcode does not contain a GTIN.")
        product = find_product_by_gtin(decoded.gtin)
        if product is None:
            raise ScanError(f"No product is registered for GTIN {decoded.gtin}.")
        serial_number = normalize_serial(decoded.serial_number)
        lot_number = normalize_serial(decoded.lot_number)
        expiration_date = decoded.expiration
        if decoded.issues:
            logger.warning("Scan %r decoded with issues: %s", raw, "; ".join(decoded.issues))
    else:
        product = find_product_by_code(raw)
        if product is None:
            raise ScanError(f"No product matches '{raw}'.")

    if serial_number is not None and quantity != 1:
        raise ScanError("Serial-tracked items are counted one unit per scan.")

    item = ScannedItem(
        session_id=session.id,
        product_id=product.id,
        scanned_location=scanned_location,
        quantity=quantity,
        tracking_mode=TrackingMode.for_identity(serial_number, lot_number),
        serial_number=serial_number,
        lot_number=lot_number,
        expiration_date=expiration_date,
        raw_barcode=raw,
    )
    db.session.add(item)
    db.session.commit()
    logger.info(
        "Stock count %s: scanned product %s at %s (serial=%s, lot=%s, qty=%s)",
        session.id,
        product.id,
        scanned_location,
        serial_number,
        lot_number,
        quantity,
    )
    return item
