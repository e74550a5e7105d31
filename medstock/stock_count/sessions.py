"""Stock count session lifecycle."""

from __future__ import annotations

import logging

from medstock.extensions import db
from medstock.models import (
    CountType,
    InventoryItem,
    ScannedItem,
    SessionStatus,
    StockCountSession,
)

from .classifier import Discrepancies, classify
from .exceptions import SessionStateError

logger = logging.getLogger(__name__)


def get_session(session_id: int) -> StockCountSession | None:
    return db.session.get(StockCountSession, session_id)


def get_active_session(count_type: str | None = None) -> StockCountSession | None:
    query = StockCountSession.query.filter(
        StockCountSession.status.in_(tuple(SessionStatus.ACTIVE_STATES))
    )
    if count_type is not None:
        query = query.filter(StockCountSession.count_type == count_type)
    return query.order_by(StockCountSession.created_at.desc(), StockCountSession.id.desc()).first()


def start_session(count_type: str, person: str | None = None) -> StockCountSession:
    """Open a new count. Only one count per type may be active at a time."""

    if count_type not in CountType.ALL_TYPES:
        raise SessionStateError(f"Unknown count type '{count_type}'.")
    active = get_active_session(count_type)
    if active is not None:
        raise SessionStateError(
            f"A {count_type} count is already active (stock count {active.id})."
        )

    session = StockCountSession(
        count_type=count_type,
        status=SessionStatus.IN_PROGRESS,
        person=person,
    )
    db.session.add(session)
    db.session.commit()
    logger.info("Started %s stock count %s", count_type, session.id)
    return session


def _require_status(session: StockCountSession, *statuses: str) -> None:
    if session.status not in statuses:
        raise SessionStateError(
            f"Stock count {session.id} is {session.status}; expected {' or '.join(statuses)}."
        )


def begin_reconciliation(session: StockCountSession) -> StockCountSession:
    if session.status == SessionStatus.RECONCILING:
        return session
    _require_status(session, SessionStatus.IN_PROGRESS)
    session.status = SessionStatus.RECONCILING
    db.session.commit()
    logger.info("Stock count %s moved to reconciliation", session.id)
    return session


def reopen_scanning(session: StockCountSession) -> StockCountSession:
    _require_status(session, SessionStatus.RECONCILING)
    session.status = SessionStatus.IN_PROGRESS
    db.session.commit()
    logger.info("Stock count %s reopened for scanning", session.id)
    return session


def cancel_session(session: StockCountSession) -> StockCountSession:
    _require_status(session, SessionStatus.IN_PROGRESS, SessionStatus.RECONCILING)
    session.status = SessionStatus.CANCELLED
    db.session.commit()
    logger.info("Stock count %s cancelled", session.id)
    return session


def remove_scanned_item(session: StockCountSession, scanned_item_id: int) -> None:
    _require_status(session, SessionStatus.IN_PROGRESS)
    item = ScannedItem.query.filter_by(id=scanned_item_id, session_id=session.id).first()
    if item is None:
        raise SessionStateError(
            f"Scanned item {scanned_item_id} is not part of stock count {session.id}."
        )
    db.session.delete(item)
    db.session.commit()


def load_discrepancies(session: StockCountSession) -> Discrepancies:
    """Classify the session's scans against current inventory.

    Inventory is read for both locations so found stock can be matched to the
    opposite location; only counted locations produce missing entries.
    """

    scans = (
        ScannedItem.query.filter_by(session_id=session.id)
        .order_by(ScannedItem.id)
        .all()
    )
    inventory = (
        InventoryItem.query.filter(InventoryItem.quantity > 0)
        .order_by(InventoryItem.id)
        .all()
    )
    return classify(session, scans, inventory)
