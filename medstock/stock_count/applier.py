"""Apply a resolved adjustment plan to the inventory store."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime

from flask import current_app

from medstock.extensions import db
from medstock.models import (
    AppliedAdjustment,
    InventoryMovement,
    ScannedItem,
    SessionStatus,
    StockCountSession,
)
from medstock.services import inventory_store

from .classifier import identity_of
from .exceptions import (
    ReconciliationError,
    SessionStateError,
    StaleAdjustmentError,
)
from .resolver import DERECOGNIZED, MARK_MISSING, AdjustmentPlan

logger = logging.getLogger(__name__)

KIND_TRANSFER = "transfer"
KIND_NEW_ITEM = "new_item"
KIND_MISSING = "missing"
KIND_DELETE_INVESTIGATED = "delete_investigated"


@dataclass(frozen=True)
class ReconciliationSummary:
    matched: int = 0
    transferred: int = 0
    new_items: int = 0
    marked_missing: int = 0
    derecognized: int = 0
    deleted: int = 0

    @property
    def total_adjustments(self) -> int:
        return self.transferred + self.new_items + self.marked_missing + self.derecognized + self.deleted

    def to_dict(self) -> dict[str, int]:
        payload = asdict(self)
        payload["total_adjustments"] = self.total_adjustments
        return payload

    @classmethod
    def from_session(cls, session: StockCountSession) -> "ReconciliationSummary":
        return cls(
            matched=session.matched_count or 0,
            transferred=session.transferred_count or 0,
            new_items=session.new_items_count or 0,
            marked_missing=session.marked_missing_count or 0,
            derecognized=session.derecognized_count or 0,
            deleted=session.deleted_count or 0,
        )


def _reference(session_id: int) -> str:
    prefix = current_app.config.get("STOCK_COUNT_REFERENCE_PREFIX", "stock-count")
    return f"{prefix}:{session_id}"


class _Ledger:
    """Per-session record of adjustments that already reached the store.

    Rows are committed together with the session's ``completed`` status, so a
    resubmission to a completed session is answered from the stored plan
    fingerprint before the ledger is read. The ledger is the per-step audit
    trail: it ties every applied adjustment to its scan or inventory record,
    and its unique key rejects a second writer applying the same step. Steps
    already in the ledger are skipped rather than re-run.
    """

    def __init__(self, session_id: int) -> None:
        self.session_id = session_id
        self._applied = {
            (entry.kind, entry.reference_id)
            for entry in AppliedAdjustment.query.filter_by(session_id=session_id).all()
        }

    def contains(self, kind: str, reference_id: int) -> bool:
        return (kind, reference_id) in self._applied

    def record(self, kind: str, reference_id: int) -> None:
        db.session.add(
            AppliedAdjustment(session_id=self.session_id, kind=kind, reference_id=reference_id)
        )
        self._applied.add((kind, reference_id))


def _load_scans(session: StockCountSession, plan: AdjustmentPlan) -> dict[int, ScannedItem]:
    wanted = {entry.scanned_item_id for entry in plan.transfers}
    wanted.update(entry.scanned_item_id for entry in plan.new_items)
    if not wanted:
        return {}

    scans = {
        scan.id: scan
        for scan in ScannedItem.query.filter(
            ScannedItem.session_id == session.id,
            ScannedItem.id.in_(wanted),
        ).all()
    }
    for scanned_item_id in sorted(wanted - set(scans)):
        raise StaleAdjustmentError(
            f"Scanned item {scanned_item_id} does not belong to stock count {session.id}.",
            scanned_item_id=scanned_item_id,
        )
    return scans


def _check_plan_conflicts(plan: AdjustmentPlan) -> None:
    transfer_ids = [entry.scanned_item_id for entry in plan.transfers]
    new_item_ids = [entry.scanned_item_id for entry in plan.new_items]
    seen: set[int] = set()
    for scanned_item_id in transfer_ids + new_item_ids:
        if scanned_item_id in seen:
            raise ReconciliationError(
                f"Scanned item {scanned_item_id} has more than one decision in the plan.",
                scanned_item_id=scanned_item_id,
            )
        seen.add(scanned_item_id)

    missing_ids = [entry.inventory_item_id for entry in plan.missing]
    for inventory_item_id in set(missing_ids) & set(plan.delete_investigated):
        raise ReconciliationError(
            f"Inventory item {inventory_item_id} is both dispositioned and deleted.",
            inventory_item_id=inventory_item_id,
        )
    if len(set(missing_ids)) != len(missing_ids):
        duplicate = next(value for value in missing_ids if missing_ids.count(value) > 1)
        raise ReconciliationError(
            f"Inventory item {duplicate} has more than one missing decision.",
            inventory_item_id=duplicate,
        )


def _apply_adjustments(
    session: StockCountSession,
    plan: AdjustmentPlan,
    scans: dict[int, ScannedItem],
    ledger: _Ledger,
    *,
    person: str | None,
) -> dict[str, int]:
    reference = _reference(session.id)
    counts = {
        "transferred": 0,
        "new_items": 0,
        "marked_missing": 0,
        "derecognized": 0,
        "deleted": 0,
    }

    for transfer in plan.transfers:
        if ledger.contains(KIND_TRANSFER, transfer.scanned_item_id):
            continue
        scan = scans[transfer.scanned_item_id]
        identity = identity_of(scan)
        quantity = 1 if identity.serial_number else (transfer.quantity or scan.quantity)
        inventory_store.transfer_stock(
            identity,
            transfer.from_location,
            transfer.to_location,
            quantity,
            person=person,
            reference=reference,
            scanned_item_id=scan.id,
        )
        ledger.record(KIND_TRANSFER, scan.id)
        counts["transferred"] += 1
        logger.info(
            "Stock count %s: transferred %s x product %s from %s to %s (scan %s)",
            session.id,
            quantity,
            identity.product_id,
            transfer.from_location,
            transfer.to_location,
            scan.id,
        )

    for new_item in plan.new_items:
        if ledger.contains(KIND_NEW_ITEM, new_item.scanned_item_id):
            continue
        scan = scans[new_item.scanned_item_id]
        identity = identity_of(scan)
        inventory_store.receive_stock(
            identity,
            new_item.location,
            1 if identity.serial_number else new_item.quantity,
            expiration_date=scan.expiration_date,
            person=person,
            reference=reference,
            scanned_item_id=scan.id,
        )
        ledger.record(KIND_NEW_ITEM, scan.id)
        counts["new_items"] += 1
        logger.info(
            "Stock count %s: registered new stock for product %s at %s (scan %s)",
            session.id,
            identity.product_id,
            new_item.location,
            scan.id,
        )

    for decision in plan.missing:
        if ledger.contains(KIND_MISSING, decision.inventory_item_id):
            continue
        item = inventory_store.get_record_for_update(
            decision.inventory_item_id, adjustment=KIND_MISSING
        )
        if decision.action == MARK_MISSING:
            inventory_store.flag_missing(item, person=person, reference=reference)
            counts["marked_missing"] += 1
        elif decision.action == DERECOGNIZED:
            inventory_store.remove_record(
                item,
                InventoryMovement.COUNT_DERECOGNIZED,
                quantity=decision.quantity,
                person=person,
                reference=reference,
            )
            counts["derecognized"] += 1
        ledger.record(KIND_MISSING, decision.inventory_item_id)
        logger.info(
            "Stock count %s: inventory item %s %s",
            session.id,
            decision.inventory_item_id,
            decision.action,
        )

    for inventory_item_id in plan.delete_investigated:
        if ledger.contains(KIND_DELETE_INVESTIGATED, inventory_item_id):
            continue
        item = inventory_store.get_record_for_update(
            inventory_item_id, adjustment=KIND_DELETE_INVESTIGATED
        )
        inventory_store.remove_record(
            item,
            InventoryMovement.COUNT_DELETED,
            person=person,
            reference=reference,
        )
        ledger.record(KIND_DELETE_INVESTIGATED, inventory_item_id)
        counts["deleted"] += 1
        logger.info(
            "Stock count %s: deleted investigated inventory item %s",
            session.id,
            inventory_item_id,
        )

    return counts


def apply_plan(
    session_id: int,
    plan: AdjustmentPlan,
    *,
    matched: int = 0,
    person: str | None = None,
    fingerprint: str | None = None,
) -> ReconciliationSummary:
    """Apply ``plan`` to inventory as one unit and complete the session.

    Transfers run first, then new items, missing dispositions and finally
    investigated deletions. Any rejected adjustment rolls the whole batch
    back and re-raises with the offending identifiers. Every applied step is
    written to the :class:`AppliedAdjustment` ledger, and resubmitting the
    plan of a completed session returns its stored summary, so retries never
    double-apply. ``fingerprint`` identifies the plan as the operator
    submitted it when ``plan`` was normalised before being passed in.
    """

    session = db.session.get(StockCountSession, session_id)
    if session is None:
        raise SessionStateError(f"Stock count {session_id} does not exist.")

    fingerprint = fingerprint or plan.fingerprint()
    if session.status == SessionStatus.COMPLETED:
        if session.plan_fingerprint == fingerprint:
            logger.info("Stock count %s already applied; returning stored summary", session.id)
            return ReconciliationSummary.from_session(session)
        raise SessionStateError(
            f"Stock count {session.id} was already completed with a different plan."
        )
    if session.status != SessionStatus.RECONCILING:
        raise SessionStateError(
            f"Stock count {session.id} must be reconciling to apply adjustments "
            f"(currently {session.status})."
        )

    _check_plan_conflicts(plan)
    person = person or session.person
    if plan.is_empty:
        logger.info("Stock count %s: every discrepancy resolved without adjustments", session.id)

    try:
        with db.session.begin_nested():
            scans = _load_scans(session, plan)
            ledger = _Ledger(session.id)
            counts = _apply_adjustments(session, plan, scans, ledger, person=person)

            summary = ReconciliationSummary(matched=matched, **counts)
            session.status = SessionStatus.COMPLETED
            session.completed_at = datetime.utcnow()
            session.plan_fingerprint = fingerprint
            session.matched_count = summary.matched
            session.transferred_count = summary.transferred
            session.new_items_count = summary.new_items
            session.marked_missing_count = summary.marked_missing
            session.derecognized_count = summary.derecognized
            session.deleted_count = summary.deleted
        db.session.commit()
    except ReconciliationError as exc:
        db.session.rollback()
        logger.warning(
            "Stock count %s: %s rejected (scan=%s, inventory=%s): %s",
            session_id,
            exc.adjustment or "adjustment",
            exc.scanned_item_id,
            exc.inventory_item_id,
            exc,
        )
        raise

    logger.info("Stock count %s completed: %s", session_id, summary.to_dict())
    return summary
