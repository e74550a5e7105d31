"""JSON API for stock counts and their reconciliation."""

from __future__ import annotations

from flask import Blueprint, abort, jsonify, request
from werkzeug.exceptions import HTTPException

from medstock.extensions import db
from medstock.models import CountType, ScannedItem, SessionStatus

from .applier import ReconciliationSummary, apply_plan
from .exceptions import SessionStateError, StockCountError
from .forms import parse_decision, parse_plan, parse_scan_payload, parse_session_payload
from .intake import record_scan
from .resolver import DERECOGNIZED, MARK_MISSING, AdjustmentResolver
from .sessions import (
    begin_reconciliation,
    cancel_session,
    get_active_session,
    get_session,
    load_discrepancies,
    remove_scanned_item,
    reopen_scanning,
    start_session,
)

bp = Blueprint("stock_count", __name__, url_prefix="/api/stock-count")


@bp.errorhandler(StockCountError)
def handle_stock_count_error(error: StockCountError):
    db.session.rollback()
    return jsonify(error.to_dict()), error.status_code


@bp.errorhandler(HTTPException)
def handle_http_error(error: HTTPException):
    return jsonify({"error": error.description}), error.code


def _validation_error(errors: list[str]):
    return jsonify({"error": errors[0], "errors": errors}), 400


def _session_or_404(session_id: int):
    session = get_session(session_id)
    if session is None:
        abort(404, description=f"Stock count {session_id} not found.")
    return session


def _session_payload(session) -> dict[str, object]:
    payload = session.to_dict()
    payload["item_count"] = len(session.scanned_items)
    return payload


@bp.post("/sessions")
def create_session():
    count_type, person, errors = parse_session_payload(request.get_json(silent=True))
    if errors:
        return _validation_error(errors)
    session = start_session(count_type, person=person)
    return jsonify(_session_payload(session)), 201


@bp.get("/sessions/active")
def active_session():
    count_type = (request.args.get("count_type") or "").strip().lower() or None
    if count_type is not None and count_type not in CountType.ALL_TYPES:
        return _validation_error(
            [f"Count type must be one of: {', '.join(CountType.ALL_TYPES)}."]
        )
    session = get_active_session(count_type)
    if session is None:
        return jsonify({"session": None})
    return jsonify({"session": _session_payload(session)})


@bp.get("/sessions/<int:session_id>")
def session_detail(session_id: int):
    session = _session_or_404(session_id)
    payload = _session_payload(session)
    if session.plan_fingerprint:
        payload["summary"] = ReconciliationSummary.from_session(session).to_dict()
    return jsonify(payload)


@bp.post("/sessions/<int:session_id>/items")
def add_item(session_id: int):
    session = _session_or_404(session_id)
    payload, errors = parse_scan_payload(request.get_json(silent=True))
    if errors:
        return _validation_error(errors)
    item = record_scan(session, payload.barcode, payload.scanned_location, payload.quantity)
    return jsonify(item.to_dict()), 201


@bp.get("/sessions/<int:session_id>/items")
def list_items(session_id: int):
    session = _session_or_404(session_id)
    return jsonify({"items": [item.to_dict() for item in session.scanned_items]})


@bp.delete("/sessions/<int:session_id>/items/<int:item_id>")
def delete_item(session_id: int, item_id: int):
    session = _session_or_404(session_id)
    if ScannedItem.query.filter_by(id=item_id, session_id=session.id).first() is None:
        abort(404, description=f"Scanned item {item_id} not found.")
    remove_scanned_item(session, item_id)
    return jsonify({"deleted": item_id})


@bp.post("/sessions/<int:session_id>/reconcile")
def reconcile(session_id: int):
    session = _session_or_404(session_id)
    begin_reconciliation(session)
    return jsonify(_session_payload(session))


@bp.post("/sessions/<int:session_id>/reopen")
def reopen(session_id: int):
    session = _session_or_404(session_id)
    reopen_scanning(session)
    return jsonify(_session_payload(session))


@bp.get("/sessions/<int:session_id>/discrepancies")
def list_discrepancies(session_id: int):
    session = _session_or_404(session_id)
    return jsonify(load_discrepancies(session).to_dict())


def _apply_decision(resolver: AdjustmentResolver, decision) -> None:
    action = decision.action
    if action == "transfer":
        resolver.transfer(decision.scanned_item_id, decision.quantity)
    elif action == "add_new":
        resolver.add_new(decision.scanned_item_id, decision.quantity)
    elif action == "clear_found":
        resolver.clear_found_decision(decision.scanned_item_id)
    elif action in (MARK_MISSING, DERECOGNIZED):
        resolver.mark_missing(decision.inventory_item_id, action)
    elif action == "clear_missing":
        resolver.clear_missing_decision(decision.inventory_item_id)
    elif action == "delete_investigated":
        resolver.delete_investigated(decision.inventory_item_id)


@bp.post("/sessions/<int:session_id>/plan")
def update_plan(session_id: int):
    """Validate one more operator decision against the current plan.

    The plan lives with the client; every request replays it against freshly
    classified discrepancies so stale decisions surface immediately.
    """

    session = _session_or_404(session_id)
    if session.status != SessionStatus.RECONCILING:
        raise SessionStateError(
            f"Stock count {session.id} is {session.status}; decisions are closed."
        )

    data = request.get_json(silent=True)
    plan, errors = parse_plan(data)
    if errors:
        return _validation_error(errors)
    decision, errors = parse_decision(data)
    if errors:
        return _validation_error(errors)

    resolver = AdjustmentResolver(load_discrepancies(session), plan)
    _apply_decision(resolver, decision)
    return jsonify(resolver.worklist())


@bp.post("/sessions/<int:session_id>/apply")
def apply(session_id: int):
    session = _session_or_404(session_id)
    submitted, errors = parse_plan(request.get_json(silent=True))
    if errors:
        return _validation_error(errors)

    if session.status != SessionStatus.RECONCILING:
        # Completed sessions answer resubmissions with their stored summary.
        summary = apply_plan(session.id, submitted)
        return jsonify({"session": _session_payload(session), "summary": summary.to_dict()})

    discrepancies = load_discrepancies(session)
    resolver = AdjustmentResolver(discrepancies, submitted)
    summary = apply_plan(
        session.id,
        resolver.submission_plan(),
        matched=len(discrepancies.matched),
        person=session.person,
        fingerprint=submitted.fingerprint(),
    )
    session = get_session(session_id)
    return jsonify({"session": _session_payload(session), "summary": summary.to_dict()})


@bp.post("/sessions/<int:session_id>/cancel")
def cancel(session_id: int):
    session = _session_or_404(session_id)
    cancel_session(session)
    return jsonify(_session_payload(session))
