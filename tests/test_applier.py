import os
import sys

import pytest

sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from medstock import create_app
from medstock.extensions import db
from medstock.models import (
    AppliedAdjustment,
    InventoryItem,
    InventoryMovement,
    Product,
    ScannedItem,
    SessionStatus,
    StockCountSession,
    TrackingMode,
)
from medstock.stock_count.applier import apply_plan
from medstock.stock_count.exceptions import (
    DuplicateSerialError,
    InsufficientStockError,
    SessionStateError,
    StaleAdjustmentError,
)
from medstock.stock_count.resolver import (
    DERECOGNIZED,
    MARK_MISSING,
    AdjustmentPlan,
    AdjustmentResolver,
    MissingAdjustment,
    NewItemAdjustment,
    TransferAdjustment,
)
from medstock.stock_count.sessions import load_discrepancies


@pytest.fixture
def app():
    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "LOG_TO_FILE": False,
        }
    )
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


def _product(model_number="LEAD-1", gtin="05012345678903"):
    product = Product(model_number=model_number, name=f"Product {model_number}", gtin=gtin)
    db.session.add(product)
    db.session.commit()
    return product


def _inventory(product, location, quantity=1, serial=None, lot=None):
    item = InventoryItem(
        product_id=product.id,
        location=location,
        quantity=quantity,
        tracking_mode=TrackingMode.for_identity(serial, lot),
        serial_number=serial,
        lot_number=lot,
    )
    db.session.add(item)
    db.session.commit()
    return item


def _session(count_type="total", status=SessionStatus.RECONCILING):
    session = StockCountSession(count_type=count_type, status=status, person="rep")
    db.session.add(session)
    db.session.commit()
    return session


def _scan(session, product, location, quantity=1, serial=None, lot=None):
    item = ScannedItem(
        session_id=session.id,
        product_id=product.id,
        scanned_location=location,
        quantity=quantity,
        tracking_mode=TrackingMode.for_identity(serial, lot),
        serial_number=serial,
        lot_number=lot,
    )
    db.session.add(item)
    db.session.commit()
    return item


def _lot_found_at_home():
    product = _product()
    car_item = _inventory(product, "car", quantity=5, lot="L1")
    session = _session()
    scan = _scan(session, product, "home", quantity=5, lot="L1")
    return product, car_item, session, scan


def test_lot_moved_from_car_to_home(app):
    product, car_item, session, scan = _lot_found_at_home()
    car_item_id = car_item.id

    resolver = AdjustmentResolver(load_discrepancies(session))
    resolver.transfer(scan.id)
    assert resolver.visible_missing() == []

    summary = apply_plan(session.id, resolver.submission_plan(), person="rep")

    assert summary.transferred == 1
    assert summary.total_adjustments == 1
    assert InventoryItem.query.filter_by(location="car").count() == 0

    home_items = InventoryItem.query.filter_by(product_id=product.id, location="home").all()
    assert len(home_items) == 1
    assert home_items[0].id != car_item_id
    assert home_items[0].quantity == 5
    assert home_items[0].lot_number == "L1"
    assert home_items[0].tracking_mode == TrackingMode.LOT

    movements = InventoryMovement.query.order_by(InventoryMovement.id).all()
    assert [(movement.movement_type, movement.quantity) for movement in movements] == [
        (InventoryMovement.TRANSFER_OUT, -5),
        (InventoryMovement.TRANSFER_IN, 5),
    ]
    assert {movement.reference for movement in movements} == {f"stock-count:{session.id}"}

    stored = db.session.get(StockCountSession, session.id)
    assert stored.status == SessionStatus.COMPLETED
    assert stored.transferred_count == 1
    assert stored.completed_at is not None


def test_transfer_merges_into_existing_destination_lot(app):
    product, car_item, session, scan = _lot_found_at_home()
    home_item = _inventory(product, "home", quantity=2, lot="L1")
    home_item_id = home_item.id

    plan = AdjustmentPlan(
        transfers=[TransferAdjustment(scan.id, "car", "home", 3)]
    )
    apply_plan(session.id, plan)

    assert db.session.get(InventoryItem, home_item_id).quantity == 5
    assert db.session.get(InventoryItem, car_item.id).quantity == 2


def test_apply_twice_does_not_double_transfer(app):
    product, car_item, session, scan = _lot_found_at_home()
    resolver = AdjustmentResolver(load_discrepancies(session))
    resolver.transfer(scan.id)
    plan = resolver.submission_plan()

    first = apply_plan(session.id, plan)
    movement_count = InventoryMovement.query.count()
    second = apply_plan(session.id, plan)

    assert second == first
    assert InventoryMovement.query.count() == movement_count
    home_item = InventoryItem.query.filter_by(product_id=product.id, location="home").one()
    assert home_item.quantity == 5


def test_completed_session_rejects_a_different_plan(app):
    product, car_item, session, scan = _lot_found_at_home()
    apply_plan(session.id, AdjustmentPlan(transfers=[TransferAdjustment(scan.id, "car", "home", 5)]))

    with pytest.raises(SessionStateError):
        apply_plan(session.id, AdjustmentPlan(new_items=[NewItemAdjustment(scan.id, "home", 5)]))


def test_insufficient_stock_leaves_source_unchanged(app):
    product, car_item, session, scan = _lot_found_at_home()
    resolver = AdjustmentResolver(load_discrepancies(session))
    resolver.transfer(scan.id)
    plan = resolver.submission_plan()

    # Stock used elsewhere between planning and applying.
    car_item.quantity = 3
    db.session.commit()

    with pytest.raises(InsufficientStockError) as excinfo:
        apply_plan(session.id, plan)

    assert excinfo.value.scanned_item_id == scan.id
    assert "Available 3" in str(excinfo.value)
    assert db.session.get(InventoryItem, car_item.id).quantity == 3
    assert InventoryItem.query.filter_by(location="home").count() == 0
    assert InventoryMovement.query.count() == 0
    assert db.session.get(StockCountSession, session.id).status == SessionStatus.RECONCILING


def test_failed_adjustment_rolls_back_earlier_steps(app):
    product, car_item, session, scan = _lot_found_at_home()
    other = _product(model_number="LEAD-2", gtin="05012345678910")
    other_car = _inventory(other, "car", quantity=1, lot="L2")
    other_scan = _scan(session, other, "home", quantity=2, lot="L2")

    plan = AdjustmentPlan(
        transfers=[
            TransferAdjustment(scan.id, "car", "home", 5),
            TransferAdjustment(other_scan.id, "car", "home", 2),
        ]
    )
    with pytest.raises(InsufficientStockError) as excinfo:
        apply_plan(session.id, plan)

    assert excinfo.value.scanned_item_id == other_scan.id
    assert db.session.get(InventoryItem, car_item.id).quantity == 5
    assert db.session.get(InventoryItem, other_car.id).quantity == 1
    assert AppliedAdjustment.query.count() == 0


def test_ledger_skips_adjustments_already_applied(app):
    product, car_item, session, scan = _lot_found_at_home()
    db.session.add(AppliedAdjustment(session_id=session.id, kind="transfer", reference_id=scan.id))
    db.session.commit()

    summary = apply_plan(
        session.id, AdjustmentPlan(transfers=[TransferAdjustment(scan.id, "car", "home", 5)])
    )

    assert summary.transferred == 0
    assert db.session.get(InventoryItem, car_item.id).quantity == 5


def test_new_serial_conflicting_with_inventory_is_rejected(app):
    product = _product()
    session = _session(count_type="car")
    scan = _scan(session, product, "car", serial="SN-5")
    plan = AdjustmentPlan(new_items=[NewItemAdjustment(scan.id, "car", 1)])

    # Someone else registered the unit after the plan was built.
    _inventory(product, "home", serial="SN-5")

    with pytest.raises(DuplicateSerialError) as excinfo:
        apply_plan(session.id, plan)

    assert excinfo.value.scanned_item_id == scan.id
    assert InventoryItem.query.filter_by(serial_number="SN-5").count() == 1


def test_new_items_and_missing_dispositions(app):
    product = _product()
    flagged = _inventory(product, "car", serial="SN-1")
    written_off = _inventory(product, "car", quantity=4, lot="L7")
    investigated = _inventory(product, "car", serial="SN-2")
    session = _session(count_type="car")
    new_scan = _scan(session, product, "car", serial="SN-9")
    _scan(session, product, "car", quantity=1, lot="L7")

    resolver = AdjustmentResolver(load_discrepancies(session))
    resolver.add_new(new_scan.id)
    resolver.mark_missing(flagged.id, MARK_MISSING)
    resolver.mark_missing(written_off.id, DERECOGNIZED)
    resolver.mark_missing(investigated.id, MARK_MISSING)
    resolver.delete_investigated(investigated.id)

    summary = apply_plan(session.id, resolver.submission_plan(), matched=1)

    assert summary.to_dict() == {
        "matched": 1,
        "transferred": 0,
        "new_items": 1,
        "marked_missing": 1,
        "derecognized": 1,
        "deleted": 1,
        "total_adjustments": 4,
    }
    new_item = InventoryItem.query.filter_by(serial_number="SN-9").one()
    assert new_item.location == "car"
    assert new_item.tracking_mode == TrackingMode.SERIAL
    assert db.session.get(InventoryItem, flagged.id).missing_since is not None
    # Only the three uncounted units of the lot are written off.
    assert db.session.get(InventoryItem, written_off.id).quantity == 1
    assert db.session.get(InventoryItem, investigated.id) is None

    kinds = {
        movement.movement_type
        for movement in InventoryMovement.query.all()
    }
    assert kinds == {
        InventoryMovement.COUNT_NEW,
        InventoryMovement.COUNT_MISSING,
        InventoryMovement.COUNT_DERECOGNIZED,
        InventoryMovement.COUNT_DELETED,
    }


def test_vanished_record_is_stale(app):
    product = _product()
    item = _inventory(product, "car", serial="SN-1")
    session = _session(count_type="car")
    plan = AdjustmentPlan(missing=[MissingAdjustment(item.id, DERECOGNIZED)])

    db.session.delete(item)
    db.session.commit()

    with pytest.raises(StaleAdjustmentError) as excinfo:
        apply_plan(session.id, plan)
    assert excinfo.value.inventory_item_id == plan.missing[0].inventory_item_id


def test_scan_from_another_session_is_stale(app):
    product = _product()
    session = _session(count_type="car")
    other_session = _session(count_type="total", status=SessionStatus.IN_PROGRESS)
    foreign_scan = _scan(other_session, product, "car", serial="SN-1")

    with pytest.raises(StaleAdjustmentError) as excinfo:
        apply_plan(
            session.id,
            AdjustmentPlan(new_items=[NewItemAdjustment(foreign_scan.id, "car", 1)]),
        )
    assert excinfo.value.scanned_item_id == foreign_scan.id


def test_apply_requires_reconciling_session(app):
    session = _session(status=SessionStatus.IN_PROGRESS)

    with pytest.raises(SessionStateError):
        apply_plan(session.id, AdjustmentPlan())


def test_empty_plan_completes_session(app, caplog):
    session = _session(count_type="car")

    with caplog.at_level("INFO", logger="medstock.stock_count.applier"):
        summary = apply_plan(session.id, AdjustmentPlan(), matched=3)

    assert summary.total_adjustments == 0
    assert summary.matched == 3
    assert db.session.get(StockCountSession, session.id).status == SessionStatus.COMPLETED
    assert "without adjustments" in caplog.text
