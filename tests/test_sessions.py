import os
import sys
from datetime import date

import pytest

sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from medstock import create_app
from medstock.extensions import db
from medstock.models import InventoryItem, Product, ScannedItem, SessionStatus, TrackingMode
from medstock.stock_count.exceptions import ScanError, SessionStateError
from medstock.stock_count.intake import find_product_by_code, record_scan
from medstock.stock_count.sessions import (
    begin_reconciliation,
    cancel_session,
    get_active_session,
    load_discrepancies,
    remove_scanned_item,
    reopen_scanning,
    start_session,
)


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


@pytest.fixture
def product(app):
    product = Product(
        model_number="5076-52",
        name="CapSureFix Novus lead",
        category="Lead/Electrode",
        gtin="05012345678903",
    )
    db.session.add(product)
    db.session.commit()
    return product


def test_only_one_active_session_per_count_type(app):
    car = start_session("car")
    total = start_session("total")

    with pytest.raises(SessionStateError):
        start_session("car")

    assert get_active_session("car").id == car.id
    assert get_active_session("total").id == total.id

    cancel_session(car)
    assert car.status == SessionStatus.CANCELLED
    assert get_active_session("car") is None
    assert start_session("car").id != car.id


def test_reconciliation_state_transitions(app):
    session = start_session("car")

    begin_reconciliation(session)
    assert session.status == SessionStatus.RECONCILING
    reopen_scanning(session)
    assert session.status == SessionStatus.IN_PROGRESS

    cancel_session(session)
    with pytest.raises(SessionStateError):
        begin_reconciliation(session)


def test_record_gs1_scan_with_serial(app, product):
    session = start_session("total")

    item = record_scan(session, "]d2010501234567890317270615" + "21PJN123456", "home")

    assert item.product_id == product.id
    assert item.serial_number == "PJN123456"
    assert item.expiration_date == date(2027, 6, 15)
    assert item.tracking_mode == TrackingMode.SERIAL
    assert item.quantity == 1


def test_record_gs1_scan_with_lot_and_quantity(app, product):
    session = start_session("car")

    item = record_scan(session, "01050123456789031725123110LOTAB12", "car", quantity=3)

    assert item.lot_number == "LOTAB12"
    assert item.tracking_mode == TrackingMode.LOT
    assert item.quantity == 3


def test_manual_entry_resolves_model_number_or_gtin(app, product):
    session = start_session("car")

    by_model = record_scan(session, "5076-52", "car")
    by_ean = record_scan(session, "5012345678903", "car")

    assert by_model.product_id == product.id
    assert by_model.serial_number is None and by_model.lot_number is None
    assert by_model.tracking_mode == TrackingMode.NONE
    assert by_ean.product_id == product.id
    assert find_product_by_code("unknown") is None


def test_scan_rejections(app, product):
    session = start_session("car")

    with pytest.raises(ScanError):
        record_scan(session, "0105012345678903" + "21SN1", "car", quantity=2)
    with pytest.raises(ScanError):
        record_scan(session, "0100000000000017" + "21SN1", "car")
    with pytest.raises(ScanError):
        record_scan(session, "5076-52", "home")
    with pytest.raises(ScanError):
        record_scan(session, "5076-52", "garage")

    begin_reconciliation(session)
    with pytest.raises(ScanError):
        record_scan(session, "5076-52", "car")

    assert ScannedItem.query.count() == 0


def test_remove_scanned_item_only_while_scanning(app, product):
    session = start_session("car")
    item = record_scan(session, "5076-52", "car")
    second = record_scan(session, "5076-52", "car")

    remove_scanned_item(session, item.id)
    assert [scan.id for scan in session.scanned_items] == [second.id]

    begin_reconciliation(session)
    with pytest.raises(SessionStateError):
        remove_scanned_item(session, second.id)


def test_load_discrepancies_reads_session_scans(app, product):
    db.session.add(
        InventoryItem(
            product_id=product.id,
            location="car",
            quantity=1,
            tracking_mode=TrackingMode.SERIAL,
            serial_number="SN-1",
        )
    )
    db.session.add(
        InventoryItem(
            product_id=product.id,
            location="car",
            quantity=1,
            tracking_mode=TrackingMode.SERIAL,
            serial_number="SN-2",
        )
    )
    db.session.commit()

    session = start_session("car")
    record_scan(session, "0105012345678903" + "21SN-1", "car")
    record_scan(session, "0105012345678903" + "21SN-3", "car")

    discrepancies = load_discrepancies(session)

    assert len(discrepancies.matched) == 1
    assert [entry.scanned_item.serial_number for entry in discrepancies.found] == ["SN-3"]
    assert [entry.inventory_item.serial_number for entry in discrepancies.missing] == ["SN-2"]
