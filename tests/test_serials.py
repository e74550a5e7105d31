import os
import sys
from types import SimpleNamespace

import pytest

sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from medstock import create_app
from medstock.extensions import db
from medstock.models import InventoryItem, Product, TrackingMode
from medstock.services.serials import (
    MaterialEntry,
    group_by_serial,
    has_duplicate_serial,
    material_entry_from_scan,
    serial_in_inventory,
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
def client(app):
    return app.test_client()


@pytest.fixture
def stocked_serial(app):
    product = Product(model_number="ICD-1", name="ICD", gtin="05012345678903")
    db.session.add(product)
    db.session.commit()
    item = InventoryItem(
        product_id=product.id,
        location="car",
        quantity=1,
        tracking_mode=TrackingMode.SERIAL,
        serial_number="PJN100",
    )
    db.session.add(item)
    db.session.commit()
    return item


def test_has_duplicate_serial_excludes_edited_entry():
    entries = [
        MaterialEntry(kind="materials", entry_id="a", serial_number="SN-1"),
        MaterialEntry(kind="leads", entry_id="b", serial_number=" SN-2 "),
        MaterialEntry(kind="others", entry_id="c"),
    ]

    assert has_duplicate_serial(entries, "SN-2")
    assert not has_duplicate_serial(entries, "SN-2", exclude=("leads", "b"))
    assert not has_duplicate_serial(entries, "SN-3")
    assert not has_duplicate_serial(entries, "")


def test_group_by_serial_normalizes_and_skips_blank_serials():
    records = [
        SimpleNamespace(id=1, serial_number="SN-1"),
        SimpleNamespace(id=2, serial_number="SN-1 "),
        SimpleNamespace(id=3, serial_number="SN-2"),
        SimpleNamespace(id=4, serial_number=None),
    ]

    groups = group_by_serial(records)

    assert list(groups) == ["SN-1", "SN-2"]
    assert [record.id for record in groups["SN-1"]] == [1, 2]


def test_material_entry_from_scan_uses_decoded_serial():
    entry = material_entry_from_scan("leads", "row-1", "0105012345678903" + "21XYZ9")

    assert entry.key == ("leads", "row-1")
    assert entry.serial_number == "XYZ9"
    assert material_entry_from_scan("leads", "row-2", "5012345678900").serial_number is None


def test_serial_in_inventory(stocked_serial):
    assert serial_in_inventory("PJN100").id == stocked_serial.id
    assert serial_in_inventory("PJN100", exclude_id=stocked_serial.id) is None
    assert serial_in_inventory(None) is None


def test_check_serial_endpoint(client, stocked_serial):
    response = client.post(
        "/api/procedure-materials/check-serial",
        json={
            "entries": [
                {"kind": "leads", "entry_id": "1", "serial_number": "PJN100"},
                {"kind": "materials", "entry_id": "2", "serial_number": "OTHER"},
            ],
            "barcode": "0105012345678903" + "21PJN100",
            "exclude": {"kind": "leads", "entry_id": "1"},
        },
    )

    payload = response.get_json()
    assert response.status_code == 200
    assert payload["serial_number"] == "PJN100"
    assert payload["duplicate_in_form"] is False
    assert payload["in_inventory"] is True
    assert payload["inventory_item"]["location"] == "car"

    duplicate = client.post(
        "/api/procedure-materials/check-serial",
        json={
            "entries": [{"kind": "materials", "entry_id": "2", "serial_number": "OTHER"}],
            "serial_number": "OTHER",
        },
    ).get_json()
    assert duplicate["duplicate_in_form"] is True
    assert duplicate["in_inventory"] is False

    assert client.post(
        "/api/procedure-materials/check-serial", json={"entries": "nope", "serial_number": "X"}
    ).status_code == 400
