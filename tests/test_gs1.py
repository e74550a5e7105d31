import os
import sys

import pytest

sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from medstock.gs1 import (
    GROUP_SEPARATOR,
    MalformedBarcodeError,
    decode,
    decode_or_none,
    format_gs1_display,
    is_gs1_barcode,
    parse_gs1_date,
)


def test_decode_gtin_expiry_and_lot():
    decoded = decode("01050123456789031725123110LOTAB12")

    assert decoded.gtin == "05012345678903"
    assert decoded.expiration_date == "2025-12-31"
    assert decoded.lot_number == "LOTAB12"
    assert decoded.serial_number is None
    assert decoded.issues == []


def test_lot_value_keeps_digits_that_follow_the_ai():
    # AI (10) is followed directly by its value; the "9" belongs to the lot.
    decoded = decode("010501234567890317251231109LOTAB12")

    assert decoded.gtin == "05012345678903"
    assert decoded.expiration_date == "2025-12-31"
    assert decoded.lot_number == "9LOTAB12"


def test_group_separator_ends_variable_field():
    decoded = decode(f"0105012345678903" f"21SN1234{GROUP_SEPARATOR}10LOT9")

    assert decoded.serial_number == "SN1234"
    assert decoded.lot_number == "LOT9"


def test_variable_field_ends_at_fixed_ai_without_separator():
    decoded = decode("010501234567890321ABC1231725063010L1")

    assert decoded.serial_number == "ABC123"
    assert decoded.expiration_date == "2025-06-30"
    assert decoded.lot_number == "L1"


def test_parenthesized_form_and_symbology_prefix():
    parenthesized = decode("(01)05012345678903(17)251231(10)LOTAB12(21)SN1")
    assert parenthesized.gtin == "05012345678903"
    assert parenthesized.expiration_date == "2025-12-31"
    assert parenthesized.lot_number == "LOTAB12"
    assert parenthesized.serial_number == "SN1"

    prefixed = decode("]d2010501234567890321XYZ")
    assert prefixed.gtin == "05012345678903"
    assert prefixed.serial_number == "XYZ"


def test_display_form_decodes_to_same_fields():
    original = decode("01050123456789031725123110LOTAB12")
    display = format_gs1_display(original)

    assert display == "(01)05012345678903 (17)251231 (10)LOTAB12"
    again = decode(display)
    assert (again.gtin, again.expiration_date, again.lot_number) == (
        original.gtin,
        original.expiration_date,
        original.lot_number,
    )


def test_parse_gs1_date_rules():
    assert parse_gs1_date("250200") == "2025-02-28"
    assert parse_gs1_date("240200") == "2024-02-29"
    assert parse_gs1_date("491231") == "2049-12-31"
    assert parse_gs1_date("500101") == "1950-01-01"
    assert parse_gs1_date("251301") is None
    assert parse_gs1_date("250231") is None
    assert parse_gs1_date("25123") is None


def test_invalid_date_is_dropped_without_losing_other_fields():
    decoded = decode("(01)05012345678903(17)251340(10)LOT1")

    assert decoded.gtin == "05012345678903"
    assert decoded.expiration_date is None
    assert decoded.lot_number == "LOT1"
    assert decoded.issues


def test_truncated_fixed_field_is_reported():
    decoded = decode("0105012345678903172512")

    assert decoded.gtin == "05012345678903"
    assert decoded.expiration_date is None
    assert any("truncated" in issue for issue in decoded.issues)

    with pytest.raises(MalformedBarcodeError):
        decode("0105012345678903172512", strict=True)


def test_plain_barcodes_are_not_gs1():
    assert not is_gs1_barcode("5012345678900")
    assert not is_gs1_barcode("MODEL-XYZ-1234567")
    assert not is_gs1_barcode("")
    assert is_gs1_barcode("0105012345678903")
    assert is_gs1_barcode("(21)SN1")

    plain = decode("5012345678900")
    assert plain.gtin is None
    assert decode_or_none("5012345678900") is None

    with pytest.raises(MalformedBarcodeError):
        decode("5012345678900", strict=True)
