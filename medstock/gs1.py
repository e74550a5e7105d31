"""Utilities for decoding GS1 Application Identifier barcodes.

Medical device packaging carries GS1-128 / GS1 DataMatrix symbols built from
Application Identifiers (AIs). The stock workflows only rely on four of them:

* ``01`` GTIN, 14 digits
* ``17`` expiration date, ``YYMMDD``
* ``10`` lot / batch number, variable length
* ``21`` serial number, variable length

Decoding is purely syntactic and tolerant: a field whose content cannot be
interpreted is left out of the result instead of aborting the whole decode.
Strings that are not GS1-framed at all (plain EAN-13 / UPC-A reads, manual
model numbers) are rejected up front by :func:`is_gs1_barcode`.
"""

from __future__ import annotations

import calendar
import re
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Iterator, List


class MalformedBarcodeError(ValueError):
    """Raised by strict decoding when a barcode cannot be fully interpreted."""


GROUP_SEPARATOR = "\x1d"

# AIM symbology identifiers that scanners may prepend to the payload.
_SYMBOLOGY_PREFIXES = ("]C1", "]d2", "]Q3", "]e0", "]J1")

_FIXED_LENGTH_AIS = {
    "01": 14,  # GTIN
    "17": 6,  # Expiration date (YYMMDD)
}

_FIELD_NAMES = {
    "01": "gtin",
    "17": "expiration_date",
    "10": "lot_number",
    "21": "serial_number",
}

RECOGNIZED_AIS = tuple(_FIELD_NAMES)

# Raw GS1 strings shorter than an AI(01) element are treated as plain barcodes.
MIN_GS1_LENGTH = 16

# Two digit years below the pivot belong to the 2000s.
CENTURY_PIVOT = 50

_PARENTHESIZED_ELEMENT = re.compile(r"\((\d{2,4})\)\s*([^(]*)")


@dataclass
class GS1Data:
    raw: str
    gtin: str | None = None
    expiration_date: str | None = None
    lot_number: str | None = None
    serial_number: str | None = None
    issues: List[str] = field(default_factory=list)

    @property
    def expiration(self) -> date | None:
        if not self.expiration_date:
            return None
        return date.fromisoformat(self.expiration_date)

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


def _strip_framing(raw: str) -> tuple[str, bool]:
    text = raw.strip()
    framed = False
    for prefix in _SYMBOLOGY_PREFIXES:
        if text.startswith(prefix):
            text = text[len(prefix) :]
            framed = True
            break
    if text.startswith(GROUP_SEPARATOR):
        text = text.lstrip(GROUP_SEPARATOR)
        framed = True
    return text, framed


def is_gs1_barcode(raw: str | None) -> bool:
    """Return ``True`` when ``raw`` looks like an AI framed GS1 payload."""

    if not raw:
        return False

    text, framed = _strip_framing(raw)
    if not text:
        return False

    if text.startswith("("):
        match = _PARENTHESIZED_ELEMENT.match(text)
        return bool(match and match.group(1) in RECOGNIZED_AIS)

    if not framed and len(text) < MIN_GS1_LENGTH:
        return False

    ai = text[:2]
    if ai not in RECOGNIZED_AIS:
        return False
    if ai == "01":
        return text[2:16].isdigit() and len(text) >= MIN_GS1_LENGTH
    return True


def parse_gs1_date(value: str) -> str | None:
    """Convert a GS1 ``YYMMDD`` value to ``YYYY-MM-DD``.

    Day ``00`` means the last day of the month. Invalid dates return ``None``.
    """

    if len(value) != 6 or not value.isdigit():
        return None

    yy, month, day = int(value[:2]), int(value[2:4]), int(value[4:6])
    year = 2000 + yy if yy < CENTURY_PIVOT else 1900 + yy
    if month < 1 or month > 12:
        return None

    last_day = calendar.monthrange(year, month)[1]
    if day == 0:
        day = last_day
    if day > last_day:
        return None

    return date(year, month, day).isoformat()


def _fixed_ai_starts_at(text: str, index: int) -> bool:
    ai = text[index : index + 2]
    length = _FIXED_LENGTH_AIS.get(ai)
    if length is None:
        return False

    payload = text[index + 2 : index + 2 + length]
    if len(payload) != length or not payload.isdigit():
        return False
    if ai == "17":
        return 1 <= int(payload[2:4]) <= 12
    return True


def _variable_field_end(text: str, start: int) -> int:
    index = start
    while index < len(text):
        if text[index] == GROUP_SEPARATOR:
            return index
        if _fixed_ai_starts_at(text, index):
            return index
        index += 1
    return index


def _iter_raw_elements(text: str) -> Iterator[tuple[str, str, bool]]:
    """Yield ``(ai, value, complete)`` tuples from an unbracketed payload."""

    position = 0
    while position < len(text):
        if text[position] == GROUP_SEPARATOR:
            position += 1
            continue

        if position + 2 > len(text):
            yield text[position:], "", False
            return

        ai = text[position : position + 2]
        start = position + 2
        length = _FIXED_LENGTH_AIS.get(ai)
        if length is not None:
            end = start + length
            if end > len(text):
                yield ai, text[start:], False
                return
            yield ai, text[start:end], True
            position = end
            continue

        end = _variable_field_end(text, start)
        yield ai, text[start:end], True
        position = end


def _iter_parenthesized_elements(text: str) -> Iterator[tuple[str, str, bool]]:
    for match in _PARENTHESIZED_ELEMENT.finditer(text):
        ai, value = match.group(1), match.group(2).strip()
        length = _FIXED_LENGTH_AIS.get(ai)
        yield ai, value, length is None or len(value) == length


def _apply_element(result: GS1Data, ai: str, value: str, complete: bool) -> None:
    field_name = _FIELD_NAMES.get(ai)
    if field_name is None:
        return

    if not complete:
        result.issues.append(f"AI ({ai}) is truncated.")
        return

    if ai == "01":
        if not value.isdigit():
            result.issues.append(f"AI (01) value '{value}' is not numeric.")
            return
        result.gtin = value
        return

    if ai == "17":
        parsed = parse_gs1_date(value)
        if parsed is None:
            result.issues.append(f"AI (17) value '{value}' is not a valid date.")
            return
        result.expiration_date = parsed
        return

    if not value:
        result.issues.append(f"AI ({ai}) is empty.")
        return
    setattr(result, field_name, value)


def decode(raw: str, *, strict: bool = False) -> GS1Data:
    """Decode a GS1 barcode into its identity fields.

    Non GS1 input is not decoded and yields an empty :class:`GS1Data`. With
    ``strict`` the same situations, and any field that could not be parsed,
    raise :class:`MalformedBarcodeError` instead.
    """

    result = GS1Data(raw=raw)
    if not is_gs1_barcode(raw):
        if strict:
            raise MalformedBarcodeError("Barcode is not GS1 formatted.")
        return result

    text, _ = _strip_framing(raw)
    if text.startswith("("):
        elements = _iter_parenthesized_elements(text)
    else:
        elements = _iter_raw_elements(text)

    for ai, value, complete in elements:
        _apply_element(result, ai, value, complete)

    if strict and result.issues:
        raise MalformedBarcodeError("; ".join(result.issues))
    return result


def decode_or_none(raw: str | None) -> GS1Data | None:
    if not is_gs1_barcode(raw):
        return None
    return decode(raw)


def format_gs1_display(data: GS1Data) -> str:
    """Render decoded data in the human readable ``(AI)value`` notation."""

    parts: List[str] = []
    if data.gtin:
        parts.append(f"(01){data.gtin}")
    if data.expiration_date:
        expires = date.fromisoformat(data.expiration_date)
        parts.append(f"(17){expires:%y%m%d}")
    if data.serial_number:
        parts.append(f"(21){data.serial_number}")
    if data.lot_number:
        parts.append(f"(10){data.lot_number}")
    return " ".join(parts)
