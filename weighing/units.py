"""Weight unit normalisation for scale telemetry.

Scales on the floor report in whatever format their firmware was flashed with:
a bare number, a small JSON document, or a line of text such as
``"Weight: 1.2 KG"``. Everything is converted to grams here.

Parsing order (first match wins):

1. the whole input is a number: kilograms
2. a JSON object with a ``weight`` field: that value in ``unit`` (kilograms if absent)
3. a number followed by a unit token (kg, kilogram(s), g, gram(s), lb(s), pound(s))
4. any number without a recognised unit: kilograms
5. otherwise the reading is rejected

Numbers may carry an exponent (``1e3``) or a leading dot (``.5``). Results are
rounded to five decimals and must be positive and fit a ``Numeric(18, 5)``
column.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from decimal import Decimal, DecimalException, InvalidOperation
from typing import Any, Mapping

from shopfloor.core.errors import TransientIngestionError

LOGGER = logging.getLogger(__name__)

KILOGRAM = "kilogram"
GRAM = "gram"
POUND = "pound"

GRAMS_PER_UNIT: dict[str, Decimal] = {
    KILOGRAM: Decimal("1000"),
    GRAM: Decimal("1"),
    POUND: Decimal("453.592"),
}

UNIT_SYNONYMS: dict[str, str] = {
    "kg": KILOGRAM,
    "kgs": KILOGRAM,
    "kilogram": KILOGRAM,
    "kilograms": KILOGRAM,
    "g": GRAM,
    "gr": GRAM,
    "gram": GRAM,
    "grams": GRAM,
    "lb": POUND,
    "lbs": POUND,
    "pound": POUND,
    "pounds": POUND,
}

PRECISION = Decimal("0.00001")
# Largest value a Numeric(18, 5) gram column holds.
MAX_GRAMS = Decimal("9999999999999.99999")

_NUMBER = r"[-+]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][-+]?\d+)?"
_NUMERIC_PATTERN = re.compile(rf"^\s*{_NUMBER}\s*$")
_NUMBER_WITH_UNIT_PATTERN = re.compile(
    rf"({_NUMBER})\s*(kilograms?|kgs?|grams?|gr|g|pounds?|lbs?)\b",
    re.IGNORECASE,
)
_BARE_NUMBER_PATTERN = re.compile(rf"({_NUMBER})\s*([A-Za-z]+)?")


class InvalidWeightError(TransientIngestionError):
    """Raised when a raw reading cannot be turned into a positive gram value."""


@dataclass(frozen=True)
class NormalizedReading:
    grams: Decimal
    value: Decimal
    unit: str


def canonical_unit(token: str | None) -> str:
    """Map a unit token to kilogram/gram/pound. Unknown or missing tokens mean kilograms."""
    if token is None or not str(token).strip():
        return KILOGRAM
    unit = UNIT_SYNONYMS.get(str(token).strip().lower())
    if unit is None:
        LOGGER.warning("Unknown unit '%s', assuming kilograms", token)
        return KILOGRAM
    return unit


def to_grams(value: Decimal | float | int | str, unit: str) -> Decimal:
    try:
        amount = _decimal(value)
    except InvalidOperation as exc:
        raise InvalidWeightError(f"weight is not a number: {value!r}") from exc
    return _grams(amount, canonical_unit(unit), value)


def parse_reading(raw: Any) -> NormalizedReading:
    """Decode a raw scale message into grams.

    Raises:
        InvalidWeightError: unparseable input or a non-positive weight.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise InvalidWeightError("payload is not valid UTF-8") from exc

    if isinstance(raw, bool) or raw is None:
        raise InvalidWeightError(f"unparseable weight reading: {raw!r}")

    if isinstance(raw, (int, float, Decimal)):
        return _build(raw, KILOGRAM, raw)

    if isinstance(raw, Mapping):
        reading = _from_record(raw)
        if reading is None:
            raise InvalidWeightError("structured reading has no weight field", raw=dict(raw))
        return reading

    text = str(raw)

    if _NUMERIC_PATTERN.match(text):
        return _build(text.strip(), KILOGRAM, raw)

    record = _decode_record(text)
    if record is not None:
        reading = _from_record(record)
        if reading is not None:
            return reading

    match = _NUMBER_WITH_UNIT_PATTERN.search(text)
    if match:
        return _build(match.group(1), canonical_unit(match.group(2)), raw)

    match = _BARE_NUMBER_PATTERN.search(text)
    if match:
        if match.group(2):
            LOGGER.warning("Unknown unit '%s' in %r, assuming kilograms", match.group(2), text)
        return _build(match.group(1), KILOGRAM, raw)

    raise InvalidWeightError(f"unparseable weight reading: {text[:64]!r}")


def normalize(raw: Any) -> Decimal:
    """Return the reading in grams (five decimal places)."""
    return parse_reading(raw).grams


def _decode_record(text: str) -> Mapping | None:
    try:
        data = json.loads(text)
    except ValueError:
        return None
    return data if isinstance(data, Mapping) else None


def _from_record(record: Mapping) -> NormalizedReading | None:
    if "weight" not in record or record["weight"] is None:
        return None
    return _build(record["weight"], canonical_unit(record.get("unit")), record)


def _build(value: Any, unit: str, raw: Any) -> NormalizedReading:
    try:
        amount = _decimal(value)
    except InvalidOperation as exc:
        raise InvalidWeightError(f"weight is not a number: {value!r}") from exc
    grams = _grams(amount, unit, raw)
    if grams <= 0:
        raise InvalidWeightError(f"weight must be positive, got {grams} g", raw=str(raw)[:64])
    return NormalizedReading(grams=grams, value=amount, unit=unit)


def _grams(amount: Decimal, unit: str, raw: Any) -> Decimal:
    try:
        grams = (amount * GRAMS_PER_UNIT[unit]).quantize(PRECISION)
    except DecimalException as exc:
        raise InvalidWeightError("weight out of range", raw=str(raw)[:64]) from exc
    if abs(grams) > MAX_GRAMS:
        raise InvalidWeightError(f"weight out of range, at most {MAX_GRAMS} g", raw=str(raw)[:64])
    return grams


def _decimal(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise InvalidOperation(value)
    if isinstance(value, Decimal):
        result = value
    else:
        result = Decimal(str(value).strip())
    if not result.is_finite():
        raise InvalidOperation(value)
    return result
