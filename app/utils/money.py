"""Decimal money helpers shared by the ledger and settlement flows."""

from __future__ import annotations

from decimal import ROUND_CEILING, ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation

ZERO = Decimal("0")

# ISO 4217 minor units for currencies that differ from the default of 2.
_MINOR_UNITS = {
    "BHD": 3,
    "CLP": 0,
    "ISK": 0,
    "JOD": 3,
    "JPY": 0,
    "KRW": 0,
    "KWD": 3,
    "OMR": 3,
    "TND": 3,
    "VND": 0,
}


def minor_units(currency: str | None) -> int:
    """Return the number of decimal places used by ``currency``."""
    return _MINOR_UNITS.get((currency or "").upper(), 2)


def quantum(currency: str | None) -> Decimal:
    """Return the smallest representable amount for ``currency``."""
    return Decimal(1).scaleb(-minor_units(currency))


def to_decimal(value: object) -> Decimal:
    """Convert a PostgREST numeric (float, int or str) to Decimal."""
    if isinstance(value, Decimal):
        return value
    if value is None:
        return ZERO
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid amount: {value!r}") from exc


def quantize(amount: Decimal, currency: str | None, rounding: str = ROUND_HALF_UP) -> Decimal:
    """Round ``amount`` to the currency's minor unit."""
    return amount.quantize(quantum(currency), rounding=rounding)


def quantize_down(amount: Decimal, currency: str | None) -> Decimal:
    """Truncate ``amount`` to the currency's minor unit."""
    return quantize(amount, currency, rounding=ROUND_DOWN)


def ceil_to_whole(amount: Decimal) -> Decimal:
    """Return the next whole currency unit at or above ``amount``."""
    return amount.to_integral_value(rounding=ROUND_CEILING)


def has_sub_minor_precision(amount: Decimal, currency: str | None) -> bool:
    """Return True when ``amount`` carries more decimals than the currency allows."""
    return quantize(amount, currency) != amount


def to_db(amount: Decimal) -> str:
    """Serialize a Decimal for PostgREST numeric columns."""
    return format(amount, "f")
