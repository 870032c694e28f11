from __future__ import annotations

from decimal import ROUND_HALF_EVEN, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

ZERO = Decimal("0")
ONE = Decimal("1")
CENT = Decimal("0.01")

# Inputs at or above 1e10 are rejected so every 2dp product fits the 28-digit context.
MAX_ADJUSTED_EXPONENT = 9


def to_decimal(value: Any, fallback: Decimal | None = ZERO) -> Decimal | None:
    """Coerce ints, strings and Decimals to a finite Decimal.

    Floats go through ``str`` so ``0.1`` becomes ``Decimal("0.1")`` instead of
    its binary expansion. Anything unparseable, non-finite or out of range
    yields ``fallback``.
    """
    if value is None or isinstance(value, bool):
        return fallback
    if isinstance(value, Decimal):
        parsed = value
    else:
        raw = str(value).strip()
        if not raw:
            return fallback
        try:
            parsed = Decimal(raw)
        except (InvalidOperation, ValueError):
            return fallback
    if not parsed.is_finite() or (parsed != ZERO and parsed.adjusted() > MAX_ADJUSTED_EXPONENT):
        return fallback
    return parsed


def is_out_of_range(value: Any) -> bool:
    """True for a finite number too large to carry as an amount."""
    if value is None or isinstance(value, bool):
        return False
    try:
        parsed = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return False
    return parsed.is_finite() and parsed != ZERO and parsed.adjusted() > MAX_ADJUSTED_EXPONENT


def to_int(value: Any, fallback: int = 0) -> int:
    if value is None or isinstance(value, bool):
        return fallback
    if isinstance(value, int):
        return value
    parsed = to_decimal(value, fallback=None)
    if parsed is None:
        return fallback
    return int(parsed.to_integral_value(rounding=ROUND_HALF_UP))


def round2(value: Decimal | int | str) -> Decimal:
    amount = value if isinstance(value, Decimal) else to_decimal(value)
    return amount.quantize(CENT, rounding=ROUND_HALF_EVEN)


def round_half_up(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_HALF_UP))


def decimal_string(value: Decimal | None) -> str:
    """Plain 2dp-rounded string without exponent or trailing zeros ("12.5", "10", "-4.25")."""
    if value is None:
        return "0"
    rounded = round2(value)
    if rounded == rounded.to_integral_value():
        return str(int(rounded))
    return format(rounded.normalize(), "f")


def money_string(value: Decimal) -> str:
    return f"{round2(value):.2f}"


def absolute(value: Decimal) -> Decimal:
    return -value if value < ZERO else value
