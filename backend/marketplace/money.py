# Overview: Decimal helpers for 2-digit monetary amounts.

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from .errors import ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value) -> Decimal:
    """
    Normalize a number/string to a Decimal with 2 places (half-up).

    Floats go through str() so 0.1 stays 0.10 instead of 0.1000000000000000055.
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value.quantize(CENT, rounding=ROUND_HALF_UP)
    if isinstance(value, bool):
        raise ValidationError("amount must be a number")
    try:
        return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        raise ValidationError(f"invalid amount: {value!r}")


def cents_to_money(cents: int | None) -> Decimal:
    return (Decimal(int(cents or 0)) / 100).quantize(CENT, rounding=ROUND_HALF_UP)


def money_to_cents(amount) -> int:
    return int((to_money(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def money_str(amount) -> str:
    """Serialize for JSON responses ("35.00")."""
    return str(to_money(amount))
