from __future__ import annotations

from decimal import Decimal
from typing import Any, Iterable

from .errors import ValidationError, ConflictError  # noqa: F401  (re-exported for routes)
from .money import to_money


# Maximum single-line amount: 9,999,999.99 (fits Numeric(10, 2))
MAX_AMOUNT = Decimal("9999999.99")


def require_fields(payload: dict, *names: str) -> None:
    """Raise ValidationError naming every missing/blank field at once."""
    missing = [n for n in names if payload.get(n) in (None, "", [])]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


def parse_int(value: Any, field: str, *, minimum: int | None = None) -> int:
    """
    Strict integer coercion for JSON input.

    Rejects bools, floats with a fractional part, and scientific notation strings.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, float):
        if not value.is_integer():
            raise ValidationError(f"{field} must be an integer, not a decimal")
        result = int(value)
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped or "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{field} must be a plain integer")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    else:
        raise ValidationError(f"{field} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be >= {minimum}")
    return result


def parse_money(value: Any, field: str, *, allow_negative: bool = False) -> Decimal:
    try:
        amount = to_money(value)
    except ValidationError:
        raise ValidationError(f"{field} must be a decimal amount")
    if not allow_negative and amount < 0:
        raise ValidationError(f"{field} cannot be negative")
    if abs(amount) > MAX_AMOUNT:
        raise ValidationError(f"{field} exceeds maximum amount")
    return amount


def parse_choice(value: Any, field: str, choices: Iterable[str]) -> str:
    choices = tuple(choices)
    if value not in choices:
        raise ValidationError(f"{field} must be one of: {', '.join(choices)}")
    return value


def parse_email(value: Any, field: str = "email") -> str:
    if not isinstance(value, str) or "@" not in value or not value.strip():
        raise ValidationError(f"Invalid {field} address")
    return value.strip().lower()


def parse_id_list(value: Any, field: str) -> list[int]:
    if not isinstance(value, list) or not value:
        raise ValidationError(f"{field} must be a non-empty list")
    return [parse_int(v, field, minimum=1) for v in value]
