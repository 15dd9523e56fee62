from __future__ import annotations

import math
from decimal import Decimal, ROUND_HALF_UP

from .errors import ValidationError


# Maximum amount: 9,999,999.99
# This prevents overflow issues and nonsensical prices
MAX_AMOUNT = 9_999_999.99

# Quantities below this are treated as zero (fractional kg/litre stock)
QTY_EPSILON = 0.0001


def round_currency(value: float) -> float:
    """Half-up rounding to cents, returned as float."""
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def round_cost(value: float) -> float:
    """Unit costs keep 4 decimals so weighted averages stay attributable."""
    return float(Decimal(str(value)).quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP))


def round_qty(value: float) -> float:
    rounded = round(value, 6)
    if abs(rounded) < QTY_EPSILON:
        return 0.0
    return rounded


def _coerce_number(field: str, value) -> float:
    if value is None:
        raise ValidationError(f"{field} is required")

    # bool is a subclass of int; reject it explicitly
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")

    if isinstance(value, (int, float, Decimal)):
        number = float(value)
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be a number")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain number (scientific notation not allowed)")
        try:
            number = float(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be a number")
    else:
        raise ValidationError(f"{field} must be a number")

    if math.isnan(number) or math.isinf(number):
        raise ValidationError(f"{field} must be a finite number")
    return number


def parse_amount(field: str, value, *, allow_zero: bool = True) -> float:
    """Finite, non-negative money amount rounded to cents."""
    number = _coerce_number(field, value)
    if number < 0:
        raise ValidationError(f"{field} must be >= 0")
    if not allow_zero and number == 0:
        raise ValidationError(f"{field} must be > 0")
    if number > MAX_AMOUNT:
        raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT:,.2f}")
    return round_currency(number)


def parse_quantity(field: str, value) -> float:
    """Strictly positive quantity (fractional units allowed)."""
    number = _coerce_number(field, value)
    if number < QTY_EPSILON:
        raise ValidationError(f"{field} must be > 0")
    return number


def parse_cost(field: str, value) -> float:
    number = _coerce_number(field, value)
    if number < 0:
        raise ValidationError(f"{field} must be >= 0")
    return round_cost(number)
