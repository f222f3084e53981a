# hb_core/common/money.py
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from rest_framework.exceptions import ValidationError

ZERO = Decimal("0.00")
TWOPLACES = Decimal("0.01")

# Allowed drift between a stated payment total and the sum of its selections.
TOLERANCE = Decimal("0.01")


def D(value) -> Decimal:
    """Safe Decimal conversion (never mixes Decimal with float)."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def money(value) -> Decimal:
    """Money rounding to 2 decimals."""
    return D(value).quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def parse_money(value, field_name: str) -> Decimal:
    """
    Accepts Decimal / str / int / float and converts to a 2dp Decimal.
    Raises ValidationError for invalid values.
    """
    try:
        return money(value)
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError({field_name: "Invalid decimal value."})


def money_sum(values) -> Decimal:
    return money(sum((D(v) for v in values), Decimal("0")))


def amounts_match(a, b) -> bool:
    return abs(D(a) - D(b)) <= TOLERANCE
