"""
Decimal helpers for currency amounts.

Amounts are rounded to two places once, when they enter the system; all
arithmetic after that is exact ``Decimal`` addition.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation as DecimalError

from friendfund.errors import InvalidArgument

TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0.00")
# Stored as NUMERIC(12, 2): ten integer digits.
MAX_AMOUNT = Decimal("9999999999.99")


def round_money(amount) -> Decimal:
    if amount is None:
        return ZERO
    return Decimal(str(amount)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def parse_amount(value, field_name: str = "amount") -> Decimal:
    """Sanitize caller input into a positive two-place ``Decimal``."""
    if value is None or isinstance(value, bool):
        raise InvalidArgument(f"{field_name} is required")
    try:
        amount = Decimal(str(value).strip())
        if not amount.is_finite():
            raise InvalidArgument(f"{field_name} must be finite")
        amount = amount.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
    except (DecimalError, ValueError):
        raise InvalidArgument(f"{field_name} must be a decimal number") from None
    if amount <= ZERO:
        raise InvalidArgument(f"{field_name} must be positive")
    if amount > MAX_AMOUNT:
        raise InvalidArgument(f"{field_name} must not exceed {MAX_AMOUNT}")
    return amount


def as_money(value) -> Decimal:
    """Normalize a stored amount (Decimal, float or str) to two places."""
    return round_money(value if value is not None else 0)
