"""Utility functions for the application."""

from __future__ import annotations

import datetime
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from .errors import ValidationError

CENT = Decimal("0.01")


def utcnow() -> datetime.datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.datetime.now(datetime.timezone.utc)


def to_money(value: Any, rounding: str = ROUND_HALF_UP) -> Decimal:
    """Convert a stored or submitted amount to a two-place Decimal.

    Missing values count as zero, matching how documents without a
    ``walletBalance`` are treated.
    """
    if value is None:
        return Decimal("0.00")
    if isinstance(value, bool):
        raise ValidationError(f"Invalid amount: {value!r}")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"Invalid amount: {value!r}") from e
    if not amount.is_finite():
        raise ValidationError(f"Invalid amount: {value!r}")
    return amount.quantize(CENT, rounding=rounding)


def floor_money(value: Decimal) -> Decimal:
    """Round an amount down to the cent."""
    return value.quantize(CENT, rounding=ROUND_DOWN)


def money_to_store(value: Decimal) -> int | float:
    """Convert a Decimal amount to the number type Firestore stores."""
    if value == value.to_integral_value():
        return int(value)
    return float(value)


def parse_positive_amount(value: Any, label: str = "amount") -> Decimal:
    """Parse a request amount that must be strictly positive."""
    if value is None or value == "":
        raise ValidationError(f"Valid {label} is required")
    amount = to_money(value)
    if amount <= 0:
        raise ValidationError(f"Valid {label} is required")
    return amount
