"""Decimal helpers shared by the calculators and the ledger poster."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

CENT = Decimal("0.01")


def round_money(amount: Decimal, minor_unit: Decimal = CENT) -> Decimal:
    """Round half-up to the currency minor unit."""
    return amount.quantize(minor_unit, rounding=ROUND_HALF_UP)


def to_decimal(value: Any, default: Decimal | None = None) -> Decimal | None:
    """Parse a stored or user-supplied number without going through binary float.

    Floats (e.g. from JSON) are converted via ``str`` so ``0.1`` stays ``0.1``.
    """
    if value is None or value == "":
        return default
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Not a monetary value: {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Not a monetary value: {value!r}") from exc
