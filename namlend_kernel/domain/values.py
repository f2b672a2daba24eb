"""
Monetary helpers.

All amounts are ``Decimal``; floats never enter the ledger. Amounts are
stored with high precision and rounded to cents only at the boundaries
where the lending rules say so (installment amounts, late fees).
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

CENT = Decimal("0.01")
ZERO = Decimal("0")

# Namibian Dollar
CURRENCY_CODE = "NAD"

# Maximum APR permitted for microloans (percent).
APR_LIMIT = Decimal("32")


def to_decimal(value: Any) -> Decimal:
    """Coerce an RPC/JSON value to Decimal without passing through float.

    Raises:
        ValueError: if the value is None, not numeric, or not finite
            (NaN and Infinity are never monetary values).
    """
    if isinstance(value, Decimal):
        amount = value
    elif value is None or isinstance(value, bool):
        raise ValueError(f"Not a monetary value: {value!r}")
    else:
        try:
            amount = Decimal(str(value))
        except InvalidOperation as exc:
            raise ValueError(f"Not a monetary value: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Not a finite monetary value: {value!r}")
    return amount


def round_money(amount: Decimal) -> Decimal:
    """Round to cents, half-up."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def optional_decimal(value: Any) -> Decimal | None:
    return None if value is None else to_decimal(value)
