# services/payments/money.py
from __future__ import annotations
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

# smallest amount the provider accepts as a line item
MIN_UNIT = Decimal("0.01")
ZERO = "0.00"


def D(x) -> Decimal:
    if isinstance(x, Decimal):
        return x
    # never pass float directly; stringify first to avoid binary artifacts
    try:
        return Decimal(str(x or 0))
    except InvalidOperation:
        raise ValueError(f"not a monetary amount: {x!r}")


def quantize(x) -> Decimal:
    return D(x).quantize(MIN_UNIT, rounding=ROUND_HALF_UP)


def fmt(x) -> str:
    """Two-decimal wire format, e.g. Decimal('25') -> '25.00'."""
    return str(quantize(x))


def is_chargeable(x) -> bool:
    return D(x) >= MIN_UNIT
