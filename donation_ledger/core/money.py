"""Monetary value normalization."""

from decimal import Decimal

CENTS = Decimal("0.01")


def to_money(value) -> Decimal:
    """Convert a store aggregate to a two-place Decimal. None becomes zero.

    Drivers return Decimal, int, float or str depending on the backend and the
    aggregate, so the value is routed through ``str`` to avoid binary rounding.
    """
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENTS)
