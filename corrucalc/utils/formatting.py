"""Argentine number formatting for customer-facing text."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal


def _group(text: str) -> str:
    # Python groups with ',' and uses '.' for decimals; es-AR swaps them
    return text.replace(",", "_").replace(".", ",").replace("_", ".")


def format_ars(amount: Decimal | int | float) -> str:
    """$ 1.234.567,89"""
    return "$ " + _group(f"{Decimal(str(amount)):,.2f}")


def format_quantity(value: int) -> str:
    """1.000"""
    return _group(f"{value:,}")


def format_m2(value: Decimal) -> str:
    """One decimal: 362,5"""
    rounded = Decimal(str(value)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
    return _group(f"{rounded:,}")
