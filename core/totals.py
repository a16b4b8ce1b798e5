"""
Invoice totals arithmetic.

Everything is integer cents. The only non-integer input is the tax rate,
which is applied with Decimal and rounded half-up to the nearest cent, so
0.5 cent always rounds away from zero (1050 x 5% = 52.5 -> 53).
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Protocol


class PricedItem(Protocol):
    quantity: int
    unit_price_cents: int


@dataclass(frozen=True)
class InvoiceTotals:
    subtotal_cents: int
    tax_amount_cents: int
    total_amount_cents: int


def _as_decimal(value: Decimal | float | int | str) -> Decimal:
    # str() first so 0.08 stays 0.08 instead of its binary expansion
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def calculate_tax(subtotal_cents: int, tax_rate: Decimal | float | str) -> int:
    """Tax in cents, rounded half-up."""
    tax = Decimal(subtotal_cents) * _as_decimal(tax_rate)
    return int(tax.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def calculate_totals(
    line_items: Iterable[PricedItem],
    tax_rate: Decimal | float | str,
    discount_cents: int,
) -> InvoiceTotals:
    """
    Compute subtotal, tax and total for a set of line items.

    Args:
        line_items: Items with quantity and unit_price_cents (non-negative)
        tax_rate: Decimal fraction, 0 <= rate < 1
        discount_cents: Flat discount in cents (non-negative)

    Returns:
        InvoiceTotals; total never goes below zero
    """
    subtotal = sum(item.quantity * item.unit_price_cents for item in line_items)
    tax = calculate_tax(subtotal, tax_rate)
    total = max(0, subtotal + tax - discount_cents)
    return InvoiceTotals(
        subtotal_cents=subtotal,
        tax_amount_cents=tax,
        total_amount_cents=total,
    )


def dollars_to_cents(dollars: Decimal | float | str) -> int:
    """Convert a dollar amount to cents, rounding half-up."""
    cents = _as_decimal(dollars) * 100
    return int(cents.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def cents_to_dollars(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(Decimal("0.01"))


def format_cents(cents: int) -> str:
    """Format cents for display: 123456 -> '$1,234.56', -500 -> '-$5.00'."""
    sign = "-" if cents < 0 else ""
    return f"{sign}${cents_to_dollars(abs(cents)):,.2f}"
