# Overview: Fixed-point currency helpers and the sale totals formula.

"""
Money is stored as integer cents everywhere.

Percentages and tax are computed in Decimal and quantized to whole cents with
ROUND_HALF_EVEN once per stored field (discount, tax). Line totals are exact
integer products, so no intermediate rounding ever happens.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_EVEN
from typing import Iterable

from .errors import InvalidInput


CENT = Decimal("0.01")

# Maximum unit price: 9,999,999.99
MAX_PRICE_CENTS = 999_999_999


def round_cents(amount: Decimal) -> int:
    """Quantize a Decimal amount of cents to a whole cent (banker's rounding)."""
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_EVEN))


def parse_money(value, field: str = "amount") -> int:
    """
    Parse a currency amount (number or string, major units) into cents.

    Rejects booleans, negatives, non-finite values and more than 2 decimals.
    Floats go through ``str()`` so 29.99 stays 29.99.
    """
    if value is None or isinstance(value, bool):
        raise InvalidInput(f"{field} must be a number")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidInput(f"{field} must be a number")

    if not amount.is_finite():
        raise InvalidInput(f"{field} must be a finite number")
    if amount < 0:
        raise InvalidInput(f"{field} cannot be negative")
    if amount * 100 > MAX_PRICE_CENTS:
        raise InvalidInput(f"{field} exceeds the maximum allowed amount")
    if amount != amount.quantize(CENT):
        raise InvalidInput(f"{field} cannot have more than 2 decimal places")

    return int(amount * 100)


def format_cents(cents: int | None) -> str | None:
    """Render cents as a plain two-decimal string, e.g. 215268 -> '2152.68'."""
    if cents is None:
        return None
    return str((Decimal(cents) / 100).quantize(CENT))


@dataclass(frozen=True)
class SaleTotals:
    subtotal_cents: int
    discount_percentage: int
    discount_cents: int
    tax_cents: int
    total_cents: int


def compute_totals(
    lines: Iterable[tuple[int, int]],
    *,
    discount_percentage: int,
    tax_rate: Decimal,
) -> SaleTotals:
    """
    Compute sale totals from (quantity, unit_price_cents) pairs.

    subtotal = sum(quantity * unit_price)
    discount = subtotal * pct / 100          (rounded)
    tax      = (subtotal - discount) * rate  (rounded)
    total    = subtotal - discount + tax
    """
    subtotal = sum(quantity * unit_price_cents for quantity, unit_price_cents in lines)

    discount = 0
    if discount_percentage:
        discount = round_cents(Decimal(subtotal) * Decimal(discount_percentage) / Decimal(100))

    tax = round_cents(Decimal(subtotal - discount) * Decimal(tax_rate))
    total = subtotal - discount + tax

    return SaleTotals(
        subtotal_cents=subtotal,
        discount_percentage=discount_percentage,
        discount_cents=discount,
        tax_cents=tax,
        total_cents=total,
    )
