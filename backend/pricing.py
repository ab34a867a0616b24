"""Order totals: tax, shipping and grand total in whole cents."""
from __future__ import annotations
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, NamedTuple

from config import settings

CENT = Decimal("0.01")


class Totals(NamedTuple):
    subtotal: float
    tax: float
    shipping: float
    total: float


def to_cents(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def compute_totals(
    lines: Iterable[tuple[float, int]],
    tax_rate: float | None = None,
    free_shipping_threshold: float | None = None,
    shipping_fee: float | None = None,
) -> Totals:
    """
    Price a list of ``(unit_price, quantity)`` lines.

    Tax is applied to the subtotal and rounded half-up to the cent. Shipping is
    free when the subtotal is strictly above the threshold. The total is the sum
    of the three rounded parts, so ``total == subtotal + tax + shipping`` always
    holds on the stored figures.
    """
    rate = Decimal(str(settings.TAX_RATE if tax_rate is None else tax_rate))
    threshold = to_cents(settings.FREE_SHIPPING_THRESHOLD if free_shipping_threshold is None else free_shipping_threshold)
    fee = to_cents(settings.SHIPPING_FEE if shipping_fee is None else shipping_fee)

    subtotal = sum((Decimal(str(price)) * quantity for price, quantity in lines), Decimal("0"))
    subtotal = subtotal.quantize(CENT, rounding=ROUND_HALF_UP)
    tax = (subtotal * rate).quantize(CENT, rounding=ROUND_HALF_UP)
    shipping = Decimal("0.00") if subtotal > threshold else fee
    total = subtotal + tax + shipping
    return Totals(float(subtotal), float(tax), float(shipping), float(total))


def unit_amount(value: float) -> int:
    """Amount in the smallest currency unit, as the gateway expects it."""
    return int((to_cents(value) * 100).to_integral_value(rounding=ROUND_HALF_UP))
