from decimal import Decimal
from typing import Iterable, Tuple

from resell_core.config import settings
from resell_core.utils.money import ZERO, to_money


def compute_totals(subtotal: Decimal) -> Tuple[Decimal, Decimal, Decimal]:
    """Return (shipping, tax, total) for an order subtotal."""
    subtotal = to_money(subtotal)
    shipping = ZERO if subtotal >= settings.free_shipping_threshold else to_money(settings.default_shipping_fee)
    tax = to_money(subtotal * settings.tax_rate_percent / Decimal(100))
    return shipping, tax, to_money(subtotal + shipping + tax)


def reseller_earning(lines: Iterable[Tuple[Decimal, int]]) -> Decimal:
    """Sum of markup x quantity."""
    return to_money(sum((to_money(markup) * qty for markup, qty in lines), ZERO))
