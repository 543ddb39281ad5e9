"""
Money arithmetic for carts and checkout.

Amounts are computed with Decimal and handed back as floats rounded to cents,
which is how they are stored in MongoDB.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Tuple

from config import TAX_RATE, FREE_SHIPPING_THRESHOLD, SHIPPING_FEE

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def cart_totals(items: Iterable) -> Tuple[int, float]:
    """Fold cart lines into (total_items, total_price)."""
    total_items = 0
    total_price = Decimal("0")
    for item in items:
        total_items += item.quantity
        total_price += Decimal(str(item.price)) * item.quantity
    return total_items, float(to_money(total_price))


def items_subtotal(order_items: Iterable) -> float:
    subtotal = sum((Decimal(str(i.price)) * i.qty for i in order_items), Decimal("0"))
    return float(to_money(subtotal))


def shipping_for(items_price) -> Decimal:
    if to_money(items_price) >= Decimal(str(FREE_SHIPPING_THRESHOLD)):
        return Decimal("0.00")
    return to_money(SHIPPING_FEE)


def order_prices(items_price) -> dict:
    """Tax, shipping and total for a checkout subtotal."""
    subtotal = to_money(items_price)
    tax = to_money(subtotal * Decimal(str(TAX_RATE)))
    shipping = shipping_for(subtotal)
    return {
        "items_price": float(subtotal),
        "tax_price": float(tax),
        "shipping_price": float(shipping),
        "total_price": float(subtotal + tax + shipping),
    }
