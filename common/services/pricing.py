"""Price arithmetic shared by catalog, cart and checkout."""

import random
import time
from datetime import datetime
from decimal import ROUND_FLOOR, Decimal, InvalidOperation
from typing import Optional

ZERO = Decimal("0")
FREE_SHIPPING_THRESHOLD = Decimal("500000")
DEFAULT_SHIPPING_FEE = Decimal("30000")


def money(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"invalid amount: {value!r}") from None
    if not amount.is_finite():
        raise ValueError(f"invalid amount: {value!r}")
    return amount


def floor_amount(value) -> Decimal:
    return money(value).quantize(Decimal("1"), rounding=ROUND_FLOOR)


def calculate_final_price(price, sale_type: Optional[str], value) -> Decimal:
    """Sale-adjusted unit price in whole VND, floored.

    ``bogo`` and unknown types leave price unchanged.
    """
    base = money(price)
    if not sale_type or not value:
        return base
    v = money(value)
    if sale_type == "percentage":
        return floor_amount(base * (1 - v / 100))
    if sale_type == "fixed":
        return floor_amount(max(ZERO, base - v))
    return base


def is_sale_active(sale, now: Optional[datetime] = None) -> bool:
    if sale is None or not sale.is_active:
        return False
    now = now or datetime.now()
    return sale.start_date <= now <= sale.end_date


def final_price_for(product, now: Optional[datetime] = None, base=None) -> Decimal:
    """Unit price of ``product`` (or an explicit base price) under its active sale."""
    price = money(product.price if base is None else base)
    sale = getattr(product, "sale", None)
    if is_sale_active(sale, now):
        return calculate_final_price(price, sale.type, sale.value)
    return price


def shipping_fee_for(
    subtotal,
    threshold: Decimal = FREE_SHIPPING_THRESHOLD,
    fee: Decimal = DEFAULT_SHIPPING_FEE,
) -> Decimal:
    return ZERO if money(subtotal) >= threshold else fee


def generate_order_code() -> str:
    return f"ORD{int(time.time() * 1000)}{random.randint(0, 999)}"
