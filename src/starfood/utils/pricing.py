from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from starfood.db.models import Discount

Number = Union[Decimal, int, str]

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")
_WHOLE_UNIT = Decimal("1")


def to_money(value: Number | float | None) -> Decimal:
    """
    Convert a stored or user supplied amount to Decimal.

    Floats go through ``str`` so 19.99 stays 19.99 instead of its binary expansion.
    """
    if value is None:
        return _ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_currency(amount: Decimal) -> Decimal:
    """Round half-up to whole currency units."""
    return amount.quantize(_WHOLE_UNIT, rounding=ROUND_HALF_UP)


def effective_unit_price(base_price: Number, discount_percent: int) -> Decimal:
    """
    Price of one unit after the product's own discount.

    Returns the base price untouched when there is no discount, otherwise the
    discounted price rounded to whole units.

    >>> effective_unit_price(1000, 20)
    Decimal('800')
    """
    price = to_money(base_price)
    if not discount_percent:
        return price
    factor = 1 - Decimal(discount_percent) / _HUNDRED
    return round_currency(price * factor)


def line_total(unit_price: Number, quantity: int) -> Decimal:
    return to_money(unit_price) * quantity


def discount_amount(code: "Discount", subtotal: Number) -> Decimal:
    """
    Reduction a discount code grants on an order subtotal.

    Args:
        code: discount code; only type, value, min_order_amount and
              max_discount_amount are read.
        subtotal: sum of the order's line totals.

    Returns:
        Decimal: 0 when the subtotal is below the code's minimum, otherwise the
        percentage (rounded) or fixed value, capped at max_discount_amount if set.
    """
    subtotal = to_money(subtotal)
    if subtotal < to_money(code.min_order_amount):
        return _ZERO

    if code.type == "percentage":
        value = round_currency(subtotal * to_money(code.value) / _HUNDRED)
    else:
        value = to_money(code.value)

    if code.max_discount_amount is not None:
        cap = to_money(code.max_discount_amount)
        if value > cap:
            value = cap

    return value


def order_total(subtotal: Number, discount: Number, delivery_cost: Number) -> Decimal:
    return to_money(subtotal) - to_money(discount) + to_money(delivery_cost)
