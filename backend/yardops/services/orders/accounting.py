"""Actual gross profit calculation.

Actual GP is what the order really earned: the sale less tax and customer
refunds, less everything spent on yards whose card was charged. Disputed
orders lose the whole sale.
"""

import re
from decimal import Decimal
from typing import Iterable, Optional

from yardops.services.orders.enums import OrderStatus, PaymentStatus

ZERO = Decimal("0")

_SHIPPING_VALUE = re.compile(r"(?:own shipping|yard shipping):\s*([\d.]+)", re.IGNORECASE)


def _num(value) -> Decimal:
    if value is None or value == "":
        return ZERO
    try:
        return Decimal(str(value))
    except ArithmeticError:
        return ZERO


def parse_shipping_value(shipping_details: Optional[str]) -> Decimal:
    """
    Extract the amount from ``"Own shipping: 45"`` or ``"Yard shipping: 20.5"``.

    Returns 0 when no amount is present.
    """
    match = _SHIPPING_VALUE.search(shipping_details or "")
    if not match:
        return ZERO
    return _num(match.group(1).rstrip("."))


def format_shipping_details(
    own_shipping: Optional[Decimal], yard_shipping: Optional[Decimal]
) -> str:
    if own_shipping is not None:
        return f"Own shipping: {own_shipping}"
    if yard_shipping is not None:
        return f"Yard shipping: {yard_shipping}"
    return ""


def yard_spend(yard) -> Decimal:
    """Money spent on one yard attempt, net of refunds collected from it."""
    return (
        _num(yard.part_price)
        + parse_shipping_value(yard.shipping_details)
        + _num(yard.others)
        + _num(yard.cust_own_shipping_return)
        + _num(yard.cust_own_ship_replacement)
        + _num(yard.yard_own_shipping)
        - _num(yard.refunded_amount)
    )


def compute_actual_gp(order, yards: Optional[Iterable] = None) -> Decimal:
    """
    Compute actual GP for an order from its charged yards and status.

    Args:
        order: Order (or any object with the same attributes)
        yards: Yards to consider; defaults to ``order.yards``

    Returns:
        Actual GP rounded to cents
    """
    yards = list(order.yards if yards is None else yards)
    sold = _num(order.sold_price)
    tax = _num(order.sales_tax)
    refunded = _num(
        order.cust_refunded_amount
        if order.cust_refunded_amount is not None
        else order.cust_ref_amount
    )
    status = order.order_status

    charged_total = sum(
        (yard_spend(y) for y in yards if y.payment_status == PaymentStatus.CARD_CHARGED),
        ZERO,
    )

    if charged_total > 0:
        if status == OrderStatus.DISPUTE:
            result = -(charged_total + tax)
        elif status == OrderStatus.ORDER_CANCELLED:
            result = sold - tax - charged_total
        else:
            result = sold - tax - refunded - charged_total
    else:
        if status == OrderStatus.DISPUTE:
            result = -tax
        elif status == OrderStatus.REFUNDED:
            result = sold - refunded - tax
        elif status == OrderStatus.ORDER_CANCELLED:
            result = sold - tax
        else:
            result = ZERO

    return result.quantize(Decimal("0.01"))
