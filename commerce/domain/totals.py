"""
Order total calculation.

Totals are always re-derived from the order's full current item list so that
concurrent partial refunds cannot drift the stored figures.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from commerce.domain.order import OrderStatus
from commerce.domain.refund import EXCLUDED_FROM_TOTALS, RefundMode, RefundStatus

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def quantize_money(value) -> Decimal:
    """Round a monetary value half-up to two decimal places."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    tax: Decimal
    total: Decimal


def counts_towards_total(item) -> bool:
    return RefundStatus.parse(item.refund_status) not in EXCLUDED_FROM_TOTALS


def recompute_totals(
    items: Iterable,
    is_external: bool,
    previous_subtotal,
    previous_tax,
) -> OrderTotals:
    """
    Derive (subtotal, tax, total) from the order items.

    Items need ``total`` and ``refund_status`` attributes. External orders
    keep their tax untouched (it is a fixed transport fee); internal orders
    scale the tax by the previous tax/subtotal ratio.
    """
    subtotal = sum(
        (Decimal(str(item.total)) for item in items if counts_towards_total(item)),
        ZERO,
    )
    subtotal = max(quantize_money(subtotal), ZERO)
    previous_subtotal = Decimal(str(previous_subtotal or 0))
    previous_tax = Decimal(str(previous_tax or 0))

    if is_external:
        tax = quantize_money(previous_tax)
    else:
        rate = previous_tax / previous_subtotal if previous_subtotal > 0 else ZERO
        tax = quantize_money(subtotal * rate)

    tax = max(tax, ZERO)
    return OrderTotals(subtotal=subtotal, tax=tax, total=quantize_money(subtotal + tax))


def closing_status(items: Iterable, mode: RefundMode) -> OrderStatus | None:
    """
    Status the order moves to once no item counts towards the total any more,
    or None while at least one item is still live.
    """
    items = list(items)
    if not items or any(counts_towards_total(item) for item in items):
        return None
    if mode == RefundMode.REFUND:
        return OrderStatus.REFUNDED
    return OrderStatus.CANCELLED
