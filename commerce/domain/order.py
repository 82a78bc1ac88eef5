"""
Domain model for Order aggregate.
"""
from __future__ import annotations

import re
import time
from decimal import Decimal
from enum import Enum

from commerce.domain.errors import ValidationError


class OrderStatus(str, Enum):
    """Order status enumeration."""
    PENDING = "pending"
    PROCESSING = "processing"
    ASSIGNED = "assigned"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class OrderPaymentStatus(str, Enum):
    """Payment status as seen on the order record."""
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


CASH_ON_DELIVERY = "cash_on_delivery"

UUID_PATTERN = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)

# Status -> timestamp column stamped when the order enters it.
STATUS_TIMESTAMPS = {
    OrderStatus.SHIPPED: "shipped_at",
    OrderStatus.DELIVERED: "delivered_at",
}


def normalize_optional_uuid(value) -> str | None:
    """Return value if it is a dashed UUID, otherwise None."""
    if value is None:
        return None
    text = str(value).strip()
    if UUID_PATTERN.match(text):
        return text
    return None


def generate_order_number(now_ms: int | None = None) -> str:
    """Order numbers are ``ORD`` followed by the epoch in milliseconds."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"ORD{now_ms}"


class OrderItem:
    """Order line item value object."""

    def __init__(
        self,
        product_name: str,
        quantity: int,
        price: Decimal,
        product_id: str | None = None,
        product_variation_id: str | None = None,
        variation_name: str | None = None,
    ):
        if quantity <= 0:
            raise ValidationError("Quantity must be positive")
        if price < 0:
            raise ValidationError("Price must be non-negative")

        self.product_name = product_name
        self.quantity = quantity
        self.price = price
        self.product_id = normalize_optional_uuid(product_id)
        self.product_variation_id = normalize_optional_uuid(product_variation_id)
        self.variation_name = variation_name

    @property
    def subtotal(self) -> Decimal:
        """Calculate item subtotal."""
        return self.price * self.quantity


class Order:
    """Order draft assembled at checkout, before it is persisted."""

    def __init__(
        self,
        items: list[OrderItem] | None = None,
        tax: Decimal = Decimal("0.00"),
        is_external: bool = False,
        status: OrderStatus = OrderStatus.PENDING,
    ):
        if tax < 0:
            raise ValidationError("Tax must be non-negative")
        self._items = items or []
        self.tax = tax
        self.is_external = is_external
        self.status = status

    @property
    def items(self) -> list[OrderItem]:
        """Get order items (immutable)."""
        return list(self._items)

    @property
    def subtotal(self) -> Decimal:
        return sum((item.subtotal for item in self._items), Decimal("0.00"))

    @property
    def total(self) -> Decimal:
        """External orders add the transport fee, internal orders the tax."""
        return self.subtotal + self.tax

    def add_item(self, item: OrderItem) -> None:
        self._items.append(item)

    def validate(self) -> None:
        if not self._items:
            raise ValidationError("Cannot create an order without items")
