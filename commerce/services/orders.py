"""
Order lifecycle: creation at checkout, status transitions and deletion.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from uuid import UUID

from django.db import transaction
from django.utils import timezone

from commerce.conf import storefront_setting
from commerce.domain.errors import (
    ManualStatusDenied,
    OrderNotFound,
    PermissionDenied,
    ValidationError,
)
from commerce.domain.order import (
    CASH_ON_DELIVERY,
    STATUS_TIMESTAMPS,
    Order,
    OrderItem,
    OrderStatus,
    generate_order_number,
    normalize_optional_uuid,
)
from commerce.infra.locks import order_lock
from commerce.infra.models import OrderORM
from commerce.infra.repositories import OrderRepository
from commerce.services.inventory import InventoryService
from commerce.services.notifications import NotificationService
from commerce.services.payments import PaymentService

logger = logging.getLogger(__name__)

CUSTOMER_FIELDS = (
    "customer_first_name",
    "customer_last_name",
    "customer_email",
    "customer_phone",
    "delivery_address",
    "delivery_city",
    "delivery_notes",
)


class OrderService:
    """Service for order operations."""

    def __init__(
        self,
        order_repo: OrderRepository | None = None,
        payment_service: PaymentService | None = None,
        inventory: InventoryService | None = None,
        notifications: NotificationService | None = None,
    ):
        self.order_repo = order_repo or OrderRepository()
        self.payment_service = payment_service or PaymentService()
        self.inventory = inventory or InventoryService()
        self.notifications = notifications or NotificationService()

    @transaction.atomic
    def create_order(self, order_data: dict, items: list[dict]) -> OrderORM:
        """
        Create an order with its items. Stock is not touched here; it is only
        taken out when the order is delivered. Cash on delivery orders get a
        pending payment row.
        """
        draft = Order(
            items=[self._build_item(item) for item in items],
            tax=Decimal(str(order_data.get("tax") or 0)),
            is_external=bool(order_data.get("is_external", False)),
        )
        draft.validate()

        fields = {name: order_data.get(name) or "" for name in CUSTOMER_FIELDS}
        order = self.order_repo.create(
            draft,
            order_number=order_data.get("order_number") or self._next_order_number(),
            user_id=normalize_optional_uuid(order_data.get("user_id")),
            payment_method=order_data.get("payment_method") or CASH_ON_DELIVERY,
            currency=order_data.get("currency") or storefront_setting("DEFAULT_CURRENCY"),
            **fields,
        )

        if order.payment_method == CASH_ON_DELIVERY:
            self.payment_service.create_cod_payment(order)

        self.notifications.order_created(order)
        logger.info(
            "order_created",
            extra={"order_id": str(order.id), "status": order.status},
        )
        return order

    @transaction.atomic
    def update_status(self, order_id: UUID | str, status: str) -> OrderORM:
        """
        Move an order to ``status``.

        delivered: stamps delivered_at, settles cash payments, takes stock out.
        cancelled: fails pending cash payments.
        Callers without staff rights may only change external orders.
        """
        try:
            new_status = OrderStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown order status: {status}")

        with order_lock(order_id):
            order = self.order_repo.get_by_id(order_id, for_update=True)
            if order is None:
                raise OrderNotFound(f"Order {order_id} not found")
            if not self.order_repo.privileged and not order.is_external:
                raise ManualStatusDenied("Manual status changes are only allowed for external orders")

            previous = order.status
            order.status = new_status.value
            fields = ["status"]
            timestamp_field = STATUS_TIMESTAMPS.get(new_status)
            if timestamp_field:
                setattr(order, timestamp_field, timezone.now())
                fields.append(timestamp_field)
            self.order_repo.save(order, fields)

            if new_status == OrderStatus.DELIVERED:
                self.payment_service.complete_cod_payments(order)
                self.inventory.decrement_for_delivery(self.order_repo.items_for(order))
            elif new_status == OrderStatus.CANCELLED:
                self.payment_service.fail_cod_payments(order)

            if previous != order.status:
                self.notifications.order_status_changed(order)

        logger.info(
            "order_status_updated",
            extra={"order_id": str(order.id), "status": order.status},
        )
        return order

    def get_order(self, order_id: UUID | str) -> OrderORM | None:
        """Get order by ID."""
        return self.order_repo.get_with_items(order_id)

    def get_orders_by_customer(self, user_id: UUID | str, limit: int = 50, offset: int = 0) -> list[OrderORM]:
        """Get orders by customer with pagination."""
        return self.order_repo.list_for_user(user_id, limit=limit, offset=offset)

    @transaction.atomic
    def delete_order(self, order_id: UUID | str) -> None:
        """Delete an order and its items (staff only)."""
        if not self.order_repo.privileged:
            raise PermissionDenied("Only staff can delete orders")
        order = self.order_repo.get_by_id(order_id, for_update=True)
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found")
        self.order_repo.delete(order)
        logger.info("order_deleted", extra={"order_id": str(order_id)})

    def _next_order_number(self) -> str:
        number = generate_order_number()
        while self.order_repo.order_number_taken(number):
            number = generate_order_number(int(number[3:]) + 1)
        return number

    def _build_item(self, item: dict) -> OrderItem:
        try:
            quantity = int(item["quantity"])
            price = Decimal(str(item["price"]))
        except (KeyError, TypeError, ValueError, ArithmeticError):
            raise ValidationError("Each item needs a numeric quantity and price")
        return OrderItem(
            product_name=item.get("product_name") or "",
            quantity=quantity,
            price=price,
            product_id=item.get("product_id"),
            product_variation_id=item.get("product_variation_id"),
            variation_name=item.get("variation_name"),
        )
