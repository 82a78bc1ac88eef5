"""
Refund workflow for whole orders and single order items.

Every operation runs in one transaction holding the order row lock (and an
advisory lock on PostgreSQL), so totals are recomputed from a consistent item
set even when several refunds on one order are answered concurrently.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from uuid import UUID

from django.db import transaction
from django.utils import timezone

from commerce.conf import storefront_setting
from commerce.domain.errors import OrderItemNotFound, OrderNotFound
from commerce.domain.order import OrderStatus
from commerce.domain.refund import (
    RESTOCKED_STATUSES,
    RefundMode,
    RefundStatus,
    ensure_can_request,
    ensure_transition,
    ensure_within_window,
    refund_mode,
)
from commerce.domain.totals import closing_status, recompute_totals
from commerce.infra.locks import order_lock
from commerce.infra.models import OrderItemORM, OrderORM
from commerce.infra.repositories import OrderRepository
from commerce.services.inventory import InventoryService
from commerce.services.notifications import NotificationService
from commerce.services.payments import PaymentService

logger = logging.getLogger(__name__)

REFUND_FIELDS = [
    "refund_status",
    "refund_requested",
    "refund_reason",
    "refund_requested_at",
    "refund_expires_at",
]


@dataclass
class RefundResult:
    """Updated order (and item, for item refunds) plus the derived mode."""
    order: OrderORM
    mode: RefundMode
    item: OrderItemORM | None = None


class RefundService:
    """Service for refund requests and responses."""

    def __init__(
        self,
        order_repo: OrderRepository | None = None,
        inventory: InventoryService | None = None,
        notifications: NotificationService | None = None,
        payment_service: PaymentService | None = None,
    ):
        self.order_repo = order_repo or OrderRepository()
        self.inventory = inventory or InventoryService()
        self.notifications = notifications or NotificationService()
        self.payment_service = payment_service or PaymentService(order_repo=self.order_repo)
        self.window_hours = storefront_setting("REFUND_WINDOW_HOURS")

    # Requests

    @transaction.atomic
    def request_item_refund(self, item_id: UUID | str, reason: str, admin_initiated: bool = False) -> RefundResult:
        """
        Ask for a refund of one item. On an undelivered order a customer
        request is a final reject; everything else becomes a reviewable request.
        """
        item, order = self._lock_item(item_id)
        now = timezone.now()
        ensure_can_request(item.refund_status)
        ensure_within_window(order.delivered_at, now, self.window_hours)
        mode = refund_mode(order.delivered_at)

        if order.delivered_at is None and not admin_initiated:
            self._mark_rejected(item, reason, now)
            self.order_repo.save_item(item, REFUND_FIELDS)
            self._recompute(order, mode)
        else:
            self._mark_requested(item, reason, now)
            self.order_repo.save_item(item, REFUND_FIELDS)
            self.notifications.refund_requested(order, reason, item=item)

        logger.info(
            "item_refund_requested",
            extra={"order_id": str(order.id), "order_item_id": str(item.id), "status": item.refund_status},
        )
        return RefundResult(order=order, item=item, mode=mode)

    @transaction.atomic
    def request_order_refund(self, order_id: UUID | str, reason: str, admin_initiated: bool = False) -> RefundResult:
        """Ask for a refund of a whole order; same rules as item requests."""
        order = self._lock_order(order_id)
        now = timezone.now()
        ensure_can_request(order.refund_status)
        ensure_within_window(order.delivered_at, now, self.window_hours)
        mode = refund_mode(order.delivered_at)

        if order.delivered_at is None and not admin_initiated:
            self._mark_rejected(order, reason, now)
            self.order_repo.save(order, REFUND_FIELDS)
        else:
            self._mark_requested(order, reason, now)
            self.order_repo.save(order, REFUND_FIELDS)
            self.notifications.refund_requested(order, reason)

        logger.info(
            "order_refund_requested",
            extra={"order_id": str(order.id), "status": order.refund_status},
        )
        return RefundResult(order=order, mode=mode)

    # Cancellation

    @transaction.atomic
    def cancel_item_refund(self, item_id: UUID | str) -> OrderItemORM:
        item, order = self._lock_item(item_id)
        ensure_transition(item.refund_status, RefundStatus.CANCELLED)
        self._mark_cancelled(item)
        self.order_repo.save_item(item, REFUND_FIELDS)
        return item

    @transaction.atomic
    def cancel_order_refund(self, order_id: UUID | str) -> OrderORM:
        order = self._lock_order(order_id)
        ensure_transition(order.refund_status, RefundStatus.CANCELLED)
        self._mark_cancelled(order)
        self.order_repo.save(order, REFUND_FIELDS)
        return order

    # Admin responses

    @transaction.atomic
    def respond_to_item_refund(
        self,
        item_id: UUID | str,
        approve: bool,
        admin_note: str | None = None,
    ) -> RefundResult:
        """
        Approve or reject a requested item refund. Approval puts the quantity
        back in stock and re-derives the order totals from all items.
        """
        item, order = self._lock_item(item_id)
        target = RefundStatus.APPROVED if approve else RefundStatus.REJECTED
        ensure_transition(item.refund_status, target)
        mode = refund_mode(order.delivered_at)

        item.refund_status = target.value
        self.order_repo.save_item(item, ["refund_status"])

        if approve:
            self.inventory.restock_for_refund([item])
            self._recompute(order, mode)

        self.notifications.refund_responded(order, approve, item=item, admin_note=admin_note)
        logger.info(
            "item_refund_responded",
            extra={"order_id": str(order.id), "order_item_id": str(item.id), "status": item.refund_status},
        )
        return RefundResult(order=order, item=item, mode=mode)

    @transaction.atomic
    def respond_to_order_refund(
        self,
        order_id: UUID | str,
        approve: bool,
        admin_note: str | None = None,
    ) -> RefundResult:
        """
        Approve or reject a requested full-order refund. Approval restocks and
        approves every item not already refunded and closes the order.
        """
        order = self._lock_order(order_id)
        target = RefundStatus.APPROVED if approve else RefundStatus.REJECTED
        ensure_transition(order.refund_status, target)
        mode = refund_mode(order.delivered_at)

        order.refund_status = target.value
        self.order_repo.save(order, ["refund_status"])

        if approve:
            items = self.order_repo.items_for(order, for_update=True)
            pending = [
                item for item in items
                if RefundStatus.parse(item.refund_status) not in RESTOCKED_STATUSES
            ]
            self.inventory.restock_for_refund(pending)
            for item in items:
                item.refund_status = RefundStatus.APPROVED.value
                item.refund_requested = True
                self.order_repo.save_item(item, ["refund_status", "refund_requested"])
            self._recompute(order, RefundMode.REFUND, items=items)
            if order.status != OrderStatus.REFUNDED.value:
                order.status = OrderStatus.REFUNDED.value
                self.order_repo.save(order, ["status"])

        self.notifications.refund_responded(order, approve, admin_note=admin_note)
        logger.info(
            "order_refund_responded",
            extra={"order_id": str(order.id), "status": order.refund_status},
        )
        order = self.order_repo.get_with_items(order.id)
        return RefundResult(order=order, mode=mode)

    def list_refund_requests(self, status: str = RefundStatus.REQUESTED.value) -> dict:
        RefundStatus(status)
        return self.order_repo.list_refund_requests(status)

    # Internals

    def _lock_order(self, order_id) -> OrderORM:
        # Advisory lock is held until the surrounding transaction ends.
        with order_lock(order_id):
            order = self.order_repo.get_by_id(order_id, for_update=True)
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found")
        return order

    def _lock_item(self, item_id) -> tuple[OrderItemORM, OrderORM]:
        item = self.order_repo.get_item(item_id)
        if item is None:
            raise OrderItemNotFound(f"Order item {item_id} not found")
        order = self._lock_order(item.order_id)
        item = self.order_repo.get_item(item_id, for_update=True)
        return item, order

    def _recompute(self, order: OrderORM, mode: RefundMode, items=None) -> None:
        """Re-derive totals from the full item list and close the order when nothing is left."""
        if items is None:
            items = self.order_repo.items_for(order)
        totals = recompute_totals(items, order.is_external, order.subtotal, order.tax)
        order.subtotal = totals.subtotal
        order.tax = totals.tax
        order.total = totals.total
        fields = ["subtotal", "tax", "total"]

        new_status = closing_status(items, mode)
        if new_status is not None and order.status != new_status.value:
            order.status = new_status.value
            fields.append("status")
        self.order_repo.save(order, fields)

        if new_status == OrderStatus.CANCELLED:
            self.payment_service.fail_cod_payments(order)

    def _mark_requested(self, target, reason: str, now) -> None:
        target.refund_status = RefundStatus.REQUESTED.value
        target.refund_requested = True
        target.refund_reason = reason
        target.refund_requested_at = now
        target.refund_expires_at = now + timedelta(hours=self.window_hours)

    def _mark_rejected(self, target, reason: str, now) -> None:
        target.refund_status = RefundStatus.REJECTED.value
        target.refund_requested = False
        target.refund_reason = reason
        target.refund_requested_at = now
        target.refund_expires_at = None

    def _mark_cancelled(self, target) -> None:
        target.refund_status = RefundStatus.CANCELLED.value
        target.refund_requested = False
        target.refund_reason = None
        target.refund_requested_at = None
        target.refund_expires_at = None
