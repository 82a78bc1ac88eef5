"""
Notifications raised by order, refund and assignment transitions.

Every method queues an outbox event inside the caller's transaction. Queueing
is best-effort: a failure is logged and never fails the state change.
"""
from __future__ import annotations

import logging

from django.db import DatabaseError, transaction

from commerce.domain.events import (
    NotificationRequested,
    NotificationType,
    RecipientRole,
)
from commerce.infra.outbox import OutboxRepository

logger = logging.getLogger(__name__)


def order_meta(order, **extra) -> dict:
    meta = {
        "order_id": str(order.id),
        "order_number": order.order_number,
        "status": order.status,
    }
    meta.update({key: value for key, value in extra.items() if value is not None})
    return meta


def customer_label(order) -> str:
    name = order.customer_name or "Customer"
    city = order.delivery_city
    return f"{name} from {city}" if city else name


class NotificationService:
    """Builds notification events and queues them in the outbox."""

    def __init__(self, outbox_repo: OutboxRepository | None = None):
        self.outbox_repo = outbox_repo or OutboxRepository()

    def notify(self, event: NotificationRequested):
        try:
            with transaction.atomic():
                return self.outbox_repo.add_notification(event)
        except DatabaseError as e:
            logger.error(
                "notification_enqueue_failed",
                extra={"operation": event.type, "order_id": event.order_id, "error": str(e)},
                exc_info=True,
            )
            return None

    def notify_customer(self, order, type: NotificationType, title=None, body=None, **meta):
        if not order.user_id:
            return None
        return self.notify(NotificationRequested(
            type=type,
            recipient_user_id=order.user_id,
            recipient_role=RecipientRole.USER,
            title=title,
            body=body,
            meta=order_meta(order, **meta),
        ))

    def notify_admins(self, order, type: NotificationType, title=None, body=None, **meta):
        return self.notify(NotificationRequested(
            type=type,
            recipient_role=RecipientRole.ADMIN,
            title=title,
            body=body,
            meta=order_meta(order, **meta),
        ))

    def notify_rider(self, order, rider, type: NotificationType, title=None, body=None, **meta):
        return self.notify(NotificationRequested(
            type=type,
            recipient_user_id=rider.user_id,
            recipient_role=RecipientRole.RIDER,
            title=title,
            body=body,
            meta=order_meta(order, rider_id=str(rider.id), **meta),
        ))

    # Orders

    def order_created(self, order) -> None:
        self.notify_admins(
            order,
            NotificationType.ORDER_CREATED,
            title=f"New order {order.order_number}",
            body=f"{customer_label(order)} placed order {order.order_number} ({order.total} {order.currency})",
        )
        self.notify_customer(
            order,
            NotificationType.ORDER_CREATED,
            title="Order received",
            body=f"We received your order {order.order_number}",
        )

    def order_status_changed(self, order) -> None:
        title = f"Order {order.order_number} is {order.status}"
        self.notify_customer(order, NotificationType.ORDER_STATUS_UPDATE, title=title)
        self.notify_admins(order, NotificationType.ORDER_STATUS_UPDATE, title=title)

    # Refunds

    def refund_requested(self, order, reason: str, item=None) -> None:
        if item is not None:
            title = "Refund requested"
            subject = item.product_name
        else:
            title = "Full order refund requested"
            subject = f"order {order.order_number}"
        self.notify_admins(
            order,
            NotificationType.REFUND_REQUESTED,
            title=title,
            body=f"{customer_label(order)} requested a refund for {subject}. Reason: {reason}",
            item_id=str(item.id) if item is not None else None,
            reason=reason,
            mode="refund",
        )

    def refund_responded(self, order, approved: bool, item=None, admin_note: str | None = None) -> None:
        subject = item.product_name if item is not None else f"order {order.order_number}"
        if approved:
            type = NotificationType.REFUND_APPROVED
            title = "Refund approved"
            body = f"Your refund for {subject} has been approved."
        else:
            type = NotificationType.REFUND_REJECTED
            title = "Refund request rejected"
            body = f"Your refund request for {subject} was rejected."
        if admin_note:
            body = f"{body} Note: {admin_note}"
        self.notify_customer(
            order,
            type,
            title=title,
            body=body,
            item_id=str(item.id) if item is not None else None,
        )

    # Rider assignments

    def assignment_created(self, order, assignment) -> None:
        rider = assignment.rider
        meta = {"assignment_id": str(assignment.id), "rider_name": rider.full_name}
        self.notify_customer(
            order,
            NotificationType.ORDER_ASSIGNED,
            title=f"{rider.full_name} will deliver your order",
            **meta,
        )
        self.notify_admins(
            order,
            NotificationType.ASSIGNMENT_CREATED,
            title=f"Order {order.order_number} assigned to {rider.full_name}",
            **meta,
        )

    def assignment_reassigned(self, order, previous_riders, assignment) -> None:
        rider = assignment.rider
        for previous in previous_riders:
            self.notify_rider(
                order,
                previous,
                NotificationType.ASSIGNMENT_REASSIGNED,
                title=f"Assignment removed for order {order.order_number}",
            )
        meta = {"assignment_id": str(assignment.id), "rider_name": rider.full_name}
        self.notify_customer(
            order,
            NotificationType.ORDER_REASSIGNED,
            title=f"{rider.full_name} will now deliver your order",
            **meta,
        )
        self.notify_admins(
            order,
            NotificationType.ASSIGNMENT_REASSIGNED,
            title=f"Order {order.order_number} reassigned to {rider.full_name}",
            **meta,
        )
        self.notify_rider(
            order,
            rider,
            NotificationType.ASSIGNMENT_CREATED,
            title=f"New delivery: order {order.order_number}",
            assignment_id=str(assignment.id),
        )

    def assignment_responded(self, order, assignment) -> None:
        rider_name = assignment.rider.full_name
        number = order.order_number
        meta = {"assignment_id": str(assignment.id), "rider_name": rider_name}
        if assignment.status == "accepted":
            self.notify_customer(
                order,
                NotificationType.ASSIGNMENT_ACCEPTED,
                title=f"{rider_name} is delivering your order",
                body=f"{rider_name} has accepted delivery of order {number}",
                **meta,
            )
            self.notify_admins(
                order,
                NotificationType.ASSIGNMENT_ACCEPTED,
                title=f"{rider_name} accepted order {number}",
                body=f"Delivery to {order.delivery_city or 'customer'}",
                **meta,
            )
        elif assignment.status == "completed":
            self.notify_customer(
                order,
                NotificationType.ORDER_DELIVERED,
                title=f"Order {number} delivered successfully",
                body=f"Your order has been delivered to {order.delivery_address or 'your address'}",
                **meta,
            )
        elif assignment.status == "rejected":
            self.notify_admins(
                order,
                NotificationType.ASSIGNMENT_REJECTED,
                title=f"{rider_name} rejected order {number}",
                body="Order needs reassignment",
                **meta,
            )
