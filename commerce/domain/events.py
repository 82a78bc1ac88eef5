"""
Notification events written to the outbox alongside state transitions.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from uuid import UUID, uuid4


class EventVersion(str, Enum):
    """Event version for upcasting."""
    V1 = "1.0"


class RecipientRole(str, Enum):
    ADMIN = "admin"
    USER = "user"
    RIDER = "rider"


class NotificationType(str, Enum):
    ORDER_CREATED = "order_created"
    ORDER_STATUS_UPDATE = "order_status_update"
    ORDER_DELIVERED = "order_delivered"
    ORDER_ASSIGNED = "order_assigned"
    ORDER_REASSIGNED = "order_reassigned"
    ASSIGNMENT_CREATED = "assignment_created"
    ASSIGNMENT_REASSIGNED = "assignment_reassigned"
    ASSIGNMENT_ACCEPTED = "assignment_accepted"
    ASSIGNMENT_REJECTED = "assignment_rejected"
    REFUND_REQUESTED = "refund_requested"
    REFUND_APPROVED = "refund_approved"
    REFUND_REJECTED = "refund_rejected"


@dataclass
class NotificationRequested:
    """A notification to deliver to one recipient (user id or role)."""
    type: str
    recipient_user_id: str | None = None
    recipient_role: str | None = None
    title: str | None = None
    body: str | None = None
    meta: dict = field(default_factory=dict)
    event_id: UUID = field(default_factory=uuid4)
    version: EventVersion = EventVersion.V1

    def __post_init__(self):
        if isinstance(self.type, NotificationType):
            self.type = self.type.value
        if isinstance(self.recipient_role, RecipientRole):
            self.recipient_role = self.recipient_role.value
        # A bare user id addresses a customer.
        if self.recipient_role is None and self.recipient_user_id:
            self.recipient_role = RecipientRole.USER.value
        if self.recipient_user_id is not None:
            self.recipient_user_id = str(self.recipient_user_id)

    @property
    def order_id(self) -> str | None:
        order_id = self.meta.get("order_id")
        return str(order_id) if order_id else None

    @property
    def dedupe_key(self) -> str:
        return "|".join([
            self.recipient_user_id or "",
            self.recipient_role or "",
            self.type,
            self.order_id or "",
        ])

    def to_payload(self) -> dict:
        return {
            "recipient_user_id": self.recipient_user_id,
            "recipient_role": self.recipient_role,
            "type": self.type,
            "title": self.title,
            "body": self.body,
            "meta": self.meta,
        }
