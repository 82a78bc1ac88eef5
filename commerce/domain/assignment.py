"""
Rider assignment vocabulary.
"""
from enum import Enum

from commerce.domain.order import OrderStatus


class AssignmentStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    COMPLETED = "completed"
    REASSIGNED = "reassigned"


ACTIVE_ASSIGNMENT_STATUSES = frozenset({AssignmentStatus.PENDING, AssignmentStatus.ACCEPTED})

# Rider answer -> order status it moves the order to.
RESPONSE_ORDER_STATUS = {
    AssignmentStatus.ACCEPTED: OrderStatus.PROCESSING,
    AssignmentStatus.COMPLETED: OrderStatus.DELIVERED,
    AssignmentStatus.REJECTED: OrderStatus.PENDING,
}
