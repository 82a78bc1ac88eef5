"""
Refund state machine shared by orders and order items.

    none --request--> requested --respond--> approved | rejected
                          +--cancel--> cancelled
    none --customer final reject (undelivered)--> rejected
"""
from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum

from commerce.domain.errors import InvalidRefundState, RefundExpired


class RefundStatus(str, Enum):
    """Refund status of an order or an order item."""
    NONE = "none"
    REQUESTED = "requested"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

    @classmethod
    def parse(cls, value) -> "RefundStatus":
        """Legacy rows store NULL for ``none``."""
        if value in (None, ""):
            return cls.NONE
        return cls(value)


class RefundMode(str, Enum):
    """Whether the request refunds a delivered order or rejects an undelivered one."""
    REFUND = "refund"
    REJECT = "reject"


TERMINAL_REFUND_STATUSES = frozenset({
    RefundStatus.APPROVED,
    RefundStatus.REJECTED,
    RefundStatus.CANCELLED,
    RefundStatus.REFUNDED,
})

# Items in these states no longer count towards order totals.
EXCLUDED_FROM_TOTALS = frozenset({
    RefundStatus.APPROVED,
    RefundStatus.REFUNDED,
    RefundStatus.REJECTED,
})

# Items whose stock has already been given back (or was never owed).
RESTOCKED_STATUSES = frozenset({
    RefundStatus.APPROVED,
    RefundStatus.REFUNDED,
})

REFUND_TRANSITIONS = {
    RefundStatus.NONE: frozenset({RefundStatus.REQUESTED}),
    RefundStatus.REQUESTED: frozenset({
        RefundStatus.APPROVED,
        RefundStatus.REJECTED,
        RefundStatus.CANCELLED,
    }),
}


def ensure_transition(current, target: RefundStatus) -> None:
    """Raise InvalidRefundState unless current -> target is allowed."""
    current = RefundStatus.parse(current)
    if target not in REFUND_TRANSITIONS.get(current, frozenset()):
        raise InvalidRefundState(
            f"Cannot move refund from '{current.value}' to '{target.value}'"
        )


def ensure_can_request(current) -> None:
    """A refund may only be requested while nothing is in flight or settled."""
    current = RefundStatus.parse(current)
    if current != RefundStatus.NONE:
        raise InvalidRefundState(
            f"Refund already {current.value}; a new request is not allowed"
        )


def refund_mode(delivered_at: datetime | None) -> RefundMode:
    return RefundMode.REFUND if delivered_at else RefundMode.REJECT


def ensure_within_window(
    delivered_at: datetime | None,
    now: datetime,
    window_hours: int = 24,
) -> None:
    """Fail with RefundExpired once more than ``window_hours`` passed since delivery."""
    if delivered_at is None:
        return
    if now - delivered_at > timedelta(hours=window_hours):
        raise RefundExpired(
            f"Refunds are only accepted within {window_hours} hours of delivery"
        )
