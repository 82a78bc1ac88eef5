"""
Rider assignment: handing orders to riders and recording their answers.
"""
from __future__ import annotations

import logging
from uuid import UUID

from django.db import transaction
from django.utils import timezone

from commerce.domain.assignment import (
    ACTIVE_ASSIGNMENT_STATUSES,
    RESPONSE_ORDER_STATUS,
    AssignmentStatus,
)
from commerce.domain.errors import (
    AssignmentNotFound,
    OrderNotFound,
    OrderNotPending,
    PermissionDenied,
    RiderInactive,
    RiderNotFound,
    ValidationError,
)
from commerce.domain.order import OrderStatus
from commerce.infra.locks import order_lock
from commerce.infra.models import OrderAssignmentORM, OrderORM, RiderORM
from commerce.infra.repositories import OrderRepository, RiderRepository
from commerce.services.notifications import NotificationService
from commerce.services.orders import OrderService

logger = logging.getLogger(__name__)


class AssignmentService:
    """Service for rider assignments."""

    def __init__(
        self,
        rider_repo: RiderRepository | None = None,
        order_repo: OrderRepository | None = None,
        order_service: OrderService | None = None,
        notifications: NotificationService | None = None,
    ):
        self.rider_repo = rider_repo or RiderRepository()
        self.order_repo = order_repo or OrderRepository()
        self.notifications = notifications or NotificationService()
        # Rider answers drive order status through the privileged path.
        self.order_service = order_service or OrderService(
            order_repo=OrderRepository(),
            notifications=self.notifications,
        )

    @transaction.atomic
    def assign(self, order_id: UUID | str, rider_id: UUID | str, notes: str = "") -> OrderAssignmentORM:
        """Assign a pending order to an active rider."""
        with order_lock(order_id):
            order = self._get_order(order_id)
            if order.status != OrderStatus.PENDING.value:
                raise OrderNotPending(f"Order {order.order_number} is {order.status}, not pending")
            rider = self._get_rider(rider_id)

            assignment = self.rider_repo.create_assignment(order, rider, notes)
            order.status = OrderStatus.ASSIGNED.value
            self.order_repo.save(order, ["status"])

        self.notifications.assignment_created(order, assignment)
        logger.info(
            "order_assigned",
            extra={"order_id": str(order.id), "assignment_id": str(assignment.id)},
        )
        return assignment

    @transaction.atomic
    def reassign(self, order_id: UUID | str, rider_id: UUID | str, notes: str = "") -> OrderAssignmentORM:
        """
        Hand an order to another rider whatever its status. Active assignments
        are retired (kept as ``reassigned``) before the new one is inserted.
        """
        with order_lock(order_id):
            order = self._get_order(order_id)
            rider = self._get_rider(rider_id)

            now = timezone.now()
            previous_riders = []
            for previous in self.rider_repo.active_assignments(order.id):
                previous.status = AssignmentStatus.REASSIGNED.value
                previous.responded_at = now
                self.rider_repo.save_assignment(previous, ["status", "responded_at"])
                previous_riders.append(previous.rider)

            assignment = self.rider_repo.create_assignment(order, rider, notes)
            order.status = OrderStatus.ASSIGNED.value
            self.order_repo.save(order, ["status"])

        self.notifications.assignment_reassigned(order, previous_riders, assignment)
        logger.info(
            "order_reassigned",
            extra={"order_id": str(order.id), "assignment_id": str(assignment.id)},
        )
        return assignment

    @transaction.atomic
    def respond(
        self,
        assignment_id: UUID | str,
        status: str,
        rider_user_id: UUID | str | None = None,
    ) -> OrderAssignmentORM:
        """
        Record a rider's answer. ``completed`` goes through the order status
        operation, so delivery settles cash payments and takes stock out.
        With ``rider_user_id`` only the assigned rider may answer.
        """
        try:
            answer = AssignmentStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown assignment response: {status}")
        if answer not in RESPONSE_ORDER_STATUS:
            raise ValidationError(f"Riders cannot set assignment status {status}")

        assignment = self.rider_repo.get_assignment(assignment_id, for_update=True)
        if assignment is None or AssignmentStatus(assignment.status) not in ACTIVE_ASSIGNMENT_STATUSES:
            raise AssignmentNotFound(f"Assignment {assignment_id} not found")
        if rider_user_id is not None and str(assignment.rider.user_id).lower() != str(rider_user_id).lower():
            raise PermissionDenied("Assignment belongs to another rider")

        assignment.status = answer.value
        assignment.responded_at = timezone.now()
        self.rider_repo.save_assignment(assignment, ["status", "responded_at"])

        order = self.order_service.update_status(assignment.order_id, RESPONSE_ORDER_STATUS[answer].value)
        self.notifications.assignment_responded(order, assignment)
        logger.info(
            "assignment_responded",
            extra={"order_id": str(order.id), "assignment_id": str(assignment.id), "status": assignment.status},
        )
        return assignment

    def get_current(self, order_id: UUID | str) -> OrderAssignmentORM | None:
        if self.order_repo.get_by_id(order_id) is None:
            raise OrderNotFound(f"Order {order_id} not found")
        return self.rider_repo.current_assignment(order_id)

    def current_assignment(self, order_id: UUID | str) -> dict:
        """Rider currently responsible for an order, ``{"rider": None}`` if nobody is."""
        assignment = self.get_current(order_id)
        if assignment is None:
            return {"rider": None}
        rider = assignment.rider
        return {
            "rider": {
                "id": str(rider.id),
                "fullName": rider.full_name,
                "phone": rider.phone,
            },
            "assignmentId": str(assignment.id),
            "status": assignment.status,
        }

    def _get_order(self, order_id) -> OrderORM:
        order = self.order_repo.get_by_id(order_id, for_update=True)
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found")
        return order

    def _get_rider(self, rider_id) -> RiderORM:
        rider = self.rider_repo.get_by_id(rider_id)
        if rider is None:
            raise RiderNotFound(f"Rider {rider_id} not found")
        if rider.active is False:
            raise RiderInactive(f"Rider {rider.full_name} is not active")
        return rider
