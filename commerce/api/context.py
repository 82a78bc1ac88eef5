"""
Per-request wiring of repositories and services.

Authentication happens upstream; the caller's identity arrives in the trusted
``X-User-ID`` and ``X-User-Role`` headers. Staff get the privileged order
repository, everybody else a repository scoped to their own orders (guests see
guest orders only).
"""
from __future__ import annotations

from commerce.domain.errors import PermissionDenied
from commerce.domain.order import normalize_optional_uuid
from commerce.infra.repositories import CustomerOrderRepository, OrderRepository
from commerce.services.assignments import AssignmentService
from commerce.services.availability import AvailabilityService
from commerce.services.inventory import InventoryService
from commerce.services.orders import OrderService
from commerce.services.payments import PaymentService
from commerce.services.refunds import RefundService

ADMIN_ROLES = frozenset({"admin", "staff"})
RIDER_ROLE = "rider"


class RequestContext:
    def __init__(self, request):
        self.request = request
        self.user_id = normalize_optional_uuid(request.headers.get("X-User-ID"))
        self.role = (request.headers.get("X-User-Role") or "").strip().lower() or None

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    def require_admin(self) -> None:
        if not self.is_admin:
            raise PermissionDenied("Admin access required")

    def require_rider(self) -> None:
        if self.role != RIDER_ROLE and not self.is_admin:
            raise PermissionDenied("Rider access required")

    def order_repo(self) -> OrderRepository:
        if self.is_admin:
            return OrderRepository()
        return CustomerOrderRepository(self.user_id)

    def payment_service(self) -> PaymentService:
        return PaymentService(order_repo=self.order_repo())

    def order_service(self) -> OrderService:
        order_repo = self.order_repo()
        return OrderService(
            order_repo=order_repo,
            payment_service=PaymentService(order_repo=order_repo),
        )

    def refund_service(self) -> RefundService:
        order_repo = self.order_repo()
        return RefundService(
            order_repo=order_repo,
            payment_service=PaymentService(order_repo=order_repo),
        )

    def assignment_service(self) -> AssignmentService:
        return AssignmentService(order_repo=self.order_repo())

    def availability_service(self) -> AvailabilityService:
        return AvailabilityService()

    def inventory_service(self) -> InventoryService:
        return InventoryService()
