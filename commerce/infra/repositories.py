"""
Infrastructure repositories for domain entities.

``OrderRepository`` is the privileged implementation used by staff and
server-side callers; ``CustomerOrderRepository`` only sees the orders of one
customer. The API layer picks one from the request context and injects it
into the services.
"""
from __future__ import annotations

from uuid import UUID

from django.db import transaction
from django.db.models import QuerySet

from commerce.domain.order import Order
from commerce.domain.totals import quantize_money
from commerce.infra.models import (
    OrderAssignmentORM,
    OrderItemORM,
    OrderORM,
    PaymentORM,
    ProductORM,
    ProductVariationORM,
    RiderORM,
    SiteSetting,
)


class OrderRepository:
    """Repository for Order aggregate (privileged, unscoped)."""

    privileged = True

    def orders(self) -> QuerySet:
        return OrderORM.objects.all()

    def order_items(self) -> QuerySet:
        return OrderItemORM.objects.all()

    def get_by_id(self, order_id: UUID, for_update: bool = False) -> OrderORM | None:
        """Get order by ID; ``for_update`` row-locks it for the transaction."""
        queryset = self.orders()
        if for_update:
            queryset = queryset.select_for_update()
        return queryset.filter(id=order_id).first()

    def get_with_items(self, order_id: UUID) -> OrderORM | None:
        """Get order by ID with items (optimized, no N+1)."""
        return (
            self.orders()
            .prefetch_related("items")
            .filter(id=order_id)
            .first()
        )

    def get_item(self, item_id: UUID, for_update: bool = False) -> OrderItemORM | None:
        queryset = self.order_items()
        if for_update:
            queryset = queryset.select_for_update()
        return queryset.filter(id=item_id).first()

    def items_for(self, order: OrderORM, for_update: bool = False) -> list[OrderItemORM]:
        """Fresh item list of an order, read from the database."""
        queryset = OrderItemORM.objects.filter(order_id=order.id).order_by("created_at", "id")
        if for_update:
            queryset = queryset.select_for_update()
        return list(queryset)

    def list_for_user(self, user_id: UUID, limit: int = 50, offset: int = 0) -> list[OrderORM]:
        """Get orders by customer with pagination (optimized)."""
        return list(
            self.orders()
            .filter(user_id=user_id)
            .prefetch_related("items")
            .order_by("-created_at")[offset:offset + limit]
        )

    @transaction.atomic
    def create(self, order: Order, **fields) -> OrderORM:
        """Persist an order draft with its items."""
        order_orm = OrderORM.objects.create(
            status=order.status.value,
            is_external=order.is_external,
            subtotal=quantize_money(order.subtotal),
            tax=quantize_money(order.tax),
            total=quantize_money(order.total),
            **fields,
        )
        OrderItemORM.objects.bulk_create([
            OrderItemORM(
                order=order_orm,
                product_id=item.product_id,
                product_variation_id=item.product_variation_id,
                product_name=item.product_name,
                variation_name=item.variation_name,
                quantity=item.quantity,
                price=quantize_money(item.price),
                total=quantize_money(item.subtotal),
            )
            for item in order.items
        ])
        return order_orm

    def order_number_taken(self, order_number: str) -> bool:
        return OrderORM.objects.filter(order_number=order_number).exists()

    def save(self, order: OrderORM, fields: list[str]) -> None:
        order.save(update_fields=[*fields, "updated_at"])

    def save_item(self, item: OrderItemORM, fields: list[str]) -> None:
        item.save(update_fields=[*fields, "updated_at"])

    def delete(self, order: OrderORM) -> None:
        order.delete()

    def list_refund_requests(self, status: str = "requested") -> dict:
        """Items and orders with the given refund status, newest request first."""
        items = list(
            self.order_items()
            .filter(refund_status=status)
            .select_related("order")
            .order_by("-refund_requested_at")
        )
        orders = list(
            self.orders()
            .filter(refund_status=status)
            .prefetch_related("items")
            .order_by("-refund_requested_at")
        )
        return {"items": items, "orders": orders}


class CustomerOrderRepository(OrderRepository):
    """Order repository restricted to the orders of a single customer."""

    privileged = False

    def __init__(self, user_id: UUID | str):
        self.user_id = user_id

    def orders(self) -> QuerySet:
        return OrderORM.objects.filter(user_id=self.user_id)

    def create(self, order: Order, **fields) -> OrderORM:
        fields["user_id"] = self.user_id
        return super().create(order, **fields)

    def order_items(self) -> QuerySet:
        return OrderItemORM.objects.filter(order__user_id=self.user_id)


class ProductRepository:
    """Stock rows of products and variations."""

    def get_product(self, product_id: UUID, for_update: bool = False) -> ProductORM | None:
        queryset = ProductORM.objects.all()
        if for_update:
            queryset = queryset.select_for_update()
        return queryset.filter(id=product_id).first()

    def get_variation(self, variation_id: UUID, for_update: bool = False) -> ProductVariationORM | None:
        queryset = ProductVariationORM.objects.all()
        if for_update:
            queryset = queryset.select_for_update()
        return queryset.filter(id=variation_id).first()

    def set_stock(self, row: ProductORM | ProductVariationORM, stock: int) -> None:
        row.stock = stock
        row.save(update_fields=["stock", "updated_at"])


class PaymentRepository:
    """Repository for payments."""

    def get_by_id(self, payment_id: UUID, for_update: bool = False) -> PaymentORM | None:
        queryset = PaymentORM.objects.all()
        if for_update:
            queryset = queryset.select_for_update()
        return queryset.filter(id=payment_id).first()

    def find(
        self,
        reference: str | None = None,
        payment_id: UUID | None = None,
        transaction_id: str | None = None,
        for_update: bool = False,
    ) -> PaymentORM | None:
        """Look a payment up by id, then reference, then gateway transaction id."""
        queryset = PaymentORM.objects.all()
        if for_update:
            queryset = queryset.select_for_update()
        if payment_id:
            payment = queryset.filter(id=payment_id).first()
            if payment:
                return payment
        if reference:
            payment = queryset.filter(reference=reference).first()
            if payment:
                return payment
        if transaction_id:
            return queryset.filter(kpay_transaction_id=transaction_id).first()
        return None

    def for_order(self, order_id: UUID) -> list[PaymentORM]:
        return list(
            PaymentORM.objects
            .filter(order_id=order_id)
            .order_by("-created_at")
        )

    def latest_for_order(self, order_id: UUID) -> PaymentORM | None:
        return PaymentORM.objects.filter(order_id=order_id).order_by("-created_at").first()

    def pending_for_order(self, order_id: UUID, payment_method: str) -> list[PaymentORM]:
        return list(
            PaymentORM.objects
            .select_for_update()
            .filter(order_id=order_id, payment_method=payment_method, status="pending")
        )

    def has_settled_payment(self, order_id: UUID) -> bool:
        return PaymentORM.objects.filter(
            order_id=order_id,
            status__in=("completed", "successful"),
        ).exists()

    def create(self, **fields) -> PaymentORM:
        return PaymentORM.objects.create(**fields)

    def save(self, payment: PaymentORM, fields: list[str]) -> None:
        payment.save(update_fields=[*fields, "updated_at"])


class RiderRepository:
    """Repository for riders and their order assignments."""

    def get_by_id(self, rider_id: UUID) -> RiderORM | None:
        return RiderORM.objects.filter(id=rider_id).first()

    def get_assignment(self, assignment_id: UUID, for_update: bool = False) -> OrderAssignmentORM | None:
        queryset = OrderAssignmentORM.objects.select_related("rider")
        if for_update:
            queryset = queryset.select_for_update()
        return queryset.filter(id=assignment_id).first()

    def active_assignments(self, order_id: UUID) -> list[OrderAssignmentORM]:
        return list(
            OrderAssignmentORM.objects
            .select_for_update()
            .filter(order_id=order_id, status__in=("pending", "accepted"))
            .order_by("-assigned_at")
        )

    def current_assignment(self, order_id: UUID) -> OrderAssignmentORM | None:
        """Latest assignment of an order that has not been reassigned away."""
        return (
            OrderAssignmentORM.objects
            .select_related("rider")
            .filter(order_id=order_id)
            .exclude(status="reassigned")
            .order_by("-assigned_at")
            .first()
        )

    def create_assignment(self, order: OrderORM, rider: RiderORM, notes: str = "") -> OrderAssignmentORM:
        return OrderAssignmentORM.objects.create(order=order, rider=rider, notes=notes or "")

    def save_assignment(self, assignment: OrderAssignmentORM, fields: list[str]) -> None:
        assignment.save(update_fields=[*fields, "updated_at"])


class SiteSettingRepository:
    """Key/value site settings."""

    def get(self, key: str):
        setting = SiteSetting.objects.filter(key=key).first()
        return setting.value if setting else None

    def set(self, key: str, value) -> None:
        SiteSetting.objects.update_or_create(key=key, defaults={"value": value})

    def delete(self, key: str) -> None:
        SiteSetting.objects.filter(key=key).delete()
