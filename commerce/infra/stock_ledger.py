"""
Stock ledger: one row per applied stock change.

Each (order item, kind) pair is recorded at most once, which is what makes
delivery decrements and refund restocks happen exactly once per item.
"""
from __future__ import annotations

from enum import Enum
from uuid import UUID, uuid4

from django.db import models

from commerce.infra.models import TimeStampedModel


class MovementKind(str, Enum):
    DELIVERY_DECREMENT = "delivery_decrement"
    REFUND_RESTOCK = "refund_restock"


class StockMovement(TimeStampedModel):
    """Applied stock change for a product or a variation."""
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    stock_key = models.CharField(max_length=64)
    product_id = models.UUIDField(null=True, blank=True)
    product_variation_id = models.UUIDField(null=True, blank=True)
    order_id = models.UUIDField()
    order_item_id = models.UUIDField()
    kind = models.CharField(max_length=32, choices=[(k.value, k.value) for k in MovementKind])
    quantity_delta = models.IntegerField()
    resulting_stock = models.IntegerField()
    sequence_number = models.BigIntegerField()

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=("order_item_id", "kind"),
                name="stock_movement_once_per_item_kind",
            ),
        ]
        indexes = [
            models.Index(fields=("stock_key", "sequence_number")),
        ]
        ordering = ["sequence_number"]


def stock_key(product_id=None, product_variation_id=None) -> str:
    if product_variation_id:
        return f"variation:{product_variation_id}"
    return f"product:{product_id}"


class StockLedgerRepository:
    """Repository for the stock ledger."""

    def has_movement(self, order_item_id: UUID, kind: MovementKind) -> bool:
        return StockMovement.objects.filter(
            order_item_id=order_item_id,
            kind=kind.value,
        ).exists()

    def record(
        self,
        item,
        kind: MovementKind,
        quantity_delta: int,
        resulting_stock: int,
    ) -> StockMovement:
        """Append a movement for an order item; caller holds the stock row lock."""
        key = stock_key(item.product_id, item.product_variation_id)
        last = (
            StockMovement.objects
            .filter(stock_key=key)
            .order_by("-sequence_number")
            .first()
        )
        sequence_number = (last.sequence_number + 1) if last else 1

        return StockMovement.objects.create(
            stock_key=key,
            product_id=item.product_id,
            product_variation_id=item.product_variation_id,
            order_id=item.order_id,
            order_item_id=item.id,
            kind=kind.value,
            quantity_delta=quantity_delta,
            resulting_stock=resulting_stock,
            sequence_number=sequence_number,
        )

    def movements_for(self, product_id=None, product_variation_id=None) -> list[dict]:
        """Ledger history of one product or variation, oldest first."""
        movements = StockMovement.objects.filter(
            stock_key=stock_key(product_id, product_variation_id),
        ).order_by("sequence_number")
        return [self._to_dict(m) for m in movements]

    def _to_dict(self, movement: StockMovement) -> dict:
        return {
            "id": str(movement.id),
            "order_id": str(movement.order_id),
            "order_item_id": str(movement.order_item_id),
            "kind": movement.kind,
            "quantity_delta": movement.quantity_delta,
            "resulting_stock": movement.resulting_stock,
            "sequence_number": movement.sequence_number,
            "occurred_at": movement.created_at.isoformat(),
        }
