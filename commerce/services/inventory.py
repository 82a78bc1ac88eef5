"""
Inventory ledger operations: decrement on delivery, restock on refund approval.
"""
from __future__ import annotations

import logging

from django.db import transaction

from commerce.conf import storefront_setting
from commerce.domain.refund import RESTOCKED_STATUSES, RefundStatus
from commerce.infra.repositories import ProductRepository
from commerce.infra.stock_ledger import MovementKind, StockLedgerRepository

logger = logging.getLogger(__name__)


class InventoryService:
    """Applies stock changes for order items, each at most once."""

    def __init__(
        self,
        product_repo: ProductRepository | None = None,
        ledger_repo: StockLedgerRepository | None = None,
        restock_requires_delivery: bool | None = None,
    ):
        self.product_repo = product_repo or ProductRepository()
        self.ledger_repo = ledger_repo or StockLedgerRepository()
        if restock_requires_delivery is None:
            restock_requires_delivery = storefront_setting("RESTOCK_REQUIRES_DELIVERY")
        self.restock_requires_delivery = restock_requires_delivery

    def decrement_for_delivery(self, items) -> int:
        """Take delivered quantities out of stock; returns the number of items applied."""
        applied = 0
        for item in items:
            if RefundStatus.parse(item.refund_status) in RESTOCKED_STATUSES:
                continue
            if self._apply(item, MovementKind.DELIVERY_DECREMENT, -item.quantity):
                applied += 1
        return applied

    def restock_for_refund(self, items) -> int:
        """Put refunded quantities back; returns the number of items applied."""
        applied = 0
        for item in items:
            if self.restock_requires_delivery and not self.ledger_repo.has_movement(
                item.id, MovementKind.DELIVERY_DECREMENT
            ):
                logger.warning(
                    "restock_skipped_not_decremented",
                    extra={"order_id": str(item.order_id), "order_item_id": str(item.id)},
                )
                continue
            if self._apply(item, MovementKind.REFUND_RESTOCK, item.quantity):
                applied += 1
        return applied

    def movements_for(self, product_id=None, product_variation_id=None) -> list[dict]:
        return self.ledger_repo.movements_for(product_id, product_variation_id)

    def _apply(self, item, kind: MovementKind, delta: int) -> bool:
        """
        Apply one stock change inside its own savepoint. Failures are logged
        and reported as not applied so the remaining items still go through.
        """
        if item.quantity <= 0:
            return False
        if self.ledger_repo.has_movement(item.id, kind):
            return False

        try:
            with transaction.atomic():
                row = self._stock_row(item)
                if row is None:
                    return False
                new_stock = max(0, row.stock + delta)
                applied_delta = new_stock - row.stock
                self.product_repo.set_stock(row, new_stock)
                self.ledger_repo.record(item, kind, applied_delta, new_stock)
        except Exception as e:
            logger.error(
                "stock_update_failed",
                extra={
                    "order_id": str(item.order_id),
                    "order_item_id": str(item.id),
                    "operation": kind.value,
                    "error": str(e),
                },
                exc_info=True,
            )
            return False

        logger.info(
            "stock_updated",
            extra={
                "order_id": str(item.order_id),
                "order_item_id": str(item.id),
                "operation": kind.value,
                "stock": new_stock,
            },
        )
        return True

    def _stock_row(self, item):
        """Variation stock wins over product stock; untracked products are skipped."""
        if item.product_variation_id:
            variation = self.product_repo.get_variation(item.product_variation_id, for_update=True)
            if variation is None:
                logger.warning(
                    "stock_variation_missing",
                    extra={"order_item_id": str(item.id)},
                )
            return variation
        if item.product_id:
            product = self.product_repo.get_product(item.product_id, for_update=True)
            if product is None or not product.track_quantity:
                return None
            return product
        return None
