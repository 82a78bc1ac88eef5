"""
Tests for the stock ledger: delivery decrements and refund restocks.
"""
from django.test import TestCase

from commerce.infra.stock_ledger import MovementKind, StockMovement
from commerce.services.inventory import InventoryService
from commerce.services.orders import OrderService
from commerce.services.refunds import RefundService
from commerce.test.factories import make_order, make_product, make_variation


class InventoryTest(TestCase):

    def setUp(self):
        self.orders = OrderService()
        self.refunds = RefundService()

    def test_creation_does_not_touch_stock(self):
        product = make_product(stock=5)
        make_order(lines=[("10.00", 3, product)], tax="0")
        product.refresh_from_db()
        self.assertEqual(product.stock, 5)

    def test_cancelled_order_never_decrements(self):
        product = make_product(stock=5)
        order = make_order(lines=[("10.00", 3, product)], tax="0")
        self.orders.update_status(order.id, "processing")
        self.orders.update_status(order.id, "cancelled")
        product.refresh_from_db()
        self.assertEqual(product.stock, 5)
        self.assertFalse(StockMovement.objects.exists())

    def test_delivery_decrements_exactly_once(self):
        product = make_product(stock=5)
        order = make_order(lines=[("10.00", 3, product)], tax="0")
        self.orders.update_status(order.id, "delivered")
        self.orders.update_status(order.id, "delivered")
        product.refresh_from_db()
        self.assertEqual(product.stock, 2)
        self.assertEqual(StockMovement.objects.filter(kind=MovementKind.DELIVERY_DECREMENT.value).count(), 1)

    def test_stock_never_goes_negative(self):
        product = make_product(stock=2)
        order = make_order(lines=[("10.00", 5, product)], tax="0")
        self.orders.update_status(order.id, "delivered")
        product.refresh_from_db()
        self.assertEqual(product.stock, 0)
        movement = StockMovement.objects.get()
        self.assertEqual(movement.quantity_delta, -2)
        self.assertEqual(movement.resulting_stock, 0)

    def test_variation_stock_wins_over_product_stock(self):
        product = make_product(stock=10)
        variation = make_variation(product, stock=4)
        order = self.orders.create_order(
            {"tax": "0"},
            [{
                "product_name": "Shirt",
                "variation_name": "Large",
                "price": "15.00",
                "quantity": 1,
                "product_id": str(product.id),
                "product_variation_id": str(variation.id),
            }],
        )
        self.orders.update_status(order.id, "delivered")
        product.refresh_from_db()
        variation.refresh_from_db()
        self.assertEqual(product.stock, 10)
        self.assertEqual(variation.stock, 3)

    def test_untracked_product_is_skipped(self):
        product = make_product(stock=10, track_quantity=False)
        order = make_order(lines=[("10.00", 3, product)], tax="0")
        self.orders.update_status(order.id, "delivered")
        product.refresh_from_db()
        self.assertEqual(product.stock, 10)

    def test_refund_restocks_exactly_once(self):
        product = make_product(stock=5)
        order = make_order(lines=[("10.00", 3, product), ("20.00", 1, None)], tax="0")
        self.orders.update_status(order.id, "delivered")
        item = order.items.get(product_id=product.id)

        self.refunds.request_item_refund(item.id, "Broken")
        self.refunds.respond_to_item_refund(item.id, approve=True)
        InventoryService().restock_for_refund([item])

        product.refresh_from_db()
        self.assertEqual(product.stock, 5)
        history = InventoryService().movements_for(product_id=product.id)
        self.assertEqual(
            [(m["kind"], m["quantity_delta"], m["sequence_number"]) for m in history],
            [("delivery_decrement", -3, 1), ("refund_restock", 3, 2)],
        )

    def test_restock_without_delivery_can_be_allowed(self):
        product = make_product(stock=5)
        order = make_order(lines=[("10.00", 3, product)], tax="0")
        item = order.items.get()

        inventory = InventoryService(restock_requires_delivery=False)
        self.assertEqual(inventory.restock_for_refund([item]), 1)
        product.refresh_from_db()
        self.assertEqual(product.stock, 8)

    def test_approved_items_are_not_decremented_on_delivery(self):
        product = make_product(stock=5)
        order = make_order(lines=[("10.00", 3, product), ("20.00", 1, None)], tax="0")
        item = order.items.get(product_id=product.id)
        self.refunds.request_item_refund(item.id, "Not needed", admin_initiated=True)
        self.refunds.respond_to_item_refund(item.id, approve=True)

        self.orders.update_status(order.id, "delivered")
        product.refresh_from_db()
        self.assertEqual(product.stock, 5)
