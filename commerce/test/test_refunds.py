"""
Tests for the refund workflow.
"""
from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

from django.test import TestCase
from django.utils import timezone

from commerce.domain.errors import (
    InvalidRefundState,
    OrderItemNotFound,
    OrderNotFound,
    RefundExpired,
)
from commerce.domain.refund import RefundMode
from commerce.infra.models import OrderORM, PaymentORM, ProductORM
from commerce.infra.outbox import OutboxEvent
from commerce.services.orders import OrderService
from commerce.services.refunds import RefundService
from commerce.test.factories import make_order, make_product


class RefundTestCase(TestCase):

    def setUp(self):
        self.user_id = str(uuid4())
        self.orders = OrderService()
        self.refunds = RefundService()

    def deliver(self, order):
        return self.orders.update_status(order.id, "delivered")

    def items(self, order):
        return list(order.items.order_by("price"))


class ItemRefundTest(RefundTestCase):

    def test_partial_item_refund_on_internal_order(self):
        order = make_order(user_id=self.user_id)
        self.deliver(order)
        cheap, _ = self.items(order)

        result = self.refunds.request_item_refund(cheap.id, "Damaged")
        self.assertEqual(result.item.refund_status, "requested")
        self.assertEqual(result.mode, RefundMode.REFUND)

        result = self.refunds.respond_to_item_refund(cheap.id, approve=True)
        order.refresh_from_db()
        self.assertEqual(result.item.refund_status, "approved")
        self.assertEqual(order.subtotal, Decimal("200.00"))
        self.assertEqual(order.tax, Decimal("20.00"))
        self.assertEqual(order.total, Decimal("220.00"))
        self.assertEqual(order.status, "delivered")

    def test_external_order_fixed_transport_fee(self):
        order = make_order(
            lines=[("500.00", 1, None), ("500.00", 1, None)],
            tax="1000.00",
            is_external=True,
        )
        self.assertEqual(order.total, Decimal("2000.00"))
        self.deliver(order)
        first = self.items(order)[0]

        self.refunds.request_item_refund(first.id, "Wrong size")
        self.refunds.respond_to_item_refund(first.id, approve=True)

        order.refresh_from_db()
        self.assertEqual(order.subtotal, Decimal("500.00"))
        self.assertEqual(order.tax, Decimal("1000.00"))
        self.assertEqual(order.total, Decimal("1500.00"))

    def test_request_at_23h59m_succeeds(self):
        order = make_order()
        self.deliver(order)
        OrderORM.objects.filter(id=order.id).update(
            delivered_at=timezone.now() - timedelta(hours=23, minutes=59),
        )
        item = self.items(order)[0]

        result = self.refunds.request_item_refund(item.id, "Late")
        self.assertEqual(result.item.refund_status, "requested")
        self.assertIsNotNone(result.item.refund_expires_at)

    def test_request_after_24h_fails(self):
        order = make_order()
        self.deliver(order)
        OrderORM.objects.filter(id=order.id).update(
            delivered_at=timezone.now() - timedelta(hours=24, seconds=1),
        )
        item = self.items(order)[0]

        with self.assertRaises(RefundExpired):
            self.refunds.request_item_refund(item.id, "Too late")
        item.refresh_from_db()
        self.assertEqual(item.refund_status, "none")

    def test_customer_reject_on_undelivered_order_is_final(self):
        order = make_order(user_id=self.user_id)
        cheap, _ = self.items(order)

        result = self.refunds.request_item_refund(cheap.id, "Changed my mind")
        self.assertEqual(result.mode, RefundMode.REJECT)
        self.assertEqual(result.item.refund_status, "rejected")
        self.assertFalse(result.item.refund_requested)
        self.assertFalse(OutboxEvent.objects.filter(event_type="refund_requested").exists())

        order.refresh_from_db()
        self.assertEqual(order.subtotal, Decimal("200.00"))
        self.assertEqual(order.tax, Decimal("20.00"))
        self.assertEqual(order.total, Decimal("220.00"))
        self.assertEqual(order.status, "pending")

        with self.assertRaises(InvalidRefundState):
            self.refunds.respond_to_item_refund(cheap.id, approve=True)

    def test_rejecting_every_item_cancels_order_and_cod_payment(self):
        order = make_order()
        for item in self.items(order):
            self.refunds.request_item_refund(item.id, "Not needed")

        order.refresh_from_db()
        self.assertEqual(order.status, "cancelled")
        self.assertEqual(order.total, Decimal("0.00"))
        payment = PaymentORM.objects.get(order=order)
        self.assertEqual(payment.status, "failed")
        self.assertEqual(payment.failure_reason, "order_cancelled")

    def test_approving_every_item_marks_order_refunded(self):
        order = make_order()
        self.deliver(order)
        for item in self.items(order):
            self.refunds.request_item_refund(item.id, "Broken")
            self.refunds.respond_to_item_refund(item.id, approve=True)

        order.refresh_from_db()
        self.assertEqual(order.status, "refunded")
        self.assertEqual(order.total, Decimal("0.00"))

    def test_admin_initiated_request_on_undelivered_order_is_reviewable(self):
        product = make_product(stock=10)
        order = make_order(lines=[("100.00", 2, product)], tax="0")
        item = self.items(order)[0]

        result = self.refunds.request_item_refund(item.id, "Customer called", admin_initiated=True)
        self.assertEqual(result.item.refund_status, "requested")
        self.assertEqual(OutboxEvent.objects.filter(event_type="refund_requested").count(), 1)

        self.refunds.respond_to_item_refund(item.id, approve=True)
        product.refresh_from_db()
        # Never delivered, so there was no decrement to give back.
        self.assertEqual(product.stock, 10)

    def test_admin_reject_leaves_totals_alone(self):
        order = make_order(user_id=self.user_id)
        self.deliver(order)
        cheap, _ = self.items(order)
        self.refunds.request_item_refund(cheap.id, "Damaged")

        result = self.refunds.respond_to_item_refund(cheap.id, approve=False, admin_note="Photo unclear")
        order.refresh_from_db()
        self.assertEqual(result.item.refund_status, "rejected")
        self.assertEqual(order.total, Decimal("330.00"))
        event = OutboxEvent.objects.get(event_type="refund_rejected")
        self.assertIn("Photo unclear", event.event_data["body"])
        self.assertEqual(event.event_data["recipient_user_id"], self.user_id)

    def test_second_request_is_rejected(self):
        order = make_order()
        self.deliver(order)
        item = self.items(order)[0]
        self.refunds.request_item_refund(item.id, "Damaged")
        with self.assertRaises(InvalidRefundState):
            self.refunds.request_item_refund(item.id, "Damaged again")

    def test_cancel_request(self):
        order = make_order()
        self.deliver(order)
        item = self.items(order)[0]
        self.refunds.request_item_refund(item.id, "Damaged")

        item = self.refunds.cancel_item_refund(item.id)
        self.assertEqual(item.refund_status, "cancelled")
        self.assertFalse(item.refund_requested)
        self.assertIsNone(item.refund_reason)
        with self.assertRaises(InvalidRefundState):
            self.refunds.respond_to_item_refund(item.id, approve=True)
        with self.assertRaises(InvalidRefundState):
            self.refunds.cancel_item_refund(item.id)

    def test_unknown_item(self):
        with self.assertRaises(OrderItemNotFound):
            self.refunds.request_item_refund(uuid4(), "Missing")


class OrderRefundTest(RefundTestCase):

    def test_approve_full_order_refund(self):
        product = make_product(stock=10)
        order = make_order(lines=[("100.00", 2, product), ("200.00", 1, None)], tax="40.00", user_id=self.user_id)
        self.deliver(order)
        product.refresh_from_db()
        self.assertEqual(product.stock, 8)

        result = self.refunds.request_order_refund(order.id, "Everything arrived broken")
        self.assertEqual(result.order.refund_status, "requested")
        self.assertEqual(OutboxEvent.objects.filter(event_type="refund_requested").count(), 1)

        result = self.refunds.respond_to_order_refund(order.id, approve=True)
        self.assertEqual(result.order.status, "refunded")
        self.assertEqual(result.order.refund_status, "approved")
        self.assertEqual(result.order.total, Decimal("0.00"))
        self.assertEqual(
            {item.refund_status for item in result.order.items.all()},
            {"approved"},
        )
        product.refresh_from_db()
        self.assertEqual(product.stock, 10)

    def test_full_order_approval_does_not_restock_already_approved_item(self):
        product = make_product(stock=10)
        order = make_order(lines=[("100.00", 3, product), ("50.00", 1, None)], tax="0")
        self.deliver(order)
        product_item = order.items.get(product_id=product.id)
        self.refunds.request_item_refund(product_item.id, "Broken")
        self.refunds.respond_to_item_refund(product_item.id, approve=True)
        product.refresh_from_db()
        self.assertEqual(product.stock, 10)

        self.refunds.request_order_refund(order.id, "Rest too")
        self.refunds.respond_to_order_refund(order.id, approve=True)
        product.refresh_from_db()
        self.assertEqual(product.stock, 10)

    def test_reject_full_order_refund(self):
        order = make_order(user_id=self.user_id)
        self.deliver(order)
        self.refunds.request_order_refund(order.id, "Late delivery")

        result = self.refunds.respond_to_order_refund(order.id, approve=False)
        self.assertEqual(result.order.refund_status, "rejected")
        self.assertEqual(result.order.status, "delivered")
        self.assertEqual(result.order.total, Decimal("330.00"))

    def test_customer_reject_of_undelivered_order(self):
        order = make_order()
        result = self.refunds.request_order_refund(order.id, "Ordered twice")
        self.assertEqual(result.mode, RefundMode.REJECT)
        self.assertEqual(result.order.refund_status, "rejected")
        self.assertFalse(OutboxEvent.objects.filter(event_type="refund_requested").exists())

    def test_cancel_order_refund(self):
        order = make_order()
        self.deliver(order)
        self.refunds.request_order_refund(order.id, "Late")
        order = self.refunds.cancel_order_refund(order.id)
        self.assertEqual(order.refund_status, "cancelled")
        self.assertIsNone(order.refund_requested_at)

    def test_unknown_order(self):
        with self.assertRaises(OrderNotFound):
            self.refunds.request_order_refund(uuid4(), "Missing")

    def test_list_refund_requests(self):
        order = make_order()
        self.deliver(order)
        item = self.items(order)[0]
        self.refunds.request_item_refund(item.id, "Damaged")

        listing = self.refunds.list_refund_requests()
        self.assertEqual([i.id for i in listing["items"]], [item.id])
        self.assertEqual(listing["orders"], [])
