"""
Integration tests for the GraphQL API and the JSON endpoints.
"""
from uuid import uuid4

from django.test import TestCase

from commerce.infra.models import IdempotencyKey, Notification, OrderORM, PaymentORM
from commerce.services.orders import OrderService
from commerce.test.factories import make_order, make_product, make_rider

CREATE_ORDER = """
    mutation CreateOrder($input: CreateOrderInput!) {
        createOrder(input: $input) {
            id
            userId
            status
            subtotal
            total
            items { productName quantity price refundStatus }
        }
    }
"""

ORDER_INPUT = {
    "tax": "30.00",
    "customerFirstName": "Aline",
    "deliveryCity": "Kigali",
    "items": [
        {"productName": "Rice 5kg", "quantity": 1, "price": "100.00"},
        {"productName": "Beans 2kg", "quantity": 2, "price": "100.00"},
    ],
}


class GraphQLTestCase(TestCase):

    def setUp(self):
        self.user_id = str(uuid4())

    def graphql(self, query, variables=None, user_id=None, role=None, idempotency_key=None):
        headers = {}
        if user_id:
            headers["HTTP_X_USER_ID"] = user_id
        if role:
            headers["HTTP_X_USER_ROLE"] = role
        if idempotency_key:
            headers["HTTP_IDEMPOTENCY_KEY"] = idempotency_key
        return self.client.post(
            "/graphql/",
            data={"query": query, "variables": variables or {}},
            content_type="application/json",
            **headers,
        )

    def error_code(self, response):
        return response.json()["errors"][0]["extensions"]["code"]


class OrderAPITest(GraphQLTestCase):

    def test_create_order_mutation(self):
        response = self.graphql(CREATE_ORDER, {"input": ORDER_INPUT}, user_id=self.user_id)

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertNotIn("errors", data)
        order = data["data"]["createOrder"]
        self.assertEqual(order["userId"], self.user_id)
        self.assertEqual(order["status"], "pending")
        self.assertEqual(order["subtotal"], "300.00")
        self.assertEqual(order["total"], "330.00")
        self.assertEqual(len(order["items"]), 2)
        self.assertEqual(order["items"][0]["refundStatus"], "none")

    def test_get_order_query(self):
        order = make_order(user_id=self.user_id)
        query = """
            query GetOrder($id: UUID!) {
                order(id: $id) { id orderNumber total items { id } }
            }
        """
        response = self.graphql(query, {"id": str(order.id)}, user_id=self.user_id)
        self.assertEqual(response.json()["data"]["order"]["orderNumber"], order.order_number)

        response = self.graphql(query, {"id": str(order.id)}, user_id=str(uuid4()))
        self.assertIsNone(response.json()["data"]["order"])

    def test_customer_cannot_set_status_of_internal_order(self):
        order = make_order(user_id=self.user_id)
        query = """
            mutation Update($orderId: UUID!, $status: String!) {
                updateOrderStatus(orderId: $orderId, status: $status) { status }
            }
        """
        response = self.graphql(query, {"orderId": str(order.id), "status": "delivered"}, user_id=self.user_id)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.error_code(response), "MANUAL_STATUS_DENIED")

        response = self.graphql(query, {"orderId": str(order.id), "status": "delivered"}, role="admin")
        self.assertEqual(response.json()["data"]["updateOrderStatus"]["status"], "delivered")

    def test_only_admin_deletes(self):
        order = make_order(user_id=self.user_id)
        query = "mutation Delete($orderId: UUID!) { deleteOrder(orderId: $orderId) }"
        response = self.graphql(query, {"orderId": str(order.id)}, user_id=self.user_id)
        self.assertEqual(self.error_code(response), "FORBIDDEN")

        response = self.graphql(query, {"orderId": str(order.id)}, role="staff")
        self.assertTrue(response.json()["data"]["deleteOrder"])
        self.assertFalse(OrderORM.objects.exists())

    def test_invalid_query_is_bad_request(self):
        response = self.graphql("query { nope }")
        self.assertEqual(response.status_code, 400)

    def test_invalid_json(self):
        response = self.client.post("/graphql/", data="{", content_type="application/json")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["code"], "VALIDATION_ERROR")

    def test_orders_availability(self):
        response = self.graphql("query { ordersAvailability { enabled source nextToggleAt } }")
        availability = response.json()["data"]["ordersAvailability"]
        self.assertEqual(availability["source"], "schedule")
        self.assertIsNotNone(availability["nextToggleAt"])


class IdempotencyTest(GraphQLTestCase):

    def test_same_key_and_request_replays_response(self):
        first = self.graphql(CREATE_ORDER, {"input": ORDER_INPUT}, user_id=self.user_id, idempotency_key="key-1")
        second = self.graphql(CREATE_ORDER, {"input": ORDER_INPUT}, user_id=self.user_id, idempotency_key="key-1")

        self.assertEqual(first.json(), second.json())
        self.assertEqual(OrderORM.objects.count(), 1)
        self.assertEqual(IdempotencyKey.objects.get().operation, "CREATE_ORDER")

    def test_same_key_different_request_conflicts(self):
        self.graphql(CREATE_ORDER, {"input": ORDER_INPUT}, user_id=self.user_id, idempotency_key="key-2")
        other_input = dict(ORDER_INPUT, tax="0")
        response = self.graphql(CREATE_ORDER, {"input": other_input}, user_id=self.user_id, idempotency_key="key-2")

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["error"]["code"], "DUPLICATE_REQUEST")
        self.assertEqual(OrderORM.objects.count(), 1)

    def test_failed_results_are_not_cached(self):
        query = """
            mutation Update($orderId: UUID!, $status: String!) {
                updateOrderStatus(orderId: $orderId, status: $status) { status }
            }
        """
        variables = {"orderId": str(uuid4()), "status": "shipped"}
        self.graphql(query, variables, user_id=self.user_id, idempotency_key="key-3")
        self.assertFalse(IdempotencyKey.objects.exists())


class RefundAPITest(GraphQLTestCase):

    REQUEST = """
        mutation Request($itemId: UUID!, $reason: String!) {
            requestItemRefund(itemId: $itemId, reason: $reason) {
                mode
                item { refundStatus }
            }
        }
    """
    RESPOND = """
        mutation Respond($itemId: UUID!, $approve: Boolean!) {
            respondToItemRefund(itemId: $itemId, approve: $approve) {
                order { total status }
                item { refundStatus }
            }
        }
    """

    def test_refund_flow(self):
        order = make_order(user_id=self.user_id)
        OrderService().update_status(order.id, "delivered")
        item = order.items.get(price="100.00")

        response = self.graphql(self.REQUEST, {"itemId": str(item.id), "reason": "Damaged"}, user_id=self.user_id)
        result = response.json()["data"]["requestItemRefund"]
        self.assertEqual(result["mode"], "refund")
        self.assertEqual(result["item"]["refundStatus"], "requested")

        response = self.graphql(self.RESPOND, {"itemId": str(item.id), "approve": True}, user_id=self.user_id)
        self.assertEqual(self.error_code(response), "FORBIDDEN")

        response = self.graphql(self.RESPOND, {"itemId": str(item.id), "approve": True}, role="admin")
        result = response.json()["data"]["respondToItemRefund"]
        self.assertEqual(result["item"]["refundStatus"], "approved")
        self.assertEqual(result["order"]["total"], "220.00")

    def test_expired_window_code(self):
        order = make_order(user_id=self.user_id)
        OrderService().update_status(order.id, "delivered")
        OrderORM.objects.filter(id=order.id).update(delivered_at="2000-01-01T00:00:00Z")
        item = order.items.first()

        response = self.graphql(self.REQUEST, {"itemId": str(item.id), "reason": "Late"}, user_id=self.user_id)
        self.assertEqual(self.error_code(response), "REFUND_EXPIRED")

    def test_refund_requests_are_admin_only(self):
        query = "query { refundRequests { items { id } orders { id } } }"
        self.assertEqual(self.error_code(self.graphql(query, user_id=self.user_id)), "FORBIDDEN")
        response = self.graphql(query, role="admin")
        self.assertEqual(response.json()["data"]["refundRequests"], {"items": [], "orders": []})


class AssignmentAPITest(GraphQLTestCase):

    def test_assign_and_respond(self):
        order = make_order(user_id=self.user_id)
        rider_user_id = str(uuid4())
        rider = make_rider(user_id=rider_user_id)
        assign = """
            mutation Assign($orderId: UUID!, $riderId: UUID!) {
                assignRider(orderId: $orderId, riderId: $riderId) { id status rider { fullName } }
            }
        """
        variables = {"orderId": str(order.id), "riderId": str(rider.id)}
        self.assertEqual(self.error_code(self.graphql(assign, variables, user_id=self.user_id)), "FORBIDDEN")

        assignment = self.graphql(assign, variables, role="admin").json()["data"]["assignRider"]
        self.assertEqual(assignment["rider"]["fullName"], rider.full_name)

        respond = """
            mutation Respond($assignmentId: UUID!, $status: String!) {
                respondToAssignment(assignmentId: $assignmentId, status: $status) { status }
            }
        """
        variables = {"assignmentId": assignment["id"], "status": "accepted"}
        self.assertEqual(self.error_code(self.graphql(respond, variables, user_id=self.user_id)), "FORBIDDEN")
        self.assertEqual(self.error_code(self.graphql(respond, variables, role="rider")), "FORBIDDEN")
        other_rider = str(uuid4())
        make_rider(user_id=other_rider, full_name="Other Rider")
        response = self.graphql(respond, variables, user_id=other_rider, role="rider")
        self.assertEqual(self.error_code(response), "FORBIDDEN")

        response = self.graphql(respond, variables, user_id=rider_user_id, role="rider")
        self.assertEqual(response.json()["data"]["respondToAssignment"]["status"], "accepted")

        query = "query Rider($orderId: UUID!) { currentRider(orderId: $orderId) { fullName } }"
        response = self.graphql(query, {"orderId": str(order.id)}, user_id=self.user_id)
        self.assertEqual(response.json()["data"]["currentRider"]["fullName"], rider.full_name)


class StockHistoryAPITest(GraphQLTestCase):

    QUERY = """
        query History($productId: UUID) {
            stockHistory(productId: $productId) { kind quantityDelta resultingStock sequenceNumber }
        }
    """

    def test_admin_reads_stock_history(self):
        product = make_product(stock=5)
        order = make_order(lines=[("10.00", 2, product)], tax="0")
        OrderService().update_status(order.id, "delivered")
        variables = {"productId": str(product.id)}

        self.assertEqual(self.error_code(self.graphql(self.QUERY, variables, user_id=self.user_id)), "FORBIDDEN")

        response = self.graphql(self.QUERY, variables, role="admin")
        self.assertEqual(
            response.json()["data"]["stockHistory"],
            [{"kind": "delivery_decrement", "quantityDelta": -2, "resultingStock": 3, "sequenceNumber": 1}],
        )

    def test_product_or_variation_required(self):
        response = self.graphql(self.QUERY, {}, role="admin")
        self.assertEqual(self.error_code(response), "VALIDATION_ERROR")


class RestAPITest(TestCase):

    def post(self, path, body, **headers):
        return self.client.post(path, data=body, content_type="application/json", **headers)

    def test_create_order(self):
        response = self.post("/api/orders/create", {
            "order": {"tax": "0", "customer_first_name": "Aline", "payment_method": "cash_on_delivery"},
            "items": [{"product_name": "Rice", "price": "1000", "quantity": 2}],
        })
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["schemaVersion"], 1)
        self.assertEqual(body["order"]["total"], "2000.00")
        self.assertEqual(len(body["order"]["items"]), 1)

    def test_create_order_requires_items(self):
        response = self.post("/api/orders/create", {"order": {}})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["code"], "VALIDATION_ERROR")

    def test_payments_for_order(self):
        order = make_order()
        response = self.client.get(f"/api/payments/order/{order.id}")
        payments = response.json()["payments"]
        self.assertEqual(len(payments), 1)
        self.assertEqual(payments[0]["reference"], f"COD-{order.order_number}")
        self.assertEqual(payments[0]["status"], "pending")

    def test_payments_for_other_customers_order(self):
        order = make_order(user_id=str(uuid4()))
        response = self.client.get(f"/api/payments/order/{order.id}", HTTP_X_USER_ID=str(uuid4()))
        self.assertEqual(response.status_code, 404)

    def test_status_of_unknown_payment(self):
        response = self.post("/api/payments/kpay/status", {"reference": "missing"})
        self.assertEqual(response.json()["status"], "unknown")
        self.assertFalse(response.json()["success"])

    def test_finalize_unknown_payment(self):
        response = self.post("/api/payments/kpay/finalize", {"reference": "missing"})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"]["code"], "PAYMENT_NOT_FOUND")

    def test_link_requires_order_id(self):
        response = self.post("/api/payments/link", {"reference": "x"})
        self.assertEqual(response.status_code, 400)

    def test_link_settled_payment(self):
        order = make_order(payment_method="mtn_momo")
        PaymentORM.objects.create(
            amount=order.total, payment_method="mtn_momo", status="completed", reference="REF-LINK",
        )
        response = self.post("/api/payments/link", {"orderId": str(order.id), "reference": "REF-LINK"})
        self.assertTrue(response.json()["isPaid"])

    def test_payment_timeout(self):
        PaymentORM.objects.create(amount="10.00", payment_method="mtn_momo", reference="REF-SLOW")
        response = self.post("/api/payments/timeout", {"reference": "REF-SLOW", "reason": "gave up"})
        body = response.json()
        self.assertEqual(body["status"], "pending")
        self.assertTrue(body["payment"]["clientTimeout"])
        self.assertEqual(PaymentORM.objects.get(reference="REF-SLOW").client_timeout_reason, "gave up")

        response = self.post("/api/payments/timeout", {"paymentId": "not-a-uuid"})
        self.assertEqual(response.status_code, 400)

    def test_retry_is_refused_while_payment_pending(self):
        order = make_order()
        response = self.post("/api/payments/retry", {
            "orderId": str(order.id), "amount": "330", "paymentMethod": "mtn_momo",
        })
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["error"]["code"], "PAYMENT_IN_PROGRESS")

        response = self.post("/api/payments/retry", {"amount": "330", "paymentMethod": "mtn_momo"})
        self.assertEqual(response.status_code, 400)

    def test_webhook(self):
        PaymentORM.objects.create(amount="10.00", payment_method="mtn_momo", reference="REF-HOOK")
        response = self.post("/api/webhooks/kpay", {"refid": "REF-HOOK", "statusid": "01", "tid": "T-7"})
        self.assertEqual(response.json()["status"], "completed")
        self.assertEqual(self.post("/api/webhooks/kpay", {}).status_code, 400)

    def test_order_assignment(self):
        order = make_order()
        response = self.client.get(f"/api/orders/{order.id}/assignment")
        self.assertEqual(response.json(), {"schemaVersion": 1, "rider": None})
        response = self.client.get(f"/api/orders/{uuid4()}/assignment", HTTP_X_USER_ROLE="admin")
        self.assertEqual(response.json()["error"]["code"], "ORDER_NOT_FOUND")

    def test_orders_enabled_switch(self):
        self.assertEqual(self.client.get("/api/admin/settings/orders-enabled").status_code, 200)

        response = self.post("/api/admin/settings/orders-enabled", {"enabled": False})
        self.assertEqual(response.status_code, 403)

        response = self.post("/api/admin/settings/orders-enabled", {"enabled": False}, HTTP_X_USER_ROLE="admin")
        self.assertFalse(response.json()["enabled"])
        self.assertEqual(response.json()["source"], "admin")

        response = self.client.delete("/api/admin/settings/orders-enabled", HTTP_X_USER_ROLE="admin")
        self.assertEqual(response.json()["source"], "schedule")

    def test_create_notification(self):
        user_id = str(uuid4())
        response = self.post("/api/notifications/create", {
            "type": "order_created",
            "recipient_user_id": user_id,
            "title": "Order received",
            "meta": {"order_id": "o-1"},
        })
        self.assertTrue(response.json()["success"])
        notification = Notification.objects.get()
        self.assertEqual(str(notification.recipient_user_id), user_id)
        self.assertEqual(notification.recipient_role, "user")

        self.assertEqual(self.post("/api/notifications/create", {"title": "x"}).status_code, 400)
