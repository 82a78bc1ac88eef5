"""
Tests for the KPay client, retries, PII masking and the JSON log formatter.
"""
import json
import logging
from unittest.mock import Mock

import requests
from django.test import SimpleTestCase

from commerce.domain.errors import PaymentGatewayError, ValidationError
from commerce.infra.kpay import KPayClient, format_phone_number
from commerce.infra.pii_masker import mask_email, mask_phone, mask_pii_in_dict
from commerce.infra.retry import backoff_delays, retry_with_backoff
from commerce.utils.logging import JsonFormatter


def kpay_client(session):
    return KPayClient(
        base_url="https://kpay.example/api",
        username="shop",
        password="secret",
        retailer_id="R-1",
        webhook_url="https://shop.example/api/webhooks/kpay",
        timeout=5,
        session=session,
    )


def ok_response(body):
    response = Mock()
    response.json.return_value = body
    response.raise_for_status.return_value = None
    return response


class PhoneNumberTest(SimpleTestCase):

    def test_formats(self):
        self.assertEqual(format_phone_number("0788123456"), "0788123456")
        self.assertEqual(format_phone_number("+250 788 123 456"), "0788123456")
        self.assertEqual(format_phone_number("250788123456"), "0788123456")
        self.assertEqual(format_phone_number("788123456"), "0788123456")


class KPayClientTest(SimpleTestCase):

    def test_initiate_payload(self):
        session = Mock()
        session.post.return_value = ok_response({"retcode": 0, "tid": "T-1", "url": "https://kpay.example/c/1"})

        response = kpay_client(session).initiate_payment(
            amount=1500,
            reference="STOREFRONT_1_000001",
            payment_method="airtel_money",
            customer_name="Aline",
            customer_email="aline@example.com",
            customer_phone="+250788123456",
            redirect_url="https://shop.example/payment/1",
        )

        self.assertEqual(response["tid"], "T-1")
        args, kwargs = session.post.call_args
        self.assertEqual(args, ("https://kpay.example/api",))
        self.assertEqual(kwargs["auth"], ("shop", "secret"))
        payload = kwargs["json"]
        self.assertEqual(payload["action"], "pay")
        self.assertEqual(payload["pmethod"], "momo")
        self.assertEqual(payload["bankid"], "63514")
        self.assertEqual(payload["msisdn"], "0788123456")
        self.assertEqual(payload["amount"], 1500)
        self.assertEqual(payload["returl"], "https://shop.example/api/webhooks/kpay")

    def test_check_status_needs_identifier(self):
        with self.assertRaises(ValidationError):
            kpay_client(Mock()).check_status()

    def test_http_error_becomes_gateway_error(self):
        session = Mock()
        session.post.return_value.raise_for_status.side_effect = requests.HTTPError("500 Server Error")
        with self.assertRaises(PaymentGatewayError):
            kpay_client(session).check_status(reference="REF-1")
        self.assertEqual(session.post.call_count, 1)

    def test_non_json_answer(self):
        session = Mock()
        session.post.return_value.json.side_effect = ValueError("no json")
        with self.assertRaises(PaymentGatewayError):
            kpay_client(session).check_status(transaction_id="T-1")


class RetryTest(SimpleTestCase):

    def test_retries_then_succeeds(self):
        waits = []
        calls = Mock(side_effect=[ConnectionError("down"), ConnectionError("down"), "ok"])

        @retry_with_backoff(max_retries=3, initial_delay=1.0, jitter=False, sleep=waits.append)
        def flaky():
            return calls()

        self.assertEqual(flaky(), "ok")
        self.assertEqual(waits, [1.0, 2.0])

    def test_last_error_propagates(self):
        waits = []

        @retry_with_backoff(max_retries=2, initial_delay=0.1, exceptions=(KeyError,), sleep=waits.append)
        def broken():
            raise KeyError("missing")

        with self.assertRaises(KeyError):
            broken()
        self.assertEqual(len(waits), 2)

    def test_other_errors_are_not_retried(self):
        waits = []

        @retry_with_backoff(exceptions=(KeyError,), sleep=waits.append)
        def broken():
            raise ValueError("bad")

        with self.assertRaises(ValueError):
            broken()
        self.assertEqual(waits, [])

    def test_delays_are_capped(self):
        self.assertEqual(list(backoff_delays(4, 1.0, 3.0, jitter=False)), [1.0, 2.0, 3.0, 3.0])


class PIIMaskerTest(SimpleTestCase):

    def test_masking(self):
        self.assertEqual(mask_email("aline@example.com"), "al***@example.com")
        self.assertEqual(mask_phone("0788123456"), "07******56")
        masked = mask_pii_in_dict({
            "customer_phone": "0788123456",
            "nested": {"customer_email": "aline@example.com"},
            "order_id": "o-1",
        })
        self.assertEqual(masked["customer_phone"], "07******56")
        self.assertEqual(masked["nested"]["customer_email"], "al***@example.com")
        self.assertEqual(masked["order_id"], "o-1")


class JsonFormatterTest(SimpleTestCase):

    def test_extra_fields(self):
        record = logging.LogRecord("commerce.services", logging.INFO, __file__, 10, "order_created", None, None)
        record.order_id = "o-1"
        record.status = "pending"
        data = json.loads(JsonFormatter().format(record))
        self.assertEqual(data["message"], "order_created")
        self.assertEqual(data["order_id"], "o-1")
        self.assertEqual(data["status"], "pending")
        self.assertTrue(data["timestamp"].endswith("Z"))
