"""
HTTP client for the KPay payment gateway.
"""
from __future__ import annotations

import logging
import re

import requests
from django.conf import settings

from commerce.domain.errors import PaymentGatewayError, ValidationError
from commerce.infra.pii_masker import mask_phone
from commerce.infra.retry import retry_with_backoff

logger = logging.getLogger(__name__)


# Storefront payment method -> (KPay pmethod, bank id)
PAYMENT_METHODS = {
    "mtn_momo": ("momo", "63510"),
    "airtel_money": ("momo", "63514"),
    "visa_card": ("cc", "000"),
    "mastercard": ("cc", "000"),
    "spenn": ("spenn", "63502"),
}


def format_phone_number(phone: str) -> str:
    """Normalise Rwandan numbers to the 07XXXXXXXX form KPay expects."""
    cleaned = re.sub(r"[^\d+]", "", phone or "")
    if re.fullmatch(r"07\d{8}", cleaned):
        return cleaned
    for prefix in ("+250", "250"):
        if cleaned.startswith(prefix):
            digits = cleaned[len(prefix):]
            if len(digits) == 9 and digits.startswith("7"):
                return f"0{digits}"
    if len(cleaned) == 9 and cleaned.startswith("7"):
        return f"0{cleaned}"
    return cleaned


class KPayClient:
    """Thin wrapper over the KPay JSON API (``pay`` and ``checkstatus`` actions)."""

    def __init__(
        self,
        base_url: str | None = None,
        username: str | None = None,
        password: str | None = None,
        retailer_id: str | None = None,
        webhook_url: str | None = None,
        timeout: float | None = None,
        session: requests.Session | None = None,
    ):
        self.base_url = base_url if base_url is not None else settings.KPAY_BASE_URL
        self.username = username if username is not None else settings.KPAY_USERNAME
        self.password = password if password is not None else settings.KPAY_PASSWORD
        self.retailer_id = retailer_id if retailer_id is not None else settings.KPAY_RETAILER_ID
        self.webhook_url = webhook_url if webhook_url is not None else settings.KPAY_WEBHOOK_URL
        self.timeout = timeout if timeout is not None else settings.KPAY_TIMEOUT_SECONDS
        self.session = session or requests.Session()

    def initiate_payment(
        self,
        *,
        amount,
        reference: str,
        payment_method: str,
        customer_name: str,
        customer_email: str,
        customer_phone: str,
        redirect_url: str,
        customer_number: str | None = None,
        details: str | None = None,
        currency: str = "RWF",
    ) -> dict:
        """Start a payment session; the answer carries ``tid`` and a checkout ``url``."""
        if payment_method not in PAYMENT_METHODS:
            raise ValidationError(f"Unknown payment method: {payment_method}")
        pmethod, bank_id = PAYMENT_METHODS[payment_method]
        phone = format_phone_number(customer_phone)

        payload = {
            "action": "pay",
            "msisdn": phone,
            "email": customer_email,
            "details": details or f"Order payment {reference}",
            "refid": reference,
            "amount": int(amount) if float(amount).is_integer() else float(amount),
            "currency": currency,
            "cname": customer_name,
            "cnumber": customer_number or phone,
            "pmethod": pmethod,
            "retailerid": self.retailer_id,
            "returl": self.webhook_url,
            "redirecturl": redirect_url,
            "bankid": bank_id,
        }
        logger.info(
            "kpay_initiate",
            extra={"reference": reference, "operation": pmethod, "phone": mask_phone(phone)},
        )
        return self._post(payload)

    def check_status(self, transaction_id: str | None = None, reference: str | None = None) -> dict:
        if not transaction_id and not reference:
            raise ValidationError("Either transaction ID or order reference is required")
        payload = {"action": "checkstatus", "tid": transaction_id, "refid": reference}
        return self._post(payload)

    @retry_with_backoff(
        max_retries=2,
        initial_delay=0.5,
        max_delay=4.0,
        exceptions=(requests.ConnectionError, requests.Timeout),
    )
    def _send(self, payload: dict) -> requests.Response:
        return self.session.post(
            self.base_url,
            json=payload,
            auth=(self.username, self.password),
            headers={"Accept": "application/json"},
            timeout=self.timeout,
        )

    def _post(self, payload: dict) -> dict:
        try:
            response = self._send(payload)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            logger.error(
                "kpay_request_failed",
                extra={"operation": payload.get("action"), "error": str(e)},
            )
            raise PaymentGatewayError(f"KPay request failed: {e}") from e
        except ValueError as e:
            raise PaymentGatewayError("KPay returned a non-JSON response") from e
