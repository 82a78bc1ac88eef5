"""
Client-side reconciliation of a mobile money checkout.

After the payment provider redirects back, the buyer only holds a payment
reference. ``CheckoutReconciler`` polls the storefront's JSON API until the
payment resolves into an order, creating and linking the order itself when the
payment completed before any webhook did.

Only the payment rows of an order authorise finalisation; a "success" flag on
the return URL is never trusted.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

import requests

from commerce.domain.payment import is_settled

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 6
BASE_DELAY_SECONDS = 0.5
TIMEOUT_REASON = "Client gave up waiting for payment confirmation"

VERIFIED = "verified"
CREATED = "created"
TIMED_OUT = "timedout"
NOT_FOUND = "not_found"


@dataclass
class CheckoutState:
    """What the buyer's client keeps across the provider redirect."""
    reference: str | None = None
    snapshot: dict | None = None

    def clear(self) -> None:
        self.reference = None
        self.snapshot = None


@dataclass
class ReconcileOutcome:
    kind: str
    reference: str | None
    order_id: str | None = None
    linked: bool = False
    message: str | None = None
    payments: list = field(default_factory=list)


class CheckoutReconciler:
    """Polls payment status for a stored reference and finishes the checkout."""

    def __init__(
        self,
        base_url: str,
        state: CheckoutState,
        session: requests.Session | None = None,
        headers: dict | None = None,
        max_attempts: int = MAX_ATTEMPTS,
        base_delay: float = BASE_DELAY_SECONDS,
        sleep=time.sleep,
        timeout: float = 10.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.state = state
        self.session = session or requests.Session()
        self.headers = headers or {}
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.sleep = sleep
        self.timeout = timeout

    def reconcile(self) -> ReconcileOutcome:
        reference = self.state.reference
        if not reference:
            return ReconcileOutcome(kind=NOT_FOUND, reference=None, message="No payment reference stored")

        for attempt in range(self.max_attempts):
            data = self._post("/api/payments/kpay/status", {"reference": reference})
            outcome = self._resolve(reference, data)
            if outcome is not None:
                return outcome
            if attempt < self.max_attempts - 1:
                self.sleep(self.base_delay * (attempt + 1))

        logger.warning("checkout_reconcile_timed_out", extra={"reference": reference})
        # The server answers with the latest status, which may have settled meanwhile.
        data = self._post("/api/payments/timeout", {"reference": reference, "reason": TIMEOUT_REASON})
        outcome = self._resolve(reference, data)
        if outcome is not None:
            return outcome

        # Reference stays stored so a later webhook or retry can still resolve it.
        return ReconcileOutcome(
            kind=TIMED_OUT,
            reference=reference,
            message="Payment verification timed out. You can retry or choose another payment method.",
        )

    def verify_order_payments(self, order_id: str) -> tuple[bool, list] | None:
        """``(authorised, payments)`` for an order, None when the lookup failed."""
        data = self._get(f"/api/payments/order/{order_id}")
        if data is None:
            return None
        payments = data.get("payments") or []
        return any(is_settled(payment.get("status")) for payment in payments), payments

    # Internals

    def _resolve(self, reference: str, data: dict | None) -> ReconcileOutcome | None:
        if data is None:
            return None
        if data.get("orderId"):
            return self._verify_order(reference, data["orderId"])
        if data.get("status") == "completed":
            return self._finalize(reference)
        return None

    def _verify_order(self, reference: str, order_id: str) -> ReconcileOutcome | None:
        verification = self.verify_order_payments(order_id)
        if verification is None:
            return None
        authorised, payments = verification
        self.state.clear()
        if authorised:
            return ReconcileOutcome(kind=VERIFIED, reference=reference, order_id=order_id, payments=payments)
        return ReconcileOutcome(
            kind=NOT_FOUND,
            reference=reference,
            order_id=order_id,
            payments=payments,
            message="Payment returned but no successful payment was found.",
        )

    def _finalize(self, reference: str) -> ReconcileOutcome | None:
        data = self._post("/api/payments/kpay/finalize", {"reference": reference})
        if not data or not data.get("success"):
            return None

        if data.get("orderId"):
            verification = self.verify_order_payments(data["orderId"])
            if verification is None or not verification[0]:
                return None
            self.state.clear()
            return ReconcileOutcome(
                kind=VERIFIED,
                reference=reference,
                order_id=data["orderId"],
                payments=verification[1],
            )

        if data.get("canCreateOrder") and self.state.snapshot:
            return self._create_and_link(reference)
        return None

    def _create_and_link(self, reference: str) -> ReconcileOutcome | None:
        snapshot = self.state.snapshot
        created = self._post(
            "/api/orders/create",
            {"order": snapshot.get("order") or {}, "items": snapshot.get("items") or []},
        )
        order = (created or {}).get("order")
        if not order or not order.get("id"):
            logger.error("checkout_order_create_failed", extra={"reference": reference})
            return None

        order_id = order["id"]
        linked = self._post("/api/payments/link", {"orderId": order_id, "reference": reference}) is not None
        if linked:
            self.state.clear()
        else:
            # Snapshot kept for a manual retry of the link.
            logger.warning(
                "checkout_payment_link_failed",
                extra={"reference": reference, "order_id": order_id},
            )
        return ReconcileOutcome(kind=CREATED, reference=reference, order_id=order_id, linked=linked)

    def _post(self, path: str, body: dict) -> dict | None:
        return self._request("POST", path, json=body)

    def _get(self, path: str) -> dict | None:
        return self._request("GET", path)

    def _request(self, method: str, path: str, **kwargs) -> dict | None:
        """JSON body of a 2xx answer; None for any failed call."""
        try:
            response = self.session.request(
                method,
                f"{self.base_url}{path}",
                headers=self.headers,
                timeout=self.timeout,
                **kwargs,
            )
        except requests.RequestException as e:
            logger.warning("checkout_request_failed", extra={"operation": path, "error": str(e)})
            return None
        if not response.ok:
            return None
        try:
            return response.json()
        except ValueError:
            return None
