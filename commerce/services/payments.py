"""
Payment reconciliation: cash on delivery bookkeeping and the KPay mobile money
flow (initiate, status polling, finalize, link, webhook, client timeout, retry).
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from commerce.conf import storefront_setting
from commerce.domain.errors import (
    OrderNotFound,
    PaymentAlreadyLinked,
    PaymentGatewayError,
    PaymentInProgress,
    PaymentNotCompleted,
    PaymentNotFound,
    ValidationError,
)
from commerce.domain.order import CASH_ON_DELIVERY, OrderPaymentStatus, OrderStatus, normalize_optional_uuid
from commerce.domain.payment import (
    GatewayStatus,
    PaymentStatus,
    cod_reference,
    gateway_error_message,
    generate_reference,
    interpret_gateway_status,
    is_final,
    is_settled,
)
from commerce.infra.kpay import PAYMENT_METHODS, KPayClient
from commerce.infra.models import PaymentORM
from commerce.infra.repositories import OrderRepository, PaymentRepository

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

DEFAULT_TIMEOUT_REASON = "Client-side timeout while waiting for payment confirmation"


@dataclass
class PaymentStatusResult:
    success: bool
    status: str
    payment_id: str | None = None
    order_id: str | None = None
    reference: str | None = None
    message: str | None = None

    def to_dict(self) -> dict:
        return {
            "schemaVersion": SCHEMA_VERSION,
            "success": self.success,
            "paymentId": self.payment_id,
            "orderId": self.order_id,
            "status": self.status,
            "reference": self.reference,
            "message": self.message,
        }


@dataclass
class FinalizeResult:
    success: bool
    status: str
    payment_id: str
    order_id: str | None = None
    can_create_order: bool = False
    message: str | None = None

    def to_dict(self) -> dict:
        return {
            "schemaVersion": SCHEMA_VERSION,
            "success": self.success,
            "paymentId": self.payment_id,
            "orderId": self.order_id,
            "status": self.status,
            "canCreateOrder": self.can_create_order,
            "message": self.message,
        }


@dataclass
class LinkResult:
    success: bool
    payment_id: str
    order_id: str
    status: str
    is_paid: bool

    def to_dict(self) -> dict:
        return {
            "schemaVersion": SCHEMA_VERSION,
            "success": self.success,
            "paymentId": self.payment_id,
            "orderId": self.order_id,
            "status": self.status,
            "isPaid": self.is_paid,
        }


@dataclass
class InitiateResult:
    success: bool
    payment_id: str
    reference: str
    status: str
    checkout_url: str | None = None
    transaction_id: str | None = None

    def to_dict(self) -> dict:
        return {
            "schemaVersion": SCHEMA_VERSION,
            "success": self.success,
            "paymentId": self.payment_id,
            "reference": self.reference,
            "status": self.status,
            "checkoutUrl": self.checkout_url,
            "transactionId": self.transaction_id,
        }


@dataclass
class TimeoutResult:
    status: str
    payment: dict
    message: str

    def to_dict(self) -> dict:
        return {
            "schemaVersion": SCHEMA_VERSION,
            "success": True,
            "status": self.status,
            "orderId": self.payment["orderId"],
            "message": self.message,
            "payment": self.payment,
        }


def payment_to_dict(payment: PaymentORM) -> dict:
    return {
        "id": str(payment.id),
        "orderId": str(payment.order_id) if payment.order_id else None,
        "amount": str(payment.amount),
        "currency": payment.currency,
        "paymentMethod": payment.payment_method,
        "status": payment.status,
        "reference": payment.reference,
        "transactionId": payment.kpay_transaction_id,
        "failureReason": payment.failure_reason,
        "clientTimeout": payment.client_timeout,
        "completedAt": payment.completed_at.isoformat() if payment.completed_at else None,
        "createdAt": payment.created_at.isoformat() if payment.created_at else None,
    }


class PaymentService:
    """Service for payment operations."""

    def __init__(
        self,
        payment_repo: PaymentRepository | None = None,
        order_repo: OrderRepository | None = None,
        gateway: KPayClient | None = None,
    ):
        self.payment_repo = payment_repo or PaymentRepository()
        self.order_repo = order_repo or OrderRepository()
        self._gateway = gateway

    @property
    def gateway(self) -> KPayClient:
        if self._gateway is None:
            self._gateway = KPayClient()
        return self._gateway

    # Cash on delivery

    def create_cod_payment(self, order) -> PaymentORM:
        """Pending payment row created with every cash on delivery order."""
        return self.payment_repo.create(
            order=order,
            amount=order.total,
            currency=order.currency,
            payment_method=CASH_ON_DELIVERY,
            status=PaymentStatus.PENDING.value,
            reference=cod_reference(order.order_number),
            customer_name=order.customer_name,
            customer_email=order.customer_email,
            customer_phone=order.customer_phone,
        )

    def complete_cod_payments(self, order) -> int:
        """Settle pending cash payments once the order is delivered."""
        if order.payment_method != CASH_ON_DELIVERY:
            return 0
        now = timezone.now()
        payments = self.payment_repo.pending_for_order(order.id, CASH_ON_DELIVERY)
        for payment in payments:
            payment.status = PaymentStatus.COMPLETED.value
            payment.completed_at = now
            self.payment_repo.save(payment, ["status", "completed_at"])
        if payments:
            self._mark_order_paid(order)
        return len(payments)

    def fail_cod_payments(self, order) -> int:
        """Fail pending cash payments of a cancelled order."""
        if order.payment_method != CASH_ON_DELIVERY:
            return 0
        payments = self.payment_repo.pending_for_order(order.id, CASH_ON_DELIVERY)
        for payment in payments:
            payment.status = PaymentStatus.FAILED.value
            payment.failure_reason = "order_cancelled"
            self.payment_repo.save(payment, ["status", "failure_reason"])
        return len(payments)

    # Mobile money

    def initiate(self, data: dict) -> InitiateResult:
        """Create a pending mobile money payment and open a gateway session."""
        amount = Decimal(str(data.get("amount") or 0))
        payment_method = data.get("payment_method")
        if amount <= 0:
            raise ValidationError("Amount must be greater than 0")
        if payment_method not in PAYMENT_METHODS:
            raise ValidationError("Invalid payment method")

        phone = data.get("customer_phone") or ""
        email = data.get("customer_email") or self._guest_email(phone)

        with transaction.atomic():
            order = None
            if data.get("order_id"):
                order = self._payable_order(data["order_id"], amount)
            payment = self.payment_repo.create(
                order=order,
                amount=amount,
                currency=storefront_setting("DEFAULT_CURRENCY"),
                payment_method=payment_method,
                status=PaymentStatus.PENDING.value,
                reference=generate_reference(storefront_setting("PAYMENT_REFERENCE_PREFIX")),
                customer_name=data.get("customer_name") or "",
                customer_email=email,
                customer_phone=phone,
            )

        redirect_url = data.get("redirect_url") or (
            f"{settings.KPAY_REDIRECT_URL.rstrip('/')}/payment/{payment.id}"
        )
        try:
            response = self.gateway.initiate_payment(
                amount=amount,
                reference=payment.reference,
                payment_method=payment_method,
                customer_name=payment.customer_name,
                customer_email=email,
                customer_phone=phone,
                customer_number=order.customer_phone if order else None,
                redirect_url=redirect_url,
                currency=payment.currency,
            )
        except PaymentGatewayError as e:
            self._fail(payment, str(e))
            raise

        payment.kpay_transaction_id = str(response.get("tid") or "") or None
        payment.gateway_response = response
        retcode = response.get("retcode")
        if retcode not in (0, "0", None):
            self._fail(payment, gateway_error_message(retcode), fields=["kpay_transaction_id", "gateway_response"])
            raise PaymentGatewayError(gateway_error_message(retcode))
        self.payment_repo.save(payment, ["kpay_transaction_id", "gateway_response"])

        logger.info(
            "payment_initiated",
            extra={"payment_id": str(payment.id), "reference": payment.reference},
        )
        return InitiateResult(
            success=True,
            payment_id=str(payment.id),
            reference=payment.reference,
            status=payment.status,
            checkout_url=response.get("url"),
            transaction_id=payment.kpay_transaction_id,
        )

    def check_status(
        self,
        reference: str | None = None,
        payment_id: UUID | str | None = None,
        transaction_id: str | None = None,
    ) -> PaymentStatusResult:
        """
        Current status of a payment, asking the gateway while it is not final.
        Unknown payments get a soft ``unknown`` answer instead of an error.
        """
        if not (reference or payment_id or transaction_id):
            raise ValidationError("Reference, payment id or transaction id is required")

        with transaction.atomic():
            payment = self.payment_repo.find(
                reference=reference,
                payment_id=payment_id,
                transaction_id=transaction_id,
                for_update=True,
            )
            if payment is None:
                return PaymentStatusResult(
                    success=False,
                    status="unknown",
                    reference=reference,
                    message="Payment not found",
                )

            message = None
            if not is_final(payment.status):
                try:
                    gateway_status = self._reconcile(payment)
                    message = gateway_status.message or None
                except PaymentGatewayError as e:
                    message = str(e)

            return self._status_result(payment, message)

    def finalize(self, reference: str | None = None, transaction_id: str | None = None) -> FinalizeResult:
        """
        Confirm a payment after the customer returns from the gateway. Never
        creates the order; ``can_create_order`` tells the caller to do it.
        """
        if not (reference or transaction_id):
            raise ValidationError("Reference or transaction id is required")

        with transaction.atomic():
            payment = self.payment_repo.find(
                reference=reference,
                transaction_id=transaction_id,
                for_update=True,
            )
            if payment is None:
                raise PaymentNotFound("Payment not found")

            if payment.order_id:
                return FinalizeResult(
                    success=True,
                    status=payment.status,
                    payment_id=str(payment.id),
                    order_id=str(payment.order_id),
                )

            if not is_settled(payment.status):
                try:
                    self._reconcile(payment)
                except PaymentGatewayError as e:
                    # Last known state; the caller may retry later.
                    return FinalizeResult(
                        success=is_settled(payment.status),
                        status=payment.status,
                        payment_id=str(payment.id),
                        can_create_order=is_settled(payment.status),
                        message=str(e),
                    )

        if not is_settled(payment.status):
            raise PaymentNotCompleted(f"Payment is {payment.status}")

        return FinalizeResult(
            success=True,
            status=payment.status,
            payment_id=str(payment.id),
            can_create_order=payment.order_id is None,
        )

    @transaction.atomic
    def mark_timeout(
        self,
        payment_id: UUID | str | None = None,
        reference: str | None = None,
        reason: str | None = None,
    ) -> TimeoutResult:
        """
        Record that the buyer's client stopped waiting for a payment.

        Only pending payments are flagged; completed or failed ones are left
        alone. The latest status is returned either way so the client can still
        pick up a result that arrived in the meantime.
        """
        if not (payment_id or reference):
            raise ValidationError("Payment id or reference is required")

        payment = self.payment_repo.find(reference=reference, payment_id=payment_id, for_update=True)
        if payment is None:
            raise PaymentNotFound("Payment not found")

        if payment.status != PaymentStatus.PENDING.value:
            logger.info(
                "payment_timeout_ignored",
                extra={"payment_id": str(payment.id), "status": payment.status},
            )
            return TimeoutResult(
                status=payment.status,
                payment=payment_to_dict(payment),
                message=f"Payment status is {payment.status}, timeout ignored.",
            )

        payment.client_timeout = True
        payment.client_timeout_reason = reason or DEFAULT_TIMEOUT_REASON
        self.payment_repo.save(payment, ["client_timeout", "client_timeout_reason"])

        logger.warning(
            "payment_client_timeout",
            extra={"payment_id": str(payment.id), "reference": payment.reference},
        )
        return TimeoutResult(
            status=payment.status,
            payment=payment_to_dict(payment),
            message="Payment timeout recorded. Order remains available for retry.",
        )

    def retry(self, data: dict) -> InitiateResult:
        """
        Start a new mobile money attempt for an existing unpaid order.

        Refused while the latest attempt is still pending and the client has
        not given up on it.
        """
        order_id = normalize_optional_uuid(data.get("order_id"))
        if order_id is None:
            raise ValidationError("Order id is required")

        with transaction.atomic():
            order = self.order_repo.get_by_id(order_id, for_update=True)
            if order is None:
                raise OrderNotFound(f"Order {order_id} not found")
            latest = self.payment_repo.latest_for_order(order.id)
            if latest is not None:
                if is_settled(latest.status):
                    raise ValidationError("Order already paid")
                if latest.status == PaymentStatus.PENDING.value and not latest.client_timeout:
                    raise PaymentInProgress("Existing payment in progress. Please wait or try after timeout.")

        logger.info(
            "payment_retry",
            extra={"order_id": order_id, "payment_id": str(latest.id) if latest else None},
        )
        return self.initiate({**data, "order_id": order_id})

    def payments_for_order(self, order_id: UUID | str) -> list[PaymentORM]:
        return self.payment_repo.for_order(order_id)

    def authorizes_order(self, order_id: UUID | str) -> bool:
        """Only a completed (or legacy successful) payment authorises an order."""
        return self.payment_repo.has_settled_payment(order_id)

    @transaction.atomic
    def link(
        self,
        order_id: UUID | str,
        reference: str | None = None,
        payment_id: UUID | str | None = None,
    ) -> LinkResult:
        """Attach a payment to an order created after the payment."""
        if not (reference or payment_id):
            raise ValidationError("Reference or payment id is required")

        payment = self.payment_repo.find(reference=reference, payment_id=payment_id, for_update=True)
        if payment is None:
            raise PaymentNotFound("Payment not found")
        order = self.order_repo.get_by_id(order_id, for_update=True)
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found")
        if payment.order_id and payment.order_id != order.id:
            raise PaymentAlreadyLinked("Payment is already linked to another order")

        payment.order = order
        self.payment_repo.save(payment, ["order"])

        if not is_settled(payment.status):
            try:
                self._reconcile(payment)
            except PaymentGatewayError as e:
                logger.warning(
                    "link_reconcile_failed",
                    extra={"payment_id": str(payment.id), "error": str(e)},
                )

        if is_settled(payment.status):
            self._mark_order_paid(order)

        logger.info(
            "payment_linked",
            extra={"payment_id": str(payment.id), "order_id": str(order.id)},
        )
        return LinkResult(
            success=True,
            payment_id=str(payment.id),
            order_id=str(order.id),
            status=payment.status,
            is_paid=order.is_paid,
        )

    @transaction.atomic
    def handle_webhook(self, payload: dict) -> dict:
        """Apply a KPay callback to the matching payment."""
        reference = payload.get("refid")
        transaction_id = payload.get("tid")
        if not (reference or transaction_id) or payload.get("statusid") in (None, ""):
            raise ValidationError("Invalid webhook payload")

        payment = self.payment_repo.find(
            reference=str(reference) if reference else None,
            transaction_id=str(transaction_id) if transaction_id else None,
            for_update=True,
        )
        if payment is None:
            raise PaymentNotFound("Payment not found")

        payment.webhook_data = payload
        self.payment_repo.save(payment, ["webhook_data"])
        if is_settled(payment.status):
            return {"schemaVersion": SCHEMA_VERSION, "success": True, "message": "Payment already completed"}

        self._apply_gateway_status(payment, interpret_gateway_status(payload))
        return {
            "schemaVersion": SCHEMA_VERSION,
            "success": True,
            "paymentId": str(payment.id),
            "status": payment.status,
        }

    # Internals

    def _reconcile(self, payment: PaymentORM) -> GatewayStatus:
        response = self.gateway.check_status(
            transaction_id=payment.kpay_transaction_id,
            reference=payment.reference,
        )
        payment.gateway_response = response
        self.payment_repo.save(payment, ["gateway_response"])
        gateway_status = interpret_gateway_status(response)
        self._apply_gateway_status(payment, gateway_status)
        return gateway_status

    def _apply_gateway_status(self, payment: PaymentORM, gateway_status: GatewayStatus) -> None:
        if gateway_status.not_found or gateway_status.status is None:
            return

        fields = ["status"]
        if gateway_status.transaction_id and not payment.kpay_transaction_id:
            payment.kpay_transaction_id = gateway_status.transaction_id
            fields.append("kpay_transaction_id")
        if gateway_status.mom_transaction_id:
            payment.kpay_mom_transaction_id = gateway_status.mom_transaction_id
            fields.append("kpay_mom_transaction_id")

        payment.status = gateway_status.status.value
        if gateway_status.status == PaymentStatus.COMPLETED:
            payment.completed_at = timezone.now()
            fields.append("completed_at")
        elif gateway_status.status == PaymentStatus.FAILED:
            payment.failure_reason = gateway_status.message or "Payment failed"
            fields.append("failure_reason")
        self.payment_repo.save(payment, fields)

        logger.info(
            "payment_status_applied",
            extra={"payment_id": str(payment.id), "status": payment.status},
        )

        if payment.order_id is None:
            return
        order = self.order_repo.get_by_id(payment.order_id, for_update=True)
        if order is None:
            return
        if gateway_status.status == PaymentStatus.COMPLETED:
            self._mark_order_paid(order)
        elif gateway_status.status == PaymentStatus.FAILED and not order.is_paid:
            order.payment_status = OrderPaymentStatus.FAILED.value
            self.order_repo.save(order, ["payment_status"])

    def _mark_order_paid(self, order) -> None:
        if order.is_paid and order.payment_status == OrderPaymentStatus.PAID.value:
            return
        order.is_paid = True
        order.payment_status = OrderPaymentStatus.PAID.value
        self.order_repo.save(order, ["is_paid", "payment_status"])

    def _fail(self, payment: PaymentORM, reason: str, fields: list[str] | None = None) -> None:
        payment.status = PaymentStatus.FAILED.value
        payment.failure_reason = reason
        self.payment_repo.save(payment, ["status", "failure_reason", *(fields or [])])

    def _payable_order(self, order_id, amount: Decimal):
        order = self.order_repo.get_by_id(order_id, for_update=True)
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found")
        if order.status != OrderStatus.PENDING.value:
            raise ValidationError("Order cannot be paid - invalid status")
        if abs(amount - order.total) > Decimal("0.01"):
            raise ValidationError("Amount mismatch with order total")
        if self.payment_repo.has_settled_payment(order.id):
            raise ValidationError("Order already paid")
        return order

    def _guest_email(self, phone: str) -> str:
        digits = re.sub(r"\D", "", phone or "")
        suffix = digits or str(int(timezone.now().timestamp() * 1000))
        return f"guest-{suffix}@guest.invalid"

    def _status_result(self, payment: PaymentORM, message: str | None = None) -> PaymentStatusResult:
        return PaymentStatusResult(
            success=True,
            status=payment.status,
            payment_id=str(payment.id),
            order_id=str(payment.order_id) if payment.order_id else None,
            reference=payment.reference,
            message=message,
        )
