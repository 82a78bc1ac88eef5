"""
Payment states and the mapping of KPay gateway answers onto them.
"""
from __future__ import annotations

import random
import time
from dataclasses import dataclass
from enum import Enum


class PaymentStatus(str, Enum):
    """Payment status enumeration."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# "successful" is written by older gateway callbacks; read it as completed.
SETTLED_STATUSES = frozenset({"completed", "successful"})
FINAL_STATUSES = SETTLED_STATUSES | {"failed", "cancelled"}

GATEWAY_NOT_FOUND_RETCODE = 611

GATEWAY_ERRORS = {
    0: "No error. Transaction being processed",
    401: "Missing authentication header",
    500: "Non HTTPS request",
    600: "Invalid username / password combination",
    601: "Invalid remote user",
    602: "Location / IP not whitelisted",
    603: "Empty parameter - missing required parameters",
    604: "Unknown retailer",
    605: "Retailer not enabled",
    606: "Error processing",
    607: "Failed mobile money transaction",
    608: "Used ref id - error uniqueness",
    609: "Unknown Payment method",
    610: "Unknown or not enabled Financial institution",
    611: "Transaction not found",
}


def is_settled(status: str | None) -> bool:
    return status in SETTLED_STATUSES


def is_final(status: str | None) -> bool:
    return status in FINAL_STATUSES


def gateway_error_message(retcode) -> str:
    try:
        retcode = int(retcode)
    except (TypeError, ValueError):
        return f"Unknown error (code: {retcode})"
    return GATEWAY_ERRORS.get(retcode, f"Unknown error (code: {retcode})")


def cod_reference(order_number: str) -> str:
    return f"COD-{order_number}"


def generate_reference(prefix: str, now_ms: int | None = None) -> str:
    """Mobile money reference: ``<PREFIX>_<epoch ms>_<6 digits>``."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{prefix}_{now_ms}_{random.randint(0, 999999):06d}"


@dataclass(frozen=True)
class GatewayStatus:
    """Normalised answer of a checkstatus call or a webhook."""
    status: PaymentStatus | None
    message: str = ""
    transaction_id: str | None = None
    mom_transaction_id: str | None = None
    not_found: bool = False


def interpret_gateway_status(payload: dict) -> GatewayStatus:
    """
    statusid 01 is success, 02 pending, 03 failed unless its description says
    the transaction is still pending. retcode 611 means the gateway does not
    know the transaction; status is then None.
    """
    message = str(payload.get("statusdesc") or payload.get("reply") or "")
    transaction_id = payload.get("tid")
    mom_transaction_id = payload.get("momtransactionid")

    retcode = payload.get("retcode")
    if retcode is not None and str(retcode) == str(GATEWAY_NOT_FOUND_RETCODE):
        return GatewayStatus(
            status=None,
            message=gateway_error_message(retcode),
            transaction_id=transaction_id,
            not_found=True,
        )

    status_id = str(payload.get("statusid") or "").zfill(2)
    if status_id == "01":
        status = PaymentStatus.COMPLETED
    elif status_id == "02":
        status = PaymentStatus.PENDING
    elif status_id == "03":
        if "pending" in message.lower():
            status = PaymentStatus.PENDING
        else:
            status = PaymentStatus.FAILED
    else:
        status = None

    return GatewayStatus(
        status=status,
        message=message,
        transaction_id=str(transaction_id) if transaction_id else None,
        mom_transaction_id=str(mom_transaction_id) if mom_transaction_id else None,
    )
