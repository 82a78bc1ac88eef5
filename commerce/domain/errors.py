"""
Domain errors. Each carries a machine-readable code and a human message.
"""


class DomainError(ValueError):
    """Base error raised by domain rules and services."""
    code = "DOMAIN_ERROR"

    def __init__(self, message: str, code: str | None = None):
        self.message = message
        if code:
            self.code = code
        super().__init__(self.message)


class ValidationError(DomainError):
    code = "VALIDATION_ERROR"


class RefundExpired(DomainError):
    code = "REFUND_EXPIRED"


class InvalidRefundState(DomainError):
    code = "INVALID_REFUND_STATE"


class OrderNotFound(DomainError):
    code = "ORDER_NOT_FOUND"


class OrderItemNotFound(DomainError):
    code = "ORDER_ITEM_NOT_FOUND"


class RiderNotFound(DomainError):
    code = "RIDER_NOT_FOUND"


class RiderInactive(DomainError):
    code = "RIDER_INACTIVE"


class OrderNotPending(DomainError):
    code = "ORDER_NOT_PENDING"


class AssignmentNotFound(DomainError):
    code = "ASSIGNMENT_NOT_FOUND"


class ManualStatusDenied(DomainError):
    code = "MANUAL_STATUS_DENIED"


class PermissionDenied(DomainError):
    code = "FORBIDDEN"


class PaymentNotFound(DomainError):
    code = "PAYMENT_NOT_FOUND"


class PaymentNotCompleted(DomainError):
    code = "PAYMENT_NOT_COMPLETED"


class PaymentAlreadyLinked(DomainError):
    code = "PAYMENT_ALREADY_LINKED"


class PaymentGatewayError(DomainError):
    code = "PAYMENT_GATEWAY_ERROR"


class PaymentInProgress(DomainError):
    code = "PAYMENT_IN_PROGRESS"
