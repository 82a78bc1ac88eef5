"""
Error handling for API responses.
"""
import logging

from django.http import JsonResponse

from commerce.domain.errors import DomainError

logger = logging.getLogger(__name__)


class ErrorHandler:
    """Turns errors into ``{"error": {"code", "message"}}`` JSON responses."""

    ERROR_CODES = {
        "VALIDATION_ERROR": 400,
        "REFUND_EXPIRED": 400,
        "INVALID_REFUND_STATE": 400,
        "ORDER_NOT_PENDING": 400,
        "RIDER_INACTIVE": 400,
        "FORBIDDEN": 403,
        "MANUAL_STATUS_DENIED": 403,
        "ORDER_NOT_FOUND": 404,
        "ORDER_ITEM_NOT_FOUND": 404,
        "RIDER_NOT_FOUND": 404,
        "ASSIGNMENT_NOT_FOUND": 404,
        "PAYMENT_NOT_FOUND": 404,
        "PAYMENT_NOT_COMPLETED": 409,
        "PAYMENT_ALREADY_LINKED": 409,
        "PAYMENT_IN_PROGRESS": 409,
        "DUPLICATE_REQUEST": 409,
        "PAYMENT_GATEWAY_ERROR": 502,
        "INTERNAL_ERROR": 500,
    }

    @classmethod
    def error_response(cls, code: str, message: str) -> JsonResponse:
        return JsonResponse(
            {
                "error": {
                    "code": code,
                    "message": message,
                }
            },
            status=cls.ERROR_CODES.get(code, 400),
        )

    @classmethod
    def handle_error(cls, error: Exception) -> JsonResponse:
        """Handle error and return JSON response."""
        if isinstance(error, DomainError):
            return cls.error_response(error.code, error.message)

        # Log unexpected errors
        logger.error(
            "unexpected_error",
            extra={"error": f"{type(error).__name__}: {error}"},
            exc_info=True,
        )
        return cls.error_response("INTERNAL_ERROR", "An internal error occurred")
