"""
JSON endpoints used by the checkout client, the payment gateway and the
notification sink of other deployments.
"""
import functools
import json
import logging

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from commerce.api.context import RequestContext
from commerce.api.middleware import ErrorHandler
from commerce.api.serializers import order_to_dict, versioned
from commerce.domain.errors import DomainError, OrderNotFound, ValidationError
from commerce.domain.order import normalize_optional_uuid
from commerce.infra.notifications import DatabaseNotificationSink
from commerce.infra.pii_masker import mask_pii_in_dict
from commerce.services.payments import PaymentService, payment_to_dict

logger = logging.getLogger(__name__)

# camelCase request keys -> service keys
INITIATE_FIELDS = {
    "amount": "amount",
    "paymentMethod": "payment_method",
    "customerName": "customer_name",
    "customerEmail": "customer_email",
    "customerPhone": "customer_phone",
    "orderId": "order_id",
    "redirectUrl": "redirect_url",
}


def json_endpoint(*methods):
    """Parse the JSON body, build the request context and map errors to JSON."""
    def decorator(view):
        @csrf_exempt
        @require_http_methods(list(methods))
        @functools.wraps(view)
        def wrapper(request, *args, **kwargs):
            body = {}
            if request.method == "POST" and request.body:
                try:
                    body = json.loads(request.body)
                except json.JSONDecodeError:
                    return ErrorHandler.error_response("VALIDATION_ERROR", "Invalid JSON")
                if not isinstance(body, dict):
                    return ErrorHandler.error_response("VALIDATION_ERROR", "JSON object expected")
            try:
                result = view(request, RequestContext(request), body, *args, **kwargs)
            except DomainError as e:
                logger.info(
                    "request_rejected",
                    extra={"operation": view.__name__, "error": e.code},
                )
                return ErrorHandler.handle_error(e)
            except Exception as e:
                return ErrorHandler.handle_error(e)
            return JsonResponse(versioned(result))
        return wrapper
    return decorator


# Payments

@json_endpoint("POST")
def kpay_initiate(request, ctx, body):
    data = {field: body.get(key) for key, field in INITIATE_FIELDS.items()}
    logger.info("payment_initiate_request", extra=mask_pii_in_dict({"phone": data["customer_phone"] or ""}))
    return ctx.payment_service().initiate(data).to_dict()


@json_endpoint("POST")
def kpay_status(request, ctx, body):
    return ctx.payment_service().check_status(
        reference=body.get("reference"),
        payment_id=body.get("paymentId"),
        transaction_id=body.get("transactionId"),
    ).to_dict()


@json_endpoint("POST")
def kpay_finalize(request, ctx, body):
    return ctx.payment_service().finalize(
        reference=body.get("reference"),
        transaction_id=body.get("transactionId"),
    ).to_dict()


@json_endpoint("POST")
def payment_timeout(request, ctx, body):
    return ctx.payment_service().mark_timeout(
        payment_id=normalize_optional_uuid(body.get("paymentId")),
        reference=body.get("reference"),
        reason=body.get("reason"),
    ).to_dict()


@json_endpoint("POST")
def payment_retry(request, ctx, body):
    data = {field: body.get(key) for key, field in INITIATE_FIELDS.items()}
    order_id = normalize_optional_uuid(data["order_id"])
    if order_id is None:
        raise ValidationError("orderId is required")
    if ctx.order_repo().get_by_id(order_id) is None:
        raise OrderNotFound(f"Order {order_id} not found")
    return ctx.payment_service().retry(data).to_dict()


@json_endpoint("GET")
def payments_for_order(request, ctx, body, order_id):
    if ctx.order_repo().get_by_id(order_id) is None:
        raise OrderNotFound(f"Order {order_id} not found")
    payments = ctx.payment_service().payments_for_order(order_id)
    return {"payments": [payment_to_dict(payment) for payment in payments]}


@json_endpoint("POST")
def link_payment(request, ctx, body):
    if not body.get("orderId"):
        raise ValidationError("orderId is required")
    return ctx.payment_service().link(
        body["orderId"],
        reference=body.get("reference"),
        payment_id=body.get("paymentId"),
    ).to_dict()


@json_endpoint("POST")
def kpay_webhook(request, ctx, body):
    """Gateway callback; the gateway is not a storefront user, so the service is unscoped."""
    return PaymentService().handle_webhook(body)


# Orders

@json_endpoint("POST")
def create_order(request, ctx, body):
    order_data = body.get("order")
    items = body.get("items")
    if not isinstance(order_data, dict) or not isinstance(items, list):
        raise ValidationError("order and items are required")
    order = ctx.order_service().create_order(order_data, items)
    return {"order": order_to_dict(order)}


@json_endpoint("GET")
def order_assignment(request, ctx, body, order_id):
    return ctx.assignment_service().current_assignment(order_id)


# Settings

@json_endpoint("GET", "POST", "DELETE")
def orders_enabled(request, ctx, body):
    service = ctx.availability_service()
    if request.method == "GET":
        return service.get_state().to_dict()
    ctx.require_admin()
    if request.method == "DELETE":
        return service.set_enabled("auto").to_dict()
    return service.set_enabled(body.get("enabled")).to_dict()


# Notifications

@json_endpoint("POST")
def create_notification(request, ctx, body):
    """Receiving end of the HTTP notification sink."""
    if not body.get("type"):
        raise ValidationError("type required")
    payload = dict(body)
    payload["recipient_user_id"] = normalize_optional_uuid(payload.get("recipient_user_id"))
    if payload.get("recipient_user_id") and not payload.get("recipient_role"):
        payload["recipient_role"] = "user"
    DatabaseNotificationSink().deliver(payload)
    return {"success": True}
