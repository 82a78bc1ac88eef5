"""
GraphQL schema definition using Ariadne.
"""
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from uuid import UUID

from ariadne import (
    MutationType,
    ObjectType,
    QueryType,
    ScalarType,
    format_error,
    load_schema_from_path,
    make_executable_schema,
)

from commerce.domain.errors import DomainError, PermissionDenied, ValidationError

# Load schema from .graphql files
SCHEMAS_DIR = Path(__file__).parent / "schemas"
type_defs = "\n".join([
    load_schema_from_path(SCHEMAS_DIR / "common"),
    load_schema_from_path(SCHEMAS_DIR / "query"),
    load_schema_from_path(SCHEMAS_DIR / "mutation"),
])

query = QueryType()
mutation = MutationType()
order_type = ObjectType("Order")
refund_result = ObjectType("RefundResult")


def request_context(info):
    return info.context["ctx"]


# Queries

@query.field("order")
def resolve_order(_, info, id):
    return request_context(info).order_service().get_order(id)


@query.field("ordersByCustomer")
def resolve_orders_by_customer(_, info, user_id, limit=50, offset=0):
    """Orders of one customer; customers only ever see their own."""
    return request_context(info).order_service().get_orders_by_customer(user_id, limit=limit, offset=offset)


@query.field("refundRequests")
def resolve_refund_requests(_, info, status="requested"):
    ctx = request_context(info)
    ctx.require_admin()
    return ctx.refund_service().list_refund_requests(status)


@query.field("paymentsForOrder")
def resolve_payments_for_order(_, info, order_id):
    ctx = request_context(info)
    order = ctx.order_service().get_order(order_id)
    if order is None:
        return []
    return ctx.payment_service().payments_for_order(order.id)


@query.field("paymentStatus")
def resolve_payment_status(_, info, reference=None, payment_id=None, transaction_id=None):
    return request_context(info).payment_service().check_status(
        reference=reference,
        payment_id=payment_id,
        transaction_id=transaction_id,
    )


@query.field("currentRider")
def resolve_current_rider(_, info, order_id):
    assignment = request_context(info).assignment_service().get_current(order_id)
    return assignment.rider if assignment else None


@query.field("ordersAvailability")
def resolve_orders_availability(_, info):
    return request_context(info).availability_service().get_state()


@query.field("stockHistory")
def resolve_stock_history(_, info, product_id=None, product_variation_id=None):
    ctx = request_context(info)
    ctx.require_admin()
    if not (product_id or product_variation_id):
        raise ValidationError("productId or productVariationId is required")
    return ctx.inventory_service().movements_for(
        product_id=product_id,
        product_variation_id=product_variation_id,
    )


# Orders

@mutation.field("createOrder")
def resolve_create_order(_, info, input: dict):
    """Resolve create order mutation."""
    items = input.pop("items")
    return request_context(info).order_service().create_order(input, items)


@mutation.field("updateOrderStatus")
def resolve_update_order_status(_, info, order_id, status):
    return request_context(info).order_service().update_status(order_id, status)


@mutation.field("deleteOrder")
def resolve_delete_order(_, info, order_id):
    request_context(info).order_service().delete_order(order_id)
    return True


# Refunds

@mutation.field("requestItemRefund")
def resolve_request_item_refund(_, info, item_id, reason, admin_initiated=False):
    ctx = request_context(info)
    if admin_initiated:
        ctx.require_admin()
    return ctx.refund_service().request_item_refund(item_id, reason, admin_initiated=admin_initiated)


@mutation.field("requestOrderRefund")
def resolve_request_order_refund(_, info, order_id, reason, admin_initiated=False):
    ctx = request_context(info)
    if admin_initiated:
        ctx.require_admin()
    return ctx.refund_service().request_order_refund(order_id, reason, admin_initiated=admin_initiated)


@mutation.field("cancelItemRefund")
def resolve_cancel_item_refund(_, info, item_id):
    return request_context(info).refund_service().cancel_item_refund(item_id)


@mutation.field("cancelOrderRefund")
def resolve_cancel_order_refund(_, info, order_id):
    return request_context(info).refund_service().cancel_order_refund(order_id)


@mutation.field("respondToItemRefund")
def resolve_respond_to_item_refund(_, info, item_id, approve, admin_note=None):
    ctx = request_context(info)
    ctx.require_admin()
    return ctx.refund_service().respond_to_item_refund(item_id, approve, admin_note=admin_note)


@mutation.field("respondToOrderRefund")
def resolve_respond_to_order_refund(_, info, order_id, approve, admin_note=None):
    ctx = request_context(info)
    ctx.require_admin()
    return ctx.refund_service().respond_to_order_refund(order_id, approve, admin_note=admin_note)


# Rider assignments

@mutation.field("assignRider")
def resolve_assign_rider(_, info, order_id, rider_id, notes=None):
    ctx = request_context(info)
    ctx.require_admin()
    return ctx.assignment_service().assign(order_id, rider_id, notes or "")


@mutation.field("reassignRider")
def resolve_reassign_rider(_, info, order_id, rider_id, notes=None):
    ctx = request_context(info)
    ctx.require_admin()
    return ctx.assignment_service().reassign(order_id, rider_id, notes or "")


@mutation.field("respondToAssignment")
def resolve_respond_to_assignment(_, info, assignment_id, status):
    ctx = request_context(info)
    ctx.require_rider()
    if ctx.is_admin:
        return ctx.assignment_service().respond(assignment_id, status)
    if ctx.user_id is None:
        raise PermissionDenied("Rider identity required")
    return ctx.assignment_service().respond(assignment_id, status, rider_user_id=ctx.user_id)


# Payments

@mutation.field("initiatePayment")
def resolve_initiate_payment(_, info, input: dict):
    return request_context(info).payment_service().initiate(input)


@mutation.field("finalizePayment")
def resolve_finalize_payment(_, info, reference=None, transaction_id=None):
    return request_context(info).payment_service().finalize(reference=reference, transaction_id=transaction_id)


@mutation.field("linkPayment")
def resolve_link_payment(_, info, order_id, reference=None, payment_id=None):
    return request_context(info).payment_service().link(order_id, reference=reference, payment_id=payment_id)


# Availability

@mutation.field("setOrdersEnabled")
def resolve_set_orders_enabled(_, info, enabled):
    ctx = request_context(info)
    ctx.require_admin()
    value = {"true": True, "false": False, "auto": "auto"}.get(enabled.lower())
    if value is None:
        raise ValidationError("enabled must be true, false or auto")
    return ctx.availability_service().set_enabled(value)


@order_type.field("items")
def resolve_order_items(order, info):
    """Resolve order items."""
    return list(order.items.all())


@refund_result.field("mode")
def resolve_refund_mode(result, info):
    return result.mode.value


# Define custom scalars
decimal_scalar = ScalarType("Decimal")
uuid_scalar = ScalarType("UUID")
datetime_scalar = ScalarType("DateTime")


@decimal_scalar.serializer
def serialize_decimal(value):
    """Serialize Decimal to string."""
    return str(value)


@decimal_scalar.value_parser
def parse_decimal_value(value):
    """Parse Decimal from string."""
    return Decimal(str(value))


@uuid_scalar.serializer
def serialize_uuid(value):
    return str(value)


@uuid_scalar.value_parser
def parse_uuid_value(value):
    """Parse UUID from string."""
    if isinstance(value, UUID):
        return value
    return UUID(str(value))


@datetime_scalar.serializer
def serialize_datetime(value):
    """Serialize DateTime to ISO format string."""
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


@datetime_scalar.value_parser
def parse_datetime_value(value):
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def error_formatter(error, debug: bool = False) -> dict:
    """Default Ariadne formatting plus the domain error code in ``extensions.code``."""
    formatted = format_error(error, debug)
    original = getattr(error, "original_error", None)
    if isinstance(original, DomainError):
        formatted["message"] = original.message
        formatted.setdefault("extensions", {})["code"] = original.code
    return formatted


# Create executable schema
schema = make_executable_schema(
    type_defs,
    query,
    mutation,
    order_type,
    refund_result,
    datetime_scalar,
    decimal_scalar,
    uuid_scalar,
    convert_names_case=True,
)
