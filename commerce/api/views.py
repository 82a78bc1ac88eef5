"""
GraphQL view with idempotency and logging support.
"""
import hashlib
import json
import logging
from uuid import UUID, uuid4

from ariadne import graphql_sync
from django.conf import settings
from django.db import DatabaseError
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from commerce.api.context import RequestContext
from commerce.api.middleware import ErrorHandler
from commerce.api.schema import error_formatter, schema
from commerce.infra.models import IdempotencyKey
from commerce.infra.pii_masker import mask_pii_in_dict

logger = logging.getLogger(__name__)

# GraphQL operation name fragment -> idempotency operation type.
OPERATIONS = (
    ("createOrder", "CREATE_ORDER"),
    ("updateOrderStatus", "UPDATE_ORDER_STATUS"),
    ("requestItemRefund", "REQUEST_REFUND"),
    ("requestOrderRefund", "REQUEST_REFUND"),
    ("respondToItemRefund", "RESPOND_REFUND"),
    ("respondToOrderRefund", "RESPOND_REFUND"),
    ("assignRider", "ASSIGN_RIDER"),
    ("reassignRider", "ASSIGN_RIDER"),
    ("linkPayment", "LINK_PAYMENT"),
)


class StorefrontGraphQLView:
    """GraphQL view with idempotency and structured logging."""

    def dispatch(self, request, *args, **kwargs):
        """Handle GraphQL request with idempotency."""
        request_id = request.headers.get("X-Request-ID") or str(uuid4())
        idempotency_key = request.headers.get("Idempotency-Key")
        user_id = request.headers.get("X-User-ID")

        log_data = {
            "request_id": request_id,
            "user_id": user_id,
            "idempotency_key": idempotency_key[:8] + "..." if idempotency_key else None,
            "operation": "graphql",
        }
        logger.info("graphql_request", extra=mask_pii_in_dict(log_data))

        if request.method == "GET":
            return JsonResponse({"message": "GraphQL endpoint. Use POST for queries."})

        try:
            data = json.loads(request.body)
        except json.JSONDecodeError:
            return ErrorHandler.error_response("VALIDATION_ERROR", "Invalid JSON")

        query = data.get("query") or ""
        is_mutation = query.lstrip().lower().startswith("mutation")
        user_uuid = self._parse_user_id(user_id, request_id)

        if idempotency_key and is_mutation and user_uuid:
            return self._dispatch_idempotent(request, data, idempotency_key, user_uuid, request_id)

        response = self._execute(request, data)
        logger.info(
            "graphql_response",
            extra={"request_id": request_id, "status": response.status_code},
        )
        return response

    def _dispatch_idempotent(self, request, data, idempotency_key, user_uuid, request_id):
        operation = self._extract_operation(data.get("operationName") or data.get("query") or "")
        request_hash = self._create_request_hash(data.get("query") or "", data.get("variables") or {})

        existing = IdempotencyKey.objects.filter(
            key=idempotency_key,
            user_id=user_uuid,
            operation=operation,
        ).first()

        if existing:
            if existing.request_hash == request_hash:
                logger.info(
                    "idempotent_request_cached",
                    extra={
                        "request_id": request_id,
                        "idempotency_key": idempotency_key,
                        "operation": operation,
                    },
                )
                return JsonResponse(existing.response_payload, safe=False)

            logger.warning(
                "idempotency_key_conflict",
                extra={"request_id": request_id, "idempotency_key": idempotency_key},
            )
            return ErrorHandler.error_response(
                "DUPLICATE_REQUEST",
                "Idempotency key already used with different request",
            )

        response = self._execute(request, data)

        # Only successful results are replayed.
        response_data = json.loads(response.content)
        if response.status_code == 200 and not response_data.get("errors"):
            try:
                IdempotencyKey.objects.create(
                    key=idempotency_key,
                    user_id=user_uuid,
                    operation=operation,
                    request_hash=request_hash,
                    response_payload=response_data,
                )
            except DatabaseError as e:
                logger.error(
                    "failed_to_save_idempotency",
                    extra={"request_id": request_id, "error": str(e)},
                )
        return response

    def _execute(self, request, data):
        try:
            success, result = graphql_sync(
                schema,
                data,
                context_value={"request": request, "ctx": RequestContext(request)},
                error_formatter=error_formatter,
                debug=settings.DEBUG,
            )
        except Exception as e:
            return ErrorHandler.handle_error(e)
        return JsonResponse(result, status=200 if success else 400)

    def _parse_user_id(self, user_id, request_id):
        if not user_id:
            return None
        try:
            return UUID(user_id)
        except (ValueError, TypeError):
            logger.warning(
                "invalid_user_id",
                extra={"request_id": request_id},
            )
            return None

    def _create_request_hash(self, query: str, variables: dict) -> str:
        """Create hash of request for deduplication."""
        content = json.dumps({"query": query, "variables": variables}, sort_keys=True, default=str)
        return hashlib.sha256(content.encode()).hexdigest()

    def _extract_operation(self, operation_name: str) -> str:
        """Extract operation type from operation name."""
        for fragment, operation in OPERATIONS:
            if fragment in operation_name:
                return operation
        return "UNKNOWN"


@csrf_exempt
@require_http_methods(["GET", "POST"])
def graphql_view(request):
    """GraphQL endpoint."""
    view = StorefrontGraphQLView()
    return view.dispatch(request)
