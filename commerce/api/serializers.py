"""
Explicit JSON shapes of the REST endpoints. Every body carries ``schemaVersion``.
"""
SCHEMA_VERSION = 1


def _iso(value):
    return value.isoformat() if value else None


def _str(value):
    return str(value) if value is not None else None


def order_item_to_dict(item) -> dict:
    return {
        "id": str(item.id),
        "orderId": str(item.order_id),
        "productId": _str(item.product_id),
        "productVariationId": _str(item.product_variation_id),
        "productName": item.product_name,
        "variationName": item.variation_name,
        "quantity": item.quantity,
        "price": str(item.price),
        "total": str(item.total),
        "refundStatus": item.refund_status,
        "refundRequested": item.refund_requested,
        "refundReason": item.refund_reason,
        "refundRequestedAt": _iso(item.refund_requested_at),
        "refundExpiresAt": _iso(item.refund_expires_at),
    }


def order_to_dict(order) -> dict:
    return {
        "id": str(order.id),
        "orderNumber": order.order_number,
        "userId": _str(order.user_id),
        "status": order.status,
        "isExternal": order.is_external,
        "isPaid": order.is_paid,
        "paymentStatus": order.payment_status,
        "paymentMethod": order.payment_method,
        "subtotal": str(order.subtotal),
        "tax": str(order.tax),
        "total": str(order.total),
        "currency": order.currency,
        "customerFirstName": order.customer_first_name,
        "customerLastName": order.customer_last_name,
        "customerEmail": order.customer_email,
        "customerPhone": order.customer_phone,
        "deliveryAddress": order.delivery_address,
        "deliveryCity": order.delivery_city,
        "deliveryNotes": order.delivery_notes,
        "refundStatus": order.refund_status,
        "shippedAt": _iso(order.shipped_at),
        "deliveredAt": _iso(order.delivered_at),
        "createdAt": _iso(order.created_at),
        "items": [order_item_to_dict(item) for item in order.items.all()],
    }


def versioned(body: dict) -> dict:
    return {"schemaVersion": SCHEMA_VERSION, **body}
