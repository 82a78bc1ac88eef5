from __future__ import annotations

from uuid import uuid4

from django.db import models


ORDER_STATUS_CHOICES = (
    ("pending", "Pending"),
    ("processing", "Processing"),
    ("assigned", "Assigned"),
    ("shipped", "Shipped"),
    ("delivered", "Delivered"),
    ("cancelled", "Cancelled"),
    ("refunded", "Refunded"),
)

REFUND_STATUS_CHOICES = (
    ("none", "None"),
    ("requested", "Requested"),
    ("approved", "Approved"),
    ("rejected", "Rejected"),
    ("cancelled", "Cancelled"),
    ("refunded", "Refunded"),
)

PAYMENT_STATUS_CHOICES = (
    ("pending", "Pending"),
    ("completed", "Completed"),
    ("successful", "Successful"),
    ("failed", "Failed"),
    ("cancelled", "Cancelled"),
)

ASSIGNMENT_STATUS_CHOICES = (
    ("pending", "Pending"),
    ("accepted", "Accepted"),
    ("rejected", "Rejected"),
    ("completed", "Completed"),
    ("reassigned", "Reassigned"),
)

OPERATION_TYPE = (
    ("CREATE_ORDER", "Create order"),
    ("UPDATE_ORDER_STATUS", "Update order status"),
    ("REQUEST_REFUND", "Request refund"),
    ("RESPOND_REFUND", "Respond to refund"),
    ("ASSIGN_RIDER", "Assign rider"),
    ("LINK_PAYMENT", "Link payment"),
    ("UNKNOWN", "Unknown"),
)


class TimeStampedModel(models.Model):
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class ProductORM(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    name = models.CharField(max_length=255)
    price = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    stock = models.IntegerField(default=0)
    track_quantity = models.BooleanField(default=True)

    def __str__(self):
        return self.name


class ProductVariationORM(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    product = models.ForeignKey(
        ProductORM,
        on_delete=models.CASCADE,
        related_name="variations",
    )
    name = models.CharField(max_length=255)
    stock = models.IntegerField(default=0)

    class Meta:
        indexes = [
            models.Index(fields=("product",)),
        ]

    def __str__(self):
        return f"{self.product.name} / {self.name}"


class OrderORM(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    order_number = models.CharField(max_length=32, unique=True)
    user_id = models.UUIDField(null=True, blank=True)
    status = models.CharField(max_length=20, choices=ORDER_STATUS_CHOICES, default="pending")
    is_external = models.BooleanField(default=False)
    is_paid = models.BooleanField(default=False)
    payment_status = models.CharField(max_length=20, default="pending")
    payment_method = models.CharField(max_length=50, default="cash_on_delivery")
    subtotal = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    tax = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    total = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    currency = models.CharField(max_length=8, default="RWF")

    customer_first_name = models.CharField(max_length=100, blank=True, default="")
    customer_last_name = models.CharField(max_length=100, blank=True, default="")
    customer_email = models.CharField(max_length=255, blank=True, default="")
    customer_phone = models.CharField(max_length=50, blank=True, default="")
    delivery_address = models.TextField(blank=True, default="")
    delivery_city = models.CharField(max_length=100, blank=True, default="")
    delivery_notes = models.TextField(blank=True, default="")

    refund_status = models.CharField(max_length=20, choices=REFUND_STATUS_CHOICES, default="none")
    refund_requested = models.BooleanField(default=False)
    refund_reason = models.TextField(null=True, blank=True)
    refund_requested_at = models.DateTimeField(null=True, blank=True)
    refund_expires_at = models.DateTimeField(null=True, blank=True)

    shipped_at = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        indexes = [
            models.Index(fields=("user_id", "status")),
            models.Index(fields=("status",)),
            models.Index(fields=("refund_status",)),
        ]

    def __str__(self):
        return self.order_number

    @property
    def customer_name(self) -> str:
        return f"{self.customer_first_name} {self.customer_last_name}".strip()


class OrderItemORM(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    order = models.ForeignKey(
        OrderORM,
        on_delete=models.CASCADE,
        related_name="items",
    )
    product_id = models.UUIDField(null=True, blank=True)
    product_variation_id = models.UUIDField(null=True, blank=True)
    product_name = models.CharField(max_length=255)
    variation_name = models.CharField(max_length=255, null=True, blank=True)
    quantity = models.IntegerField()
    price = models.DecimalField(max_digits=12, decimal_places=2)
    total = models.DecimalField(max_digits=12, decimal_places=2)

    refund_status = models.CharField(max_length=20, choices=REFUND_STATUS_CHOICES, default="none")
    refund_requested = models.BooleanField(default=False)
    refund_reason = models.TextField(null=True, blank=True)
    refund_requested_at = models.DateTimeField(null=True, blank=True)
    refund_expires_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        indexes = [
            models.Index(fields=("order",)),
            models.Index(fields=("refund_status",)),
        ]
        ordering = ["created_at"]


class PaymentORM(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    order = models.ForeignKey(
        OrderORM,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="payments",
    )
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=8, default="RWF")
    payment_method = models.CharField(max_length=50)
    status = models.CharField(max_length=20, choices=PAYMENT_STATUS_CHOICES, default="pending")
    reference = models.CharField(max_length=100, unique=True)
    kpay_transaction_id = models.CharField(max_length=100, null=True, blank=True)
    kpay_mom_transaction_id = models.CharField(max_length=100, null=True, blank=True)
    gateway_response = models.JSONField(null=True, blank=True)
    webhook_data = models.JSONField(null=True, blank=True)
    failure_reason = models.TextField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    client_timeout = models.BooleanField(default=False)
    client_timeout_reason = models.TextField(null=True, blank=True)
    customer_name = models.CharField(max_length=255, blank=True, default="")
    customer_email = models.CharField(max_length=255, blank=True, default="")
    customer_phone = models.CharField(max_length=50, blank=True, default="")

    class Meta:
        indexes = [
            models.Index(fields=("order",)),
            models.Index(fields=("kpay_transaction_id",)),
            models.Index(fields=("status",)),
        ]


class RiderORM(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    user_id = models.UUIDField(null=True, blank=True)
    full_name = models.CharField(max_length=255)
    phone = models.CharField(max_length=50, blank=True, default="")
    active = models.BooleanField(default=True)

    def __str__(self):
        return self.full_name


class OrderAssignmentORM(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    order = models.ForeignKey(
        OrderORM,
        on_delete=models.CASCADE,
        related_name="assignments",
    )
    rider = models.ForeignKey(
        RiderORM,
        on_delete=models.PROTECT,
        related_name="assignments",
    )
    status = models.CharField(max_length=20, choices=ASSIGNMENT_STATUS_CHOICES, default="pending")
    notes = models.TextField(blank=True, default="")
    assigned_at = models.DateTimeField(auto_now_add=True)
    responded_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        indexes = [
            models.Index(fields=("order", "status")),
            models.Index(fields=("rider", "status")),
        ]


class SiteSetting(TimeStampedModel):
    key = models.CharField(max_length=100, unique=True)
    value = models.JSONField(null=True)


class Notification(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    recipient_user_id = models.UUIDField(null=True, blank=True)
    recipient_role = models.CharField(max_length=20, null=True, blank=True)
    type = models.CharField(max_length=50)
    title = models.CharField(max_length=255, null=True, blank=True)
    body = models.TextField(null=True, blank=True)
    meta = models.JSONField(default=dict)
    read = models.BooleanField(default=False)

    class Meta:
        indexes = [
            models.Index(fields=("recipient_user_id", "read")),
            models.Index(fields=("recipient_role", "read")),
        ]


class IdempotencyKey(TimeStampedModel):
    key = models.CharField(max_length=255)
    user_id = models.UUIDField(null=True, blank=True)
    operation = models.CharField(max_length=50, choices=OPERATION_TYPE)
    request_hash = models.CharField(max_length=255)
    response_payload = models.JSONField()

    class Meta:
        unique_together = [("key", "user_id", "operation")]
        indexes = [
            models.Index(fields=("request_hash",)),
            models.Index(fields=("key", "user_id", "operation")),
        ]
