from django.contrib import admin

from commerce.infra.models import (
    IdempotencyKey,
    Notification,
    OrderAssignmentORM,
    OrderItemORM,
    OrderORM,
    PaymentORM,
    ProductORM,
    ProductVariationORM,
    RiderORM,
    SiteSetting,
)
from commerce.infra.outbox import OutboxEvent
from commerce.infra.stock_ledger import StockMovement


class OrderItemInline(admin.TabularInline):
    model = OrderItemORM
    extra = 0
    readonly_fields = ("total", "refund_status", "refund_requested_at")


@admin.register(OrderORM)
class OrderAdmin(admin.ModelAdmin):
    list_display = ("order_number", "status", "payment_method", "is_paid", "total", "refund_status", "created_at")
    list_filter = ("status", "payment_method", "is_paid", "is_external", "refund_status", "created_at")
    search_fields = ("order_number", "customer_email", "customer_phone")
    inlines = [OrderItemInline]


@admin.register(OrderItemORM)
class OrderItemAdmin(admin.ModelAdmin):
    list_display = ("id", "order", "product_name", "quantity", "price", "refund_status", "created_at")
    list_filter = ("refund_status", "created_at")


@admin.register(ProductORM)
class ProductAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "stock", "track_quantity")
    search_fields = ("name",)


@admin.register(ProductVariationORM)
class ProductVariationAdmin(admin.ModelAdmin):
    list_display = ("id", "product", "name", "stock")


@admin.register(PaymentORM)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ("reference", "order", "amount", "payment_method", "status", "created_at")
    list_filter = ("status", "payment_method", "client_timeout", "created_at")
    search_fields = ("reference", "kpay_transaction_id")


@admin.register(RiderORM)
class RiderAdmin(admin.ModelAdmin):
    list_display = ("full_name", "phone", "active")
    list_filter = ("active",)


@admin.register(OrderAssignmentORM)
class OrderAssignmentAdmin(admin.ModelAdmin):
    list_display = ("id", "order", "rider", "status", "assigned_at", "responded_at")
    list_filter = ("status",)


@admin.register(SiteSetting)
class SiteSettingAdmin(admin.ModelAdmin):
    list_display = ("key", "value", "updated_at")


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ("type", "recipient_role", "recipient_user_id", "title", "read", "created_at")
    list_filter = ("type", "recipient_role", "read")


@admin.register(StockMovement)
class StockMovementAdmin(admin.ModelAdmin):
    list_display = ("stock_key", "kind", "quantity_delta", "resulting_stock", "sequence_number", "created_at")
    list_filter = ("kind",)
    readonly_fields = ("stock_key", "order_item_id", "kind", "quantity_delta", "resulting_stock", "sequence_number")


@admin.register(IdempotencyKey)
class IdempotencyAdmin(admin.ModelAdmin):
    list_display = ("key", "user_id", "operation", "created_at")
    list_filter = ("operation", "created_at")
    search_fields = ("key", "user_id")


@admin.register(OutboxEvent)
class OutboxEventAdmin(admin.ModelAdmin):
    list_display = ("id", "aggregate_id", "event_type", "processed", "retry_count", "created_at")
    list_filter = ("processed", "event_type", "created_at")
    readonly_fields = ("id", "aggregate_id", "event_type", "event_data", "processed", "processed_at", "retry_count", "last_error")
