"""
URL configuration for storefront project.
"""
from django.contrib import admin
from django.urls import path

from commerce.api import rest
from commerce.api.views import graphql_view

urlpatterns = [
    path('admin/', admin.site.urls),
    path('graphql/', graphql_view, name='graphql'),
    path('api/payments/kpay/initiate', rest.kpay_initiate, name='kpay-initiate'),
    path('api/payments/kpay/status', rest.kpay_status, name='kpay-status'),
    path('api/payments/kpay/finalize', rest.kpay_finalize, name='kpay-finalize'),
    path('api/payments/order/<uuid:order_id>', rest.payments_for_order, name='payments-for-order'),
    path('api/payments/link', rest.link_payment, name='payments-link'),
    path('api/payments/timeout', rest.payment_timeout, name='payments-timeout'),
    path('api/payments/retry', rest.payment_retry, name='payments-retry'),
    path('api/webhooks/kpay', rest.kpay_webhook, name='kpay-webhook'),
    path('api/orders/create', rest.create_order, name='orders-create'),
    path('api/orders/<uuid:order_id>/assignment', rest.order_assignment, name='order-assignment'),
    path('api/admin/settings/orders-enabled', rest.orders_enabled, name='orders-enabled'),
    path('api/notifications/create', rest.create_notification, name='notifications-create'),
]
