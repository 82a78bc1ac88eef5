"""
Access to the ``STOREFRONT`` settings dict with defaults.
"""
from django.conf import settings


DEFAULTS = {
    "REFUND_WINDOW_HOURS": 24,
    "NOTIFICATION_THROTTLE_SECONDS": 10,
    "RESTOCK_REQUIRES_DELIVERY": True,
    "DEFAULT_CURRENCY": "RWF",
    "BUSINESS_UTC_OFFSET_HOURS": 2,
    "ORDERS_OFF_START": "21:30",
    "ORDERS_OFF_END": "09:00",
    "OUTBOX_MAX_RETRIES": 5,
    "PAYMENT_REFERENCE_PREFIX": "STOREFRONT",
}


def storefront_setting(name: str):
    """Return a storefront setting, falling back to the built-in default."""
    overrides = getattr(settings, "STOREFRONT", None) or {}
    if name in overrides:
        return overrides[name]
    return DEFAULTS[name]
