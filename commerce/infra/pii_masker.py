"""
PII (Personally Identifiable Information) masking utilities for log output.
"""
import re


UUID_PATTERN = re.compile(r'^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$', re.I)
PHONE_PATTERN = re.compile(r'^[\d\s\+\-\(\)]+$')

PII_FIELDS = {
    "email", "phone", "name", "customer_name", "customer_email", "customer_phone",
    "customer_first_name", "customer_last_name", "delivery_address", "msisdn",
    "user_id", "recipient_user_id",
}


def mask_email(email: str) -> str:
    """Mask email address."""
    if "@" not in email:
        return email
    local, domain = email.split("@", 1)
    masked = "**" if len(local) <= 2 else local[:2] + "*" * (len(local) - 2)
    return f"{masked}@{domain}"


def mask_phone(phone: str) -> str:
    """Mask phone number, keeping the first and last two digits."""
    if not phone:
        return phone
    if len(phone) <= 4:
        return "*" * len(phone)
    return phone[:2] + "*" * (len(phone) - 4) + phone[-2:]


def mask_name(name: str) -> str:
    if len(name) <= 2:
        return "**"
    return name[0] + "*" * (len(name) - 2) + name[-1]


def mask_uuid(uuid_str: str) -> str:
    """Mask UUID (show first 8 chars only)."""
    if len(uuid_str) < 8:
        return "*" * len(uuid_str)
    return uuid_str[:8] + "-****-****-****-************"


def mask_value(key: str, value: str) -> str:
    if "@" in value:
        return mask_email(value)
    if UUID_PATTERN.match(value):
        return mask_uuid(value)
    if PHONE_PATTERN.match(value):
        return mask_phone(value)
    if "name" in key or "address" in key:
        return mask_name(value)
    return value


def mask_pii_in_dict(data: dict) -> dict:
    """Mask PII in dictionary recursively."""
    masked = {}
    for key, value in data.items():
        key_lower = key.lower()
        if isinstance(value, dict):
            masked[key] = mask_pii_in_dict(value)
        elif isinstance(value, list):
            masked[key] = [mask_pii_in_dict(item) if isinstance(item, dict) else item for item in value]
        elif key_lower in PII_FIELDS and isinstance(value, str):
            masked[key] = mask_value(key_lower, value)
        else:
            masked[key] = value
    return masked
