"""
Notification sinks used by the dispatcher to deliver outbox events.
"""
from __future__ import annotations

import requests
from django.conf import settings

from commerce.infra.models import Notification


class DatabaseNotificationSink:
    """Stores notifications in the ``Notification`` table (in-app inbox)."""

    def deliver(self, payload: dict) -> None:
        Notification.objects.create(
            recipient_user_id=payload.get("recipient_user_id"),
            recipient_role=payload.get("recipient_role"),
            type=payload["type"],
            title=payload.get("title"),
            body=payload.get("body"),
            meta=payload.get("meta") or {},
        )


class HttpNotificationSink:
    """POSTs notifications to the notifications endpoint of another deployment."""

    def __init__(self, endpoint: str | None = None, timeout: float = 5.0, session: requests.Session | None = None):
        self.endpoint = endpoint or settings.NOTIFICATIONS_ENDPOINT
        self.timeout = timeout
        self.session = session or requests.Session()

    def deliver(self, payload: dict) -> None:
        if not self.endpoint:
            raise RuntimeError("NOTIFICATIONS_ENDPOINT is not configured")
        response = self.session.post(self.endpoint, json=payload, timeout=self.timeout)
        response.raise_for_status()


def get_notification_sink():
    if settings.NOTIFICATION_SINK == "http":
        return HttpNotificationSink()
    return DatabaseNotificationSink()
