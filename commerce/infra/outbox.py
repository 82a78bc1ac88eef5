"""
Transactional Outbox pattern implementation.

Notification events are stored in the same transaction as the state change
that produced them; the dispatcher delivers them later, at least once.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from uuid import UUID, uuid4

from django.db import models, transaction
from django.db.models import F
from django.utils import timezone

from commerce.conf import storefront_setting
from commerce.domain.events import NotificationRequested
from commerce.infra.models import TimeStampedModel

logger = logging.getLogger(__name__)


class OutboxEvent(TimeStampedModel):
    """Outbox event for transactional outbox pattern."""
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    aggregate_id = models.CharField(max_length=64, null=True, blank=True)
    event_type = models.CharField(max_length=100)
    event_version = models.CharField(max_length=10)
    event_data = models.JSONField()
    dedupe_key = models.CharField(max_length=255)
    processed = models.BooleanField(default=False)
    processed_at = models.DateTimeField(null=True, blank=True)
    retry_count = models.IntegerField(default=0)
    last_error = models.TextField(null=True, blank=True)

    class Meta:
        indexes = [
            models.Index(fields=("processed", "created_at")),
            models.Index(fields=("dedupe_key", "created_at")),
        ]


class OutboxRepository:
    """Repository for outbox events."""

    def __init__(self, throttle_seconds: int | None = None):
        if throttle_seconds is None:
            throttle_seconds = storefront_setting("NOTIFICATION_THROTTLE_SECONDS")
        self.throttle_seconds = throttle_seconds

    @transaction.atomic
    def add_notification(self, event: NotificationRequested) -> UUID | None:
        """
        Add notification to outbox (within the caller's transaction).

        Returns None when an identical notification (same recipient, role,
        type and order) was queued within the throttle window.
        """
        since = timezone.now() - timedelta(seconds=self.throttle_seconds)
        duplicate = OutboxEvent.objects.filter(
            dedupe_key=event.dedupe_key,
            created_at__gte=since,
        ).exists()
        if duplicate:
            logger.info(
                "notification_throttled",
                extra={"operation": event.type, "order_id": event.order_id},
            )
            return None

        outbox_event = OutboxEvent.objects.create(
            id=event.event_id,
            aggregate_id=event.order_id,
            event_type=event.type,
            event_version=event.version.value,
            event_data=event.to_payload(),
            dedupe_key=event.dedupe_key,
        )
        return outbox_event.id

    def get_unprocessed_events(self, limit: int = 100, max_retries: int | None = None) -> list[OutboxEvent]:
        """Get unprocessed events that still have retries left."""
        if max_retries is None:
            max_retries = storefront_setting("OUTBOX_MAX_RETRIES")
        return list(
            OutboxEvent.objects
            .filter(processed=False, retry_count__lt=max_retries)
            .order_by("created_at")[:limit]
        )

    def mark_processed(self, event_id: UUID) -> None:
        """Mark event as processed."""
        OutboxEvent.objects.filter(id=event_id).update(
            processed=True,
            processed_at=timezone.now(),
        )

    def increment_retry(self, event_id: UUID, error: str = "") -> None:
        """Increment retry count."""
        OutboxEvent.objects.filter(id=event_id).update(
            retry_count=F("retry_count") + 1,
            last_error=error,
        )
