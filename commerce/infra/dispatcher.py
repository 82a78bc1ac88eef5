"""
Dispatcher delivering queued notifications from the outbox.
"""
from __future__ import annotations

import logging

from django.db import transaction

from commerce.infra.notifications import get_notification_sink
from commerce.infra.outbox import OutboxEvent, OutboxRepository

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Reads unprocessed outbox events and hands them to a sink, at least once."""

    def __init__(self, outbox_repo: OutboxRepository | None = None, sink=None):
        self.outbox_repo = outbox_repo or OutboxRepository()
        self.sink = sink or get_notification_sink()

    def dispatch_pending(self, limit: int = 100) -> int:
        """Deliver up to ``limit`` pending events; returns how many were delivered."""
        events = self.outbox_repo.get_unprocessed_events(limit=limit)
        delivered = 0

        for event in events:
            try:
                with transaction.atomic():
                    self._deliver(event)
                    self.outbox_repo.mark_processed(event.id)
                delivered += 1
            except Exception as e:
                self.outbox_repo.increment_retry(event.id, error=str(e))
                logger.error(
                    "notification_delivery_failed",
                    extra={
                        "event_id": str(event.id),
                        "operation": event.event_type,
                        "error": str(e),
                    },
                    exc_info=True,
                )

        return delivered

    def _deliver(self, event: OutboxEvent) -> None:
        self.sink.deliver(event.event_data)
        logger.info(
            "notification_delivered",
            extra={"event_id": str(event.id), "operation": event.event_type},
        )
