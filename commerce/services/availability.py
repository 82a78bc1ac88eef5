"""
Ordering availability.

Orders are open unless an admin switched them off, or, without an admin
setting, the business clock is inside the nightly off window.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone as dt_timezone

from django.db import transaction
from django.utils import timezone

from commerce.conf import storefront_setting
from commerce.domain.errors import ValidationError
from commerce.infra.repositories import SiteSettingRepository

SCHEMA_VERSION = 1

ENABLED_KEY = "orders_enabled"
SOURCE_KEY = "orders_enabled_source"

SCHEDULE_CLOSED_MESSAGE = "We are currently not working, please order again at 9 am"
ADMIN_CLOSED_MESSAGE = "We are currently not allowing orders, please try again later"


def _parse_clock(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


@dataclass(frozen=True)
class ScheduleState:
    disabled: bool
    next_toggle_at: datetime


def schedule_state(now: datetime | None = None) -> ScheduleState:
    """Where the business clock sits relative to the off window, and when it flips next."""
    now = now or timezone.now()
    offset = timedelta(hours=storefront_setting("BUSINESS_UTC_OFFSET_HOURS"))
    business_tz = dt_timezone(offset)
    local = now.astimezone(business_tz)
    off_start = _parse_clock(storefront_setting("ORDERS_OFF_START"))
    off_end = _parse_clock(storefront_setting("ORDERS_OFF_END"))

    clock = local.time().replace(second=0, microsecond=0)
    disabled = clock >= off_start or clock < off_end

    if disabled:
        day = local.date() if clock < off_end else local.date() + timedelta(days=1)
        toggle = datetime.combine(day, off_end, tzinfo=business_tz)
    else:
        toggle = datetime.combine(local.date(), off_start, tzinfo=business_tz)
    return ScheduleState(disabled=disabled, next_toggle_at=toggle.astimezone(dt_timezone.utc))


@dataclass
class Availability:
    enabled: bool
    admin_enabled: bool | None
    schedule_disabled: bool
    message: str | None
    source: str
    next_toggle_at: datetime | None

    def to_dict(self) -> dict:
        return {
            "schemaVersion": SCHEMA_VERSION,
            "enabled": self.enabled,
            "adminEnabled": self.admin_enabled,
            "scheduleDisabled": self.schedule_disabled,
            "message": self.message,
            "source": self.source,
            "nextToggleAt": self.next_toggle_at.isoformat() if self.next_toggle_at else None,
        }


def _as_bool(value) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    return str(value).lower() == "true"


class AvailabilityService:
    """Reads and switches whether the storefront accepts orders."""

    def __init__(self, settings_repo: SiteSettingRepository | None = None):
        self.settings_repo = settings_repo or SiteSettingRepository()

    def get_state(self, now: datetime | None = None) -> Availability:
        admin_enabled = _as_bool(self.settings_repo.get(ENABLED_KEY))
        explicit_source = self.settings_repo.get(SOURCE_KEY)
        schedule = schedule_state(now)

        if admin_enabled is not None:
            enabled = admin_enabled
        else:
            enabled = not schedule.disabled

        message = None
        if not enabled:
            if admin_enabled is None and schedule.disabled:
                message = SCHEDULE_CLOSED_MESSAGE
            else:
                message = ADMIN_CLOSED_MESSAGE

        return Availability(
            enabled=enabled,
            admin_enabled=admin_enabled,
            schedule_disabled=schedule.disabled,
            message=message,
            source=explicit_source or ("admin" if admin_enabled is not None else "schedule"),
            next_toggle_at=schedule.next_toggle_at,
        )

    @transaction.atomic
    def set_enabled(self, value, now: datetime | None = None) -> Availability:
        """``True``/``False`` pins the switch; ``"auto"`` hands control back to the schedule."""
        if value == "auto":
            self.settings_repo.delete(ENABLED_KEY)
            self.settings_repo.delete(SOURCE_KEY)
        elif isinstance(value, bool):
            self.settings_repo.set(ENABLED_KEY, value)
            self.settings_repo.set(SOURCE_KEY, "admin")
        else:
            raise ValidationError("enabled must be boolean or 'auto'")
        return self.get_state(now)

    def orders_enabled(self, now: datetime | None = None) -> bool:
        return self.get_state(now).enabled
