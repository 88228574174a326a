"""Day boundaries in the reference timezone.

Step records are keyed by the calendar day in the reference timezone, and
tournament windows are compared against that day's midnight.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from steprewards.config import get_settings


def reference_zone() -> ZoneInfo:
    return ZoneInfo(get_settings().reference_timezone)


def reference_today(now: datetime | None = None) -> date:
    """Calendar day in the reference timezone."""
    if now is None:
        now = datetime.now(timezone.utc)
    return now.astimezone(reference_zone()).date()


def reference_yesterday(now: datetime | None = None) -> date:
    return reference_today(now) - timedelta(days=1)


def day_start(day: date) -> datetime:
    """Midnight of ``day`` in the reference timezone, as an aware UTC datetime."""
    local = datetime.combine(day, time.min, tzinfo=reference_zone())
    return local.astimezone(timezone.utc)
