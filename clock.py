"""Business-date and work-hours helpers in the office's fixed timezone."""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from config import APP_TZ
from models import WorkHours

_HHMM = re.compile(r"^(\d{1,2}):(\d{2})")


def hhmm_to_minutes(value: str) -> int:
    """Parse ``HH:MM`` into minutes since midnight, clamping out-of-range parts."""
    match = _HHMM.match(str(value or ""))
    if not match:
        return 0
    hours = min(23, max(0, int(match.group(1))))
    minutes = min(59, max(0, int(match.group(2))))
    return hours * 60 + minutes


def minutes_to_hhmm(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def add_days(date_str: str, days: int) -> str:
    return (date.fromisoformat(date_str) + timedelta(days=days)).isoformat()


def weekday_sun0(date_str: str) -> int:
    """Day of week for ``YYYY-MM-DD`` with 0=Sunday .. 6=Saturday."""
    return (date.fromisoformat(date_str).weekday() + 1) % 7


def next_weekday_date(from_date: str, weekday: int) -> str:
    """First date strictly after ``from_date`` falling on ``weekday`` (0=Sun)."""
    diff = (weekday - weekday_sun0(from_date) + 7) % 7
    return add_days(from_date, diff or 7)


class Clock:
    """Wall clock for the office.

    ``now()`` is always timezone-aware UTC; business dates and minute-of-day
    are computed in the configured zone.  ``now_fn`` is injectable so tests
    can drive time explicitly.
    """

    def __init__(self, tz_name: str = APP_TZ, now_fn: Optional[Callable[[], datetime]] = None) -> None:
        self.tz = ZoneInfo(tz_name)
        self._now_fn = now_fn or (lambda: datetime.now(timezone.utc))

    def now(self) -> datetime:
        return self._now_fn()

    def local_now(self) -> datetime:
        return self.now().astimezone(self.tz)

    def business_date(self) -> str:
        return self.local_now().strftime("%Y-%m-%d")

    def minutes_since_midnight(self) -> int:
        local = self.local_now()
        return local.hour * 60 + local.minute

    def local_date_of(self, moment: datetime) -> str:
        return moment.astimezone(self.tz).strftime("%Y-%m-%d")

    def is_within_work_hours(self, work_hours: WorkHours) -> bool:
        if not work_hours or not work_hours.enabled:
            return True
        if work_hours.days and weekday_sun0(self.business_date()) not in work_hours.days:
            return False
        start = hhmm_to_minutes(work_hours.start_time or "00:00")
        end = hhmm_to_minutes(work_hours.end_time or "23:59")
        now = self.minutes_since_midnight()
        if start <= end:
            return start <= now <= end
        # overnight window wraps midnight
        return now >= start or now <= end
