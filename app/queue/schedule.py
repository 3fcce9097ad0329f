"""
Recurring Schedules

Schedules are plain data: given "now" they compute the next run time.
Nothing here sleeps, polls or talks to Redis, so every schedule can be
tested with fixed datetimes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import Optional

from app.utils.time_utils import ensure_utc, get_zone, next_local_occurrence, parse_hhmm


class Schedule(ABC):
    """Computes when a recurring job runs next."""

    @abstractmethod
    def next_run(self, after: datetime) -> datetime:
        """Next run time strictly after `after`, in UTC."""
        pass


@dataclass(frozen=True)
class Interval(Schedule):
    """Every N seconds."""
    seconds: float

    def next_run(self, after: datetime) -> datetime:
        return ensure_utc(after) + timedelta(seconds=self.seconds)


@dataclass(frozen=True)
class DailyAt(Schedule):
    """
    Once a day at a wall-clock time.

    Example:
        DailyAt(hour=2)  # 02:00 UTC, the archive sweep
    """
    hour: int
    minute: int = 0
    tz_name: str = "UTC"

    def next_run(self, after: datetime) -> datetime:
        return next_local_occurrence(after, time(self.hour, self.minute), self.tz_name)


def next_digest_run(
    frequency: str,
    digest_time: str,
    tz_name: Optional[str],
    now: datetime
) -> datetime:
    """
    When the next digest for a user is due.

    daily:  the next occurrence of digest_time (today if still ahead, else tomorrow)
    weekly: today at digest_time, one week out

    Raises:
        ValueError: Unknown frequency, malformed digest_time or timezone
    """
    at = parse_hhmm(digest_time)

    if frequency == "daily":
        return next_local_occurrence(now, at, tz_name)

    if frequency == "weekly":
        zone = get_zone(tz_name)
        local_now = ensure_utc(now).astimezone(zone)
        today_at = datetime.combine(local_now.date(), at, tzinfo=zone)
        return (today_at + timedelta(days=7)).astimezone(timezone.utc)

    raise ValueError(f"Unknown digest frequency '{frequency}'")
