"""
Time Utilities

Pure helpers for clock handling and quiet hours.

Quiet hours are stored as "HH:MM" strings local to the user's timezone.
A window where start <= end is a same-day window (e.g. 12:00-14:00);
a window where start > end crosses midnight (e.g. 22:00-06:00).
Both ends are inclusive.
"""

from datetime import datetime, time, timedelta, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Timezone-aware current UTC time. The default clock everywhere."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to aware UTC.

    SQLite hands timestamps back without tzinfo; everything we store
    is UTC, so a naive value is interpreted as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_hhmm(value: str) -> time:
    """
    Parse "HH:MM" into a time.

    Raises:
        ValueError: If the string is not a valid 24h time
    """
    try:
        hour_str, minute_str = value.split(":")
        hour, minute = int(hour_str), int(minute_str)
    except (AttributeError, ValueError):
        raise ValueError(f"Invalid time '{value}', expected HH:MM")

    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Invalid time '{value}', expected HH:MM")
    return time(hour, minute)


def minutes_since_midnight(value: time) -> int:
    return value.hour * 60 + value.minute


def get_zone(name: Optional[str]) -> ZoneInfo:
    """Resolve an IANA timezone name, raising ValueError for unknown names."""
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"Unknown timezone '{name}'")


def is_quiet_time(current: time, start: time, end: time) -> bool:
    """
    Check whether a wall-clock time falls inside a quiet-hours window.

    Examples:
        22:00-06:00 at 23:30 -> True
        22:00-06:00 at 10:00 -> False
        12:00-14:00 at 13:00 -> True
    """
    s = minutes_since_midnight(start)
    e = minutes_since_midnight(end)
    t = minutes_since_midnight(current)

    if s <= e:
        return s <= t <= e
    # Window crosses midnight
    return t >= s or t <= e


def is_quiet_hours(
    now: datetime,
    quiet_start: Optional[str],
    quiet_end: Optional[str],
    tz_name: Optional[str] = "UTC",
) -> bool:
    """Quiet-hours test for an absolute instant, evaluated in the user's timezone."""
    if not quiet_start or not quiet_end:
        return False

    local_now = ensure_utc(now).astimezone(get_zone(tz_name))
    return is_quiet_time(
        local_now.time().replace(second=0, microsecond=0),
        parse_hhmm(quiet_start),
        parse_hhmm(quiet_end),
    )


def next_local_occurrence(now: datetime, at: time, tz_name: Optional[str] = "UTC") -> datetime:
    """
    Next instant strictly after `now` whose local wall-clock time is `at`.

    Returned in UTC.
    """
    zone = get_zone(tz_name)
    local_now = ensure_utc(now).astimezone(zone)

    candidate = datetime.combine(local_now.date(), at, tzinfo=zone)
    if candidate <= local_now:
        candidate = datetime.combine(local_now.date() + timedelta(days=1), at, tzinfo=zone)
    return candidate.astimezone(timezone.utc)


def next_active_time(now: datetime, quiet_end: Optional[str], tz_name: Optional[str] = "UTC") -> datetime:
    """When the current quiet-hours window ends: today at `quiet_end`, or tomorrow."""
    if not quiet_end:
        return ensure_utc(now)
    return next_local_occurrence(now, parse_hhmm(quiet_end), tz_name)
