# src/vitordo/core/timeutil.py

"""
Time helpers shared by the store, the pipeline and the console.

All helpers are pure. Time values are timezone-aware datetimes; naive values
are read as local wall-clock time so comparisons never mix aware and naive
objects. Anything the user types or reads ("10:00") is local time.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

_TIME_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*$")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def local_now() -> datetime:
    """Current time in the local timezone, with its UTC offset attached."""
    return datetime.now().astimezone()


def ensure_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        # astimezone() on a naive value assumes local time.
        return value.astimezone()
    return value


def to_local(value: datetime) -> datetime:
    return ensure_aware(value).astimezone()


def parse_datetime(raw: object) -> datetime | None:
    """
    Best-effort conversion of an ISO-8601 string, a datetime or an epoch number.
    Returns None for anything that is not a valid time value.
    """
    if isinstance(raw, datetime):
        return ensure_aware(raw)
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        try:
            return datetime.fromtimestamp(float(raw), tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(raw, str):
        s = raw.strip()
        if not s:
            return None
        # fromisoformat() before 3.11 rejects the trailing Z.
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            return ensure_aware(datetime.fromisoformat(s))
        except ValueError:
            return None
    return None


def to_iso(value: datetime) -> str:
    return ensure_aware(value).isoformat()


def format_time(value: datetime) -> str:
    """24-hour local HH:MM."""
    return to_local(value).strftime("%H:%M")


def format_time_range(start: datetime, end: datetime) -> str:
    return f"{format_time(start)}-{format_time(end)}"


def format_relative_time(value: datetime, now: datetime | None = None) -> str:
    now = ensure_aware(now) if now is not None else utc_now()
    minutes = int((now - ensure_aware(value)).total_seconds() // 60)

    if minutes < 1:
        return "just now"
    if minutes < 60:
        return f"{minutes}m ago"
    if minutes < 1440:
        return f"{minutes // 60}h ago"
    return f"{minutes // 1440}d ago"


def is_same_day(a: datetime, b: datetime) -> bool:
    return to_local(a).date() == to_local(b).date()


def add_minutes(value: datetime, minutes: float) -> datetime:
    return value + timedelta(minutes=minutes)


def add_hours(value: datetime, hours: float) -> datetime:
    return add_minutes(value, hours * 60)


def start_of_day(value: datetime) -> datetime:
    """Local midnight of the day `value` falls on."""
    return to_local(value).replace(hour=0, minute=0, second=0, microsecond=0)


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes from start to end (negative when end is earlier)."""
    seconds = (ensure_aware(end) - ensure_aware(start)).total_seconds()
    return int(seconds // 60)


def parse_time_string(text: str, *, base: datetime | None = None) -> datetime | None:
    """
    Parse "HH:MM" as a wall-clock time on the date of `base`, in base's timezone
    (default: now, local time). Returns None for malformed or out-of-range values.
    """
    m = _TIME_RE.match(text or "")
    if not m:
        return None

    hours, minutes = int(m.group(1)), int(m.group(2))
    if hours > 23 or minutes > 59:
        return None

    base = ensure_aware(base) if base is not None else local_now()
    return base.replace(hour=hours, minute=minutes, second=0, microsecond=0)
