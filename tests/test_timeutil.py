# tests/test_timeutil.py

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from vitordo.core.timeutil import (
    add_hours,
    add_minutes,
    ensure_aware,
    format_relative_time,
    format_time_range,
    is_same_day,
    minutes_between,
    parse_datetime,
    parse_time_string,
    start_of_day,
    to_local,
)

from .fakes import T0, UTC_PLUS_8, at, local_zone, needs_tzset


def test_naive_values_are_local_time() -> None:
    naive = datetime(2024, 1, 1, 9, 0)
    assert ensure_aware(naive) == T0


@needs_tzset
def test_naive_values_follow_the_local_zone() -> None:
    with local_zone(UTC_PLUS_8):
        assert ensure_aware(datetime(2024, 1, 1, 17, 0)) == T0
        assert to_local(T0).hour == 17


@needs_tzset
def test_wall_clock_helpers_use_local_time() -> None:
    with local_zone(UTC_PLUS_8):
        assert format_time_range(at(2), at(3, 30)) == "10:00-11:30"

        typed = parse_time_string("10:00")
        assert typed.hour == 10
        assert typed.utcoffset() == timedelta(hours=8)
        assert typed.astimezone(timezone.utc).hour == 2

        # 15:00 and 17:00 UTC straddle local midnight at UTC+8.
        assert not is_same_day(at(15), at(17))
        assert start_of_day(at(17)).astimezone(timezone.utc) == at(16)


@pytest.mark.parametrize(
    "raw",
    ["2024-01-01T09:00:00Z", "2024-01-01T09:00:00+00:00", "2024-01-01T10:00:00+01:00", T0, T0.timestamp()],
)
def test_parse_datetime_accepts_common_forms(raw) -> None:
    assert parse_datetime(raw) == T0


@pytest.mark.parametrize("raw", [None, "", "tomorrow", True, [], "2024-13-01T00:00:00"])
def test_parse_datetime_rejects_garbage(raw) -> None:
    assert parse_datetime(raw) is None


def test_parse_time_string() -> None:
    assert parse_time_string("14:30", base=T0) == at(14, 30)
    assert parse_time_string(" 9:05 ", base=T0) == at(9, 5)
    assert parse_time_string("24:00", base=T0) is None
    assert parse_time_string("12:60", base=T0) is None
    assert parse_time_string("noon", base=T0) is None


def test_format_time_range() -> None:
    assert format_time_range(at(10), at(11, 30)) == "10:00-11:30"


@pytest.mark.parametrize(
    ("delta", "expected"),
    [
        (timedelta(seconds=20), "just now"),
        (timedelta(minutes=5), "5m ago"),
        (timedelta(hours=3), "3h ago"),
        (timedelta(days=2), "2d ago"),
    ],
)
def test_format_relative_time(delta: timedelta, expected: str) -> None:
    assert format_relative_time(T0 - delta, now=T0) == expected


def test_arithmetic_helpers() -> None:
    assert add_minutes(T0, 90) == at(10, 30)
    assert add_hours(T0, 2) == at(11)
    assert minutes_between(at(10), at(11, 15)) == 75
    assert minutes_between(at(11), at(10)) == -60
    assert is_same_day(at(1), at(23))
    assert not is_same_day(T0, T0 + timedelta(days=1))
    assert T0.tzinfo is timezone.utc
