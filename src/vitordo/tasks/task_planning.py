# src/vitordo/tasks/task_planning.py

"""
Read-only planning helpers over a set of tasks.

- find_conflicts: pairs of tasks whose windows overlap, largest overlap first.
- available_slots: free gaps inside the working hours of one local day.

Nothing here mutates the store; callers pass the tasks they care about.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum

from ..core.timeutil import ensure_aware, minutes_between, start_of_day
from .task_models import Task

DEFAULT_WORK_START_HOUR = 9
DEFAULT_WORK_END_HOUR = 17
DEFAULT_MIN_SLOT_MINUTES = 15


class ConflictSeverity(StrEnum):
    MINOR = "minor"
    MAJOR = "major"
    CRITICAL = "critical"


@dataclass(slots=True, frozen=True)
class SchedulingConflict:
    first: Task
    second: Task
    overlap_minutes: int
    severity: ConflictSeverity


@dataclass(slots=True, frozen=True)
class TimeSlot:
    start: datetime
    end: datetime
    minutes: int


def _overlap_minutes(a: Task, b: Task) -> int:
    start = max(ensure_aware(a.start_time), ensure_aware(b.start_time))
    end = min(ensure_aware(a.end_time), ensure_aware(b.end_time))
    return minutes_between(start, end) if end > start else 0


def conflict_severity(overlap_minutes: int) -> ConflictSeverity:
    if overlap_minutes <= 15:
        return ConflictSeverity.MINOR
    if overlap_minutes <= 60:
        return ConflictSeverity.MAJOR
    return ConflictSeverity.CRITICAL


def find_conflicts(tasks: Sequence[Task]) -> list[SchedulingConflict]:
    conflicts: list[SchedulingConflict] = []
    for i, first in enumerate(tasks):
        for second in tasks[i + 1 :]:
            overlap = _overlap_minutes(first, second)
            if overlap > 0:
                conflicts.append(SchedulingConflict(first, second, overlap, conflict_severity(overlap)))
    conflicts.sort(key=lambda c: c.overlap_minutes, reverse=True)
    return conflicts


def working_window(
    day: datetime,
    *,
    start_hour: int = DEFAULT_WORK_START_HOUR,
    end_hour: int = DEFAULT_WORK_END_HOUR,
) -> tuple[datetime, datetime]:
    """Working hours of the local day containing `day`."""
    midnight = start_of_day(day)
    return midnight + timedelta(hours=start_hour), midnight + timedelta(hours=end_hour)


def available_slots(
    day: datetime,
    tasks: Iterable[Task],
    *,
    start_hour: int = DEFAULT_WORK_START_HOUR,
    end_hour: int = DEFAULT_WORK_END_HOUR,
    min_minutes: int = DEFAULT_MIN_SLOT_MINUTES,
) -> list[TimeSlot]:
    """
    Gaps of at least `min_minutes` between tasks within the working hours of `day`.
    Tasks outside the window are ignored; overlapping tasks merge into one busy block.
    """
    window_start, window_end = working_window(day, start_hour=start_hour, end_hour=end_hour)
    busy = sorted(
        (t for t in tasks if ensure_aware(t.end_time) > window_start and ensure_aware(t.start_time) < window_end),
        key=lambda t: ensure_aware(t.start_time),
    )

    slots: list[TimeSlot] = []
    cursor = window_start
    for task in busy:
        start = ensure_aware(task.start_time)
        if start > cursor:
            gap = minutes_between(cursor, start)
            if gap >= min_minutes:
                slots.append(TimeSlot(cursor, start, gap))
        cursor = max(cursor, ensure_aware(task.end_time))

    if cursor < window_end:
        gap = minutes_between(cursor, window_end)
        if gap >= min_minutes:
            slots.append(TimeSlot(cursor, window_end, gap))
    return slots
