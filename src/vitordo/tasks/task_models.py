# src/vitordo/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from ..core.errors import InvalidTaskError
from ..core.timeutil import ensure_aware, format_time, parse_datetime, to_iso


class TimelineStatus(StrEnum):
    """
    Timeline lifecycle stage.

    Ordered: automatic recomputation only ever moves a task to a higher rank.
    """

    UPCOMING = "upcoming"
    RECENTLY_COMPLETED = "recently_completed"
    COMPLETED = "completed"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    @classmethod
    def parse(cls, raw: object, default: TimelineStatus | None = None) -> TimelineStatus | None:
        if isinstance(raw, TimelineStatus):
            return raw
        if not isinstance(raw, str) or not raw.strip():
            return default
        try:
            return cls(raw.strip().lower())
        except ValueError:
            return default


_STATUS_RANK = {
    TimelineStatus.UPCOMING: 0,
    TimelineStatus.RECENTLY_COMPLETED: 1,
    TimelineStatus.COMPLETED: 2,
}


@dataclass(slots=True, frozen=True)
class Task:
    id: str
    title: str
    description: str
    start_time: datetime
    end_time: datetime
    status: TimelineStatus
    priority: int
    created_at: datetime
    updated_at: datetime

    metadata: dict[str, Any] = field(default_factory=dict)

    # Set when the user moves a task backward; automatic transitions skip it.
    reopened: bool = False


@dataclass(slots=True, frozen=True)
class TaskInput:
    """A task as proposed by the parse collaborator: no id, no timestamps."""

    title: str
    description: str
    start_time: datetime
    end_time: datetime
    status: TimelineStatus = TimelineStatus.UPCOMING
    priority: int = 3
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class TaskUpdate:
    task_id: str
    new_status: TimelineStatus
    reason: str
    timestamp: datetime


@dataclass(slots=True, frozen=True)
class TimeRange:
    start: str
    end: str


@dataclass(slots=True, frozen=True)
class TimelineEvent:
    """Display projection of a task. Regenerated from task state, never stored."""

    id: str
    task_id: str
    timestamp: datetime
    status: TimelineStatus
    content: str
    time_range: TimeRange | None = None


def validate_time_window(start_time: datetime, end_time: datetime) -> None:
    if ensure_aware(start_time) > ensure_aware(end_time):
        raise InvalidTaskError(
            f"start_time must not be after end_time ({to_iso(start_time)} > {to_iso(end_time)})"
        )


def timeline_event_for(task: Task) -> TimelineEvent:
    if task.status == TimelineStatus.UPCOMING:
        content = task.title
    else:
        content = f"{task.title} ({task.status.value.replace('_', ' ')})"
    return TimelineEvent(
        id=f"event_{task.id}",
        task_id=task.id,
        timestamp=task.start_time,
        status=task.status,
        content=content,
        time_range=TimeRange(start=format_time(task.start_time), end=format_time(task.end_time)),
    )


# ---- serialization ----


def task_to_dict(task: Task) -> dict[str, Any]:
    return {
        "id": task.id,
        "title": task.title,
        "description": task.description,
        "startTime": to_iso(task.start_time),
        "endTime": to_iso(task.end_time),
        "status": task.status.value,
        "priority": int(task.priority),
        "createdAt": to_iso(task.created_at),
        "updatedAt": to_iso(task.updated_at),
        "metadata": dict(task.metadata or {}),
        "reopened": bool(task.reopened),
    }


def task_from_dict(raw: dict[str, Any]) -> Task:
    """
    Rebuild a Task from its serialized form.
    Raises InvalidTaskError when required fields are missing or malformed.
    """
    task_id = raw.get("id")
    if not isinstance(task_id, str) or not task_id:
        raise InvalidTaskError("task id is required")

    start_time = parse_datetime(raw.get("startTime"))
    end_time = parse_datetime(raw.get("endTime"))
    if start_time is None or end_time is None:
        raise InvalidTaskError(f"task {task_id}: invalid start/end time")
    validate_time_window(start_time, end_time)

    created_at = parse_datetime(raw.get("createdAt")) or start_time
    updated_at = parse_datetime(raw.get("updatedAt")) or created_at

    meta = raw.get("metadata")
    try:
        priority = int(raw.get("priority", 3))
    except (TypeError, ValueError):
        priority = 3

    return Task(
        id=task_id,
        title=str(raw.get("title") or ""),
        description=str(raw.get("description") or ""),
        start_time=start_time,
        end_time=end_time,
        status=TimelineStatus.parse(raw.get("status"), TimelineStatus.UPCOMING) or TimelineStatus.UPCOMING,
        priority=priority,
        created_at=created_at,
        updated_at=max(updated_at, created_at),
        metadata=meta if isinstance(meta, dict) else {},
        reopened=bool(raw.get("reopened", False)),
    )
