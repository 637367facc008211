# src/vitordo/tasks/task_store.py

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any

from ..core.errors import InvalidTaskError, StorageError
from ..core.ports import PersistenceBackend
from ..core.timeutil import ensure_aware, to_iso, utc_now
from ..storage.persistence import TASKS_STORAGE_KEY
from .task_models import (
    Task,
    TaskInput,
    TaskUpdate,
    TimelineEvent,
    TimelineStatus,
    task_from_dict,
    task_to_dict,
    timeline_event_for,
    validate_time_window,
)

logger = logging.getLogger(__name__)

STORAGE_FORMAT_VERSION = 1
DEFAULT_COMPLETION_GRACE = timedelta(minutes=15)


@dataclass(slots=True, frozen=True)
class StoreChange:
    """Emitted to subscribers after every committed mutation."""

    kind: str
    task_ids: tuple[str, ...] = ()


@dataclass(slots=True, frozen=True)
class StoreSnapshot:
    tasks: tuple[Task, ...]
    current_input: str
    is_loading: bool
    error: str | None
    selected_task_id: str | None


@dataclass(slots=True, frozen=True)
class TaskStatistics:
    total: int
    upcoming: int
    recently_completed: int
    completed: int
    overdue: int
    completion_rate: float


StoreListener = Callable[[StoreChange], None]


def new_task_id() -> str:
    return f"task_{uuid.uuid4().hex[:12]}"


def _sort_by_time(tasks: Iterable[Task]) -> list[Task]:
    return sorted(tasks, key=lambda t: (t.start_time, t.created_at))


SORT_ORDERS = ("time", "priority", "created")


def sort_tasks(tasks: Iterable[Task], sort_by: str = "time") -> list[Task]:
    """
    time      -> earliest start first
    priority  -> highest priority first, then by start
    created   -> newest first
    """
    ordered = _sort_by_time(tasks)
    if sort_by == "time":
        return ordered
    if sort_by == "priority":
        return sorted(ordered, key=lambda t: -t.priority)
    if sort_by == "created":
        return sorted(ordered, key=lambda t: t.created_at, reverse=True)
    raise ValueError(f"unknown sort order: {sort_by!r}")


def derive_status(task: Task, now: datetime, grace: timedelta) -> TimelineStatus:
    """
    Status implied by the task's time window at `now`.

    Never lower than the current status: automatic logic does not move tasks backward.
    """
    end = ensure_aware(task.end_time)
    if now >= end + grace:
        target = TimelineStatus.COMPLETED
    elif now > end:
        target = TimelineStatus.RECENTLY_COMPLETED
    else:
        target = TimelineStatus.UPCOMING
    return target if target.rank > task.status.rank else task.status


class TaskStore:
    """
    Authoritative in-memory task collection.

    - Tasks are kept in insertion order keyed by id; duplicate ids overwrite in place.
    - Derived views (upcoming/recently completed/completed) are computed on every read.
    - Every committed mutation is announced to subscribers as a StoreChange.
    - Persistence is optional: load() rehydrates, flush() writes. Storage failures are
      logged and reported through on_storage_error; they never roll back memory.
    """

    def __init__(
        self,
        *,
        persistence: PersistenceBackend | None = None,
        storage_key: str = TASKS_STORAGE_KEY,
        completion_grace: timedelta = DEFAULT_COMPLETION_GRACE,
        clock: Callable[[], datetime] = utc_now,
        autosave: bool = True,
        on_storage_error: Callable[[StorageError], None] | None = None,
    ) -> None:
        self._tasks: dict[str, Task] = {}
        self._persistence = persistence
        self._storage_key = storage_key
        self._grace = completion_grace
        self._clock = clock
        self._autosave = autosave
        self.on_storage_error = on_storage_error

        self._listeners: list[StoreListener] = []

        self._current_input = ""
        self._is_loading = False
        self._error: str | None = None
        self._selected_task_id: str | None = None

    # ---- low-level helpers ----

    def _now(self) -> datetime:
        return ensure_aware(self._clock())

    def _emit(self, kind: str, task_ids: Iterable[str] = ()) -> None:
        change = StoreChange(kind=kind, task_ids=tuple(task_ids))
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception("Store listener failed kind=%s", kind)

    def _commit(self, kind: str, task_ids: Iterable[str] = (), *, persist: bool = True) -> None:
        ids = tuple(task_ids)
        self._emit(kind, ids)
        if persist and self._autosave and self._persistence is not None:
            self.flush()

    def _touch(self, task: Task, now: datetime | None = None, **changes: Any) -> Task:
        # updated_at never moves backward, even for a recompute at an earlier `now`.
        ts = now if now is not None else self._now()
        return replace(task, updated_at=max(ts, task.created_at, task.updated_at), **changes)

    # ---- subscription ----

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ---- mutations ----

    def add_task(self, task: Task) -> None:
        self.add_tasks([task])

    def add_tasks(self, tasks: Iterable[Task]) -> None:
        """
        Insert tasks. A task whose id already exists replaces the stored one.
        The whole batch is validated first; an invalid task rejects the batch.
        """
        batch = list(tasks)
        for task in batch:
            if not task.id:
                raise InvalidTaskError("task id is required")
            validate_time_window(task.start_time, task.end_time)

        if not batch:
            return

        for task in batch:
            if task.id in self._tasks:
                logger.debug("Task %s replaced by id", task.id)
            self._tasks[task.id] = task

        logger.debug("Tasks added count=%d total=%d", len(batch), len(self._tasks))
        self._commit("added", (t.id for t in batch))

    def create_task(
        self,
        *,
        title: str,
        start_time: datetime,
        end_time: datetime,
        description: str = "",
        priority: int = 3,
        status: TimelineStatus = TimelineStatus.UPCOMING,
        metadata: dict[str, Any] | None = None,
        task_id: str | None = None,
    ) -> Task:
        """Build and insert a task, assigning id and timestamps."""
        if not title or not title.strip():
            raise InvalidTaskError("title is required")

        now = self._now()
        task = Task(
            id=task_id or new_task_id(),
            title=title.strip(),
            description=(description or title).strip(),
            start_time=ensure_aware(start_time),
            end_time=ensure_aware(end_time),
            status=status,
            priority=int(priority),
            created_at=now,
            updated_at=now,
            metadata=dict(metadata or {}),
        )
        self.add_task(task)
        return task

    def add_task_inputs(self, inputs: Iterable[TaskInput]) -> list[Task]:
        now = self._now()
        tasks = [
            Task(
                id=new_task_id(),
                title=item.title,
                description=item.description,
                start_time=ensure_aware(item.start_time),
                end_time=ensure_aware(item.end_time),
                status=item.status,
                priority=int(item.priority),
                created_at=now,
                updated_at=now,
                metadata=dict(item.metadata or {}),
            )
            for item in inputs
        ]
        self.add_tasks(tasks)
        return tasks

    def remove_task(self, task_id: str) -> None:
        if self._tasks.pop(task_id, None) is None:
            return
        if self._selected_task_id == task_id:
            self._selected_task_id = None
        logger.debug("Task removed id=%s", task_id)
        self._commit("removed", (task_id,))

    def update_task_status(self, task_id: str, status: TimelineStatus) -> Task | None:
        """
        Explicit status change (user or collaborator). Any direction is allowed;
        moving backward marks the task as reopened so the ticker leaves it alone.
        """
        task = self._tasks.get(task_id)
        if task is None:
            return None

        reopened = status.rank < task.status.rank or (task.reopened and status.rank <= task.status.rank)
        updated = self._touch(task, status=status, reopened=reopened)
        self._tasks[task_id] = updated
        logger.info("Task %s -> %s", task_id, status.value)
        self._commit("status", (task_id,))
        return updated

    def mark_completed(self, task_id: str) -> Task | None:
        """Manual completion: skips the grace period."""
        return self.update_task_status(task_id, TimelineStatus.COMPLETED)

    def apply_task_update(self, update: TaskUpdate) -> Task | None:
        task = self._tasks.get(update.task_id)
        if task is None:
            logger.debug("TaskUpdate for unknown task_id=%s ignored", update.task_id)
            return None

        meta = dict(task.metadata or {})
        meta["last_status_change"] = {
            "from": task.status.value,
            "to": update.new_status.value,
            "reason": update.reason,
            "timestamp": to_iso(update.timestamp),
        }
        self._tasks[task.id] = replace(task, metadata=meta)
        return self.update_task_status(task.id, update.new_status)

    def update_task(self, task_id: str, **changes: Any) -> Task | None:
        """Edit fields other than id/created_at. Time window is re-validated."""
        task = self._tasks.get(task_id)
        if task is None:
            return None

        changes.pop("id", None)
        changes.pop("created_at", None)
        changes.pop("updated_at", None)
        candidate = replace(task, **changes)
        validate_time_window(candidate.start_time, candidate.end_time)

        updated = self._touch(candidate)
        self._tasks[task_id] = updated
        self._commit("updated", (task_id,))
        return updated

    def replace_all(self, tasks: Iterable[Task]) -> None:
        batch = list(tasks)
        for task in batch:
            validate_time_window(task.start_time, task.end_time)
        self._tasks = {t.id: t for t in batch}
        if self._selected_task_id not in self._tasks:
            self._selected_task_id = None
        self._commit("replaced", self._tasks.keys())

    def clear_tasks(self) -> None:
        ids = tuple(self._tasks)
        self._tasks.clear()
        self._selected_task_id = None
        self._commit("cleared", ids)

    def cleanup_old_tasks(self, days_old: float = 30, now: datetime | None = None) -> list[Task]:
        """Remove completed tasks last touched more than `days_old` days ago."""
        now = ensure_aware(now) if now is not None else self._now()
        cutoff = now - timedelta(days=days_old)
        stale = [
            t for t in self._tasks.values() if t.status == TimelineStatus.COMPLETED and t.updated_at < cutoff
        ]
        if not stale:
            return []

        for task in stale:
            del self._tasks[task.id]
            if self._selected_task_id == task.id:
                self._selected_task_id = None
        logger.info("Cleanup removed %d completed task(s) older than %s days", len(stale), days_old)
        self._commit("removed", (t.id for t in stale))
        return stale

    def recompute_statuses(self, now: datetime | None = None) -> list[Task]:
        """
        Advance statuses from each task's time window.

        Idempotent for a given `now`: unchanged tasks keep their updated_at.
        Returns the tasks that changed.
        """
        now = ensure_aware(now) if now is not None else self._now()
        changed: list[Task] = []

        for task_id, task in list(self._tasks.items()):
            if task.reopened:
                continue
            target = derive_status(task, now, self._grace)
            if target == task.status:
                continue
            updated = self._touch(task, now, status=target)
            self._tasks[task_id] = updated
            changed.append(updated)
            logger.info("Task %s %s -> %s", task_id, task.status.value, target.value)

        if changed:
            self._commit("recomputed", (t.id for t in changed))
        return changed

    # ---- auxiliary UI state ----

    def set_loading(self, loading: bool) -> None:
        self._is_loading = bool(loading)
        self._emit("loading")

    def set_error(self, message: str | None) -> None:
        self._error = message
        self._emit("error")

    def set_current_input(self, text: str) -> None:
        self._current_input = text
        self._emit("input")

    def set_selected_task_id(self, task_id: str | None) -> None:
        self._selected_task_id = task_id
        self._emit("selection")

    # ---- reads ----

    @property
    def tasks(self) -> list[Task]:
        return _sort_by_time(self._tasks.values())

    @property
    def upcoming_tasks(self) -> list[Task]:
        return self.tasks_by_status(TimelineStatus.UPCOMING)

    @property
    def recently_completed_tasks(self) -> list[Task]:
        return self.tasks_by_status(TimelineStatus.RECENTLY_COMPLETED)

    @property
    def completed_tasks(self) -> list[Task]:
        return self.tasks_by_status(TimelineStatus.COMPLETED)

    @property
    def current_input(self) -> str:
        return self._current_input

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def selected_task_id(self) -> str | None:
        return self._selected_task_id

    @property
    def completion_grace(self) -> timedelta:
        return self._grace

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    def get_task(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def tasks_by_status(self, status: TimelineStatus, sort_by: str = "time") -> list[Task]:
        return sort_tasks((t for t in self._tasks.values() if t.status == status), sort_by)

    def tasks_in_range(self, start: datetime, end: datetime) -> list[Task]:
        """Tasks whose window overlaps [start, end)."""
        start, end = ensure_aware(start), ensure_aware(end)
        return _sort_by_time(t for t in self._tasks.values() if t.end_time > start and t.start_time < end)

    def timeline_events(self) -> list[TimelineEvent]:
        return [timeline_event_for(t) for t in self.tasks]

    def statistics(self, now: datetime | None = None) -> TaskStatistics:
        now = ensure_aware(now) if now is not None else self._now()
        counts = {status: 0 for status in TimelineStatus}
        overdue = 0
        for task in self._tasks.values():
            counts[task.status] += 1
            if task.status == TimelineStatus.UPCOMING and task.end_time < now:
                overdue += 1

        total = len(self._tasks)
        done = counts[TimelineStatus.COMPLETED] + counts[TimelineStatus.RECENTLY_COMPLETED]
        return TaskStatistics(
            total=total,
            upcoming=counts[TimelineStatus.UPCOMING],
            recently_completed=counts[TimelineStatus.RECENTLY_COMPLETED],
            completed=counts[TimelineStatus.COMPLETED],
            overdue=overdue,
            completion_rate=(done / total * 100.0) if total else 0.0,
        )

    def snapshot(self) -> StoreSnapshot:
        return StoreSnapshot(
            tasks=tuple(self.tasks),
            current_input=self._current_input,
            is_loading=self._is_loading,
            error=self._error,
            selected_task_id=self._selected_task_id,
        )

    # ---- persistence ----

    def serialize(self) -> str:
        payload = {
            "version": STORAGE_FORMAT_VERSION,
            "tasks": [task_to_dict(t) for t in self._tasks.values()],
        }
        return json.dumps(payload, ensure_ascii=False)

    def export_json(self, now: datetime | None = None) -> str:
        """Human-readable backup of the whole collection."""
        payload = {
            "version": STORAGE_FORMAT_VERSION,
            "exportedAt": to_iso(ensure_aware(now) if now is not None else self._now()),
            "tasks": [task_to_dict(t) for t in self.tasks],
        }
        return json.dumps(payload, ensure_ascii=False, indent=2)

    def import_json(self, raw: str) -> list[Task]:
        """
        Replace the collection with the tasks of an export.
        All-or-nothing: malformed JSON or any invalid task raises InvalidTaskError
        and leaves the store untouched.
        """
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise InvalidTaskError(f"import is not valid JSON: {e}") from e

        items = data.get("tasks") if isinstance(data, dict) else data
        if not isinstance(items, list):
            raise InvalidTaskError("import has no task list")

        tasks: list[Task] = []
        for n, item in enumerate(items):
            if not isinstance(item, dict):
                raise InvalidTaskError(f"import item #{n} is not an object")
            tasks.append(task_from_dict(item))

        self.replace_all(tasks)
        logger.info("Imported %d task(s)", len(tasks))
        return tasks

    def load(self) -> bool:
        """
        Rehydrate from persistence. Any failure means "start empty".
        Malformed individual tasks are skipped.
        """
        if self._persistence is None:
            return False

        try:
            raw = self._persistence.get(self._storage_key)
        except Exception:
            logger.exception("Failed to read tasks from persistence; starting empty")
            return False

        if not raw:
            return False

        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("Stored tasks are not valid JSON; starting empty")
            return False

        items = data.get("tasks") if isinstance(data, dict) else data
        if not isinstance(items, list):
            logger.warning("Stored tasks have unexpected shape; starting empty")
            return False

        loaded: dict[str, Task] = {}
        for item in items:
            if not isinstance(item, dict):
                continue
            try:
                task = task_from_dict(item)
            except InvalidTaskError as e:
                logger.warning("Skipping stored task: %s", e)
                continue
            loaded[task.id] = task

        self._tasks = loaded
        logger.info("TaskStore loaded total=%d key=%s", len(loaded), self._storage_key)
        self._emit("loaded", loaded.keys())
        return True

    def flush(self) -> bool:
        """Write tasks to persistence. Returns False (and reports) on failure."""
        if self._persistence is None:
            return False

        try:
            self._persistence.set(self._storage_key, self.serialize())
            return True
        except Exception as e:
            err = e if isinstance(e, StorageError) else StorageError(f"Failed to save tasks: {e}")
            logger.warning("Task flush failed: %s", err)
            if self.on_storage_error is not None:
                try:
                    self.on_storage_error(err)
                except Exception:
                    logger.exception("on_storage_error hook failed")
            return False
