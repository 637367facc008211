# src/vitordo/tasks/task_api.py

"""
Task pipeline: user text -> collaborator -> store.

Each submission runs under a RetryController and a request generation. Starting
a new submission cancels the previous one; a response that arrives for an older
generation is dropped without touching the store or the notification queue.
Terminal failures end up in store.error as a friendly message.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, replace
from typing import Any

from ..core.errors import InvalidResponseError, InvalidTaskError
from ..core.ports import LLMCollaborator, ParseRequest, ParseResponse, UpdateRequest, UpdateResponse
from ..notifications.queue import NotificationQueue
from ..resilience.classifier import friendly_error_message
from ..resilience.network import NetworkMonitor
from ..resilience.retry import RetryController, RetryOutcome, RetryPhase, exponential_backoff
from .task_models import Task, TaskInput, TaskUpdate
from .task_store import TaskStore

logger = logging.getLogger(__name__)

_WS_RE = re.compile(r"\s+")
_WORD_RE = re.compile(r"\w+")


def validate_task_input(text: str | None, *, min_length: int = 3, max_length: int = 1000) -> str | None:
    """Return an error message, or None when the input is acceptable."""
    trimmed = (text or "").strip()
    if not trimmed:
        return "Input cannot be empty"
    if len(trimmed) < min_length:
        return f"Input must be at least {min_length} characters long"
    if len(trimmed) > max_length:
        return f"Input must be less than {max_length} characters"
    return None


def sanitize_input(text: str) -> str:
    return _WS_RE.sub(" ", (text or "").strip().replace("<", "").replace(">", ""))


def find_tasks_by_content(tasks: Iterable[Task], text: str) -> list[Task]:
    """Tasks whose title or description contains any word of `text` longer than 2 chars."""
    keywords = [w for w in _WORD_RE.findall((text or "").lower()) if len(w) > 2]
    if not keywords:
        return []
    out: list[Task] = []
    for task in tasks:
        haystack = f"{task.title} {task.description}".lower()
        if any(k in haystack for k in keywords):
            out.append(task)
    return out


def _clamp_priority(priority: int) -> int:
    return max(1, min(5, int(priority)))


def _usable_task_inputs(items: Iterable[TaskInput]) -> tuple[TaskInput, ...]:
    """Drop items whose window is inverted; clamp priority to 1..5."""
    valid: list[TaskInput] = []
    for item in items:
        if item.start_time > item.end_time:
            logger.warning("Dropping task %r: start_time after end_time", item.title)
            continue
        valid.append(replace(item, priority=_clamp_priority(item.priority)))
    return tuple(valid)


@dataclass(slots=True, frozen=True)
class PipelineResult:
    success: bool
    tasks: tuple[Task, ...] = ()
    error: str | None = None
    # A newer request superseded this one; nothing was applied.
    stale: bool = False
    # Failed but still retryable via TaskPipeline.retry().
    retryable: bool = False


@dataclass(slots=True)
class _Request:
    kind: str
    generation: int
    controller: RetryController[Any]
    apply: Callable[[Any], list[Task]]


class TaskPipeline:
    def __init__(
        self,
        store: TaskStore,
        llm: LLMCollaborator,
        notifications: NotificationQueue,
        network: NetworkMonitor | None = None,
        settings: Any = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.store = store
        self.llm = llm
        self.notifications = notifications
        self.network = network

        self._max_retries = int(getattr(settings, "max_retries", 3))
        self._auto_retry = bool(getattr(settings, "auto_retry", True))
        self._backoff = exponential_backoff(
            float(getattr(settings, "retry_base_delay_seconds", 1.0)),
            float(getattr(settings, "retry_max_delay_seconds", 30.0)),
        )
        self._min_length = int(getattr(settings, "input_min_length", 3))
        self._max_length = int(getattr(settings, "input_max_length", 1000))
        self._notification_ms = getattr(settings, "notification_duration_ms", 5000)
        self._sleep = sleep

        self._generation = 0
        self._active: _Request | None = None
        self._last_failed: _Request | None = None

    # ---- public API ----

    @property
    def auto_retry(self) -> bool:
        return self._auto_retry

    @auto_retry.setter
    def auto_retry(self, value: bool) -> None:
        self._auto_retry = bool(value)

    @property
    def can_retry(self) -> bool:
        return self._last_failed is not None and self._last_failed.controller.can_retry

    async def submit_input(self, text: str) -> PipelineResult:
        """Parse free text into tasks and merge them into the store."""
        clean = self._accept(text)
        if clean is None:
            return PipelineResult(success=False, error=self.store.error)

        context = tuple(self.store.tasks)

        async def operation() -> ParseResponse:
            response = await self.llm.parse(ParseRequest(input=clean, context=context))
            if not response.success:
                raise InvalidResponseError(response.error or "Failed to parse input")
            for reason in response.rejected:
                logger.warning("Collaborator task rejected: %s", reason)
            valid = _usable_task_inputs(response.tasks)
            if not valid:
                raise InvalidResponseError("No valid tasks found in response")
            return replace(response, tasks=valid)

        return await self._start(
            "parse",
            operation,
            self._apply_parse,
            success_title="Tasks Created",
            failure_title="Failed to process input",
            describe_success=lambda r: f"Created {len(r.tasks)} task(s) from your input",
        )

    async def submit_update(self, text: str) -> PipelineResult:
        """Ask the collaborator which tasks the text marks done (or reopens) and apply it."""
        clean = self._accept(text)
        if clean is None:
            return PipelineResult(success=False, error=self.store.error)

        context = tuple(self.store.tasks)

        async def operation() -> UpdateResponse:
            response = await self.llm.update(UpdateRequest(input=clean, context=context))
            if not response.success:
                raise InvalidResponseError(response.error or "Failed to process status update")
            return response

        return await self._start(
            "update",
            operation,
            lambda r: self._apply_update(r, clean),
            success_title="Tasks Updated",
            failure_title="Failed to update tasks",
            describe_success=lambda r: f"{len(r.status_updates)} status update(s) detected",
        )

    async def retry(self) -> PipelineResult | None:
        """
        User-initiated retry of the last failed request.
        None when there is nothing to retry (or the guard refuses).
        """
        request = self._last_failed
        if request is None or request.generation != self._generation:
            return None
        if not request.controller.can_retry:
            logger.info("Retry refused for %s request", request.kind)
            return None

        self.store.set_loading(True)
        self.store.set_error(None)
        try:
            outcome = await request.controller.retry()
        finally:
            if request.generation == self._generation:
                self.store.set_loading(False)
        return self._finish(request, outcome)

    def export_tasks(self) -> str:
        return self.store.export_json()

    def import_tasks(self, raw: str) -> bool:
        """Replace the collection with an export. The store is untouched on failure."""
        try:
            tasks = self.store.import_json(raw)
        except InvalidTaskError as e:
            logger.warning("Import failed: %s", e)
            self.notifications.error(
                "Import Failed",
                "Failed to import tasks. Please check the file format.",
                duration_ms=self._notification_ms,
            )
            return False
        self.notifications.success(
            "Import Complete",
            f"Imported {len(tasks)} task(s)",
            duration_ms=self._notification_ms,
        )
        return True

    def cleanup_old_tasks(self, days_old: float = 30) -> list[Task]:
        removed = self.store.cleanup_old_tasks(days_old)
        if removed:
            self.notifications.info(
                "Cleanup Complete",
                f"Removed {len(removed)} old completed tasks",
                duration_ms=self._notification_ms,
            )
        return removed

    def close(self) -> None:
        if self._active is not None:
            self._active.controller.close()
            self._active = None
        if self._last_failed is not None:
            self._last_failed.controller.close()
            self._last_failed = None

    # ---- internals ----

    def _accept(self, text: str) -> str | None:
        error = validate_task_input(text, min_length=self._min_length, max_length=self._max_length)
        if error is not None:
            self.store.set_error(error)
            self.notifications.warning("Invalid input", error, duration_ms=self._notification_ms)
            return None
        clean = sanitize_input(text)
        self.store.set_current_input(clean)
        return clean

    async def _start(
        self,
        kind: str,
        operation: Callable[[], Awaitable[Any]],
        apply: Callable[[Any], list[Task]],
        *,
        success_title: str,
        failure_title: str,
        describe_success: Callable[[Any], str | None],
    ) -> PipelineResult:
        # Last request wins.
        self._generation += 1
        if self._active is not None:
            self._active.controller.close()
        if self._last_failed is not None:
            self._last_failed.controller.close()
            self._last_failed = None

        controller: RetryController[Any] = RetryController(
            operation,
            notifications=self.notifications,
            network=self.network,
            max_retries=self._max_retries,
            name=f"{kind}#{self._generation}",
            success_title=success_title,
            failure_title=failure_title,
            describe_success=describe_success,
        )
        request = _Request(kind=kind, generation=self._generation, controller=controller, apply=apply)
        self._active = request

        self.store.set_loading(True)
        self.store.set_error(None)
        try:
            if self._auto_retry:
                outcome = await controller.drive(self._backoff, sleep=self._sleep)
            else:
                outcome = await controller.run()
        finally:
            if request.generation == self._generation:
                self.store.set_loading(False)
                self._active = None

        return self._finish(request, outcome)

    def _finish(self, request: _Request, outcome: RetryOutcome[Any] | None) -> PipelineResult:
        if outcome is None or outcome.stale or request.generation != self._generation:
            logger.debug("%s request gen=%d superseded; result dropped", request.kind, request.generation)
            return PipelineResult(success=False, stale=True)

        if outcome.phase == RetryPhase.SUCCESS:
            self._last_failed = None
            applied = request.apply(outcome.result)
            return PipelineResult(success=True, tasks=tuple(applied))

        message = friendly_error_message(outcome.classification) if outcome.classification else str(outcome.error)
        self.store.set_error(message)
        self._last_failed = request
        return PipelineResult(
            success=False,
            error=message,
            retryable=request.controller.can_retry,
        )

    def _apply_parse(self, response: ParseResponse) -> list[Task]:
        tasks = self.store.add_task_inputs(response.tasks)
        logger.info("Pipeline added %d task(s)", len(tasks))
        return tasks

    def _apply_update(self, response: UpdateResponse, text: str) -> list[Task]:
        applied: list[Task] = []
        for update in response.status_updates:
            if update.task_id and update.task_id in self.store:
                task = self.store.apply_task_update(update)
                if task is not None:
                    applied.append(task)
                continue

            matches = find_tasks_by_content(self.store.tasks, text)
            if not matches:
                logger.info("Status update matched no task: %s", update.reason)
                continue
            for match in matches:
                task = self.store.apply_task_update(
                    TaskUpdate(
                        task_id=match.id,
                        new_status=update.new_status,
                        reason=update.reason,
                        timestamp=update.timestamp,
                    )
                )
                if task is not None:
                    applied.append(task)

        logger.info("Pipeline applied %d status update(s)", len(applied))
        return applied
