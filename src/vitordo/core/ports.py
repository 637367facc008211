# src/vitordo/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The core depends on Protocols instead of concrete implementations.
This keeps the LLM provider, persistence and timers swappable and makes testing easier.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

from ..tasks.task_models import Task, TaskInput, TaskUpdate


@dataclass(slots=True, frozen=True)
class ParseRequest:
    input: str
    context: tuple[Task, ...] = ()


@dataclass(slots=True, frozen=True)
class ParseResponse:
    success: bool
    tasks: tuple[TaskInput, ...] = ()
    confidence: float | None = None
    error: str | None = None
    # Items the collaborator returned that could not be turned into TaskInput.
    rejected: tuple[str, ...] = field(default=())


@dataclass(slots=True, frozen=True)
class UpdateRequest:
    input: str
    context: tuple[Task, ...] = ()


@dataclass(slots=True, frozen=True)
class UpdateResponse:
    success: bool
    status_updates: tuple[TaskUpdate, ...] = ()
    error: str | None = None


class LLMCollaborator(Protocol):
    """
    Task parsing / status-update collaborator.

    Transport failures (network, non-2xx, timeout) are raised as taxonomy
    exceptions (core.errors); success=False is reserved for application-level
    refusals.
    """

    async def parse(self, request: ParseRequest) -> ParseResponse: ...

    async def update(self, request: UpdateRequest) -> UpdateResponse: ...


class PersistenceBackend(Protocol):
    """Opaque key-value persistence. Values are serialized strings."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class TimerScheduler(Protocol):
    """Schedules a one-shot callback; the returned handle must be cancellable."""

    def call_later(self, delay_seconds: float, callback: Callable[[], None]) -> TimerHandle: ...
