# tests/fakes.py

from __future__ import annotations

import asyncio
import os
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from vitordo.core.errors import StorageError
from vitordo.core.ports import ParseRequest, ParseResponse, UpdateRequest, UpdateResponse

# 2024-01-01 09:00 UTC: one hour before the canonical 10:00-11:00 task.
T0 = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


def at(hour: int, minute: int = 0) -> datetime:
    return T0.replace(hour=hour, minute=minute)


# POSIX TZ strings need no zoneinfo database. "CST-8" is UTC+8 without DST.
UTC_ZONE = "UTC0"
UTC_PLUS_8 = "CST-8"

needs_tzset = pytest.mark.skipif(not hasattr(time, "tzset"), reason="time.tzset is POSIX-only")


@contextmanager
def local_zone(tz: str) -> Iterator[None]:
    """Run the block with the process-local timezone set to `tz`."""
    previous = os.environ.get("TZ")
    os.environ["TZ"] = tz
    time.tzset()
    try:
        yield
    finally:
        if previous is None:
            os.environ.pop("TZ", None)
        else:
            os.environ["TZ"] = previous
        time.tzset()


@dataclass(slots=True)
class Gated:
    """Scripted step that waits for `event` before yielding `value`."""

    event: asyncio.Event
    value: Any


class FakeLLMClient:
    """
    Scripted collaborator for unit tests.

    - Captures requests for assertions
    - Each call pops the next scripted step: a response, an exception to raise,
      or a Gated step that blocks until the test releases it
    - Falls back to `default_parse` / `default_update` when the script is empty
    """

    def __init__(
        self,
        parse_script: list[Any] | None = None,
        update_script: list[Any] | None = None,
    ) -> None:
        self.parse_script: list[Any] = list(parse_script or [])
        self.update_script: list[Any] = list(update_script or [])
        self.parse_calls: list[ParseRequest] = []
        self.update_calls: list[UpdateRequest] = []
        self.default_parse = ParseResponse(success=False, error="no scripted response")
        self.default_update = UpdateResponse(success=True)

    async def _step(self, script: list[Any], default: Any) -> Any:
        if not script:
            return default
        step = script.pop(0)
        if isinstance(step, Gated):
            await step.event.wait()
            step = step.value
        if isinstance(step, BaseException):
            raise step
        return step

    async def parse(self, request: ParseRequest) -> ParseResponse:
        self.parse_calls.append(request)
        return await self._step(self.parse_script, self.default_parse)

    async def update(self, request: UpdateRequest) -> UpdateResponse:
        self.update_calls.append(request)
        return await self._step(self.update_script, self.default_update)


@dataclass(slots=True)
class ManualTimer:
    delay_seconds: float
    callback: Callable[[], None]
    cancelled: bool = False
    fired: bool = False

    def cancel(self) -> None:
        self.cancelled = True


@dataclass(slots=True)
class ManualScheduler:
    """TimerScheduler whose timers fire only when the test says so."""

    timers: list[ManualTimer] = field(default_factory=list)

    def call_later(self, delay_seconds: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(delay_seconds=delay_seconds, callback=callback)
        self.timers.append(timer)
        return timer

    def fire_all(self) -> int:
        fired = 0
        for timer in list(self.timers):
            if timer.cancelled or timer.fired:
                continue
            timer.fired = True
            timer.callback()
            fired += 1
        return fired

    @property
    def pending(self) -> list[ManualTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]


class FailingPersistence:
    """PersistenceBackend whose writes always fail."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self.values = dict(initial or {})
        self.write_attempts = 0

    def get(self, key: str) -> str | None:
        return self.values.get(key)

    def set(self, key: str, value: str) -> None:
        self.write_attempts += 1
        raise StorageError("disk full")

    def delete(self, key: str) -> None:
        raise StorageError("disk full")


class FakeClock:
    """Mutable clock: call it for the current time, advance() to move it."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now
