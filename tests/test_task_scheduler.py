# tests/test_task_scheduler.py

from __future__ import annotations

import asyncio
import contextlib

import pytest

from vitordo.notifications.queue import NotificationQueue
from vitordo.tasks.task_models import TaskInput, TimelineStatus
from vitordo.tasks.task_scheduler import run_status_ticker, tick
from vitordo.tasks.task_store import TaskStore

from .fakes import FakeClock, at


def _add(store: TaskStore, title: str, start_h: int, end_h: int):
    [task] = store.add_task_inputs(
        [TaskInput(title=title, description=title, start_time=at(start_h), end_time=at(end_h))]
    )
    return task


def test_tick_announces_only_newly_finished_tasks(store: TaskStore, notifications: NotificationQueue) -> None:
    task = _add(store, "Write report", 10, 11)

    assert tick(store, notifications, now=at(10, 30)) == []
    assert len(notifications) == 0

    changed = tick(store, notifications, now=at(11, 5))
    assert [t.id for t in changed] == [task.id]
    assert [n.title for n in notifications.notifications] == ["Task finished"]
    assert notifications.notifications[0].message == "Write report"

    # recently_completed -> completed is silent
    tick(store, notifications, now=at(11, 20))
    assert store.get_task(task.id).status == TimelineStatus.COMPLETED
    assert len(notifications) == 1


def test_tick_twice_at_same_time_is_quiet(store: TaskStore, notifications: NotificationQueue) -> None:
    _add(store, "A", 8, 9)
    tick(store, notifications, now=at(12))
    tick(store, notifications, now=at(12))
    assert len(notifications) == 1


@pytest.mark.asyncio
async def test_ticker_loop_recomputes_until_cancelled(notifications: NotificationQueue, clock: FakeClock) -> None:
    store = TaskStore(clock=clock)
    task = _add(store, "Standup", 9, 10)
    clock.set(at(10, 5))

    ticker = asyncio.create_task(run_status_ticker(store, notifications, interval_seconds=0.01))
    try:
        for _ in range(50):
            if store.get_task(task.id).status != TimelineStatus.UPCOMING:
                break
            await asyncio.sleep(0.01)
    finally:
        ticker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await ticker

    assert store.get_task(task.id).status == TimelineStatus.RECENTLY_COMPLETED
    assert len(notifications) == 1


@pytest.mark.asyncio
async def test_ticker_survives_a_failing_pass(notifications: NotificationQueue) -> None:
    calls = 0

    class FlakyStore:
        tasks: list = []

        def recompute_statuses(self, now=None):
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RuntimeError("boom")
            return []

    ticker = asyncio.create_task(run_status_ticker(FlakyStore(), notifications, interval_seconds=0.01))
    try:
        for _ in range(100):
            if calls >= 2:
                break
            await asyncio.sleep(0.01)
    finally:
        ticker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await ticker

    assert calls >= 2
