# src/vitordo/tasks/task_scheduler.py

from __future__ import annotations

"""
Status ticker.

A small polling loop that:
- recomputes every task's timeline status from its time window,
- announces tasks that just finished through the notification queue.

The store does the actual status derivation; this module only paces it.
"""

import asyncio
import logging
from datetime import datetime

from ..notifications.queue import NotificationQueue
from .task_models import Task, TimelineStatus
from .task_store import TaskStore

logger = logging.getLogger(__name__)


def tick(
    store: TaskStore,
    notifications: NotificationQueue | None = None,
    *,
    now: datetime | None = None,
    notification_duration_ms: int | None = 5000,
) -> list[Task]:
    """
    One recomputation pass. Returns the tasks whose status changed.

    Only tasks leaving `upcoming` are announced; the later move from
    recently_completed to completed is silent.
    """
    before = {t.id: t.status for t in store.tasks}
    changed = store.recompute_statuses(now)

    if notifications is not None:
        for task in changed:
            if before.get(task.id) == TimelineStatus.UPCOMING:
                notifications.info("Task finished", task.title, duration_ms=notification_duration_ms)

    if changed:
        logger.debug("Ticker advanced %d task(s)", len(changed))
    return changed


async def run_status_ticker(
        store: TaskStore,
        notifications: NotificationQueue | None = None,
        *,
        interval_seconds: float = 30.0,
        notification_duration_ms: int | None = 5000,
) -> None:
    """
    Simple polling ticker.

    Every interval_seconds:
    - recompute statuses (upcoming -> recently_completed -> completed)
    - post an info notification per task that just finished
    The displayed status is never staler than one interval.

    To stop the ticker, cancel the coroutine/task.
    """
    sleep_s = max(0.5, float(interval_seconds))

    while True:
        try:
            tick(store, notifications, notification_duration_ms=notification_duration_ms)
        except Exception:
            logger.exception("Status tick failed")

        await asyncio.sleep(sleep_s)
