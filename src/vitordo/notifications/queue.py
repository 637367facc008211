# src/vitordo/notifications/queue.py

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from ..core.ports import TimerHandle, TimerScheduler
from ..core.timeutil import utc_now

logger = logging.getLogger(__name__)


class NotificationType(StrEnum):
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass(slots=True, frozen=True)
class Notification:
    id: str
    type: NotificationType
    title: str
    message: str | None = None
    # Milliseconds; None or 0 means sticky (removed only by dismiss()).
    duration_ms: int | None = None
    timestamp: datetime | None = None


class AsyncioTimerScheduler:
    """TimerScheduler backed by the running asyncio loop."""

    def call_later(self, delay_seconds: float, callback: Callable[[], None]) -> TimerHandle:
        loop = asyncio.get_running_loop()
        return loop.call_later(delay_seconds, callback)


NotificationListener = Callable[[str, Notification], None]


class NotificationQueue:
    """
    Ephemeral user-facing notifications.

    - insertion order is display order
    - ids are generated here, never by callers
    - a positive duration schedules exactly one expiry timer; dismiss() cancels it
    - removing an id that is already gone is a no-op
    """

    def __init__(
        self,
        *,
        scheduler: TimerScheduler | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._scheduler: TimerScheduler = scheduler or AsyncioTimerScheduler()
        self._clock = clock
        self._items: dict[str, Notification] = {}
        self._timers: dict[str, TimerHandle] = {}
        self._ids = itertools.count(1)
        self._listeners: list[NotificationListener] = []

    def subscribe(self, listener: NotificationListener) -> Callable[[], None]:
        """listener(event, notification) with event in {"added", "removed"}."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: str, notification: Notification) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, notification)
            except Exception:
                logger.exception("Notification listener failed event=%s", event)

    def add(
        self,
        type: NotificationType | str,
        title: str,
        message: str | None = None,
        *,
        duration_ms: int | None = None,
    ) -> Notification:
        notification = Notification(
            id=f"notification_{next(self._ids)}",
            type=NotificationType(type),
            title=title,
            message=message,
            duration_ms=duration_ms,
            timestamp=self._clock(),
        )
        self._items[notification.id] = notification
        logger.debug("Notification added id=%s type=%s title=%s", notification.id, notification.type, title)

        if duration_ms and duration_ms > 0:
            self._schedule_expiry(notification.id, duration_ms)

        self._emit("added", notification)
        return notification

    def _schedule_expiry(self, notification_id: str, duration_ms: int) -> None:
        try:
            handle = self._scheduler.call_later(
                duration_ms / 1000.0, lambda: self._expire(notification_id)
            )
        except RuntimeError:
            # No running event loop: the notification stays until dismissed.
            logger.warning("No event loop to expire notification %s; keeping it sticky", notification_id)
            return
        self._timers[notification_id] = handle

    def _expire(self, notification_id: str) -> None:
        self._timers.pop(notification_id, None)
        self._remove(notification_id)

    def _remove(self, notification_id: str) -> bool:
        notification = self._items.pop(notification_id, None)
        if notification is None:
            return False
        self._emit("removed", notification)
        return True

    def dismiss(self, notification_id: str) -> bool:
        handle = self._timers.pop(notification_id, None)
        if handle is not None:
            handle.cancel()
        return self._remove(notification_id)

    def clear(self) -> None:
        for notification_id in list(self._items):
            self.dismiss(notification_id)

    def success(self, title: str, message: str | None = None, *, duration_ms: int | None = None) -> Notification:
        return self.add(NotificationType.SUCCESS, title, message, duration_ms=duration_ms)

    def error(self, title: str, message: str | None = None, *, duration_ms: int | None = None) -> Notification:
        return self.add(NotificationType.ERROR, title, message, duration_ms=duration_ms)

    def warning(self, title: str, message: str | None = None, *, duration_ms: int | None = None) -> Notification:
        return self.add(NotificationType.WARNING, title, message, duration_ms=duration_ms)

    def info(self, title: str, message: str | None = None, *, duration_ms: int | None = None) -> Notification:
        return self.add(NotificationType.INFO, title, message, duration_ms=duration_ms)

    @property
    def notifications(self) -> list[Notification]:
        return list(self._items.values())

    def get(self, notification_id: str) -> Notification | None:
        return self._items.get(notification_id)

    def pending_timers(self) -> int:
        return len(self._timers)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, notification_id: object) -> bool:
        return notification_id in self._items
