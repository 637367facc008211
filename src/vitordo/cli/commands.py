# src/vitordo/cli/commands.py

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Union

from ..core.state import AppState
from ..core.timeutil import format_relative_time, format_time_range, local_now
from ..tasks.task_models import Task, TimelineStatus
from ..tasks.task_planning import (
    DEFAULT_MIN_SLOT_MINUTES,
    DEFAULT_WORK_END_HOUR,
    DEFAULT_WORK_START_HOUR,
    available_slots,
    find_conflicts,
    working_window,
)
from ..tasks.task_store import SORT_ORDERS, sort_tasks
from .bootstrap import store_preferences

CommandResult = Union[str, Awaitable[str]]
CommandHandler = Callable[[AppState, list[str]], CommandResult]

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by connectors (/help, /tasks, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    async def handle(self, state: AppState, line: str) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        Handlers may be plain functions or coroutines.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        result = handler(state, args)
        if inspect.isawaitable(result):
            result = await result
        return result

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def format_task(task: Task) -> str:
    flag = " (reopened)" if task.reopened else ""
    return (
        f"{task.id}  {format_time_range(task.start_time, task.end_time)}  "
        f"[{task.status.value}]{flag} {task.title} (p{task.priority})"
    )


def _resolve_task(state: AppState, raw: str) -> Task | str:
    """Exact id or a unique id prefix. Returns an error string otherwise."""
    task = state.task_store.get_task(raw)
    if task is not None:
        return task
    matches = [t for t in state.task_store.tasks if t.id.startswith(raw)]
    if len(matches) == 1:
        return matches[0]
    if not matches:
        return f"No task with id {raw!r}."
    return f"Ambiguous id {raw!r}: {len(matches)} tasks match."


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_status(state: AppState, args: list[str]) -> str:
    store = state.task_store
    mode = "OFFLINE (demo collaborator)" if state.offline_mode else "LLM"
    models = ", ".join(list(getattr(state.settings, "llm_models", []) or []))
    lines = [
        "Status:",
        f"  Mode: {mode}",
        f"  Models (priority -> fallback): {models}",
        f"  Network: {'online' if state.network.is_online else 'offline'}",
        f"  Tasks: {len(store)}",
        f"  Auto retry: {'ON' if state.pipeline.auto_retry else 'OFF'}",
    ]
    if store.is_loading:
        lines.append("  Request in flight...")
    if store.error:
        lines.append(f"  Last error: {store.error}")
        if state.pipeline.can_retry:
            lines.append("  Use /retry to try again.")
    return "\n".join(lines)


_STATUS_FILTERS = {
    "upcoming": TimelineStatus.UPCOMING,
    "recent": TimelineStatus.RECENTLY_COMPLETED,
    "recently_completed": TimelineStatus.RECENTLY_COMPLETED,
    "completed": TimelineStatus.COMPLETED,
    "done": TimelineStatus.COMPLETED,
}


def cmd_tasks(state: AppState, args: list[str]) -> str:
    """
    /tasks                  -> all tasks in time order
    /tasks upcoming         -> only upcoming (also: recent, completed)
    /tasks priority         -> sorted: time | priority | created
    /tasks completed created
    """
    store = state.task_store
    status: TimelineStatus | None = None
    sort_by = "time"
    for arg in (a.lower() for a in args):
        if arg in _STATUS_FILTERS and status is None:
            status = _STATUS_FILTERS[arg]
        elif arg in SORT_ORDERS:
            sort_by = arg
        else:
            return "Usage: /tasks [upcoming|recent|completed] [time|priority|created]"

    tasks = store.tasks_by_status(status, sort_by) if status is not None else sort_tasks(store.tasks, sort_by)

    if not tasks:
        return "No tasks."
    return "\n".join(format_task(t) for t in tasks)


def cmd_done(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /done <task_id>"
    task = _resolve_task(state, args[0])
    if isinstance(task, str):
        return task
    state.task_store.mark_completed(task.id)
    return f"Completed: {task.title}"


def cmd_reopen(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /reopen <task_id>"
    task = _resolve_task(state, args[0])
    if isinstance(task, str):
        return task
    state.task_store.update_task_status(task.id, TimelineStatus.UPCOMING)
    return f"Reopened: {task.title}"


def cmd_remove(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /remove <task_id>"
    task = _resolve_task(state, args[0])
    if isinstance(task, str):
        return task
    state.task_store.remove_task(task.id)
    return f"Removed: {task.title}"


def cmd_clear(state: AppState, args: list[str]) -> str:
    n = len(state.task_store)
    state.task_store.clear_tasks()
    return f"Cleared {n} task(s)."


async def cmd_update(state: AppState, args: list[str]) -> str:
    """/update <text>  -> ask the collaborator which tasks the text finishes or reopens."""
    if not args:
        return "Usage: /update <what happened>"
    result = await state.pipeline.submit_update(" ".join(args))
    if result.stale:
        return "Superseded by a newer request."
    if not result.success:
        return f"Update failed: {result.error}"
    if not result.tasks:
        return "No matching tasks to update."
    return "\n".join(format_task(t) for t in result.tasks)


async def cmd_retry(state: AppState, args: list[str]) -> str:
    result = await state.pipeline.retry()
    if result is None:
        return "Nothing to retry."
    if not result.success:
        return f"Still failing: {result.error}"
    return f"Retry succeeded ({len(result.tasks)} task(s) affected)."


def cmd_notifications(state: AppState, args: list[str]) -> str:
    items = state.notifications.notifications
    if not items:
        return "No notifications."
    lines = []
    for n in items:
        body = f": {n.message}" if n.message else ""
        lines.append(f"{n.id}  [{n.type.value}] {n.title}{body} ({format_relative_time(n.timestamp)})")
    return "\n".join(lines)


def cmd_dismiss(state: AppState, args: list[str]) -> str:
    """
    /dismiss <id>   -> dismiss one notification
    /dismiss all    -> clear all
    """
    if not args:
        return "Usage: /dismiss <notification_id|all>"
    if args[0].lower() == "all":
        state.notifications.clear()
        return "All notifications dismissed."
    nid = args[0] if args[0].startswith("notification_") else f"notification_{args[0]}"
    if state.notifications.dismiss(nid):
        return f"Dismissed {nid}."
    return f"No notification {nid}."


def cmd_stats(state: AppState, args: list[str]) -> str:
    s = state.task_store.statistics()
    return (
        "Statistics:\n"
        f"  Total: {s.total}\n"
        f"  Upcoming: {s.upcoming} (overdue: {s.overdue})\n"
        f"  Recently completed: {s.recently_completed}\n"
        f"  Completed: {s.completed}\n"
        f"  Completion rate: {s.completion_rate:.0f}%"
    )


def cmd_export(state: AppState, args: list[str]) -> str:
    """/export [path]  -> write all tasks as JSON (default: a timestamped file in the data dir)."""
    if args:
        path = Path(" ".join(args)).expanduser()
    else:
        path = Path(state.settings.data_dir) / f"tasks-export-{local_now():%Y%m%d-%H%M%S}.json"
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(state.pipeline.export_tasks(), encoding="utf-8")
    except OSError as e:
        logger.warning("Export to %s failed: %s", path, e)
        return f"Export failed: {e}"
    return f"Exported {len(state.task_store)} task(s) to {path}"


def cmd_import(state: AppState, args: list[str]) -> str:
    """/import <path>  -> replace all tasks with the contents of an export file."""
    if not args:
        return "Usage: /import <path>"
    path = Path(" ".join(args)).expanduser()
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        logger.warning("Import from %s failed: %s", path, e)
        return f"Could not read {path}: {e}"
    if not state.pipeline.import_tasks(raw):
        return "Import failed. Please check the file format."
    return f"Imported {len(state.task_store)} task(s) from {path}"


def cmd_cleanup(state: AppState, args: list[str]) -> str:
    """/cleanup [days]  -> delete completed tasks untouched for that many days (default 30)."""
    days = 30.0
    if args:
        try:
            days = float(args[0])
        except ValueError:
            return "Usage: /cleanup [days]"
        if days < 0:
            return "Usage: /cleanup [days]"
    removed = state.pipeline.cleanup_old_tasks(days)
    return f"Removed {len(removed)} completed task(s) older than {days:g} days."


def cmd_conflicts(state: AppState, args: list[str]) -> str:
    conflicts = find_conflicts(state.task_store.upcoming_tasks)
    if not conflicts:
        return "No scheduling conflicts."
    lines = ["Scheduling conflicts:"]
    for c in conflicts:
        lines.append(
            f"  [{c.severity.value}] {c.first.title} ({format_time_range(c.first.start_time, c.first.end_time)}) "
            f"overlaps {c.second.title} ({format_time_range(c.second.start_time, c.second.end_time)}) "
            f"by {c.overlap_minutes} min"
        )
    return "\n".join(lines)


def cmd_slots(state: AppState, args: list[str]) -> str:
    """Free time today within working hours."""
    settings = state.settings
    start_hour = int(getattr(settings, "work_day_start_hour", DEFAULT_WORK_START_HOUR))
    end_hour = int(getattr(settings, "work_day_end_hour", DEFAULT_WORK_END_HOUR))
    min_minutes = int(getattr(settings, "min_slot_minutes", DEFAULT_MIN_SLOT_MINUTES))

    today = local_now()
    window_start, window_end = working_window(today, start_hour=start_hour, end_hour=end_hour)
    in_window = state.task_store.tasks_in_range(window_start, window_end)
    busy = [t for t in in_window if t.status == TimelineStatus.UPCOMING]
    slots = available_slots(today, busy, start_hour=start_hour, end_hour=end_hour, min_minutes=min_minutes)
    if not slots:
        return "No free slots today."
    lines = ["Free slots today:"]
    lines.extend(f"  {format_time_range(s.start, s.end)} ({s.minutes} min)" for s in slots)
    return "\n".join(lines)


def cmd_autoretry(state: AppState, args: list[str]) -> str:
    """
    /autoretry       -> show status
    /autoretry on    -> retry retryable failures with backoff
    /autoretry off   -> leave retries to /retry
    """
    if not args:
        return f"Auto retry is currently {'ON' if state.pipeline.auto_retry else 'OFF'}. Use /autoretry on or /autoretry off."

    arg = args[0].lower()
    if arg in ("on", "1", "true", "yes"):
        enabled = True
    elif arg in ("off", "0", "false", "no"):
        enabled = False
    else:
        return "Usage: /autoretry on | /autoretry off"

    state.pipeline.auto_retry = enabled
    state.preferences["auto_retry"] = enabled
    store_preferences(state)
    return f"Auto retry is now {'ON' if enabled else 'OFF'}."


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show mode, network, and last error.")
registry.register(
    "tasks",
    cmd_tasks,
    help_text="List tasks: /tasks [upcoming|recent|completed] [time|priority|created].",
    aliases=["ls"],
)
registry.register("done", cmd_done, help_text="Mark a task completed: /done <task_id>.")
registry.register("reopen", cmd_reopen, help_text="Move a task back to upcoming: /reopen <task_id>.")
registry.register("remove", cmd_remove, help_text="Delete a task: /remove <task_id>.", aliases=["rm"])
registry.register("clear", cmd_clear, help_text="Delete all tasks.")
registry.register("update", cmd_update, help_text="Report progress in free text: /update <text>.")
registry.register("retry", cmd_retry, help_text="Retry the last failed request.")
registry.register("notifications", cmd_notifications, help_text="List active notifications.", aliases=["n"])
registry.register("dismiss", cmd_dismiss, help_text="Dismiss a notification: /dismiss <id|all>.")
registry.register("stats", cmd_stats, help_text="Show task statistics.")
registry.register("autoretry", cmd_autoretry, help_text="Toggle automatic retries: /autoretry on|off.")
registry.register("export", cmd_export, help_text="Save all tasks as JSON: /export [path].")
registry.register("import", cmd_import, help_text="Replace all tasks from an export: /import <path>.")
registry.register("cleanup", cmd_cleanup, help_text="Delete old completed tasks: /cleanup [days] (default 30).")
registry.register("conflicts", cmd_conflicts, help_text="List overlapping upcoming tasks.")
registry.register("slots", cmd_slots, help_text="Show free time today within working hours.")
