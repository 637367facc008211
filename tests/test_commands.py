# tests/test_commands.py

from __future__ import annotations

import json
from dataclasses import replace

import pytest

from vitordo.cli.commands import CommandRegistry, registry
from vitordo.core.ports import UpdateResponse
from vitordo.storage.persistence import PREFERENCES_STORAGE_KEY
from vitordo.tasks.task_models import TaskUpdate, TimelineStatus

from .fakes import at


def _add(state, title: str = "Write report"):
    return state.task_store.create_task(title=title, start_time=at(10), end_time=at(11))


@pytest.mark.asyncio
async def test_command_registry_routes_sync_and_async(state) -> None:
    reg = CommandRegistry()
    called = {"sync": 0, "async": 0}

    def sync_handler(state, args):
        called["sync"] += 1
        return "s:" + ",".join(args)

    async def async_handler(state, args):
        called["async"] += 1
        return "a"

    reg.register("s", sync_handler, "s", aliases=["ss"])
    reg.register("a", async_handler, "a")

    assert await reg.handle(state, "/s x y") == "s:x,y"
    assert await reg.handle(state, "/SS") == "s:"
    assert await reg.handle(state, "/a") == "a"
    assert called == {"sync": 2, "async": 1}


@pytest.mark.asyncio
async def test_command_registry_unknown_and_non_command(state) -> None:
    reg = CommandRegistry()
    assert await reg.handle(state, "hello") is None
    assert "Unknown command" in (await reg.handle(state, "/nope") or "")
    assert "Empty command" in (await reg.handle(state, "/") or "")


@pytest.mark.asyncio
async def test_tasks_done_reopen_flow(state) -> None:
    task = _add(state)

    listing = await registry.handle(state, "/tasks")
    assert task.id in listing
    assert "10:00-11:00" in listing

    reply = await registry.handle(state, f"/done {task.id[:9]}")
    assert reply == "Completed: Write report"
    assert state.task_store.get_task(task.id).status == TimelineStatus.COMPLETED

    assert "No tasks." == await registry.handle(state, "/tasks upcoming")

    await registry.handle(state, f"/reopen {task.id}")
    assert state.task_store.get_task(task.id).status == TimelineStatus.UPCOMING
    assert "(reopened)" in await registry.handle(state, "/tasks upcoming")


@pytest.mark.asyncio
async def test_unknown_or_ambiguous_task_ids(state) -> None:
    _add(state, "A")
    _add(state, "B")
    assert "No task" in await registry.handle(state, "/done nope")
    assert "Ambiguous" in await registry.handle(state, "/done task_")


@pytest.mark.asyncio
async def test_remove_and_clear(state) -> None:
    a = _add(state, "A")
    _add(state, "B")

    assert await registry.handle(state, f"/remove {a.id}") == "Removed: A"
    assert await registry.handle(state, "/clear") == "Cleared 1 task(s)."
    assert len(state.task_store) == 0


@pytest.mark.asyncio
async def test_update_command_uses_pipeline(state, llm) -> None:
    task = _add(state)
    llm.update_script.append(
        UpdateResponse(
            success=True,
            status_updates=(
                TaskUpdate(task_id=task.id, new_status=TimelineStatus.RECENTLY_COMPLETED, reason="done", timestamp=at(11)),
            ),
        )
    )

    reply = await registry.handle(state, "/update finished the report")

    assert task.id in reply
    assert state.task_store.get_task(task.id).status == TimelineStatus.RECENTLY_COMPLETED


@pytest.mark.asyncio
async def test_retry_with_nothing_failed(state) -> None:
    assert await registry.handle(state, "/retry") == "Nothing to retry."


@pytest.mark.asyncio
async def test_notifications_and_dismiss(state) -> None:
    n = state.notifications.info("Hello", "world")

    listing = await registry.handle(state, "/notifications")
    assert n.id in listing and "Hello: world" in listing

    short_id = n.id.split("_", 1)[1]
    assert await registry.handle(state, f"/dismiss {short_id}") == f"Dismissed {n.id}."
    assert await registry.handle(state, "/notifications") == "No notifications."


@pytest.mark.asyncio
async def test_autoretry_is_saved_as_preference(state) -> None:
    assert await registry.handle(state, "/autoretry off") == "Auto retry is now OFF."
    assert state.pipeline.auto_retry is False

    raw = state.persistence.get(PREFERENCES_STORAGE_KEY)
    assert json.loads(raw) == {"auto_retry": False}


@pytest.mark.asyncio
async def test_status_and_stats(state) -> None:
    _add(state)
    status = await registry.handle(state, "/status")
    assert "Network: online" in status
    assert "Tasks: 1" in status

    stats = await registry.handle(state, "/stats")
    assert "Total: 1" in stats


@pytest.mark.asyncio
async def test_tasks_can_be_sorted(state) -> None:
    low = state.task_store.create_task(title="Low", start_time=at(9), end_time=at(10), priority=1)
    high = state.task_store.create_task(title="High", start_time=at(12), end_time=at(13), priority=5)

    by_time = await registry.handle(state, "/tasks")
    by_priority = await registry.handle(state, "/tasks upcoming priority")

    assert by_time.index(low.id) < by_time.index(high.id)
    assert by_priority.index(high.id) < by_priority.index(low.id)
    assert "Usage" in await registry.handle(state, "/tasks sideways")


@pytest.mark.asyncio
async def test_export_then_import_restores_tasks(state, tmp_path) -> None:
    task = _add(state)
    path = tmp_path / "backup.json"

    reply = await registry.handle(state, f"/export {path}")
    assert reply == f"Exported 1 task(s) to {path}"
    assert json.loads(path.read_text(encoding="utf-8"))["tasks"][0]["id"] == task.id

    await registry.handle(state, "/clear")
    reply = await registry.handle(state, f"/import {path}")

    assert reply == f"Imported 1 task(s) from {path}"
    assert state.task_store.get_task(task.id).title == "Write report"
    assert state.notifications.notifications[-1].title == "Import Complete"


@pytest.mark.asyncio
async def test_export_without_path_writes_into_data_dir(state, settings) -> None:
    _add(state)

    await registry.handle(state, "/export")

    [written] = settings.data_dir.glob("tasks-export-*.json")
    assert json.loads(written.read_text(encoding="utf-8"))["version"] == 1


@pytest.mark.asyncio
async def test_bad_import_keeps_existing_tasks(state, tmp_path) -> None:
    task = _add(state)
    path = tmp_path / "broken.json"
    path.write_text('{"tasks": [{"id": "x"}]}', encoding="utf-8")

    assert await registry.handle(state, f"/import {path}") == "Import failed. Please check the file format."
    assert "Could not read" in await registry.handle(state, f"/import {tmp_path / 'missing.json'}")
    assert [t.id for t in state.task_store.tasks] == [task.id]
    assert state.notifications.notifications[-1].title == "Import Failed"


@pytest.mark.asyncio
async def test_cleanup_removes_old_completed_tasks(state) -> None:
    old = _add(state, "Old")
    state.task_store.add_task(replace(old, status=TimelineStatus.COMPLETED, updated_at=at(11)))
    recent = _add(state, "Recent")
    state.task_store.mark_completed(recent.id)

    assert "Usage" in await registry.handle(state, "/cleanup soon")
    assert await registry.handle(state, "/cleanup") == "Removed 1 completed task(s) older than 30 days."
    assert [t.title for t in state.task_store.tasks] == ["Recent"]
    assert state.notifications.notifications[-1].message == "Removed 1 old completed tasks"


@pytest.mark.asyncio
async def test_conflicts_lists_overlapping_upcoming_tasks(state) -> None:
    assert await registry.handle(state, "/conflicts") == "No scheduling conflicts."

    state.task_store.create_task(title="Standup", start_time=at(10), end_time=at(11))
    state.task_store.create_task(title="Review", start_time=at(10, 30), end_time=at(12))

    reply = await registry.handle(state, "/conflicts")
    assert "[major] Standup (10:00-11:00) overlaps Review (10:30-12:00) by 30 min" in reply


@pytest.mark.asyncio
async def test_slots_shows_free_time_today(state, monkeypatch) -> None:
    monkeypatch.setattr("vitordo.cli.commands.local_now", lambda: at(8))
    state.task_store.create_task(title="Standup", start_time=at(10), end_time=at(11))
    state.task_store.create_task(title="Lunch", start_time=at(12), end_time=at(16, 50))

    reply = await registry.handle(state, "/slots")

    assert reply == "Free slots today:\n  09:00-10:00 (60 min)\n  11:00-12:00 (60 min)"
