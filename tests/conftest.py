# tests/conftest.py

from __future__ import annotations

import time
from collections.abc import Iterator
from pathlib import Path
from types import SimpleNamespace

import pytest

from vitordo.cli.bootstrap import create_initial_state
from vitordo.core.state import AppState
from vitordo.notifications.queue import NotificationQueue
from vitordo.storage.persistence import MemoryPersistence
from vitordo.tasks.task_store import TaskStore

from .fakes import T0, UTC_ZONE, FakeClock, FakeLLMClient, ManualScheduler, local_zone


@pytest.fixture(autouse=True)
def utc_local_time() -> Iterator[None]:
    """Task times are displayed in local time; pin it so HH:MM expectations hold."""
    if not hasattr(time, "tzset"):
        yield
        return
    with local_zone(UTC_ZONE):
        yield


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and core modules.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="vitordo-test",
        log_level="DEBUG",
        llm_api_key=None,
        llm_base_url="http://llm.invalid/v1",
        llm_models=["test-model"],
        extra_headers={},
        llm_connect_timeout_seconds=1.0,
        llm_read_timeout_seconds=1.0,
        llm_cache_ttl_seconds=3600.0,
        llm_cache_max_entries=100,
        # Paths (tmp per test run)
        data_dir=tmp_path / "data",
        # Retry policy: no real sleeping in tests
        max_retries=3,
        retry_base_delay_seconds=0.0,
        retry_max_delay_seconds=0.0,
        auto_retry=True,
        status_tick_seconds=30.0,
        completion_grace_minutes=15.0,
        work_day_start_hour=9,
        work_day_end_hour=17,
        min_slot_minutes=15,
        notification_duration_ms=5000,
        network_probe_url="",
        network_probe_interval_seconds=30.0,
        input_min_length=3,
        input_max_length=1000,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(T0)


@pytest.fixture()
def persistence() -> MemoryPersistence:
    return MemoryPersistence()


@pytest.fixture()
def store(persistence: MemoryPersistence, clock: FakeClock) -> TaskStore:
    return TaskStore(persistence=persistence, clock=clock)


@pytest.fixture()
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture()
def notifications(scheduler: ManualScheduler, clock: FakeClock) -> NotificationQueue:
    return NotificationQueue(scheduler=scheduler, clock=clock)


@pytest.fixture()
def llm() -> FakeLLMClient:
    return FakeLLMClient()


@pytest.fixture()
def state(settings: SimpleNamespace, llm: FakeLLMClient) -> AppState:
    """
    AppState wired through the real composition root, with a scripted collaborator.

    NOTE: persistence is the real JSON file backend under tmp_path, because its
    behavior is part of what we want to test.
    """
    return create_initial_state(settings=settings, llm=llm)
