# src/vitordo/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures the local (gitignored) data directory exists,
- wires concrete implementations into AppState (persistence/store/LLM/notifications/network),
- persists UI preferences as JSON.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from ..config import get_settings
from ..core.errors import StorageError
from ..core.ports import LLMCollaborator
from ..core.state import AppState
from ..llm.cache import CachedLLMClient
from ..llm.client import OpenAICompatibleLLMClient
from ..llm.offline import OfflineLLMClient
from ..notifications.queue import NotificationQueue
from ..resilience.network import NetworkMonitor
from ..storage.persistence import JsonFilePersistence, load_preferences, save_preferences
from ..tasks.task_api import TaskPipeline
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None, llm: LLMCollaborator | None = None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    persistence = JsonFilePersistence(settings.data_dir)
    notifications = NotificationQueue()
    network = NetworkMonitor()

    def _on_storage_error(err: StorageError) -> None:
        notifications.warning(
            "Storage Error",
            "Changes are kept in memory but could not be saved.",
            duration_ms=settings.notification_duration_ms,
        )

    task_store = TaskStore(
        persistence=persistence,
        completion_grace=timedelta(minutes=float(settings.completion_grace_minutes)),
        on_storage_error=_on_storage_error,
    )
    task_store.load()

    offline_mode = False
    if llm is None:
        try:
            client = OpenAICompatibleLLMClient(settings)
        except Exception as e:
            # Fallback for demos / local runs without external services.
            logger.info("LLM client unavailable (%s); using offline collaborator.", e)
            llm = OfflineLLMClient()
            offline_mode = True
        else:
            ttl = float(settings.llm_cache_ttl_seconds)
            llm = client
            if ttl > 0:
                llm = CachedLLMClient(client, ttl_seconds=ttl, max_entries=settings.llm_cache_max_entries)

    preferences = load_preferences(persistence)

    pipeline = TaskPipeline(task_store, llm, notifications, network, settings)
    if "auto_retry" in preferences:
        pipeline.auto_retry = bool(preferences["auto_retry"])

    return AppState(
        settings=settings,
        persistence=persistence,
        task_store=task_store,
        notifications=notifications,
        network=network,
        llm=llm,
        pipeline=pipeline,
        offline_mode=offline_mode,
        preferences=preferences,
    )


def store_preferences(state: AppState) -> bool:
    """Persist state.preferences. Failures are reported, never raised."""
    try:
        save_preferences(state.persistence, state.preferences)
        return True
    except StorageError as e:
        logger.warning("Failed to save preferences: %s", e)
        state.notifications.warning("Storage Error", "Preferences could not be saved.")
        return False
