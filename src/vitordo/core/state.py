# src/vitordo/core/state.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..notifications.queue import NotificationQueue
from ..resilience.network import NetworkMonitor
from ..tasks.task_store import TaskStore
from .ports import LLMCollaborator, PersistenceBackend

if TYPE_CHECKING:
    from ..tasks.task_api import TaskPipeline


@dataclass
class AppState:
    """
    Runtime state shared across the app.

    Holds settings plus wired dependencies (store/notifications/collaborator/network).
    """

    # Store Settings on the state for easy access in other modules later.
    settings: Any

    persistence: PersistenceBackend
    task_store: TaskStore
    notifications: NotificationQueue
    network: NetworkMonitor
    llm: LLMCollaborator
    pipeline: TaskPipeline

    # True when the offline collaborator is in use.
    offline_mode: bool = False
    preferences: dict[str, Any] = field(default_factory=dict)
