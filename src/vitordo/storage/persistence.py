# src/vitordo/storage/persistence.py

from __future__ import annotations

import contextlib
import json
import logging
import os
import re
from pathlib import Path
from typing import Any

from ..core.errors import StorageError

logger = logging.getLogger(__name__)

TASKS_STORAGE_KEY = "vitordo_tasks"
PREFERENCES_STORAGE_KEY = "vitordo_settings"

_SAFE_KEY_RE = re.compile(r"[^A-Za-z0-9_.-]")


class JsonFilePersistence:
    """
    File-backed key-value persistence: one JSON document per key under data_dir.

    Writes go to a temp file first and are moved into place with os.replace,
    so a crash never leaves a half-written document behind.
    """

    def __init__(self, data_dir: str | Path) -> None:
        self._dir = Path(data_dir)

    def _path(self, key: str) -> Path:
        safe = _SAFE_KEY_RE.sub("_", key.strip()) or "default"
        return self._dir / f"{safe}.json"

    def get(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return path.read_text("utf-8")
        except OSError as e:
            raise StorageError(f"Failed to read {path}: {e}") from e

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".tmp")
            tmp.write_text(value, "utf-8")
            os.replace(tmp, path)
        except OSError as e:
            raise StorageError(f"Failed to write {path}: {e}") from e

        with contextlib.suppress(OSError):
            # Task text may be personal; keep the file private on disk.
            os.chmod(path, 0o600)

    def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to delete {path}: {e}") from e


class MemoryPersistence:
    """In-process persistence, used for tests and for runs without a data dir."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self.values: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self.values.get(key)

    def set(self, key: str, value: str) -> None:
        self.values[key] = value

    def delete(self, key: str) -> None:
        self.values.pop(key, None)


def load_preferences(backend: Any) -> dict[str, Any]:
    """Load UI preferences (best-effort: any failure -> {})."""
    try:
        raw = backend.get(PREFERENCES_STORAGE_KEY)
    except Exception:
        logger.exception("Failed to load preferences")
        return {}
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        logger.warning("Stored preferences are not valid JSON; ignoring.")
        return {}
    return data if isinstance(data, dict) else {}


def save_preferences(backend: Any, prefs: dict[str, Any]) -> None:
    """Persist UI preferences. Raises StorageError on failure."""
    try:
        backend.set(PREFERENCES_STORAGE_KEY, json.dumps(prefs, ensure_ascii=False, indent=2))
    except StorageError:
        raise
    except Exception as e:
        raise StorageError(f"Failed to save preferences: {e}") from e
