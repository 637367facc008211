# src/vitordo/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- No secrets required at import time.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "VITORDO"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


load_dotenv(override=False)


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return list(default)
    return [p.strip() for p in raw.replace(",", " ").split() if p.strip()]


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- LLM (OpenAI-compatible endpoint) ----
    llm_api_key: str | None
    llm_base_url: str
    llm_models: list[str]
    extra_headers: dict[str, str]
    llm_connect_timeout_seconds: float
    llm_read_timeout_seconds: float
    llm_cache_ttl_seconds: float
    llm_cache_max_entries: int

    # ---- Local data (ignored by git) ----
    data_dir: Path

    # ---- Retry policy ----
    max_retries: int
    retry_base_delay_seconds: float
    retry_max_delay_seconds: float
    auto_retry: bool

    # ---- Timeline ----
    status_tick_seconds: float
    completion_grace_minutes: float

    # ---- Planning ----
    work_day_start_hour: int
    work_day_end_hour: int
    min_slot_minutes: int

    # ---- Notifications ----
    notification_duration_ms: int

    # ---- Network probe ----
    network_probe_url: str
    network_probe_interval_seconds: float

    # ---- Input validation ----
    input_min_length: int
    input_max_length: int

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "vitordo") or "vitordo"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        llm_api_key = _first_env(_k("LLM_API_KEY"), "OPENAI_API_KEY", default=None)
        llm_base_url = _env(_k("LLM_BASE_URL"), "https://api.openai.com/v1")
        llm_models = _env_list(_k("LLM_MODELS"), ["gpt-4o-mini"])

        extra_headers: dict[str, str] = {}
        referer = _env(_k("HTTP_REFERER"), "")
        if referer:
            extra_headers["HTTP-Referer"] = referer
            extra_headers["X-Title"] = _env(_k("APP_TITLE"), app_name)

        connect_timeout = _env_float(_k("LLM_CONNECT_TIMEOUT_SECONDS"), 5.0)
        read_timeout = _env_float(_k("LLM_READ_TIMEOUT_SECONDS"), 30.0)

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/vitordo"))

        return Settings(
            app_name=app_name,
            log_level=log_level,
            llm_api_key=llm_api_key,
            llm_base_url=llm_base_url,
            llm_models=llm_models,
            extra_headers=extra_headers,
            llm_connect_timeout_seconds=connect_timeout,
            llm_read_timeout_seconds=max(read_timeout, connect_timeout),
            llm_cache_ttl_seconds=max(0.0, _env_float(_k("LLM_CACHE_TTL_SECONDS"), 3600.0)),
            llm_cache_max_entries=max(1, _env_int(_k("LLM_CACHE_MAX_ENTRIES"), 100)),
            data_dir=data_dir,
            max_retries=max(1, _env_int(_k("MAX_RETRIES"), 3)),
            retry_base_delay_seconds=_env_float(_k("RETRY_BASE_DELAY_SECONDS"), 1.0),
            retry_max_delay_seconds=_env_float(_k("RETRY_MAX_DELAY_SECONDS"), 30.0),
            auto_retry=_env_bool(_k("AUTO_RETRY"), True),
            status_tick_seconds=_env_float(_k("STATUS_TICK_SECONDS"), 30.0),
            completion_grace_minutes=_env_float(_k("COMPLETION_GRACE_MINUTES"), 15.0),
            work_day_start_hour=_env_int(_k("WORK_DAY_START_HOUR"), 9),
            work_day_end_hour=_env_int(_k("WORK_DAY_END_HOUR"), 17),
            min_slot_minutes=_env_int(_k("MIN_SLOT_MINUTES"), 15),
            notification_duration_ms=_env_int(_k("NOTIFICATION_DURATION_MS"), 5000),
            network_probe_url=_env(_k("NETWORK_PROBE_URL"), llm_base_url),
            network_probe_interval_seconds=_env_float(_k("NETWORK_PROBE_INTERVAL_SECONDS"), 30.0),
            input_min_length=_env_int(_k("INPUT_MIN_LENGTH"), 3),
            input_max_length=_env_int(_k("INPUT_MAX_LENGTH"), 1000),
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
