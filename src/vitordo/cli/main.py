# src/vitordo/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then runs on one asyncio loop:
- the status ticker and network probe as background tasks,
- the console REPL in the foreground.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..core.state import AppState
from ..logging_setup import setup_logging
from ..resilience.network import run_network_probe
from ..tasks.task_scheduler import run_status_ticker, tick

logger = logging.getLogger(__name__)


async def _shutdown(state: AppState, background: list[asyncio.Task[None]]) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    for task in background:
        task.cancel()
    for task in background:
        with contextlib.suppress(asyncio.CancelledError):
            await task

    state.pipeline.close()
    state.notifications.clear()

    if not state.task_store.flush():
        logger.warning("Final task flush failed; recent changes may be lost.")

    aclose = getattr(state.llm, "aclose", None)
    if aclose is not None:
        try:
            await aclose()
        except Exception:
            logger.debug("LLM client close failed.", exc_info=True)


async def run_app(state: AppState) -> None:
    settings = state.settings

    # Bring statuses up to date before the first prompt.
    tick(state.task_store)

    background = [
        asyncio.create_task(
            run_status_ticker(
                state.task_store,
                state.notifications,
                interval_seconds=settings.status_tick_seconds,
                notification_duration_ms=settings.notification_duration_ms,
            ),
            name="status-ticker",
        ),
    ]
    if settings.network_probe_url and not state.offline_mode:
        background.append(
            asyncio.create_task(
                run_network_probe(
                    state.network,
                    settings.network_probe_url,
                    interval_seconds=settings.network_probe_interval_seconds,
                    timeout_seconds=settings.llm_connect_timeout_seconds,
                ),
                name="network-probe",
            )
        )

    try:
        await run_console_loop(state)
    finally:
        await _shutdown(state, background)


def main() -> None:
    settings = get_settings()

    # choose console log level from settings.log_level
    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)

    setup_logging(log_dir=settings.data_dir, console_level=console_level)

    logger.info("Starting %s...", settings.app_name)

    # IMPORTANT: reuse same settings object
    state = create_initial_state(settings=settings)

    try:
        asyncio.run(run_app(state))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down...")
    finally:
        logger.info("Bye.")


if __name__ == "__main__":
    main()
