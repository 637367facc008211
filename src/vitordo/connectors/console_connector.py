# src/vitordo/connectors/console_connector.py

from __future__ import annotations

import asyncio
import logging
import sys
from datetime import datetime

from ..cli.commands import format_task
from ..cli.commands import registry as command_registry
from ..core.state import AppState
from ..notifications.queue import Notification

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _rewrite_prev_line(line: str) -> None:
    """
    Replace the last terminal line with `line`.
    Best-effort: if not a TTY, just print a new line.
    """
    if sys.stdout.isatty():
        sys.stdout.write("\033[1A\033[2K\r")
        sys.stdout.write(line + "\n")
        sys.stdout.flush()
    else:
        print(line)


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}")


def _on_notification(event: str, notification: Notification) -> None:
    if event != "added":
        return
    body = f": {notification.message}" if notification.message else ""
    _print_ts(f"[{notification.type.value.upper()}] {notification.title}{body}")


async def run_console_loop(state: AppState) -> None:
    """
    Async REPL. Plain text is parsed into tasks; /commands go to the registry.
    input() runs in a worker thread so the ticker and expiry timers keep firing.
    """
    logger.info("Console connector started (offline=%s).", state.offline_mode)
    _print_ts("[CONSOLE] Describe your tasks. Use /help for commands. Use /exit to quit.\n")

    unsubscribe = state.notifications.subscribe(_on_notification)
    try:
        while True:
            try:
                user_input = (await asyncio.to_thread(input, ">>> You: ")).strip()
                _rewrite_prev_line(f"[{_ts_local()}] >>> You: {user_input}")
            except EOFError:
                logger.info("Console EOF received, exiting.")
                break
            except KeyboardInterrupt:
                logger.info("Console KeyboardInterrupt, exiting.")
                print()
                break

            if not user_input:
                continue

            if user_input.lower() in ("/exit", "/quit"):
                logger.info("Console exit command received.")
                break

            # Commands (/help, /tasks, ...)
            try:
                cmd_response = await command_registry.handle(state, user_input)
            except Exception:
                logger.exception("Command handler crashed.")
                cmd_response = "Internal error while handling a command."

            if cmd_response is not None:
                _print_ts(cmd_response)
                continue

            try:
                result = await state.pipeline.submit_input(user_input)
            except Exception:
                logger.exception("Task pipeline crashed.")
                _print_ts("Internal error while processing your input.")
                continue

            if result.stale:
                continue
            if not result.success:
                hint = " Use /retry to try again." if result.retryable else ""
                _print_ts(f"[ERROR] {result.error}{hint}")
                continue
            for task in result.tasks:
                _print_ts(f"+ {format_task(task)}")
    finally:
        unsubscribe()

    logger.info("Console connector finished.")
