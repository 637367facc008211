# src/vitordo/resilience/retry.py

from __future__ import annotations

"""
Bounded, caller-paced retries for one logical operation.

Phases:
    idle -> attempting -> success | failed
                       -> retrying -> attempting -> ...

The controller never sleeps on its own inside run()/retry(): the caller decides
the delay between attempts (drive() is a convenience loop that takes a backoff
policy). It only enforces the attempt budget and the reachability guard, and
emits exactly one notification per terminal outcome.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Generic, TypeVar

from ..notifications.queue import NotificationQueue
from .classifier import ErrorClassification, classify_error, friendly_error_message
from .network import NetworkMonitor

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3


class RetryPhase(StrEnum):
    IDLE = "idle"
    ATTEMPTING = "attempting"
    RETRYING = "retrying"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(slots=True, frozen=True)
class RetryOutcome(Generic[T]):
    phase: RetryPhase
    result: T | None = None
    error: BaseException | None = None
    classification: ErrorClassification | None = None
    attempt_count: int = 0
    # The operation resolved after cancel(); its result must not be applied.
    stale: bool = False

    @property
    def terminal(self) -> bool:
        return self.phase in (RetryPhase.SUCCESS, RetryPhase.FAILED)


def exponential_backoff(base_seconds: float = 1.0, max_seconds: float = 30.0) -> Callable[[int], float]:
    """Delay before retry number n (1-based): base * 2**(n-1), capped."""

    def delay(attempt: int) -> float:
        n = max(1, int(attempt))
        return float(min(max_seconds, base_seconds * (2 ** (n - 1))))

    return delay


class RetryController(Generic[T]):
    def __init__(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        notifications: NotificationQueue | None = None,
        network: NetworkMonitor | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        classify: Callable[[Any], ErrorClassification] = classify_error,
        name: str = "request",
        success_title: str = "Request completed",
        failure_title: str = "Request failed",
        describe_success: Callable[[T], str | None] | None = None,
        success_duration_ms: int | None = 3000,
        failure_duration_ms: int | None = None,
    ) -> None:
        self._operation = operation
        self._notifications = notifications
        self._network = network
        self._max_retries = max(1, int(max_retries))
        self._classify = classify
        self.name = name
        self._success_title = success_title
        self._failure_title = failure_title
        self._describe_success = describe_success
        self._success_duration_ms = success_duration_ms
        self._failure_duration_ms = failure_duration_ms

        self._phase = RetryPhase.IDLE
        self._attempt_count = 0
        self._generation = 0
        self.last_error: BaseException | None = None
        self.last_classification: ErrorClassification | None = None

        self._unsubscribe = network.subscribe(self._on_network_change) if network is not None else None

    # ---- state ----

    @property
    def phase(self) -> RetryPhase:
        return self._phase

    @property
    def attempt_count(self) -> int:
        return self._attempt_count

    @property
    def max_retries(self) -> int:
        return self._max_retries

    @property
    def remaining_attempts(self) -> int:
        return max(0, self._max_retries - self._attempt_count)

    @property
    def is_online(self) -> bool:
        return self._network.is_online if self._network is not None else True

    @property
    def can_retry(self) -> bool:
        if self._phase not in (RetryPhase.RETRYING, RetryPhase.FAILED):
            return False
        c = self.last_classification
        if c is None or not c.retryable:
            return False
        return self._attempt_count < self._max_retries and self.is_online

    # ---- transitions ----

    async def run(self) -> RetryOutcome[T] | None:
        """Start a fresh attempt sequence. Coalesced (None) while an attempt is in flight."""
        if self._phase == RetryPhase.ATTEMPTING:
            logger.debug("%s: run() while attempting; coalesced", self.name)
            return None
        self._attempt_count = 0
        self.last_error = None
        self.last_classification = None
        return await self._attempt()

    async def retry(self) -> RetryOutcome[T] | None:
        """
        Re-invoke after a retryable failure. Returns None without side effects when an
        attempt is already in flight, the budget is spent, the last error is not
        retryable, or the network is down.
        """
        if self._phase == RetryPhase.ATTEMPTING:
            logger.debug("%s: retry() while attempting; coalesced", self.name)
            return None
        if not self.can_retry:
            logger.info(
                "%s: retry refused phase=%s attempts=%d/%d online=%s",
                self.name,
                self._phase.value,
                self._attempt_count,
                self._max_retries,
                self.is_online,
            )
            return None
        return await self._attempt()

    def cancel(self) -> None:
        """Discard whatever is in flight; a late result will not be applied or notified."""
        self._generation += 1
        if self._phase in (RetryPhase.ATTEMPTING, RetryPhase.RETRYING):
            logger.debug("%s: cancelled in phase=%s", self.name, self._phase.value)
            self._phase = RetryPhase.IDLE

    def close(self) -> None:
        self.cancel()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def drive(
        self,
        backoff: Callable[[int], float] | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> RetryOutcome[T] | None:
        """
        run(), then keep retrying while the controller is in `retrying`, waiting
        backoff(attempt_count) seconds before each retry. Stops early when the guard
        refuses (e.g. offline) and returns the last outcome.
        """
        outcome = await self.run()
        while outcome is not None and outcome.phase == RetryPhase.RETRYING:
            generation = self._generation
            delay = backoff(self._attempt_count) if backoff is not None else 0.0
            if delay > 0:
                await sleep(delay)
            if generation != self._generation:
                return RetryOutcome(phase=RetryPhase.IDLE, attempt_count=self._attempt_count, stale=True)
            nxt = await self.retry()
            if nxt is None:
                break
            outcome = nxt
        return outcome

    async def _attempt(self) -> RetryOutcome[T]:
        self._generation += 1
        generation = self._generation
        self._phase = RetryPhase.ATTEMPTING
        logger.debug("%s: attempting (failed so far=%d)", self.name, self._attempt_count)

        try:
            result = await self._operation()
        except asyncio.CancelledError:
            if generation == self._generation:
                self._phase = RetryPhase.IDLE
            raise
        except Exception as e:
            if generation != self._generation:
                logger.debug("%s: stale failure discarded (%s)", self.name, e.__class__.__name__)
                return RetryOutcome(phase=RetryPhase.IDLE, error=e, attempt_count=self._attempt_count, stale=True)
            return self._on_failure(e)

        if generation != self._generation:
            logger.debug("%s: stale result discarded", self.name)
            return RetryOutcome(phase=RetryPhase.IDLE, result=result, attempt_count=self._attempt_count, stale=True)
        return self._on_success(result)

    def _on_failure(self, error: Exception) -> RetryOutcome[T]:
        classification = self._classify(error)
        self.last_error = error
        self.last_classification = classification

        if classification.retryable:
            self._attempt_count += 1

        if not classification.retryable or self._attempt_count >= self._max_retries:
            return self._fail(error, classification)

        self._phase = RetryPhase.RETRYING
        logger.info(
            "%s: attempt failed kind=%s code=%s, %d attempt(s) left",
            self.name,
            classification.kind.value,
            classification.code,
            self.remaining_attempts,
        )
        return RetryOutcome(
            phase=RetryPhase.RETRYING,
            error=error,
            classification=classification,
            attempt_count=self._attempt_count,
        )

    def _fail(self, error: Exception, classification: ErrorClassification) -> RetryOutcome[T]:
        self._phase = RetryPhase.FAILED
        logger.warning(
            "%s: failed kind=%s code=%s severity=%s attempts=%d (%s)",
            self.name,
            classification.kind.value,
            classification.code,
            classification.severity.value,
            self._attempt_count,
            error,
        )
        if self._notifications is not None:
            self._notifications.error(
                self._failure_title,
                friendly_error_message(classification),
                duration_ms=self._failure_duration_ms,
            )
        return RetryOutcome(
            phase=RetryPhase.FAILED,
            error=error,
            classification=classification,
            attempt_count=self._attempt_count,
        )

    def _on_success(self, result: T) -> RetryOutcome[T]:
        self._phase = RetryPhase.SUCCESS
        self._attempt_count = 0
        self.last_error = None
        self.last_classification = None
        logger.info("%s: succeeded", self.name)

        if self._notifications is not None:
            message = None
            if self._describe_success is not None:
                try:
                    message = self._describe_success(result)
                except Exception:
                    logger.exception("%s: describe_success failed", self.name)
            self._notifications.success(self._success_title, message, duration_ms=self._success_duration_ms)
        return RetryOutcome(phase=RetryPhase.SUCCESS, result=result, attempt_count=0)

    def _on_network_change(self, online: bool) -> None:
        if online and self._attempt_count:
            logger.info("%s: network restored, retry budget reset (was %d)", self.name, self._attempt_count)
            self._attempt_count = 0
