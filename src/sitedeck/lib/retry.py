"""Retry and polling helpers shared by every remote operation.

Every wait in SiteDeck goes through this module. Delays grow geometrically,
are capped, and carry optional jitter so concurrent callers do not
synchronise.
"""

from __future__ import annotations

import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from sitedeck.lib.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for retried calls."""

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter: float = 0.1

    def delay_for(self, attempt: int) -> float:
        """Return the delay before retry number ``attempt`` (1-based)."""
        delay = self.initial_delay * self.multiplier ** (attempt - 1)
        delay = min(delay, self.max_delay)
        if self.jitter:
            delay += delay * random.uniform(0, self.jitter)
        return delay


DEFAULT_RETRY = RetryPolicy()
UPLOAD_RETRY = RetryPolicy(max_attempts=3, initial_delay=1.0, max_delay=10.0)
NO_RETRY = RetryPolicy(max_attempts=1)


@dataclass(frozen=True)
class PollSchedule:
    """Schedule for polling a remote status until it settles."""

    timeout: float
    interval: float
    max_interval: float | None = None
    multiplier: float = 1.0
    jitter: float = 0.0

    def interval_for(self, attempt: int) -> float:
        """Return the wait after poll number ``attempt`` (1-based)."""
        wait = self.interval * self.multiplier ** (attempt - 1)
        if self.max_interval is not None:
            wait = min(wait, self.max_interval)
        if self.jitter:
            wait += wait * random.uniform(0, self.jitter)
        return wait


def sleep(seconds: float) -> None:
    """Block for ``seconds``; the single sleep used by the package."""
    if seconds > 0:
        time.sleep(seconds)


def monotonic() -> float:
    """Return the monotonic clock reading used for deadlines."""
    return time.monotonic()


def with_retry(
    fn: Callable[[], T],
    policy: RetryPolicy = DEFAULT_RETRY,
    *,
    retry_on: Callable[[BaseException], bool],
    on_retry: Callable[[int, BaseException, float], None] | None = None,
) -> T:
    """Call ``fn`` until it succeeds or the policy is exhausted.

    Args:
        fn: Zero-argument callable to invoke
        policy: Backoff policy
        retry_on: Predicate deciding whether an exception is retryable
        on_retry: Optional hook called with (attempt, error, delay) before
            each sleep

    Returns:
        The value returned by ``fn``

    Raises:
        The last exception raised by ``fn`` when it is not retryable or
        attempts are exhausted.
    """
    attempt = 1
    while True:
        try:
            return fn()
        except Exception as exc:
            if attempt >= policy.max_attempts or not retry_on(exc):
                raise
            delay = policy.delay_for(attempt)
            logger.debug(
                "Attempt %d/%d failed (%s), retrying in %.2fs",
                attempt,
                policy.max_attempts,
                exc,
                delay,
            )
            if on_retry is not None:
                on_retry(attempt, exc, delay)
            sleep(delay)
            attempt += 1


def poll_until(
    check: Callable[[], T | None],
    schedule: PollSchedule,
) -> T | None:
    """Poll ``check`` until it returns a non-None value or the timeout passes.

    ``check`` may raise to abort polling; the exception propagates unchanged.

    Returns:
        The first non-None value from ``check``, or None on timeout.
    """
    deadline = monotonic() + schedule.timeout
    attempt = 1
    while True:
        value = check()
        if value is not None:
            return value
        remaining = deadline - monotonic()
        if remaining <= 0:
            return None
        sleep(min(schedule.interval_for(attempt), remaining))
        attempt += 1
