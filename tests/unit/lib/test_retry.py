"""Tests for the retry combinator and polling helper."""

from __future__ import annotations

import pytest

from sitedeck.lib.retry import (
    NO_RETRY,
    PollSchedule,
    RetryPolicy,
    poll_until,
    with_retry,
)


class Flaky:
    """Callable failing a fixed number of times before succeeding."""

    def __init__(self, failures: int, exc: Exception | None = None) -> None:
        self.failures = failures
        self.exc = exc or ConnectionError("boom")
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc
        return "done"


class TestRetryPolicy:
    """Tests for backoff delay computation."""

    def test_delays_grow_geometrically(self) -> None:
        """Each retry waits multiplier times longer than the previous one."""
        policy = RetryPolicy(initial_delay=1.0, multiplier=2.0, jitter=0.0)
        assert [policy.delay_for(n) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]

    def test_delay_is_capped(self) -> None:
        """Delays never exceed max_delay before jitter."""
        policy = RetryPolicy(initial_delay=10.0, max_delay=15.0, jitter=0.0)
        assert policy.delay_for(5) == 15.0

    def test_jitter_stays_within_bounds(self) -> None:
        """Jitter adds at most the configured fraction."""
        policy = RetryPolicy(initial_delay=2.0, jitter=0.5)
        for _ in range(50):
            assert 2.0 <= policy.delay_for(1) <= 3.0


class TestWithRetry:
    """Tests for with_retry."""

    def test_returns_first_success(self, fake_clock) -> None:
        """A call that succeeds immediately is not retried."""
        fn = Flaky(0)
        assert with_retry(fn, retry_on=lambda e: True) == "done"
        assert fn.calls == 1
        assert fake_clock.sleeps == []

    def test_retries_retryable_errors(self, fake_clock) -> None:
        """Retryable failures are retried with a sleep between attempts."""
        fn = Flaky(2)
        policy = RetryPolicy(max_attempts=3, initial_delay=1.0, jitter=0.0)
        assert with_retry(fn, policy, retry_on=lambda e: True) == "done"
        assert fn.calls == 3
        assert fake_clock.sleeps == [1.0, 2.0]

    def test_gives_up_after_max_attempts(self) -> None:
        """The last error propagates once attempts are exhausted."""
        fn = Flaky(5)
        with pytest.raises(ConnectionError, match="boom"):
            with_retry(fn, RetryPolicy(max_attempts=3), retry_on=lambda e: True)
        assert fn.calls == 3

    def test_non_retryable_error_raises_immediately(self) -> None:
        """Errors rejected by retry_on are not retried."""
        fn = Flaky(1, ValueError("bad input"))
        with pytest.raises(ValueError):
            with_retry(fn, retry_on=lambda e: isinstance(e, ConnectionError))
        assert fn.calls == 1

    def test_no_retry_policy(self) -> None:
        """NO_RETRY makes a single attempt."""
        fn = Flaky(1)
        with pytest.raises(ConnectionError):
            with_retry(fn, NO_RETRY, retry_on=lambda e: True)
        assert fn.calls == 1

    def test_on_retry_hook_receives_attempt_and_delay(self) -> None:
        """The hook sees every retry before its sleep."""
        seen: list[tuple[int, float]] = []
        policy = RetryPolicy(max_attempts=3, initial_delay=0.5, jitter=0.0)
        with_retry(
            Flaky(2),
            policy,
            retry_on=lambda e: True,
            on_retry=lambda attempt, exc, delay: seen.append((attempt, delay)),
        )
        assert seen == [(1, 0.5), (2, 1.0)]


class TestPollUntil:
    """Tests for poll_until."""

    def test_returns_first_value(self) -> None:
        """Polling stops at the first non-None result."""
        results = iter([None, None, "ready"])
        value = poll_until(lambda: next(results), PollSchedule(timeout=60, interval=5))
        assert value == "ready"

    def test_times_out_with_none(self, fake_clock) -> None:
        """None is returned once the deadline passes."""
        calls = []

        def check() -> None:
            calls.append(fake_clock.now)
            return None

        assert poll_until(check, PollSchedule(timeout=30, interval=10)) is None
        assert fake_clock.now == pytest.approx(30)
        assert len(calls) == 4

    def test_interval_backs_off_to_max(self) -> None:
        """Intervals grow by the multiplier and stop at max_interval."""
        schedule = PollSchedule(timeout=600, interval=20, max_interval=60, multiplier=2)
        assert [schedule.interval_for(n) for n in (1, 2, 3, 4)] == [20, 40, 60, 60]

    def test_exceptions_abort_polling(self) -> None:
        """An exception from the check propagates unchanged."""

        def check() -> None:
            raise RuntimeError("failed")

        with pytest.raises(RuntimeError, match="failed"):
            poll_until(check, PollSchedule(timeout=60, interval=5))
