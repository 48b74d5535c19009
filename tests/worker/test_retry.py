"""Tests for retry decisions."""

from __future__ import annotations

import pytest

from cloudmover.core.config import BackoffPolicy
from cloudmover.core.errors import AuthorizationError, JobCancelledError, NotFoundError, TransientError
from cloudmover.worker.retry import backoff_delay, should_fail


class TestBackoffDelay:
    """Tests for backoff_delay."""

    @pytest.mark.parametrize(("attempts", "expected"), [(1, 1.0), (2, 2.0), (3, 4.0), (6, 32.0), (7, 60.0)])
    def test_doubles_up_to_cap(self, attempts: int, expected: float) -> None:
        """Without jitter the delay doubles per attempt and stops at the cap."""
        assert backoff_delay(attempts, rand=lambda: 0.0) == expected

    def test_jitter_bounds(self) -> None:
        """Jitter should add at most the configured fraction."""
        policy = BackoffPolicy(base=10.0, cap=100.0, jitter=0.5)
        assert backoff_delay(1, policy, rand=lambda: 0.0) == 10.0
        assert backoff_delay(1, policy, rand=lambda: 0.999) < 15.0
        for attempts in range(1, 20):
            delay = backoff_delay(attempts, policy)
            assert 10.0 <= delay <= 150.0

    def test_monotonic_without_jitter(self) -> None:
        """The delay should never shrink as attempts grow."""
        delays = [backoff_delay(n, rand=lambda: 0.0) for n in range(1, 200)]
        assert delays == sorted(delays)
        assert delays[-1] == 60.0

    def test_zero_attempts(self) -> None:
        """Zero attempts should use the base delay."""
        assert backoff_delay(0, rand=lambda: 0.0) == 1.0


class TestShouldFail:
    """Tests for should_fail."""

    def test_retryable_within_budget(self) -> None:
        """Transient errors should be retried while attempts remain."""
        assert not should_fail(1, 3, TransientError("reset"))
        assert not should_fail(2, 3, TransientError("reset"))

    def test_budget_exhausted(self) -> None:
        """Reaching max_retries should fail the job."""
        assert should_fail(3, 3, TransientError("reset"))
        assert should_fail(1, 1, TransientError("reset"))

    def test_permanent_errors_fail_at_once(self) -> None:
        """Non-retryable errors should fail on the first attempt."""
        assert should_fail(1, 5, NotFoundError("gone"))
        assert should_fail(1, 5, AuthorizationError("expired"))
        assert should_fail(1, 5, JobCancelledError())
