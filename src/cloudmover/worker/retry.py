"""Retry decisions for failed jobs.

This module provides:
- backoff_delay: Exponential backoff with jitter for a given attempt count
- should_fail: Whether a failure is terminal for a job
"""

from __future__ import annotations

import random
from collections.abc import Callable

from cloudmover.core.config import BackoffPolicy
from cloudmover.core.errors import is_retryable


def backoff_delay(
    attempts: int,
    policy: BackoffPolicy | None = None,
    rand: Callable[[], float] = random.random,
) -> float:
    """Compute the delay before the next attempt.

    The delay doubles with every attempt, starting at ``policy.base`` and
    capped at ``policy.cap``. Up to ``policy.jitter`` of the delay is added
    at random on top.

    Args:
        attempts: Number of failed attempts so far (1 for the first retry).
        policy: Delay policy (default: 1s base, 60s cap, 20% jitter).
        rand: Source of uniform numbers in [0, 1), for tests.

    Returns:
        Delay in seconds.
    """
    policy = policy or BackoffPolicy()
    exponent = min(max(attempts - 1, 0), 64)
    computed = min(policy.base * 2.0**exponent, policy.cap)
    return computed + rand() * policy.jitter * computed


def should_fail(attempts: int, max_retries: int, error: BaseException) -> bool:
    """Check if a failure ends the job.

    Args:
        attempts: Failed attempts including this one.
        max_retries: Attempt budget of the job.
        error: What went wrong.
    """
    return attempts >= max_retries or not is_retryable(error)
