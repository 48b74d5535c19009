"""Configuration classes for cloudmover.

This module defines the configuration used by the worker, the scheduler and
the sync engine. Every class can be built from defaults or from
CLOUDMOVER_* environment variables.
"""

from __future__ import annotations

import os
import random
import time
from dataclasses import dataclass, field
from typing import Any

DEFAULT_DATABASE_URL = "sqlite:///cloudmover.db"
DEFAULT_PLAN_LIMITS = {"free": 1, "pro": 3}


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    return float(value) if value else default


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value else default


def generate_instance_id(prefix: str) -> str:
    """Build a process-unique identifier such as ``worker-1700000000000-k3x9a2``.

    Args:
        prefix: Role of the instance ("worker", "scheduler").

    Returns:
        Identifier used as lock owner and in logs.
    """
    alphabet = "abcdefghijklmnopqrstuvwxyz0123456789"
    suffix = "".join(random.choices(alphabet, k=6))
    return f"{prefix}-{int(time.time() * 1000)}-{suffix}"


@dataclass
class BackoffPolicy:
    """Retry delay policy for failed jobs.

    Attributes:
        base: Delay in seconds for the first retry.
        cap: Upper bound in seconds before jitter.
        jitter: Maximum extra fraction of the delay added at random.
    """

    base: float = 1.0
    cap: float = 60.0
    jitter: float = 0.2

    def __post_init__(self) -> None:
        """Validate bounds."""
        if self.base <= 0 or self.cap < self.base:
            raise ValueError("backoff requires 0 < base <= cap")
        if not 0 <= self.jitter <= 1:
            raise ValueError("backoff jitter must be within [0, 1]")


@dataclass
class WorkerConfig:
    """Configuration for a QueueWorker.

    Attributes:
        worker_id: Lock owner identifier. Generated when empty.
        global_concurrency: Maximum jobs executing at once in this process.
        poll_interval: Base delay between claim attempts in seconds.
        max_poll_interval: Ceiling for the adaptive poll delay.
        poll_backoff_multiplier: Growth factor applied after an empty poll.
        claim_batch_cap: Maximum jobs claimed per poll.
        job_timeout: Default wall-clock budget per job in seconds.
        stale_lock_threshold: Age after which an in-progress lock is reclaimed.
        heartbeat_interval: Delay between maintenance runs in seconds.
        terminal_retention: Age after which finished jobs are purged.
        provider_pool_size: Maximum cached provider clients.
        user_concurrency_delay: Requeue delay when a user is at their limit.
        plan_limits: Concurrent jobs allowed per user, by plan.
        backoff: Retry delay policy.
    """

    worker_id: str = ""
    global_concurrency: int = 5
    poll_interval: float = 2.0
    max_poll_interval: float = 30.0
    poll_backoff_multiplier: float = 1.5
    claim_batch_cap: int = 3
    job_timeout: float = 600.0
    stale_lock_threshold: float = 300.0
    heartbeat_interval: float = 30.0
    terminal_retention: float = 86400.0
    provider_pool_size: int = 10
    user_concurrency_delay: float = 5.0
    plan_limits: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_PLAN_LIMITS))
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)

    def __post_init__(self) -> None:
        """Fill in the worker id and validate limits."""
        if not self.worker_id:
            self.worker_id = generate_instance_id("worker")
        if self.global_concurrency < 1:
            raise ValueError("global_concurrency must be at least 1")
        if self.max_poll_interval < self.poll_interval:
            self.max_poll_interval = self.poll_interval

    def limit_for_plan(self, plan: str | None) -> int:
        """Get the concurrent job ceiling for a plan, defaulting to free."""
        if plan and plan in self.plan_limits:
            return self.plan_limits[plan]
        return self.plan_limits.get("free", 1)

    @classmethod
    def from_env(cls, **overrides: Any) -> WorkerConfig:
        """Build a config from CLOUDMOVER_WORKER_* environment variables."""
        values: dict[str, Any] = {
            "worker_id": os.environ.get("CLOUDMOVER_WORKER_ID", ""),
            "global_concurrency": _env_int("CLOUDMOVER_WORKER_CONCURRENCY", 5),
            "poll_interval": _env_float("CLOUDMOVER_WORKER_POLL_INTERVAL", 2.0),
            "max_poll_interval": _env_float("CLOUDMOVER_WORKER_MAX_POLL_INTERVAL", 30.0),
            "job_timeout": _env_float("CLOUDMOVER_JOB_TIMEOUT", 600.0),
            "stale_lock_threshold": _env_float("CLOUDMOVER_STALE_LOCK_THRESHOLD", 300.0),
            "heartbeat_interval": _env_float("CLOUDMOVER_HEARTBEAT_INTERVAL", 30.0),
        }
        values.update(overrides)
        return cls(**values)


@dataclass
class SchedulerConfig:
    """Configuration for the task scheduler.

    Attributes:
        scheduler_id: Identifier used in logs.
        poll_interval: Delay between due-task scans in seconds.
        monitor_interval: Delay between checks of a dispatched copy job.
        monitor_max_wait: Time after which a monitored run is failed.
    """

    scheduler_id: str = ""
    poll_interval: float = 60.0
    monitor_interval: float = 5.0
    monitor_max_wait: float = 1800.0

    def __post_init__(self) -> None:
        """Fill in the scheduler id."""
        if not self.scheduler_id:
            self.scheduler_id = generate_instance_id("scheduler")

    @classmethod
    def from_env(cls, **overrides: Any) -> SchedulerConfig:
        """Build a config from CLOUDMOVER_SCHEDULER_* environment variables."""
        values: dict[str, Any] = {
            "poll_interval": _env_float("CLOUDMOVER_SCHEDULER_POLL_INTERVAL", 60.0),
            "monitor_interval": _env_float("CLOUDMOVER_SCHEDULER_MONITOR_INTERVAL", 5.0),
            "monitor_max_wait": _env_float("CLOUDMOVER_SCHEDULER_MONITOR_MAX_WAIT", 1800.0),
        }
        values.update(overrides)
        return cls(**values)


@dataclass
class SyncConfig:
    """Configuration for the sync engine.

    Attributes:
        conflict_threshold: Modified-time difference in seconds under which two
            versions of a file are considered the same edit.
    """

    conflict_threshold: float = 60.0

    @classmethod
    def from_env(cls) -> SyncConfig:
        """Build a config from CLOUDMOVER_SYNC_* environment variables."""
        return cls(conflict_threshold=_env_float("CLOUDMOVER_SYNC_CONFLICT_THRESHOLD", 60.0))


@dataclass
class AppConfig:
    """Top-level configuration assembled by the CLI."""

    database_url: str = DEFAULT_DATABASE_URL
    log_file: str | None = None
    log_level: str = "INFO"
    worker: WorkerConfig = field(default_factory=WorkerConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)

    @classmethod
    def from_env(cls) -> AppConfig:
        """Build the full configuration from the environment."""
        return cls(
            database_url=os.environ.get("CLOUDMOVER_DATABASE_URL", DEFAULT_DATABASE_URL),
            log_file=os.environ.get("CLOUDMOVER_LOG_FILE") or None,
            log_level=os.environ.get("CLOUDMOVER_LOG_LEVEL", "INFO"),
            worker=WorkerConfig.from_env(),
            scheduler=SchedulerConfig.from_env(),
            sync=SyncConfig.from_env(),
        )
