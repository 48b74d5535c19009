"""Shared types for cloudmover.

This module defines the enums used by the store, the worker, the scheduler
and the sync engine. Values are the strings persisted in the database.
"""

from __future__ import annotations

from enum import Enum


class JobStatus(str, Enum):
    """Lifecycle state of a transfer job.

    pending -> in_progress -> completed | failed, with pending re-entered on
    retry. Cancellation ends in failed with a "cancelled" message.
    """

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Check if no worker will pick the job up again."""
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class ItemType(str, Enum):
    """Kind of resource a job or URL points at."""

    FILE = "file"
    FOLDER = "folder"


class ProviderName(str, Enum):
    """Supported remote storage providers."""

    GOOGLE = "google"
    DROPBOX = "dropbox"
    MEMORY = "memory"


class DuplicateAction(str, Enum):
    """What a writer does when the destination already holds the file."""

    SKIP = "skip"
    REPLACE = "replace"
    COPY_WITH_SUFFIX = "copy_with_suffix"


class SyncMode(str, Enum):
    """How a scheduled task moves files."""

    COPY = "copy"
    CUMULATIVE_SYNC = "cumulative_sync"
    MIRROR_SYNC = "mirror_sync"


class Frequency(str, Enum):
    """Recurrence of a scheduled task."""

    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CUSTOM = "custom"


class TaskStatus(str, Enum):
    """Status of a scheduled task definition."""

    ACTIVE = "active"
    PAUSED = "paused"
    DELETED = "deleted"


class RunStatus(str, Enum):
    """Status of a single scheduled task run."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncStatus(str, Enum):
    """State of a tracked file in the sync registry."""

    SYNCED = "synced"
    PENDING = "pending"
    FAILED = "failed"


class ConflictResolution(str, Enum):
    """How a mirror sync conflict was (or will be) resolved."""

    UNRESOLVED = "unresolved"
    KEEP_NEWER = "keep_newer"
    KEEP_SOURCE = "keep_source"
    KEEP_TARGET = "keep_target"


class Plan(str, Enum):
    """Membership plan, used for per-user concurrency ceilings."""

    FREE = "free"
    PRO = "pro"
