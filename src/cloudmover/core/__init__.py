"""Core module - Shared config, errors, events and types."""

from cloudmover.core.config import (
    AppConfig,
    BackoffPolicy,
    SchedulerConfig,
    SyncConfig,
    WorkerConfig,
)
from cloudmover.core.errors import (
    AuthorizationError,
    CloudMoverError,
    ErrorCategory,
    InvalidInputError,
    InvalidStateError,
    JobCancelledError,
    JobNotFoundError,
    NotFoundError,
    ProviderError,
    QuotaExceededError,
    RateLimitedError,
    TaskNotFoundError,
    TransferTimeoutError,
    TransientError,
    is_retryable,
)
from cloudmover.core.events import EventBus, EventChannel, EventName, JobEvent
from cloudmover.core.types import (
    ConflictResolution,
    DuplicateAction,
    Frequency,
    ItemType,
    JobStatus,
    RunStatus,
    SyncMode,
    SyncStatus,
    TaskStatus,
)

__all__ = [
    # Config
    "AppConfig",
    "BackoffPolicy",
    "SchedulerConfig",
    "SyncConfig",
    "WorkerConfig",
    # Errors
    "AuthorizationError",
    "CloudMoverError",
    "ErrorCategory",
    "InvalidInputError",
    "InvalidStateError",
    "JobCancelledError",
    "JobNotFoundError",
    "NotFoundError",
    "ProviderError",
    "QuotaExceededError",
    "RateLimitedError",
    "TaskNotFoundError",
    "TransferTimeoutError",
    "TransientError",
    "is_retryable",
    # Events
    "EventBus",
    "EventChannel",
    "EventName",
    "JobEvent",
    # Types
    "ConflictResolution",
    "DuplicateAction",
    "Frequency",
    "ItemType",
    "JobStatus",
    "RunStatus",
    "SyncMode",
    "SyncStatus",
    "TaskStatus",
]
