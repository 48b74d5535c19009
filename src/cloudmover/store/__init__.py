"""Store module - Durable jobs, scheduled tasks and sync state."""

from cloudmover.store.database import CANCELLED_MESSAGE, JobStore
from cloudmover.store.models import (
    Base,
    FileConflict,
    FileHash,
    Job,
    ScheduledTask,
    SyncFileRecord,
    TaskRun,
)

__all__ = [
    "Base",
    "CANCELLED_MESSAGE",
    "FileConflict",
    "FileHash",
    "Job",
    "JobStore",
    "ScheduledTask",
    "SyncFileRecord",
    "TaskRun",
]
