"""Worker module - Durable job queue worker and job execution."""

from cloudmover.worker.executor import JobContext, JobExecutor, JobOutcome
from cloudmover.worker.queue_worker import QueueWorker, WorkerState, WorkerStats
from cloudmover.worker.retry import backoff_delay, should_fail

__all__ = [
    # Execution
    "JobContext",
    "JobExecutor",
    "JobOutcome",
    # Worker
    "QueueWorker",
    "WorkerState",
    "WorkerStats",
    # Retry
    "backoff_delay",
    "should_fail",
]
