"""Scheduler module - Recurring task dispatch and next-run computation."""

from cloudmover.scheduler.recurrence import Recurrence, compute_next_run, describe_schedule
from cloudmover.scheduler.service import MONITOR_TIMEOUT_MESSAGE, MonitoredRun, TaskScheduler

__all__ = [
    # Recurrence
    "Recurrence",
    "compute_next_run",
    "describe_schedule",
    # Service
    "MONITOR_TIMEOUT_MESSAGE",
    "MonitoredRun",
    "TaskScheduler",
]
