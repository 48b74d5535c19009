"""Scheduler for recurring copy and sync tasks.

This module provides:
- TaskScheduler: Dispatches due scheduled tasks and tracks their runs
- MonitoredRun: A copy run waiting for its job to finish

Copy tasks are turned into a queued Job and monitored until the job reaches
a terminal state. Sync tasks run the sync engine directly on the scheduler
thread. The next run time is always advanced before anything is executed, so
a slow or failing run is never picked up twice.

Only one scheduler instance should run against a database at a time.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from cloudmover.core.config import SchedulerConfig
from cloudmover.core.errors import InvalidInputError, InvalidStateError, TaskNotFoundError
from cloudmover.core.types import JobStatus, RunStatus, SyncMode, TaskStatus
from cloudmover.scheduler.recurrence import Recurrence, compute_next_run
from cloudmover.store.models import utcnow

if TYPE_CHECKING:
    from cloudmover.store.database import JobStore
    from cloudmover.store.models import ScheduledTask, TaskRun
    from cloudmover.sync.engine import SyncEngine

logger = logging.getLogger(__name__)

MONITOR_TIMEOUT_MESSAGE = "Monitoring timed out"
_POLL_JOB_ID = "scheduled_tasks_poll"

# Job fields copied from a task when a copy run is dispatched
_JOB_FIELDS = (
    "source_file_id",
    "source_path",
    "source_url",
    "source_name",
    "item_type",
    "dest_folder_id",
    "duplicate_action",
)


@dataclass
class MonitoredRun:
    """A dispatched copy run and the job it waits on."""

    task_id: str
    run_id: str
    job_id: str
    started_at: datetime
    deadline: datetime

    @property
    def apscheduler_id(self) -> str:
        return f"monitor-{self.run_id}"


def _seconds_since(start: datetime, end: datetime) -> float:
    return round((end - start).total_seconds(), 3)


class TaskScheduler:
    """Runs scheduled tasks when they are due.

    Usage:
        scheduler = TaskScheduler(store, engine)
        scheduler.start()
        ...
        scheduler.stop()

    ``poll_once`` and ``check_monitored_runs`` drive one cycle synchronously.
    """

    def __init__(
        self,
        store: JobStore,
        engine: SyncEngine,
        config: SchedulerConfig | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            store: Store holding tasks, runs and jobs.
            engine: Sync engine for cumulative and mirror tasks.
            config: Scheduler settings.
        """
        self._store = store
        self._engine = engine
        self._config = config or SchedulerConfig()
        self._scheduler: BackgroundScheduler | None = None
        self._lock = threading.Lock()
        self._monitors: dict[str, MonitoredRun] = {}

    @property
    def is_running(self) -> bool:
        """Check if the background scheduler is running."""
        return self._scheduler is not None

    @property
    def monitored_runs(self) -> list[MonitoredRun]:
        """Get the copy runs still waiting on their job."""
        with self._lock:
            return list(self._monitors.values())

    # === Lifecycle ===

    def start(self) -> None:
        """Start polling for due tasks in the background."""
        if self._scheduler is not None:
            return

        self._scheduler = BackgroundScheduler()
        self._scheduler.add_job(
            self._poll_job,
            trigger=IntervalTrigger(seconds=self._config.poll_interval),
            id=_POLL_JOB_ID,
            name="Scheduled task poll",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.now(),
        )
        self.recover_monitored_runs()
        for monitor in self.monitored_runs:
            self._add_monitor_job(monitor)
        self._scheduler.start()
        logger.info(
            "Task scheduler %s started (poll every %.0fs)",
            self._config.scheduler_id,
            self._config.poll_interval,
        )

    def stop(self) -> None:
        """Stop the background scheduler. Dispatched jobs keep running."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Task scheduler %s stopped", self._config.scheduler_id)

    def _poll_job(self) -> None:
        try:
            self.poll_once()
        except Exception:
            logger.exception("Error processing scheduled tasks")

    # === Dispatch ===

    def poll_once(self, now: datetime | None = None) -> int:
        """Dispatch every due task.

        Returns:
            Number of tasks dispatched.
        """
        tasks = self._store.get_due_tasks(now)
        if not tasks:
            return 0
        logger.info("Found %d scheduled tasks due for execution", len(tasks))
        for task in tasks:
            self.dispatch(task, now)
        return len(tasks)

    def dispatch(self, task: ScheduledTask, now: datetime | None = None) -> TaskRun | None:
        """Run a task once.

        Opens a run record, advances the schedule and counts the run before
        executing. A failure at any point marks the run and the task failed.

        Returns:
            The run record, or None if it could not be created.
        """
        started = now or utcnow()
        logger.info("Executing scheduled task %s (%s, %s)", task.name, task.id, task.sync_mode)
        run: TaskRun | None = None
        counted = False
        try:
            run = self._store.create_task_run(task.id, started)
            next_run_at = compute_next_run(task, started)
            self._store.record_task_dispatch(task.id, started, next_run_at)
            counted = True

            if SyncMode(task.sync_mode) is SyncMode.COPY:
                self._start_copy(task, run, started)
            else:
                self._run_sync(task, run, started)
        except Exception as e:
            logger.exception("Failed to execute scheduled task %s", task.id)
            self._record_dispatch_failure(task, run, started, counted, str(e) or type(e).__name__)
        return self._store.get_task_run(run.id) if run else None

    def _record_dispatch_failure(
        self,
        task: ScheduledTask,
        run: TaskRun | None,
        started: datetime,
        counted: bool,
        message: str,
    ) -> None:
        try:
            next_run_at: datetime | None = compute_next_run(task, started)
        except InvalidInputError as e:
            logger.error("Cannot compute next run of task %s: %s", task.id, e)
            next_run_at = None

        if run is not None:
            completed_at = utcnow()
            self._store.update_task_run(
                run.id,
                status=RunStatus.FAILED.value,
                completed_at=completed_at,
                duration=_seconds_since(started, completed_at),
                error_message=message,
            )
        if not counted:
            self._store.record_task_dispatch(task.id, started, next_run_at)
        self._store.record_task_outcome(task.id, success=False, error_message=message, next_run_at=next_run_at)

    def _start_copy(self, task: ScheduledTask, run: TaskRun, started: datetime) -> None:
        fields: dict[str, Any] = {name: getattr(task, name) for name in _JOB_FIELDS}
        if not fields["source_name"]:
            is_transfer = task.source_provider != task.dest_provider
            fields["source_name"] = "Scheduled Transfer" if is_transfer else "Scheduled Copy"
        job = self._store.create_job(task.user_id, task.source_provider, task.dest_provider, **fields)
        self._store.update_task_run(run.id, job_id=job.id)

        monitor = MonitoredRun(
            task_id=task.id,
            run_id=run.id,
            job_id=job.id,
            started_at=started,
            deadline=started + timedelta(seconds=self._config.monitor_max_wait),
        )
        with self._lock:
            self._monitors[run.id] = monitor
        self._add_monitor_job(monitor)
        logger.info("Created copy job %s for scheduled task %s", job.id, task.id)

    def _run_sync(self, task: ScheduledTask, run: TaskRun, started: datetime) -> None:
        result = self._engine.run_task(task)
        completed_at = utcnow()
        error = "; ".join(result.errors) or None
        processed = (
            result.files_copied if SyncMode(task.sync_mode) is SyncMode.CUMULATIVE_SYNC else result.files_processed
        )
        self._store.update_task_run(
            run.id,
            status=RunStatus.COMPLETED.value if result.success else RunStatus.FAILED.value,
            completed_at=completed_at,
            duration=_seconds_since(started, completed_at),
            files_processed=processed,
            files_failed=result.files_failed,
            bytes_transferred=result.bytes_transferred,
            error_message=error,
        )
        self._store.record_task_outcome(task.id, success=result.success, error_message=error)

    # === Copy run monitoring ===

    def _add_monitor_job(self, monitor: MonitoredRun) -> None:
        if self._scheduler is None:
            return
        self._scheduler.add_job(
            self.check_monitored_run,
            trigger=IntervalTrigger(seconds=self._config.monitor_interval),
            args=[monitor.run_id],
            id=monitor.apscheduler_id,
            name=f"Monitor run {monitor.run_id}",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

    def recover_monitored_runs(self) -> int:
        """Resume monitoring of copy runs left running by a previous process.

        Returns:
            Number of runs picked up.
        """
        recovered = 0
        for run in self._store.list_running_copy_runs():
            with self._lock:
                if run.id in self._monitors:
                    continue
                self._monitors[run.id] = MonitoredRun(
                    task_id=run.task_id,
                    run_id=run.id,
                    job_id=run.job_id,
                    started_at=run.started_at,
                    deadline=run.started_at + timedelta(seconds=self._config.monitor_max_wait),
                )
            recovered += 1
        if recovered:
            logger.info("Resumed monitoring of %d copy runs", recovered)
        return recovered

    def check_monitored_runs(self, now: datetime | None = None) -> int:
        """Check every monitored run once.

        Returns:
            Number of runs that finished.
        """
        return sum(1 for monitor in self.monitored_runs if self.check_monitored_run(monitor.run_id, now))

    def check_monitored_run(self, run_id: str, now: datetime | None = None) -> bool:
        """Reconcile a copy run with the state of its job.

        Returns:
            True if the run is finished and no longer monitored.
        """
        with self._lock:
            monitor = self._monitors.get(run_id)
        if monitor is None:
            return True
        now = now or utcnow()

        try:
            job = self._store.get_job(monitor.job_id)
            if job is None:
                logger.error("Job %s of run %s not found", monitor.job_id, run_id)
                self._finish_run(monitor, now, success=False, error="Copy job not found")
                return True

            if job.status == JobStatus.COMPLETED.value:
                self._finish_run(monitor, now, success=True, files_processed=job.completed_files or 1)
                logger.info("Scheduled task %s completed", monitor.task_id)
                return True

            if job.status == JobStatus.FAILED.value:
                error = job.error_message or "Copy operation failed"
                self._finish_run(monitor, now, success=False, error=error)
                logger.warning("Scheduled task %s failed: %s", monitor.task_id, error)
                return True

            if now >= monitor.deadline:
                self._finish_run(monitor, now, success=False, error=MONITOR_TIMEOUT_MESSAGE)
                logger.warning(
                    "Scheduled task %s monitoring timed out after %.0fs",
                    monitor.task_id,
                    self._config.monitor_max_wait,
                )
                return True
        except Exception:
            logger.exception("Error monitoring task %s", monitor.task_id)
        return False

    def _finish_run(
        self,
        monitor: MonitoredRun,
        now: datetime,
        success: bool,
        error: str | None = None,
        files_processed: int = 0,
    ) -> None:
        fields: dict[str, Any] = {
            "status": RunStatus.COMPLETED.value if success else RunStatus.FAILED.value,
            "completed_at": now,
            "duration": _seconds_since(monitor.started_at, now),
            "error_message": error,
        }
        if success:
            fields["files_processed"] = files_processed
        self._store.update_task_run(monitor.run_id, **fields)
        self._store.record_task_outcome(monitor.task_id, success=success, error_message=error)

        with self._lock:
            self._monitors.pop(monitor.run_id, None)
        if self._scheduler is not None and self._scheduler.get_job(monitor.apscheduler_id):
            self._scheduler.remove_job(monitor.apscheduler_id)

    # === Task lifecycle ===

    def create_task(
        self,
        user_id: str,
        name: str,
        source_provider: str,
        dest_provider: str,
        frequency: str,
        now: datetime | None = None,
        **fields: Any,
    ) -> ScheduledTask:
        """Create an active task and compute its first run.

        Raises:
            InvalidInputError: If the schedule is invalid.
        """
        values = {"frequency": frequency, **fields}
        recurrence = Recurrence(
            frequency=frequency,
            hour=values.get("hour", 8),
            minute=values.get("minute", 0),
            day_of_week=values.get("day_of_week"),
            day_of_month=values.get("day_of_month"),
            selected_days=tuple(values.get("selected_days") or ()),
            timezone=values.get("timezone", "UTC"),
        )
        task = self._store.upsert_scheduled_task(
            user_id=user_id,
            name=name,
            source_provider=source_provider,
            dest_provider=dest_provider,
            status=TaskStatus.ACTIVE.value,
            next_run_at=compute_next_run(recurrence, now),
            **values,
        )
        logger.info("Created scheduled task %s (%s), next run at %s", task.id, name, task.next_run_at)
        return task

    def _require_task(self, task_id: str) -> ScheduledTask:
        task = self._store.get_task(task_id)
        if task is None or task.status == TaskStatus.DELETED.value:
            raise TaskNotFoundError(f"Task {task_id} not found")
        return task

    def pause_task(self, task_id: str) -> ScheduledTask:
        """Stop dispatching a task until it is resumed."""
        self._require_task(task_id)
        return self._store.upsert_scheduled_task(task_id, status=TaskStatus.PAUSED.value)

    def resume_task(self, task_id: str, now: datetime | None = None) -> ScheduledTask:
        """Reactivate a paused task from its next slot."""
        task = self._require_task(task_id)
        return self._store.upsert_scheduled_task(
            task_id,
            status=TaskStatus.ACTIVE.value,
            next_run_at=compute_next_run(task, now),
        )

    def delete_task(self, task_id: str) -> ScheduledTask:
        """Soft-delete a task. Its runs and registry rows are kept."""
        self._require_task(task_id)
        return self._store.upsert_scheduled_task(task_id, status=TaskStatus.DELETED.value, next_run_at=None)

    def run_task_now(self, task_id: str, now: datetime | None = None) -> TaskRun | None:
        """Dispatch a task immediately, outside of its schedule.

        Raises:
            TaskNotFoundError: If the task does not exist.
            InvalidStateError: If the task is already running.
        """
        task = self._require_task(task_id)
        if task.last_run_status == RunStatus.RUNNING.value:
            raise InvalidStateError(f"Task {task_id} is already running")
        return self.dispatch(task, now)
