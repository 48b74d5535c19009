"""Durable job queue worker.

This module provides:
- QueueWorker: Claims pending jobs, runs them with bounded concurrency and
  records their outcome
- WorkerState: Lifecycle of a worker
- WorkerStats: Snapshot returned by QueueWorker.get_stats

Several workers (threads or processes) may share one database. Claims are
atomic, so a job is only ever run by the worker that claimed it. A worker
that dies leaves its jobs locked; the heartbeat of any other worker returns
them to pending once their lock is older than the stale threshold.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum, auto
from typing import TYPE_CHECKING

from cloudmover.core.config import WorkerConfig
from cloudmover.core.errors import JobCancelledError, TransferTimeoutError
from cloudmover.core.events import EventBus, EventName
from cloudmover.core.types import JobStatus
from cloudmover.store.database import CANCELLED_MESSAGE
from cloudmover.store.models import utcnow
from cloudmover.worker.executor import JobContext, JobExecutor, JobOutcome
from cloudmover.worker.retry import backoff_delay, should_fail

if TYPE_CHECKING:
    from collections.abc import Callable

    from cloudmover.providers.pool import ProviderPool
    from cloudmover.store.database import JobStore
    from cloudmover.store.models import Job
    from cloudmover.sync.duplicates import DuplicateDetector

logger = logging.getLogger(__name__)

USER_LIMIT_MESSAGE = "User concurrency limit reached"


class WorkerState(Enum):
    """State of the queue worker."""

    STOPPED = auto()
    RUNNING = auto()
    STOPPING = auto()


@dataclass
class WorkerStats:
    """Point-in-time view of a worker."""

    is_running: bool
    worker_id: str
    active_jobs: int
    active_job_ids: list[str]
    global_concurrency: int
    plan_limits: dict[str, int]
    poll_interval: float
    empty_polls: int
    provider_clients: int


class QueueWorker:
    """Runs copy jobs from the durable queue.

    Usage:
        worker = QueueWorker(store, pool, bus=bus)
        worker.start()
        ...
        worker.stop()

    ``poll_once`` and ``heartbeat_once`` drive one cycle synchronously. When
    the worker is not started, jobs claimed by ``poll_once`` run inline on
    the calling thread.
    """

    def __init__(
        self,
        store: JobStore,
        pool: ProviderPool,
        bus: EventBus | None = None,
        config: WorkerConfig | None = None,
        detector: DuplicateDetector | None = None,
        executor: JobExecutor | None = None,
        plan_lookup: Callable[[str], str | None] | None = None,
    ) -> None:
        """Initialize the worker.

        Args:
            store: Job store shared with other workers.
            pool: Provider clients per (provider, user).
            bus: Where job events are published.
            config: Worker settings.
            detector: Duplicate detector used by copies.
            executor: Runs a job. Built from ``pool`` and ``detector`` if None.
            plan_lookup: Returns a user's plan. The plan stored on the job is
                used if None or if it returns None.
        """
        self._store = store
        self._pool = pool
        self._bus = bus or EventBus()
        self._config = config or WorkerConfig()
        self._executor = executor or JobExecutor(pool, detector)
        self._plan_lookup = plan_lookup

        self._state = WorkerState.STOPPED
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._active: set[str] = set()
        self._futures: set[Future[JobStatus]] = set()
        self._jobs: ThreadPoolExecutor | None = None
        self._poll_thread: threading.Thread | None = None
        self._heartbeat_thread: threading.Thread | None = None

        self._poll_interval = self._config.poll_interval
        self._empty_polls = 0

    @property
    def worker_id(self) -> str:
        """Get the lock owner id of this worker."""
        return self._config.worker_id

    @property
    def state(self) -> WorkerState:
        """Get current worker state."""
        return self._state

    @property
    def is_running(self) -> bool:
        """Check if the worker is running."""
        return self._state == WorkerState.RUNNING

    @property
    def active_count(self) -> int:
        """Get number of jobs currently executing."""
        with self._lock:
            return len(self._active)

    @property
    def poll_interval(self) -> float:
        """Get the current (adaptive) poll interval in seconds."""
        return self._poll_interval

    @property
    def bus(self) -> EventBus:
        """Get the event bus jobs are reported on."""
        return self._bus

    # === Lifecycle ===

    def start(self) -> None:
        """Start polling and heartbeats on background threads."""
        with self._lock:
            if self._state != WorkerState.STOPPED:
                logger.warning("Worker %s already running", self.worker_id)
                return
            self._state = WorkerState.RUNNING
            self._stop_event.clear()
            self._jobs = ThreadPoolExecutor(
                max_workers=self._config.global_concurrency,
                thread_name_prefix="cloudmover-job",
            )

        self._poll_thread = threading.Thread(target=self._poll_loop, name="cloudmover-poll", daemon=True)
        self._heartbeat_thread = threading.Thread(
            target=self._heartbeat_loop, name="cloudmover-heartbeat", daemon=True
        )
        self._poll_thread.start()
        self._heartbeat_thread.start()
        logger.info(
            "Worker %s started (concurrency=%d, poll=%.1fs)",
            self.worker_id,
            self._config.global_concurrency,
            self._config.poll_interval,
        )

    def stop(self, wait: bool = True, timeout: float | None = None) -> None:
        """Stop claiming jobs and shut down.

        Args:
            wait: Wait for running jobs to finish. Jobs left running are
                reclaimed by another worker once their lock goes stale.
            timeout: Maximum seconds to wait for running jobs.
        """
        with self._lock:
            if self._state != WorkerState.RUNNING:
                return
            self._state = WorkerState.STOPPING
        logger.info("Stopping worker %s...", self.worker_id)
        self._stop_event.set()

        for thread in (self._poll_thread, self._heartbeat_thread):
            if thread is not None:
                thread.join(timeout=5.0)

        if wait:
            self.join_active(timeout)
        if self._jobs is not None:
            self._jobs.shutdown(wait=False, cancel_futures=True)
            self._jobs = None

        self._poll_thread = None
        self._heartbeat_thread = None
        self._state = WorkerState.STOPPED
        logger.info("Worker %s stopped", self.worker_id)

    def join_active(self, timeout: float | None = None) -> bool:
        """Wait until no job is executing.

        Returns:
            True if every job finished within the timeout.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._lock:
                futures = list(self._futures)
            if not futures:
                return True
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                return False
            try:
                futures[0].exception(timeout=remaining)
            except FutureTimeoutError:
                return False

    # === Polling ===

    def _poll_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.poll_once()
            except Exception:
                logger.exception("Poll cycle failed on worker %s", self.worker_id)
            self._stop_event.wait(self._poll_interval)

    def poll_once(self) -> int:
        """Claim due jobs and start the ones admitted for their user.

        Returns:
            Number of jobs started.
        """
        available = self._config.global_concurrency - self.active_count
        if available <= 0:
            return 0

        jobs = self._store.claim_pending(self.worker_id, min(available, self._config.claim_batch_cap))
        self._adapt_poll_interval(bool(jobs))
        if jobs:
            logger.debug("Worker %s claimed %d jobs", self.worker_id, len(jobs))

        # Claimed jobs are in_progress before they are admitted, so the ones
        # still waiting in this batch must not count against their user
        waiting = {job.id for job in jobs}
        started = 0
        for job in jobs:
            if self.active_count >= self._config.global_concurrency:
                waiting.discard(job.id)
                self._store.reschedule_with_backoff(
                    job.id, job.attempts, utcnow(), job.error_message, worker_id=self.worker_id
                )
                continue
            admitted = self._admit(job, waiting)
            waiting.discard(job.id)
            if admitted:
                self._launch(job)
                started += 1
        return started

    def _adapt_poll_interval(self, claimed: bool) -> None:
        if claimed:
            self._empty_polls = 0
            self._poll_interval = self._config.poll_interval
            return
        self._empty_polls += 1
        self._poll_interval = min(
            self._poll_interval * self._config.poll_backoff_multiplier,
            self._config.max_poll_interval,
        )

    def _admit(self, job: Job, waiting: set[str]) -> bool:
        """Apply the per-user concurrency ceiling to a claimed job.

        Args:
            job: Claimed job to admit or defer.
            waiting: Claimed jobs of the current batch not yet admitted.
        """
        plan = self._plan_lookup(job.user_id) if self._plan_lookup else None
        limit = self._config.limit_for_plan(plan or job.user_plan)
        running = self._store.count_running_for_user(job.user_id, exclude_job_ids=waiting | {job.id})
        if running < limit:
            return True

        logger.info(
            "User %s (%s) has reached concurrency limit (%d/%d), deferring job %s",
            job.user_id,
            plan or job.user_plan,
            running,
            limit,
            job.id,
        )
        next_run_at = utcnow() + timedelta(seconds=self._config.user_concurrency_delay)
        self._store.reschedule_with_backoff(
            job.id, job.attempts, next_run_at, USER_LIMIT_MESSAGE, worker_id=self.worker_id
        )
        return False

    def _launch(self, job: Job) -> None:
        with self._lock:
            self._active.add(job.id)
            jobs = self._jobs
        if jobs is None:
            self.process_job(job)
            return
        future = jobs.submit(self.process_job, job)
        with self._lock:
            self._futures.add(future)
        future.add_done_callback(self._forget_future)

    def _forget_future(self, future: Future[JobStatus]) -> None:
        with self._lock:
            self._futures.discard(future)

    # === Execution ===

    def process_job(self, job: Job) -> JobStatus:
        """Run a claimed job and record its outcome.

        Returns:
            Status the job ended in (pending when it will be retried).
        """
        started = time.monotonic()
        with self._lock:
            self._active.add(job.id)
        logger.info(
            "Processing job %s: %s (%s -> %s)",
            job.id,
            job.source_name or job.source_file_id or job.source_url,
            job.source_provider,
            job.dest_provider,
        )
        try:
            if self._store.is_cancel_requested(job.id):
                raise JobCancelledError(CANCELLED_MESSAGE)
            outcome = self._run_with_timeout(job)
            duration = round(time.monotonic() - started, 3)
            if not self._store.mark_completed(
                job.id,
                copied_file_id=outcome.copied_file_id,
                copied_file_name=outcome.copied_file_name,
                copied_file_url=outcome.copied_file_url,
                duration=duration,
                error_message=outcome.summary,
                worker_id=self.worker_id,
            ):
                return self._lost_lock(job)
            logger.info("Job %s completed in %.1fs", job.id, duration)
            self._bus.emit(EventName.COMPLETED, job.id, job.user_id, result=outcome.to_result())
            return JobStatus.COMPLETED
        except JobCancelledError:
            duration = round(time.monotonic() - started, 3)
            if not self._store.mark_failed(job.id, CANCELLED_MESSAGE, duration=duration, worker_id=self.worker_id):
                return self._lost_lock(job)
            logger.info("Job %s cancelled", job.id)
            self._bus.emit(EventName.CANCELLED, job.id, job.user_id)
            return JobStatus.FAILED
        except Exception as e:
            return self._handle_failure(job, e, round(time.monotonic() - started, 3))
        finally:
            with self._lock:
                self._active.discard(job.id)

    def _run_with_timeout(self, job: Job) -> JobOutcome:
        """Execute a job, abandoning it once its timeout expires.

        The execution keeps running on its own thread after a timeout, but
        it stops reporting progress and stops at its next checkpoint.
        """
        timeout = job.timeout_seconds or self._config.job_timeout
        abandoned = threading.Event()

        def cancel_check() -> bool:
            return abandoned.is_set() or self._store.is_cancel_requested(job.id)

        def on_progress(completed: int, total: int, pct: int) -> None:
            if abandoned.is_set():
                return
            if not self._store.update_progress(job.id, completed, total, pct, worker_id=self.worker_id):
                return
            self._bus.emit(EventName.PROGRESS, job.id, job.user_id, completed=completed, total=total, pct=pct)

        ctx = JobContext(job=job, cancel_check=cancel_check, on_progress=on_progress)
        runner = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"cloudmover-run-{job.id[:8]}")
        try:
            future = runner.submit(self._executor.execute, ctx)
            try:
                return future.result(timeout=timeout)
            except FutureTimeoutError:
                abandoned.set()
                raise TransferTimeoutError(f"Job timed out after {timeout:g}s") from None
        finally:
            runner.shutdown(wait=False)

    def _handle_failure(self, job: Job, error: Exception, duration: float) -> JobStatus:
        attempts = job.attempts + 1
        message = str(error) or type(error).__name__

        if should_fail(attempts, job.max_retries, error):
            if not self._store.mark_failed(
                job.id, message, attempts=attempts, duration=duration, worker_id=self.worker_id
            ):
                return self._lost_lock(job)
            logger.error("Job %s failed after %d attempts: %s", job.id, attempts, message)
            self._bus.emit(
                EventName.FAILED,
                job.id,
                job.user_id,
                error=message,
                reconnect_required=getattr(error, "reconnect_required", False),
            )
            return JobStatus.FAILED

        delay = backoff_delay(attempts, self._config.backoff)
        next_run_at = utcnow() + timedelta(seconds=delay)
        if not self._store.reschedule_with_backoff(
            job.id, attempts, next_run_at, message, worker_id=self.worker_id
        ):
            return self._lost_lock(job)
        logger.warning(
            "Job %s will retry in %.0fs (attempt %d/%d): %s",
            job.id,
            delay,
            attempts,
            job.max_retries,
            message,
        )
        self._bus.emit(EventName.RETRY, job.id, job.user_id, attempts=attempts, next_run_at=next_run_at)
        return JobStatus.PENDING

    def _lost_lock(self, job: Job) -> JobStatus:
        """Drop the outcome of a job this worker no longer holds."""
        current = self._store.get_job(job.id)
        logger.warning(
            "Job %s is no longer locked by %s (now %s by %s), discarding outcome",
            job.id,
            self.worker_id,
            current.status if current else "deleted",
            current.locked_by if current else None,
        )
        return JobStatus(current.status) if current else JobStatus.FAILED

    # === Heartbeat ===

    def _heartbeat_loop(self) -> None:
        while not self._stop_event.wait(self._config.heartbeat_interval):
            try:
                self.heartbeat_once()
            except Exception:
                logger.exception("Heartbeat failed on worker %s", self.worker_id)

    def heartbeat_once(self) -> dict[str, int]:
        """Renew own locks, reclaim stale jobs, purge old jobs, shrink the pool.

        Returns:
            Counts of what each step touched.
        """
        with self._lock:
            active = list(self._active)
        refreshed = self._store.refresh_locks(self.worker_id, active)
        reclaimed = self._store.reclaim_stale(self._config.stale_lock_threshold)
        purged = self._store.purge_terminal_jobs(self._config.terminal_retention)
        evicted = self._pool.shrink()
        if reclaimed or purged or evicted:
            logger.info(
                "Heartbeat: reclaimed %d stale jobs, purged %d old jobs, evicted %d clients",
                reclaimed,
                purged,
                evicted,
            )
        return {"refreshed": refreshed, "reclaimed": reclaimed, "purged": purged, "evicted": evicted}

    def get_stats(self) -> WorkerStats:
        """Get a snapshot of the worker."""
        with self._lock:
            active = sorted(self._active)
        return WorkerStats(
            is_running=self.is_running,
            worker_id=self.worker_id,
            active_jobs=len(active),
            active_job_ids=active,
            global_concurrency=self._config.global_concurrency,
            plan_limits=dict(self._config.plan_limits),
            poll_interval=self._poll_interval,
            empty_polls=self._empty_polls,
            provider_clients=len(self._pool),
        )
