"""Tests for the queue worker."""

from __future__ import annotations

import time
from datetime import timedelta
from unittest.mock import Mock

import pytest

from cloudmover.core.config import WorkerConfig
from cloudmover.core.errors import AuthorizationError, NotFoundError, TransientError
from cloudmover.core.events import EventBus, EventName, JobEvent
from cloudmover.core.types import JobStatus
from cloudmover.providers.memory import InMemoryProvider
from cloudmover.providers.pool import ProviderPool
from cloudmover.store.database import CANCELLED_MESSAGE, JobStore
from cloudmover.store.models import Job, utcnow
from cloudmover.sync.duplicates import DuplicateDetector
from cloudmover.worker.executor import JobExecutor, JobOutcome
from cloudmover.worker.queue_worker import USER_LIMIT_MESSAGE, QueueWorker, WorkerState


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def events(bus: EventBus) -> list[JobEvent]:
    received: list[JobEvent] = []
    bus.subscribe(received.append)
    return received


def _worker(store: JobStore, pool: ProviderPool, bus: EventBus, **config) -> QueueWorker:
    config.setdefault("worker_id", "w1")
    return QueueWorker(store, pool, bus=bus, config=WorkerConfig(**config), detector=DuplicateDetector(store))


@pytest.fixture
def worker(store: JobStore, pool: ProviderPool, bus: EventBus) -> QueueWorker:
    return _worker(store, pool, bus)


def _file_job(store: JobStore, source: InMemoryProvider, user_id: str = "u1", **fields) -> Job:
    file = source.add_file(fields.pop("name", "a.txt"), b"hello")
    return store.create_job(user_id, "google", "dropbox", source_file_id=file.id, **fields)


def _run_due(worker: QueueWorker, store: JobStore) -> list[JobStatus]:
    """Claim jobs regardless of their backoff and run them inline."""
    jobs = store.claim_pending(worker.worker_id, 10, now=utcnow() + timedelta(hours=1))
    return [worker.process_job(job) for job in jobs]


def _names(events: list[JobEvent]) -> list[EventName]:
    return [e.name for e in events]


class TestProcessing:
    """Tests for running jobs to an outcome."""

    def test_completes_job(
        self, worker: QueueWorker, store: JobStore, source: InMemoryProvider, dest: InMemoryProvider,
        events: list[JobEvent],
    ) -> None:
        """A successful copy should complete the job and publish events."""
        job = _file_job(store, source)

        assert worker.poll_once() == 1

        done = store.get_job(job.id)
        assert done.status == JobStatus.COMPLETED.value
        assert done.attempts == 0
        assert done.locked_by is None
        assert dest.read(done.copied_file_id) == b"hello"
        assert _names(events) == [EventName.PROGRESS] * 3 + [EventName.COMPLETED]
        assert events[-1].payload["result"]["copiedFileName"] == "a.txt"
        assert worker.active_count == 0

    def test_transient_failures_then_success(
        self, worker: QueueWorker, store: JobStore, source: InMemoryProvider, events: list[JobEvent]
    ) -> None:
        """Each transient failure should add one attempt and reschedule."""
        job = _file_job(store, source, max_retries=3)
        source.fail_next("download", TransientError("connection reset"), times=2)

        before = utcnow()
        worker.poll_once()
        first = store.get_job(job.id)
        assert first.status == JobStatus.PENDING.value
        assert first.attempts == 1
        assert first.error_message == "connection reset"
        assert first.next_run_at >= before + timedelta(seconds=1)
        retry = next(e for e in events if e.name is EventName.RETRY)
        assert retry.payload["attempts"] == 1

        assert _run_due(worker, store) == [JobStatus.PENDING]
        assert store.get_job(job.id).attempts == 2

        assert _run_due(worker, store) == [JobStatus.COMPLETED]
        done = store.get_job(job.id)
        assert done.status == JobStatus.COMPLETED.value
        assert done.attempts == 2

    def test_retries_exhausted(
        self, worker: QueueWorker, store: JobStore, source: InMemoryProvider, events: list[JobEvent]
    ) -> None:
        """Reaching max_retries should fail the job."""
        job = _file_job(store, source, max_retries=2)
        source.fail_next("download", TransientError("connection reset"), times=5)

        worker.poll_once()
        assert _run_due(worker, store) == [JobStatus.FAILED]

        failed = store.get_job(job.id)
        assert failed.status == JobStatus.FAILED.value
        assert failed.attempts == 2
        assert failed.error_message == "connection reset"
        assert _names(events).count(EventName.RETRY) == 1
        assert events[-1].name is EventName.FAILED
        assert events[-1].payload["reconnect_required"] is False

    def test_permanent_failure(
        self, worker: QueueWorker, store: JobStore, source: InMemoryProvider, events: list[JobEvent]
    ) -> None:
        """Non-retryable errors should fail on the first attempt."""
        job = _file_job(store, source)
        source.fail_next("download", NotFoundError("file is gone"))

        worker.poll_once()

        failed = store.get_job(job.id)
        assert failed.status == JobStatus.FAILED.value
        assert failed.attempts == 1
        assert EventName.RETRY not in _names(events)

    def test_authorization_failure_asks_for_reconnect(
        self, worker: QueueWorker, store: JobStore, source: InMemoryProvider, events: list[JobEvent]
    ) -> None:
        """Authorization failures should flag a reconnect."""
        _file_job(store, source)
        source.fail_next("download", AuthorizationError("token expired"))

        worker.poll_once()

        failed = events[-1]
        assert failed.name is EventName.FAILED
        assert failed.payload["reconnect_required"] is True
        assert failed.to_wire()["reconnectRequired"] is True

    def test_timeout_is_retried(
        self, worker: QueueWorker, store: JobStore, source: InMemoryProvider, dest: InMemoryProvider
    ) -> None:
        """A job exceeding its timeout should fail the attempt and stop writing."""
        job = _file_job(store, source, timeout_seconds=0.2)
        source.latency["download"] = 1.0

        worker.poll_once()

        timed_out = store.get_job(job.id)
        assert timed_out.status == JobStatus.PENDING.value
        assert timed_out.attempts == 1
        assert "timed out" in timed_out.error_message
        time.sleep(1.2)
        assert dest.calls["upload"] == 0


class TestCancellation:
    """Tests for cooperative cancellation."""

    def test_cancel_before_claim(
        self, worker: QueueWorker, store: JobStore, source: InMemoryProvider, dest: InMemoryProvider,
        events: list[JobEvent],
    ) -> None:
        """A job cancelled while pending should fail without running."""
        job = _file_job(store, source)
        store.request_cancel(job.id)

        worker.poll_once()

        cancelled = store.get_job(job.id)
        assert cancelled.status == JobStatus.FAILED.value
        assert cancelled.error_message == CANCELLED_MESSAGE
        assert cancelled.attempts == 0
        assert _names(events) == [EventName.CANCELLED]
        assert source.calls["download"] == 0

    def test_cancel_while_running(
        self, worker: QueueWorker, store: JobStore, source: InMemoryProvider, dest: InMemoryProvider,
        bus: EventBus, events: list[JobEvent],
    ) -> None:
        """A cancel observed at a checkpoint should stop the job before writing."""
        job = _file_job(store, source)

        def cancel_on_progress(event: JobEvent) -> None:
            if event.name is EventName.PROGRESS and not store.is_cancel_requested(event.job_id):
                store.request_cancel(event.job_id)

        bus.subscribe(cancel_on_progress)

        worker.poll_once()

        cancelled = store.get_job(job.id)
        assert cancelled.status == JobStatus.FAILED.value
        assert cancelled.error_message == CANCELLED_MESSAGE
        assert dest.calls["upload"] == 0
        assert events[-1].name is EventName.CANCELLED


class TestExecutorOutcomes:
    """Tests for how executor results are recorded."""

    def test_unexpected_error_is_retried(self, store: JobStore, pool: ProviderPool, bus: EventBus) -> None:
        """Errors outside the provider taxonomy should be retried."""
        executor = Mock(spec=JobExecutor)
        executor.execute.side_effect = RuntimeError("disk on fire")
        worker = QueueWorker(store, pool, bus=bus, config=WorkerConfig(worker_id="w1"), executor=executor)
        job = store.create_job("u1", "google", "dropbox", source_file_id="f1")

        worker.poll_once()

        retried = store.get_job(job.id)
        assert retried.status == JobStatus.PENDING.value
        assert retried.error_message == "disk on fire"
        executor.execute.assert_called_once()

    def test_partial_folder_summary_is_kept(self, store: JobStore, pool: ProviderPool, bus: EventBus) -> None:
        """A completed job should keep the failure summary of its files."""
        executor = Mock(spec=JobExecutor)
        executor.execute.return_value = JobOutcome(
            copied_file_id="d1",
            copied_file_name="Photos",
            total_files=3,
            completed_files=2,
            errors=["Trip/c.jpg: reset"],
        )
        worker = QueueWorker(store, pool, bus=bus, config=WorkerConfig(worker_id="w1"), executor=executor)
        job = store.create_job("u1", "google", "dropbox", source_file_id="folder")

        worker.poll_once()

        done = store.get_job(job.id)
        assert done.status == JobStatus.COMPLETED.value
        assert done.copied_file_name == "Photos"
        assert done.error_message.startswith("1 of 3 files failed")


class TestAdmission:
    """Tests for per-user concurrency ceilings."""

    def test_user_at_limit_is_deferred(self, worker: QueueWorker, store: JobStore, source: InMemoryProvider) -> None:
        """A free user with a running job should wait."""
        running = _file_job(store, source, name="running.txt")
        store.claim_pending("other-worker", 1)
        waiting = _file_job(store, source, name="waiting.txt")

        before = utcnow()
        assert worker.poll_once() == 0

        deferred = store.get_job(waiting.id)
        assert deferred.status == JobStatus.PENDING.value
        assert deferred.attempts == 0
        assert deferred.error_message == USER_LIMIT_MESSAGE
        assert deferred.next_run_at >= before + timedelta(seconds=5)
        assert store.get_job(running.id).status == JobStatus.IN_PROGRESS.value

    def test_pro_plan_allows_more(self, worker: QueueWorker, store: JobStore, source: InMemoryProvider) -> None:
        """A pro user may run several jobs."""
        _file_job(store, source, name="running.txt", user_plan="pro")
        store.claim_pending("other-worker", 1)
        waiting = _file_job(store, source, name="waiting.txt", user_plan="pro")

        assert worker.poll_once() == 1
        assert store.get_job(waiting.id).status == JobStatus.COMPLETED.value

    def test_plan_lookup_overrides_job_plan(
        self, store: JobStore, pool: ProviderPool, bus: EventBus, source: InMemoryProvider
    ) -> None:
        """The plan lookup should win over the plan stored on the job."""
        worker = QueueWorker(
            store, pool, bus=bus, config=WorkerConfig(worker_id="w1"), plan_lookup=lambda user_id: "pro"
        )
        _file_job(store, source, name="running.txt")
        store.claim_pending("other-worker", 1)
        _file_job(store, source, name="waiting.txt")

        assert worker.poll_once() == 1

    def test_batch_of_one_user_is_not_self_blocking(
        self, worker: QueueWorker, store: JobStore, source: InMemoryProvider
    ) -> None:
        """Jobs claimed together should not count against each other."""
        first = _file_job(store, source, name="a.txt")
        second = _file_job(store, source, name="b.txt")

        assert worker.poll_once() == 2
        assert store.get_job(first.id).status == JobStatus.COMPLETED.value
        assert store.get_job(second.id).status == JobStatus.COMPLETED.value


class TestPolling:
    """Tests for adaptive polling."""

    def test_backs_off_when_idle(self, store: JobStore, pool: ProviderPool, bus: EventBus, source: InMemoryProvider) -> None:
        """Empty polls should stretch the interval up to the maximum."""
        worker = _worker(store, pool, bus, poll_interval=1.0, max_poll_interval=4.0, poll_backoff_multiplier=2.0)

        intervals = []
        for _ in range(3):
            worker.poll_once()
            intervals.append(worker.poll_interval)

        assert intervals == [2.0, 4.0, 4.0]
        assert worker.get_stats().empty_polls == 3

        _file_job(store, source)
        worker.poll_once()
        assert worker.poll_interval == 1.0
        assert worker.get_stats().empty_polls == 0

    def test_claims_at_most_batch_cap(
        self, store: JobStore, pool: ProviderPool, bus: EventBus, source: InMemoryProvider
    ) -> None:
        """A poll should claim no more than the batch cap."""
        worker = _worker(store, pool, bus, claim_batch_cap=2, plan_limits={"free": 10})
        for i in range(5):
            _file_job(store, source, name=f"{i}.txt")

        assert worker.poll_once() == 2
        assert store.count_jobs_by_status() == {"completed": 2, "pending": 3}


class TestLockOwnership:
    """Tests for outcomes of jobs reclaimed from a stalled worker."""

    def _reassign(self, store: JobStore, source: InMemoryProvider) -> Job:
        """Claim a job as "w1", reclaim it as stale and claim it again as "w2"."""
        _file_job(store, source)
        [stale] = store.claim_pending("w1", 1)
        later = utcnow() + timedelta(hours=1)
        assert store.reclaim_stale(300, now=later) == 1
        assert store.claim_pending("w2", 1, now=later)
        return stale

    def test_late_success_keeps_new_holder(
        self, worker: QueueWorker, store: JobStore, source: InMemoryProvider, events: list[JobEvent]
    ) -> None:
        """A late finish should not complete a job another worker now holds."""
        stale = self._reassign(store, source)

        assert worker.process_job(stale) is JobStatus.IN_PROGRESS

        held = store.get_job(stale.id)
        assert held.status == JobStatus.IN_PROGRESS.value
        assert held.locked_by == "w2"
        assert EventName.COMPLETED not in _names(events)
        assert EventName.PROGRESS not in _names(events)

    def test_late_failure_keeps_new_holder(
        self, worker: QueueWorker, store: JobStore, source: InMemoryProvider, events: list[JobEvent]
    ) -> None:
        """A late transient failure should not requeue a job another worker now holds."""
        stale = self._reassign(store, source)
        source.fail_next("download", TransientError("reset"))

        assert worker.process_job(stale) is JobStatus.IN_PROGRESS

        held = store.get_job(stale.id)
        assert held.status == JobStatus.IN_PROGRESS.value
        assert held.locked_by == "w2"
        assert held.attempts == 0
        assert EventName.RETRY not in _names(events)


class TestHeartbeat:
    """Tests for heartbeat maintenance."""

    def test_reclaims_stale_jobs(
        self, store: JobStore, pool: ProviderPool, bus: EventBus, source: InMemoryProvider
    ) -> None:
        """Jobs locked by a dead worker should return to pending."""
        worker = _worker(store, pool, bus, stale_lock_threshold=0.0)
        job = _file_job(store, source)
        store.claim_pending("dead-worker", 1)
        time.sleep(0.01)

        counts = worker.heartbeat_once()

        assert counts["reclaimed"] == 1
        reclaimed = store.get_job(job.id)
        assert reclaimed.status == JobStatus.PENDING.value
        assert reclaimed.locked_by is None

    def test_purges_finished_jobs(
        self, store: JobStore, pool: ProviderPool, bus: EventBus, source: InMemoryProvider
    ) -> None:
        """Finished jobs older than the retention should be deleted."""
        worker = _worker(store, pool, bus, terminal_retention=0.0)
        job = _file_job(store, source)
        worker.poll_once()
        time.sleep(0.01)

        assert worker.heartbeat_once()["purged"] == 1
        assert store.get_job(job.id) is None

    def test_shrinks_pool(self, store: JobStore, bus: EventBus) -> None:
        """The heartbeat should bring the provider pool back under its bound."""
        pool = ProviderPool(lambda provider, user_id: InMemoryProvider(provider), max_size=1)
        pool.get("google", "u1")
        pool.get("google", "u2")
        worker = _worker(store, pool, bus)

        assert worker.heartbeat_once()["evicted"] == 1
        assert len(pool) == 1


class TestLifecycle:
    """Tests for the threaded worker."""

    def test_start_and_stop(
        self, store: JobStore, pool: ProviderPool, bus: EventBus, source: InMemoryProvider
    ) -> None:
        """A started worker should pick up jobs on its own."""
        worker = _worker(store, pool, bus, poll_interval=0.05, max_poll_interval=0.1)
        job = _file_job(store, source)

        worker.start()
        assert worker.state is WorkerState.RUNNING
        deadline = time.monotonic() + 10
        while store.get_job(job.id).status != JobStatus.COMPLETED.value and time.monotonic() < deadline:
            time.sleep(0.05)
        worker.stop(timeout=10)

        assert store.get_job(job.id).status == JobStatus.COMPLETED.value
        assert worker.state is WorkerState.STOPPED
        assert not worker.get_stats().is_running

    def test_stop_when_not_running(self, worker: QueueWorker) -> None:
        """Stopping an idle worker should do nothing."""
        worker.stop()
        assert worker.state is WorkerState.STOPPED
