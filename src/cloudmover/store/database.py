"""Durable job store using SQLAlchemy.

This module provides:
- Job queue operations (create, atomic claim, progress, terminal states)
- Stale lock reclaim and terminal job purge
- Scheduled task, task run, sync registry and conflict storage
- File hash registry used for duplicate detection

PostgreSQL claims with ``FOR UPDATE SKIP LOCKED`` in a single
``UPDATE ... RETURNING``. Other engines (SQLite) claim row by row with a
compare-and-swap on ``status = 'pending'``.
"""

from __future__ import annotations

import logging
from collections.abc import Collection
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, TypeVar

from sqlalchemy import create_engine, delete, event, func, or_, select, update
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from cloudmover.core.errors import InvalidStateError, JobNotFoundError
from cloudmover.core.types import ConflictResolution, JobStatus, RunStatus, TaskStatus
from cloudmover.store.models import (
    Base,
    FileConflict,
    FileHash,
    Job,
    ScheduledTask,
    SyncFileRecord,
    TaskRun,
    utcnow,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Job was cancelled by user"

T = TypeVar("T", bound=Base)

_TERMINAL = (JobStatus.COMPLETED.value, JobStatus.FAILED.value)


class JobStore:
    """SQLAlchemy store for jobs, scheduled tasks and sync state.

    Every public method opens its own session and returns detached rows, so
    a JobStore can be shared between threads.
    """

    def __init__(self, url: str, echo: bool = False) -> None:
        """Initialize the store and create tables.

        Args:
            url: SQLAlchemy database URL (``sqlite:///path.db``,
                ``postgresql+psycopg://...``).
            echo: Log emitted SQL.
        """
        self._url = url
        kwargs: dict[str, Any] = {"echo": echo}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
            if url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool

        self._engine: Engine = create_engine(url, **kwargs)

        if self.dialect == "sqlite":
            event.listen(self._engine, "connect", _configure_sqlite)

        Base.metadata.create_all(self._engine)

    @property
    def dialect(self) -> str:
        """Get the database dialect name."""
        return self._engine.dialect.name

    def close(self) -> None:
        """Close all pooled connections."""
        self._engine.dispose()

    def _session(self) -> Session:
        """Create a new database session."""
        return Session(self._engine, expire_on_commit=False)

    def _get(self, model: type[T], key: Any) -> T | None:
        with self._session() as session:
            row = session.get(model, key)
            if row is not None:
                session.expunge(row)
            return row

    def _list(self, stmt: Any) -> list[Any]:
        with self._session() as session:
            rows = list(session.execute(stmt).scalars().all())
            for row in rows:
                session.expunge(row)
            return rows

    @staticmethod
    def _running(worker_id: str | None) -> list[Any]:
        """Criteria for a job still in_progress, and still held by ``worker_id`` if given."""
        criteria: list[Any] = [Job.status == JobStatus.IN_PROGRESS.value]
        if worker_id is not None:
            criteria.append(Job.locked_by == worker_id)
        return criteria

    def _update_job(self, job_id: str, *criteria: Any, **values: Any) -> bool:
        """Apply a guarded UPDATE to one job. Returns True if a row changed."""
        values.setdefault("updated_at", utcnow())
        stmt = (
            update(Job)
            .where(Job.id == job_id, *criteria)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with self._session() as session:
            result = session.execute(stmt)
            session.commit()
            return result.rowcount == 1

    # === Job operations ===

    def create_job(
        self,
        user_id: str,
        source_provider: str,
        dest_provider: str,
        **fields: Any,
    ) -> Job:
        """Enqueue a new pending job.

        Args:
            user_id: Owner of the job.
            source_provider: Provider the file or folder is read from.
            dest_provider: Provider the copy is written to.
            **fields: Any other Job column (source_file_id, source_url,
                item_type, dest_folder_id, priority, max_retries, ...).

        Returns:
            Created Job.
        """
        with self._session() as session:
            job = Job(
                user_id=user_id,
                source_provider=source_provider,
                dest_provider=dest_provider,
                **fields,
            )
            session.add(job)
            session.commit()
            session.refresh(job)
            session.expunge(job)
            logger.debug("Created job %s for user %s", job.id, user_id)
            return job

    def get_job(self, job_id: str) -> Job | None:
        """Get a job by ID."""
        return self._get(Job, job_id)

    def require_job(self, job_id: str) -> Job:
        """Get a job by ID.

        Raises:
            JobNotFoundError: If the job does not exist.
        """
        job = self.get_job(job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return job

    def list_jobs(
        self,
        user_id: str | None = None,
        status: JobStatus | str | None = None,
        limit: int = 100,
    ) -> list[Job]:
        """List jobs, newest first."""
        stmt = select(Job).order_by(Job.created_at.desc()).limit(limit)
        if user_id is not None:
            stmt = stmt.where(Job.user_id == user_id)
        if status is not None:
            stmt = stmt.where(Job.status == JobStatus(status).value)
        return self._list(stmt)

    def claim_pending(
        self,
        worker_id: str,
        limit: int,
        now: datetime | None = None,
    ) -> list[Job]:
        """Atomically claim up to ``limit`` due pending jobs.

        Jobs are taken by priority (highest first) then creation time
        (oldest first). A job is handed to exactly one caller even when
        several workers claim concurrently.

        Args:
            worker_id: Lock owner written to the claimed rows.
            limit: Maximum number of jobs to claim.
            now: Current time, for tests.

        Returns:
            Claimed jobs, already in_progress and locked by ``worker_id``.
        """
        if limit <= 0:
            return []
        now = now or utcnow()
        if self.dialect == "postgresql":
            jobs = self._claim_skip_locked(worker_id, limit, now)
        else:
            jobs = self._claim_compare_and_swap(worker_id, limit, now)
        jobs.sort(key=lambda j: (-j.priority, j.created_at))
        return jobs

    def _due_jobs_query(self, limit: int, now: datetime) -> Any:
        return (
            select(Job.id)
            .where(Job.status == JobStatus.PENDING.value, Job.next_run_at <= now)
            .order_by(Job.priority.desc(), Job.created_at.asc())
            .limit(limit)
        )

    def _claim_skip_locked(self, worker_id: str, limit: int, now: datetime) -> list[Job]:
        candidates = self._due_jobs_query(limit, now).with_for_update(skip_locked=True)
        stmt = (
            update(Job)
            .where(Job.id.in_(candidates.scalar_subquery()))
            .values(
                status=JobStatus.IN_PROGRESS.value,
                locked_by=worker_id,
                locked_at=now,
                updated_at=now,
            )
            .returning(Job)
            .execution_options(synchronize_session=False)
        )
        with self._session() as session:
            jobs = list(session.execute(stmt).scalars().all())
            session.commit()
            for job in jobs:
                session.expunge(job)
            return jobs

    def _claim_compare_and_swap(self, worker_id: str, limit: int, now: datetime) -> list[Job]:
        # The candidate read and each swap run in separate transactions so a
        # SQLite reader is never upgraded to a writer.
        with self._session() as session:
            candidate_ids = list(session.execute(self._due_jobs_query(limit, now)).scalars())

        claimed: list[Job] = []
        for job_id in candidate_ids:
            won = self._update_job(
                job_id,
                Job.status == JobStatus.PENDING.value,
                status=JobStatus.IN_PROGRESS.value,
                locked_by=worker_id,
                locked_at=now,
                updated_at=now,
            )
            if not won:
                continue
            job = self.get_job(job_id)
            if job is not None:
                claimed.append(job)
        return claimed

    def update_progress(
        self,
        job_id: str,
        completed_files: int,
        total_files: int,
        progress_pct: int,
        worker_id: str | None = None,
    ) -> bool:
        """Persist progress counters of a running job."""
        return self._update_job(
            job_id,
            *self._running(worker_id),
            completed_files=completed_files,
            total_files=total_files,
            progress_pct=max(0, min(100, progress_pct)),
        )

    def mark_completed(
        self,
        job_id: str,
        copied_file_id: str | None = None,
        copied_file_name: str | None = None,
        copied_file_url: str | None = None,
        duration: float | None = None,
        error_message: str | None = None,
        worker_id: str | None = None,
    ) -> bool:
        """Move a running job to completed and release its lock.

        When ``worker_id`` is given the job must still be locked by it, so a
        worker whose lock was reclaimed cannot finish the job under its new owner.

        Returns:
            True if the job was in_progress and is now completed.
        """
        return self._update_job(
            job_id,
            *self._running(worker_id),
            status=JobStatus.COMPLETED.value,
            copied_file_id=copied_file_id,
            copied_file_name=copied_file_name,
            copied_file_url=copied_file_url,
            duration=duration,
            error_message=error_message,
            progress_pct=100,
            locked_by=None,
            locked_at=None,
        )

    def mark_failed(
        self,
        job_id: str,
        error_message: str,
        attempts: int | None = None,
        duration: float | None = None,
        worker_id: str | None = None,
    ) -> bool:
        """Move a running job to failed and release its lock.

        Returns:
            True if the job was in_progress and is now failed.
        """
        values: dict[str, Any] = {
            "status": JobStatus.FAILED.value,
            "error_message": error_message,
            "duration": duration,
            "locked_by": None,
            "locked_at": None,
        }
        if attempts is not None:
            values["attempts"] = attempts
        return self._update_job(job_id, *self._running(worker_id), **values)

    def reschedule_with_backoff(
        self,
        job_id: str,
        attempts: int,
        next_run_at: datetime,
        error_message: str | None = None,
        worker_id: str | None = None,
    ) -> bool:
        """Return a running job to pending, due at ``next_run_at``.

        Used both for retries and for per-user admission requeues (where
        ``attempts`` is passed through unchanged).
        """
        return self._update_job(
            job_id,
            *self._running(worker_id),
            status=JobStatus.PENDING.value,
            attempts=attempts,
            next_run_at=next_run_at,
            error_message=error_message,
            locked_by=None,
            locked_at=None,
        )

    def count_running_for_user(self, user_id: str, exclude_job_ids: Collection[str] = ()) -> int:
        """Count a user's in_progress jobs, ignoring the given jobs."""
        stmt = select(func.count(Job.id)).where(
            Job.user_id == user_id,
            Job.status == JobStatus.IN_PROGRESS.value,
        )
        if exclude_job_ids:
            stmt = stmt.where(Job.id.not_in(list(exclude_job_ids)))
        with self._session() as session:
            return int(session.execute(stmt).scalar_one())

    def refresh_locks(self, worker_id: str, job_ids: list[str], now: datetime | None = None) -> int:
        """Renew the lock timestamp of jobs still held by ``worker_id``."""
        if not job_ids:
            return 0
        now = now or utcnow()
        stmt = (
            update(Job)
            .where(
                Job.id.in_(job_ids),
                Job.locked_by == worker_id,
                Job.status == JobStatus.IN_PROGRESS.value,
            )
            .values(locked_at=now)
            .execution_options(synchronize_session=False)
        )
        with self._session() as session:
            result = session.execute(stmt)
            session.commit()
            return result.rowcount

    def reclaim_stale(self, older_than: float, now: datetime | None = None) -> int:
        """Return in_progress jobs with an old or missing lock to pending.

        Args:
            older_than: Lock age in seconds beyond which a lock is stale.
            now: Current time, for tests.

        Returns:
            Number of jobs reclaimed.
        """
        now = now or utcnow()
        threshold = now - timedelta(seconds=older_than)
        stmt = (
            update(Job)
            .where(
                Job.status == JobStatus.IN_PROGRESS.value,
                or_(Job.locked_at.is_(None), Job.locked_at < threshold),
            )
            .values(
                status=JobStatus.PENDING.value,
                locked_by=None,
                locked_at=None,
                next_run_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        with self._session() as session:
            result = session.execute(stmt)
            session.commit()
            count = result.rowcount
        if count:
            logger.info("Reclaimed %d stale jobs", count)
        return count

    def request_cancel(self, job_id: str) -> Job:
        """Flag a job for cooperative cancellation.

        Raises:
            JobNotFoundError: If the job does not exist.
            InvalidStateError: If the job already finished.
        """
        job = self.require_job(job_id)
        if JobStatus(job.status).is_terminal:
            raise InvalidStateError(f"Job {job_id} is already {job.status}")
        self._update_job(job_id, Job.status.not_in(_TERMINAL), cancel_requested=True)
        return self.require_job(job_id)

    def is_cancel_requested(self, job_id: str) -> bool:
        """Check the cancellation flag of a job."""
        with self._session() as session:
            value = session.execute(
                select(Job.cancel_requested).where(Job.id == job_id)
            ).scalar_one_or_none()
            return bool(value)

    def retry_job(self, job_id: str) -> Job:
        """Administratively requeue a finished job with a fresh attempt budget.

        Raises:
            JobNotFoundError: If the job does not exist.
            InvalidStateError: If the job is not completed or failed.
        """
        job = self.require_job(job_id)
        if not JobStatus(job.status).is_terminal:
            raise InvalidStateError(f"Job {job_id} is {job.status}, only finished jobs can be retried")
        self._update_job(
            job_id,
            Job.status.in_(_TERMINAL),
            status=JobStatus.PENDING.value,
            attempts=0,
            cancel_requested=False,
            error_message=None,
            completed_files=0,
            progress_pct=0,
            next_run_at=utcnow(),
            locked_by=None,
            locked_at=None,
        )
        logger.info("Job %s requeued for retry", job_id)
        return self.require_job(job_id)

    def purge_terminal_jobs(self, older_than: float, now: datetime | None = None) -> int:
        """Delete completed and failed jobs last updated before the window.

        Args:
            older_than: Retention window in seconds.
            now: Current time, for tests.

        Returns:
            Number of jobs deleted.
        """
        now = now or utcnow()
        threshold = now - timedelta(seconds=older_than)
        stmt = delete(Job).where(Job.status.in_(_TERMINAL), Job.updated_at < threshold)
        with self._session() as session:
            result = session.execute(stmt.execution_options(synchronize_session=False))
            session.commit()
            return result.rowcount

    def count_jobs_by_status(self) -> dict[str, int]:
        """Count jobs per status."""
        stmt = select(Job.status, func.count(Job.id)).group_by(Job.status)
        with self._session() as session:
            return {status: int(count) for status, count in session.execute(stmt).all()}

    # === Scheduled task operations ===

    def get_task(self, task_id: str) -> ScheduledTask | None:
        """Get a scheduled task by ID."""
        return self._get(ScheduledTask, task_id)

    def list_tasks(self, user_id: str | None = None, include_deleted: bool = False) -> list[ScheduledTask]:
        """List scheduled tasks, oldest first."""
        stmt = select(ScheduledTask).order_by(ScheduledTask.created_at)
        if user_id is not None:
            stmt = stmt.where(ScheduledTask.user_id == user_id)
        if not include_deleted:
            stmt = stmt.where(ScheduledTask.status != TaskStatus.DELETED.value)
        return self._list(stmt)

    def get_due_tasks(self, now: datetime | None = None) -> list[ScheduledTask]:
        """Get active tasks whose next run time has passed."""
        now = now or utcnow()
        stmt = (
            select(ScheduledTask)
            .where(
                ScheduledTask.status == TaskStatus.ACTIVE.value,
                ScheduledTask.next_run_at.is_not(None),
                ScheduledTask.next_run_at <= now,
            )
            .order_by(ScheduledTask.next_run_at)
        )
        return self._list(stmt)

    def upsert_scheduled_task(self, task_id: str | None = None, **fields: Any) -> ScheduledTask:
        """Create a task, or update the given fields of an existing one.

        Args:
            task_id: Existing task to update. A new task is created when None
                or when no task has this ID.
            **fields: ScheduledTask columns to set.

        Returns:
            The stored task.
        """
        with self._session() as session:
            task = session.get(ScheduledTask, task_id) if task_id else None
            if task is None:
                task = ScheduledTask(**fields)
                if task_id:
                    task.id = task_id
                session.add(task)
            else:
                for key, value in fields.items():
                    setattr(task, key, value)
            session.commit()
            session.refresh(task)
            session.expunge(task)
            return task

    def record_task_dispatch(
        self,
        task_id: str,
        started_at: datetime,
        next_run_at: datetime | None,
    ) -> None:
        """Mark a task as running and advance its schedule."""
        stmt = (
            update(ScheduledTask)
            .where(ScheduledTask.id == task_id)
            .values(
                last_run_at=started_at,
                last_run_status=RunStatus.RUNNING.value,
                last_run_error=None,
                next_run_at=next_run_at,
                total_runs=ScheduledTask.total_runs + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        with self._session() as session:
            session.execute(stmt)
            session.commit()

    def record_task_outcome(
        self,
        task_id: str,
        success: bool,
        error_message: str | None = None,
        next_run_at: datetime | None = None,
    ) -> None:
        """Record the result of a run on the task's counters."""
        values: dict[str, Any] = {
            "last_run_status": RunStatus.COMPLETED.value if success else RunStatus.FAILED.value,
            "last_run_error": None if success else error_message,
            "updated_at": utcnow(),
        }
        if success:
            values["successful_runs"] = ScheduledTask.successful_runs + 1
        else:
            values["failed_runs"] = ScheduledTask.failed_runs + 1
        if next_run_at is not None:
            values["next_run_at"] = next_run_at
        stmt = (
            update(ScheduledTask)
            .where(ScheduledTask.id == task_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with self._session() as session:
            session.execute(stmt)
            session.commit()

    # === Task run operations ===

    def create_task_run(self, task_id: str, started_at: datetime | None = None) -> TaskRun:
        """Open a run record in running state."""
        with self._session() as session:
            run = TaskRun(
                task_id=task_id,
                status=RunStatus.RUNNING.value,
                started_at=started_at or utcnow(),
            )
            session.add(run)
            session.commit()
            session.refresh(run)
            session.expunge(run)
            return run

    def update_task_run(self, run_id: str, **fields: Any) -> TaskRun | None:
        """Update fields of a run record."""
        with self._session() as session:
            run = session.get(TaskRun, run_id)
            if run is None:
                return None
            for key, value in fields.items():
                setattr(run, key, value)
            session.commit()
            session.refresh(run)
            session.expunge(run)
            return run

    def get_task_run(self, run_id: str) -> TaskRun | None:
        """Get a run record by ID."""
        return self._get(TaskRun, run_id)

    def list_task_runs(self, task_id: str, limit: int = 50) -> list[TaskRun]:
        """List runs of a task, newest first."""
        stmt = (
            select(TaskRun)
            .where(TaskRun.task_id == task_id)
            .order_by(TaskRun.started_at.desc())
            .limit(limit)
        )
        return self._list(stmt)

    def list_running_copy_runs(self) -> list[TaskRun]:
        """List unfinished runs that wait on a copy job."""
        stmt = (
            select(TaskRun)
            .where(TaskRun.status == RunStatus.RUNNING.value, TaskRun.job_id.is_not(None))
            .order_by(TaskRun.started_at)
        )
        return self._list(stmt)

    # === Sync registry operations ===

    def get_sync_record(self, task_id: str, source_file_id: str) -> SyncFileRecord | None:
        """Get the registry row of a source file for a task."""
        stmt = select(SyncFileRecord).where(
            SyncFileRecord.task_id == task_id,
            SyncFileRecord.source_file_id == source_file_id,
        )
        rows = self._list(stmt)
        return rows[0] if rows else None

    def list_sync_records(self, task_id: str) -> list[SyncFileRecord]:
        """List every registry row of a task."""
        stmt = (
            select(SyncFileRecord)
            .where(SyncFileRecord.task_id == task_id)
            .order_by(SyncFileRecord.source_path)
        )
        return self._list(stmt)

    def upsert_sync_record(self, task_id: str, source_file_id: str, **fields: Any) -> SyncFileRecord:
        """Insert or update the registry row of a source file."""
        with self._session() as session:
            record = session.execute(
                select(SyncFileRecord).where(
                    SyncFileRecord.task_id == task_id,
                    SyncFileRecord.source_file_id == source_file_id,
                )
            ).scalar_one_or_none()
            if record is None:
                record = SyncFileRecord(task_id=task_id, source_file_id=source_file_id, **fields)
                session.add(record)
            else:
                for key, value in fields.items():
                    setattr(record, key, value)
            session.commit()
            session.refresh(record)
            session.expunge(record)
            return record

    # === Conflict operations ===

    def create_conflict(self, task_id: str, **fields: Any) -> FileConflict:
        """Record a new unresolved conflict."""
        with self._session() as session:
            conflict = FileConflict(
                task_id=task_id,
                resolution=ConflictResolution.UNRESOLVED.value,
                **fields,
            )
            session.add(conflict)
            session.commit()
            session.refresh(conflict)
            session.expunge(conflict)
            return conflict

    def get_conflict(self, conflict_id: int) -> FileConflict | None:
        """Get a conflict by ID."""
        return self._get(FileConflict, conflict_id)

    def list_conflicts(self, task_id: str, unresolved_only: bool = False) -> list[FileConflict]:
        """List conflicts of a task, oldest first."""
        stmt = (
            select(FileConflict)
            .where(FileConflict.task_id == task_id)
            .order_by(FileConflict.created_at, FileConflict.id)
        )
        if unresolved_only:
            stmt = stmt.where(FileConflict.resolution == ConflictResolution.UNRESOLVED.value)
        return self._list(stmt)

    def has_unresolved_conflict(self, task_id: str, relative_path: str) -> bool:
        """Check whether a path of a task is blocked by an open conflict."""
        stmt = select(func.count(FileConflict.id)).where(
            FileConflict.task_id == task_id,
            FileConflict.relative_path == relative_path,
            FileConflict.resolution == ConflictResolution.UNRESOLVED.value,
        )
        with self._session() as session:
            return int(session.execute(stmt).scalar_one()) > 0

    def resolve_conflict(
        self,
        conflict_id: int,
        resolution: ConflictResolution | str,
        details: str | None = None,
    ) -> FileConflict:
        """Store the resolution of a conflict.

        Raises:
            InvalidStateError: If the conflict does not exist, is already
                resolved, or the resolution is "unresolved".
        """
        resolution = ConflictResolution(resolution)
        if resolution is ConflictResolution.UNRESOLVED:
            raise InvalidStateError("A conflict cannot be resolved as 'unresolved'")
        with self._session() as session:
            conflict = session.get(FileConflict, conflict_id)
            if conflict is None:
                raise InvalidStateError(f"Conflict {conflict_id} not found")
            if conflict.resolution != ConflictResolution.UNRESOLVED.value:
                raise InvalidStateError(f"Conflict {conflict_id} is already resolved")
            conflict.resolution = resolution.value
            conflict.resolved_at = utcnow()
            conflict.resolution_details = details
            session.commit()
            session.refresh(conflict)
            session.expunge(conflict)
            return conflict

    # === File hash operations ===

    def add_file_hash(
        self,
        user_id: str,
        file_name: str,
        file_size: int,
        provider: str,
        file_id: str,
        content_hash: str | None = None,
        file_path: str | None = None,
    ) -> FileHash:
        """Register a file written to a destination."""
        with self._session() as session:
            row = FileHash(
                user_id=user_id,
                file_name=file_name,
                file_size=file_size,
                content_hash=content_hash,
                provider=provider,
                file_id=file_id,
                file_path=file_path,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            session.expunge(row)
            return row

    def find_file_hashes_by_metadata(
        self,
        user_id: str,
        file_name: str,
        file_size: int,
        provider: str | None = None,
    ) -> list[FileHash]:
        """Find registered files with the same name and size."""
        stmt = (
            select(FileHash)
            .where(
                FileHash.user_id == user_id,
                FileHash.file_name == file_name,
                FileHash.file_size == file_size,
            )
            .order_by(FileHash.created_at.desc())
        )
        if provider is not None:
            stmt = stmt.where(FileHash.provider == provider)
        return self._list(stmt)

    def find_file_hash(self, user_id: str, content_hash: str) -> FileHash | None:
        """Find the most recent registered file with a content hash."""
        stmt = (
            select(FileHash)
            .where(FileHash.user_id == user_id, FileHash.content_hash == content_hash)
            .order_by(FileHash.created_at.desc())
            .limit(1)
        )
        rows = self._list(stmt)
        return rows[0] if rows else None


def _configure_sqlite(dbapi_connection: Any, connection_record: Any) -> None:
    """Enable WAL mode and foreign keys on every new SQLite connection."""
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
    finally:
        cursor.close()
