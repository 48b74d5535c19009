"""SQLAlchemy models for cloudmover.

This module defines the database schema using SQLAlchemy ORM.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from cloudmover.core.types import (
    ConflictResolution,
    DuplicateAction,
    JobStatus,
    RunStatus,
    SyncMode,
    SyncStatus,
    TaskStatus,
)


def utcnow() -> datetime:
    """Get the current time as an aware UTC datetime."""
    return datetime.now(UTC)


def new_id() -> str:
    """Generate a primary key."""
    return str(uuid.uuid4())


class UTCDateTime(TypeDecorator[datetime]):
    """Timezone-aware datetime stored as naive UTC.

    SQLite drops tzinfo on round-trip, so values are normalized to UTC on the
    way in and tagged as UTC on the way out.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: object) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value
        return value.astimezone(UTC).replace(tzinfo=None)

    def process_result_value(self, value: datetime | None, dialect: object) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""


class Job(Base):
    """A transfer of one file or one folder tree between providers."""

    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_plan: Mapped[str] = mapped_column(String(20), default="free", nullable=False)

    # Source
    source_provider: Mapped[str] = mapped_column(String(20), nullable=False)
    source_file_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    source_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    item_type: Mapped[str] = mapped_column(String(10), default="file", nullable=False)

    # Destination
    dest_provider: Mapped[str] = mapped_column(String(20), nullable=False)
    dest_folder_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    duplicate_action: Mapped[str] = mapped_column(
        String(20), default=DuplicateAction.SKIP.value, nullable=False
    )

    # Queue state
    status: Mapped[str] = mapped_column(String(20), default=JobStatus.PENDING.value, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_retries: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    next_run_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    locked_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    locked_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    cancel_requested: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    timeout_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Progress and result
    total_files: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    completed_files: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    progress_pct: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    copied_file_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    copied_file_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    copied_file_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration: Mapped[float | None] = mapped_column(Float, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    __table_args__ = (
        Index("idx_jobs_claim", "status", "next_run_at", "priority"),
        Index("idx_jobs_user_status", "user_id", "status"),
        Index("idx_jobs_locked", "status", "locked_at"),
    )


class ScheduledTask(Base):
    """A recurring transfer or sync definition."""

    __tablename__ = "scheduled_tasks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    source_provider: Mapped[str] = mapped_column(String(20), nullable=False)
    source_file_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    source_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    item_type: Mapped[str] = mapped_column(String(10), default="folder", nullable=False)
    dest_provider: Mapped[str] = mapped_column(String(20), nullable=False)
    dest_folder_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Schedule
    frequency: Mapped[str] = mapped_column(String(20), nullable=False)
    hour: Mapped[int] = mapped_column(Integer, default=8, nullable=False)
    minute: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    day_of_week: Mapped[int | None] = mapped_column(Integer, nullable=True)
    day_of_month: Mapped[int | None] = mapped_column(Integer, nullable=True)
    selected_days: Mapped[list[int] | None] = mapped_column(JSON, nullable=True)
    timezone: Mapped[str] = mapped_column(String(64), default="UTC", nullable=False)

    # Behavior
    sync_mode: Mapped[str] = mapped_column(String(20), default=SyncMode.COPY.value, nullable=False)
    duplicate_action: Mapped[str] = mapped_column(
        String(20), default=DuplicateAction.SKIP.value, nullable=False
    )
    include_folders: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    exclude_folders: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)

    # Lifecycle and statistics
    status: Mapped[str] = mapped_column(String(20), default=TaskStatus.ACTIVE.value, nullable=False)
    total_runs: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    successful_runs: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_runs: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_run_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_run_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    last_run_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    next_run_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    __table_args__ = (Index("idx_tasks_due", "status", "next_run_at"),)


class TaskRun(Base):
    """One execution of a scheduled task."""

    __tablename__ = "task_runs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    task_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("scheduled_tasks.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(20), default=RunStatus.RUNNING.value, nullable=False)
    started_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    duration: Mapped[float | None] = mapped_column(Float, nullable=True)
    files_processed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    files_failed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    bytes_transferred: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    job_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    __table_args__ = (Index("idx_task_runs_task", "task_id", "started_at"),)


class SyncFileRecord(Base):
    """Last known synced state of one source file for a task."""

    __tablename__ = "sync_file_registry"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    task_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("scheduled_tasks.id", ondelete="CASCADE"), nullable=False
    )
    source_file_id: Mapped[str] = mapped_column(String(255), nullable=False)
    source_path: Mapped[str] = mapped_column(Text, nullable=False)
    source_provider: Mapped[str] = mapped_column(String(20), nullable=False)
    file_name: Mapped[str] = mapped_column(Text, nullable=False)
    mime_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    file_size: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    source_modified_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    content_hash: Mapped[str | None] = mapped_column(String(128), nullable=True)
    dest_file_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    dest_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    dest_provider: Mapped[str | None] = mapped_column(String(20), nullable=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    sync_status: Mapped[str] = mapped_column(
        String(20), default=SyncStatus.SYNCED.value, nullable=False
    )

    __table_args__ = (
        Index("idx_registry_task_file", "task_id", "source_file_id", unique=True),
    )


class FileConflict(Base):
    """A file modified on both sides of a mirror sync."""

    __tablename__ = "file_conflicts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    task_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("scheduled_tasks.id", ondelete="CASCADE"), nullable=False
    )
    file_name: Mapped[str] = mapped_column(Text, nullable=False)
    relative_path: Mapped[str] = mapped_column(Text, nullable=False)
    source_file_id: Mapped[str] = mapped_column(String(255), nullable=False)
    source_modified_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    source_size: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    dest_file_id: Mapped[str] = mapped_column(String(255), nullable=False)
    dest_modified_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    dest_size: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    resolution: Mapped[str] = mapped_column(
        String(20), default=ConflictResolution.UNRESOLVED.value, nullable=False
    )
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    resolution_details: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (Index("idx_conflicts_task", "task_id", "resolution"),)


class FileHash(Base):
    """Fingerprint of a file written by cloudmover, used for duplicate checks."""

    __tablename__ = "file_hashes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    file_name: Mapped[str] = mapped_column(Text, nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    content_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    file_id: Mapped[str] = mapped_column(String(255), nullable=False)
    file_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_file_hashes_meta", "user_id", "file_name", "file_size"),
        Index("idx_file_hashes_hash", "user_id", "content_hash"),
    )
