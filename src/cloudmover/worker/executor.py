"""Execution of a single copy job.

This module provides:
- JobContext: Cancellation and progress hooks passed to an execution
- JobOutcome: Result of a finished execution
- JobExecutor: Copies the file or folder a job points at
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from cloudmover.core.errors import InvalidInputError, JobCancelledError
from cloudmover.core.types import ItemType
from cloudmover.providers.base import ResourceRef
from cloudmover.sync.engine import enumerate_files
from cloudmover.sync.transfer import FileTransfer, FolderResolver

if TYPE_CHECKING:
    from cloudmover.providers.base import RemoteFile, StorageProvider
    from cloudmover.providers.pool import ProviderPool
    from cloudmover.store.models import Job
    from cloudmover.sync.duplicates import DuplicateDetector

logger = logging.getLogger(__name__)


@dataclass
class JobContext:
    """Context passed to a job execution.

    Attributes:
        job: The claimed job.
        cancel_check: Function to check if cancellation was requested.
        on_progress: Progress callback (completed_files, total_files, pct).
    """

    job: Job
    cancel_check: Callable[[], bool] = field(default=lambda: False)
    on_progress: Callable[[int, int, int], None] | None = None

    def checkpoint(self) -> None:
        """Raise if the job should stop here."""
        if self.cancel_check():
            raise JobCancelledError()

    def report(self, completed: int, total: int, pct: int) -> None:
        if self.on_progress is not None:
            self.on_progress(completed, total, pct)


@dataclass
class JobOutcome:
    """Result of a finished execution.

    Attributes:
        copied_file_id: Id of the written file or top folder.
        copied_file_name: Name it was written under.
        copied_file_url: Link to it, when the provider returns one.
        total_files: Files found in the source.
        completed_files: Files copied or skipped as duplicates.
        skipped_files: Files skipped as duplicates.
        errors: Per-file failures of a folder copy.
    """

    copied_file_id: str | None = None
    copied_file_name: str | None = None
    copied_file_url: str | None = None
    total_files: int = 1
    completed_files: int = 0
    skipped_files: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def summary(self) -> str | None:
        """Get a message for a job that completed with failed or skipped files."""
        parts = []
        if self.errors:
            parts.append(f"{len(self.errors)} of {self.total_files} files failed: " + "; ".join(self.errors[:5]))
        if self.skipped_files:
            parts.append(f"{self.skipped_files} duplicate files skipped")
        return ". ".join(parts) or None

    def to_result(self) -> dict[str, Any]:
        """Build the ``result`` of a completed event."""
        return {
            "copiedFileId": self.copied_file_id,
            "copiedFileName": self.copied_file_name,
            "copiedFileUrl": self.copied_file_url,
            "totalFiles": self.total_files,
            "completedFiles": self.completed_files,
            "skippedFiles": self.skipped_files,
            "failedFiles": len(self.errors),
        }


class JobExecutor:
    """Copies the file or folder of a job to its destination.

    Folder copies walk the source with an explicit stack, recreate the
    folder structure under a destination folder named after the source,
    and keep going when individual files fail. Progress goes through the
    context after every file.
    """

    def __init__(self, pool: ProviderPool, detector: DuplicateDetector | None = None) -> None:
        self._pool = pool
        self._transfer = FileTransfer(detector)

    def execute(self, ctx: JobContext) -> JobOutcome:
        """Run a job to completion.

        Raises:
            JobCancelledError: If cancellation was observed at a checkpoint.
            ProviderError: If the copy failed (for a folder: every file failed).
        """
        job = ctx.job
        ctx.checkpoint()
        source = self._pool.get(job.source_provider, job.user_id)
        dest = self._pool.get(job.dest_provider, job.user_id)

        ref = self.resolve_source(source, job)
        metadata = source.get_metadata(ref.resource_id)
        if metadata.is_folder:
            return self._copy_folder(ctx, source, dest, metadata)
        return self._copy_file(ctx, source, dest, metadata)

    @staticmethod
    def resolve_source(source: StorageProvider, job: Job) -> ResourceRef:
        """Work out what a job points at.

        An explicit file id or path wins over the URL. The URL is still
        parsed for its item type, and a URL that cannot be parsed is only
        an error when there is nothing else to go on.
        """
        explicit = job.source_file_id or job.source_path
        parsed: ResourceRef | None = None
        if job.source_url:
            try:
                parsed = source.parse_resource_url(job.source_url)
            except InvalidInputError:
                if not explicit:
                    raise
                logger.warning("Could not parse source URL of job %s, using %s", job.id, explicit)

        if explicit:
            item_type = parsed.item_type if parsed else ItemType(job.item_type)
            return ResourceRef(source.name, explicit, item_type)
        if parsed is not None:
            return parsed
        raise InvalidInputError(f"Job {job.id} has no source file id, path or URL")

    def _copy_file(
        self,
        ctx: JobContext,
        source: StorageProvider,
        dest: StorageProvider,
        file: RemoteFile,
    ) -> JobOutcome:
        job = ctx.job
        ctx.report(0, 1, 0)

        def fetched() -> None:
            ctx.checkpoint()
            ctx.report(0, 1, 50)

        outcome = self._transfer.transfer(
            source,
            dest,
            file,
            dest.resolve_folder(job.dest_folder_id),
            job.user_id,
            duplicate_action=job.duplicate_action,
            on_fetched=fetched,
        )
        ctx.report(1, 1, 100)

        if outcome.skipped:
            existing = outcome.duplicate.duplicate_file if outcome.duplicate else None
            return JobOutcome(
                copied_file_id=existing.file_id if existing else None,
                copied_file_name=existing.file_name if existing else file.name,
                completed_files=1,
                skipped_files=1,
            )
        result = outcome.result
        return JobOutcome(
            copied_file_id=result.id,
            copied_file_name=result.name,
            copied_file_url=result.url,
            completed_files=1,
        )

    def _copy_folder(
        self,
        ctx: JobContext,
        source: StorageProvider,
        dest: StorageProvider,
        folder: RemoteFile,
    ) -> JobOutcome:
        job = ctx.job
        ctx.report(0, 1, 0)

        listing_errors: list[str] = []
        entries = enumerate_files(source, folder.id, errors=listing_errors)
        top = dest.ensure_folder(folder.name, dest.resolve_folder(job.dest_folder_id))
        resolver = FolderResolver(dest, top.id)

        outcome = JobOutcome(
            copied_file_id=top.id,
            copied_file_name=top.name,
            copied_file_url=top.web_url,
            total_files=len(entries),
            errors=listing_errors,
        )
        logger.info("Job %s: copying folder %s (%d files)", job.id, folder.name, len(entries))

        last_error: Exception | None = None
        failed = 0
        for processed, entry in enumerate(entries, start=1):
            ctx.checkpoint()
            try:
                result = self._transfer.transfer(
                    source,
                    dest,
                    entry.file,
                    resolver.resolve(entry.relative_dir),
                    job.user_id,
                    duplicate_action=job.duplicate_action,
                    file_path=f"{folder.name}/{entry.relative_path}",
                    on_fetched=ctx.checkpoint,
                )
            except JobCancelledError:
                raise
            except Exception as e:
                logger.warning("Job %s: failed to copy %s: %s", job.id, entry.relative_path, e)
                outcome.errors.append(f"{entry.relative_path}: {e}")
                last_error = e
                failed += 1
            else:
                outcome.completed_files += 1
                if result.skipped:
                    outcome.skipped_files += 1
            ctx.report(outcome.completed_files, len(entries), round(processed * 100 / len(entries)))

        if entries and failed == len(entries) and last_error is not None:
            raise last_error
        if not entries:
            ctx.report(0, 0, 100)
        return outcome
