"""Sync engine for scheduled sync tasks.

This module provides:
- SyncEngine.cumulative_sync: One-way copy of new and modified files
- SyncEngine.mirror_sync: Two-way sync with conflict detection
- SyncEngine.resolve_conflict: Apply a user decision on a conflict
- classify_file: Compare a source file with its registry row

Both sync modes enumerate folder trees with an explicit stack and never let a
single file failure abort the pass.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any

from cloudmover.core.config import SyncConfig
from cloudmover.core.errors import InvalidInputError, InvalidStateError, ProviderError
from cloudmover.core.types import (
    ConflictResolution,
    DuplicateAction,
    ItemType,
    SyncMode,
    SyncStatus,
)
from cloudmover.store.models import utcnow
from cloudmover.sync.filters import FolderFilter
from cloudmover.sync.transfer import FileTransfer, FolderResolver

if TYPE_CHECKING:
    from cloudmover.providers.base import RemoteFile, StorageProvider
    from cloudmover.providers.pool import ProviderPool
    from cloudmover.store.database import JobStore
    from cloudmover.store.models import FileConflict, ScheduledTask, SyncFileRecord
    from cloudmover.sync.duplicates import DuplicateDetector
    from cloudmover.sync.transfer import TransferOutcome

logger = logging.getLogger(__name__)


class FileChange(Enum):
    """Classification of a source file against the registry."""

    NEW = "new"
    MODIFIED = "modified"
    UNCHANGED = "unchanged"


@dataclass
class SyncEntry:
    """A file found while walking a tree."""

    file: RemoteFile
    relative_path: str

    @property
    def relative_dir(self) -> str:
        """Get the relative path of the parent folder ("" for the root)."""
        return self.relative_path.rpartition("/")[0]


@dataclass
class SyncResult:
    """Statistics of one sync pass."""

    success: bool = True
    files_scanned: int = 0
    files_new: int = 0
    files_modified: int = 0
    files_copied: int = 0
    files_skipped: int = 0
    files_failed: int = 0
    conflicts: int = 0
    bytes_transferred: int = 0
    errors: list[str] = field(default_factory=list)
    duration: float = 0.0

    @property
    def files_processed(self) -> int:
        """Get number of files that needed work (new plus modified)."""
        return self.files_new + self.files_modified

    def add_error(self, message: str) -> None:
        """Record a per-file failure."""
        self.files_failed += 1
        self.errors.append(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dict for logs and task runs."""
        return {
            "success": self.success,
            "files_scanned": self.files_scanned,
            "files_new": self.files_new,
            "files_modified": self.files_modified,
            "files_copied": self.files_copied,
            "files_skipped": self.files_skipped,
            "files_failed": self.files_failed,
            "conflicts": self.conflicts,
            "bytes_transferred": self.bytes_transferred,
            "errors": list(self.errors),
            "duration": self.duration,
        }


def classify_file(file: RemoteFile, record: SyncFileRecord | None) -> FileChange:
    """Compare a source file with what was last synced.

    The content hash decides when both sides have one. Otherwise a newer
    modified time decides when both sides have one. Otherwise a size change
    decides.
    """
    if record is None:
        return FileChange.NEW
    if record.sync_status != SyncStatus.SYNCED.value:
        return FileChange.MODIFIED
    if file.content_hash and record.content_hash:
        changed = file.content_hash != record.content_hash
    elif file.modified_time and record.source_modified_at:
        changed = file.modified_time > record.source_modified_at
    else:
        changed = file.size != record.file_size
    return FileChange.MODIFIED if changed else FileChange.UNCHANGED


def enumerate_files(
    provider: StorageProvider,
    root_id: str,
    folder_filter: FolderFilter | None = None,
    errors: list[str] | None = None,
) -> list[SyncEntry]:
    """List every file under a folder, depth first with an explicit stack.

    Args:
        provider: Provider to walk.
        root_id: Root folder id.
        folder_filter: Selective sync rules.
        errors: When given, sub-folder listing failures are appended here
            instead of raised. The root listing always raises.

    Returns:
        Files (folders excluded) sorted by relative path.
    """
    entries: list[SyncEntry] = []
    stack: list[tuple[str, str]] = [(root_id, "")]
    while stack:
        folder_id, relative_dir = stack.pop()
        try:
            children = provider.list_children(folder_id)
        except ProviderError as e:
            if errors is None or not relative_dir:
                raise
            logger.warning("Could not list %s on %s: %s", relative_dir, provider.name, e)
            errors.append(f"{relative_dir}: {e}")
            continue
        for child in children:
            child_path = f"{relative_dir}/{child.name}" if relative_dir else child.name
            if child.is_folder:
                if folder_filter is None or folder_filter.should_descend(child_path):
                    stack.append((child.id, child_path))
            elif folder_filter is None or folder_filter.allows_file(relative_dir):
                entries.append(SyncEntry(child, child_path))
    entries.sort(key=lambda e: e.relative_path)
    return entries


def source_root(provider: StorageProvider, task: ScheduledTask) -> str:
    """Get the source folder (or file) id of a task."""
    if task.source_file_id:
        return task.source_file_id
    if task.source_url:
        return provider.parse_resource_url(task.source_url).resource_id
    if task.source_path:
        return task.source_path
    return provider.root_id


class SyncEngine:
    """Runs cumulative and mirror sync passes for scheduled tasks."""

    def __init__(
        self,
        store: JobStore,
        pool: ProviderPool,
        detector: DuplicateDetector | None = None,
        config: SyncConfig | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            store: Job store holding the sync registry and conflicts.
            pool: Provider clients.
            detector: Duplicate detector consulted before writes.
            config: Sync settings.
        """
        self._store = store
        self._pool = pool
        self._transfer = FileTransfer(detector)
        self._config = config or SyncConfig()

    @property
    def conflict_threshold(self) -> timedelta:
        """Get the modified-time tolerance as a timedelta."""
        return timedelta(seconds=self._config.conflict_threshold)

    def run_task(self, task: ScheduledTask) -> SyncResult:
        """Run the sync pass matching a task's sync mode."""
        mode = SyncMode(task.sync_mode)
        if mode is SyncMode.CUMULATIVE_SYNC:
            return self.cumulative_sync(task)
        if mode is SyncMode.MIRROR_SYNC:
            return self.mirror_sync(task)
        raise InvalidInputError(f"Task {task.id} is a copy task, not a sync task")

    def _providers(self, task: ScheduledTask) -> tuple[StorageProvider, StorageProvider]:
        source = self._pool.get(task.source_provider, task.user_id)
        dest = self._pool.get(task.dest_provider, task.user_id)
        return source, dest

    def _source_entries(
        self,
        source: StorageProvider,
        task: ScheduledTask,
        folder_filter: FolderFilter,
        errors: list[str] | None,
    ) -> list[SyncEntry]:
        root = source_root(source, task)
        if task.item_type == ItemType.FILE.value:
            meta = source.get_metadata(root)
            return [SyncEntry(meta, meta.name)]
        return enumerate_files(source, root, folder_filter, errors)

    def _record(
        self,
        task: ScheduledTask,
        source: StorageProvider,
        dest: StorageProvider,
        entry: SyncEntry,
        dest_file_id: str | None,
        source_file: RemoteFile | None = None,
        placed: bool = True,
    ) -> None:
        file = source_file or entry.file
        self._store.upsert_sync_record(
            task.id,
            file.id,
            source_path=entry.relative_path,
            source_provider=source.name,
            file_name=file.name,
            mime_type=file.mime_type,
            file_size=file.size,
            source_modified_at=file.modified_time,
            content_hash=file.content_hash,
            dest_file_id=dest_file_id,
            dest_path=entry.relative_path if placed else None,
            dest_provider=dest.name,
            last_synced_at=utcnow(),
            sync_status=SyncStatus.SYNCED.value,
        )

    def _mark_failed(self, task: ScheduledTask, record: SyncFileRecord | None) -> None:
        if record is not None:
            self._store.upsert_sync_record(
                task.id, record.source_file_id, sync_status=SyncStatus.FAILED.value
            )

    def cumulative_sync(self, task: ScheduledTask) -> SyncResult:
        """Copy new and modified source files, never deleting anything.

        Args:
            task: Scheduled task in cumulative_sync mode.

        Returns:
            Statistics of the pass. ``success`` is False if any file failed.
        """
        start = time.monotonic()
        result = SyncResult()
        source, dest = self._providers(task)
        folder_filter = FolderFilter(task.include_folders, task.exclude_folders)
        entries = self._source_entries(source, task, folder_filter, result.errors)
        result.files_failed += len(result.errors)
        folders = FolderResolver(dest, dest.resolve_folder(task.dest_folder_id))
        action = DuplicateAction(task.duplicate_action)

        logger.info("Cumulative sync of task %s: %d files found", task.id, len(entries))

        for entry in entries:
            result.files_scanned += 1
            record = self._store.get_sync_record(task.id, entry.file.id)
            change = classify_file(entry.file, record)
            if change is FileChange.UNCHANGED:
                result.files_skipped += 1
                continue
            if change is FileChange.NEW:
                result.files_new += 1
            else:
                result.files_modified += 1

            modified = change is FileChange.MODIFIED
            try:
                outcome = self._transfer.transfer(
                    source,
                    dest,
                    entry.file,
                    folders.resolve(entry.relative_dir),
                    task.user_id,
                    duplicate_action=action,
                    overwrite=modified,
                    hash_match_only=modified,
                    file_path=entry.relative_path,
                )
            except Exception as e:
                logger.warning("Failed to sync %s: %s", entry.relative_path, e)
                result.add_error(f"{entry.relative_path}: {e}")
                self._mark_failed(task, record)
                continue

            self._count_outcome(result, entry, outcome)
            self._record(task, source, dest, entry, self._dest_id(outcome, record), placed=outcome.written)

        return self._finish(task, "Cumulative", result, start)

    def _count_outcome(self, result: SyncResult, entry: SyncEntry, outcome: TransferOutcome) -> None:
        if outcome.written:
            result.files_copied += 1
            result.bytes_transferred += entry.file.size
        else:
            result.files_skipped += 1

    def _dest_id(self, outcome: TransferOutcome, record: SyncFileRecord | None) -> str | None:
        if outcome.result is not None:
            return outcome.result.id
        if outcome.duplicate is not None and outcome.duplicate.duplicate_file is not None:
            return outcome.duplicate.duplicate_file.file_id
        return record.dest_file_id if record else None

    def _finish(self, task: ScheduledTask, label: str, result: SyncResult, start: float) -> SyncResult:
        result.duration = time.monotonic() - start
        result.success = result.files_failed == 0
        logger.info(
            "%s sync of task %s done in %.1fs: %d scanned, %d new, %d modified, "
            "%d copied, %d skipped, %d failed, %d conflicts",
            label,
            task.id,
            result.duration,
            result.files_scanned,
            result.files_new,
            result.files_modified,
            result.files_copied,
            result.files_skipped,
            result.files_failed,
            result.conflicts,
        )
        return result

    def _differ(self, a: datetime | None, b: datetime | None) -> bool:
        """Check if two modified times are further apart than the threshold."""
        if a is None or b is None:
            return True
        return abs(a - b) > self.conflict_threshold

    def _in_sync(self, source: StorageProvider, dest: StorageProvider, s: RemoteFile, d: RemoteFile) -> bool:
        if source.name == dest.name and s.content_hash and d.content_hash:
            return s.content_hash == d.content_hash
        return s.size == d.size and not self._differ(s.modified_time, d.modified_time)

    def _record_conflict(self, task: ScheduledTask, path: str, s: RemoteFile, d: RemoteFile) -> None:
        self._store.create_conflict(
            task.id,
            file_name=s.name,
            relative_path=path,
            source_file_id=s.id,
            source_modified_at=s.modified_time,
            source_size=s.size,
            dest_file_id=d.id,
            dest_modified_at=d.modified_time,
            dest_size=d.size,
        )
        logger.warning("Conflict on %s for task %s: both sides modified", path, task.id)

    def mirror_sync(self, task: ScheduledTask) -> SyncResult:
        """Two-way sync between the task's source and destination trees.

        Phase 1 pushes source-only and source-modified files to the
        destination. A file modified on both sides since the last sync is
        recorded as a FileConflict and left untouched. Phase 2 copies
        destination-only files back to the source. Paths with an unresolved
        conflict are skipped.

        Args:
            task: Scheduled task in mirror_sync mode.

        Returns:
            Statistics of the pass.
        """
        start = time.monotonic()
        result = SyncResult()
        source, dest = self._providers(task)
        folder_filter = FolderFilter(task.include_folders, task.exclude_folders)
        src_root = source.resolve_folder(source_root(source, task))
        dst_root = dest.resolve_folder(task.dest_folder_id)

        # A partial listing would look like missing files, so listing errors abort
        src_index = {e.relative_path: e for e in enumerate_files(source, src_root, folder_filter)}
        dst_index = {e.relative_path: e for e in enumerate_files(dest, dst_root, folder_filter)}
        records = {r.source_file_id: r for r in self._store.list_sync_records(task.id)}
        blocked = {c.relative_path for c in self._store.list_conflicts(task.id, unresolved_only=True)}
        dst_folders = FolderResolver(dest, dst_root)
        src_folders = FolderResolver(source, src_root)
        action = DuplicateAction(task.duplicate_action)

        logger.info(
            "Mirror sync of task %s: %d source files, %d destination files",
            task.id,
            len(src_index),
            len(dst_index),
        )

        # Phase 1: source -> destination
        for path, entry in src_index.items():
            result.files_scanned += 1
            if path in blocked:
                result.files_skipped += 1
                continue
            other = dst_index.get(path)
            record = records.get(entry.file.id)
            try:
                if other is None:
                    # A duplicate skipped on an earlier pass was never placed here
                    if (
                        record is not None
                        and record.dest_path is None
                        and classify_file(entry.file, record) is FileChange.UNCHANGED
                    ):
                        result.files_skipped += 1
                        continue
                    result.files_new += 1
                    outcome = self._transfer.transfer(
                        source,
                        dest,
                        entry.file,
                        dst_folders.resolve(entry.relative_dir),
                        task.user_id,
                        duplicate_action=action,
                        file_path=path,
                    )
                    self._count_outcome(result, entry, outcome)
                    self._record(task, source, dest, entry, self._dest_id(outcome, record), placed=outcome.written)
                    continue

                if record is None:
                    if self._in_sync(source, dest, entry.file, other.file):
                        result.files_skipped += 1
                        self._record(task, source, dest, entry, other.file.id)
                    else:
                        result.conflicts += 1
                        self._record_conflict(task, path, entry.file, other.file)
                    continue

                if classify_file(entry.file, record) is FileChange.UNCHANGED:
                    result.files_skipped += 1
                    continue

                result.files_modified += 1
                dest_changed = (
                    other.file.modified_time is not None
                    and record.last_synced_at is not None
                    and other.file.modified_time > record.last_synced_at + self.conflict_threshold
                )
                if dest_changed and self._differ(entry.file.modified_time, other.file.modified_time):
                    result.conflicts += 1
                    self._record_conflict(task, path, entry.file, other.file)
                    continue

                outcome = self._transfer.transfer(
                    source,
                    dest,
                    entry.file,
                    dst_folders.resolve(entry.relative_dir),
                    task.user_id,
                    duplicate_action=DuplicateAction.REPLACE,
                    overwrite=True,
                    file_path=path,
                )
                self._count_outcome(result, entry, outcome)
                self._record(task, source, dest, entry, self._dest_id(outcome, record))
            except Exception as e:
                logger.warning("Failed to mirror %s to destination: %s", path, e)
                result.add_error(f"{path}: {e}")
                self._mark_failed(task, record)

        # Phase 2: destination -> source
        for path, entry in dst_index.items():
            if path in src_index:
                continue
            result.files_scanned += 1
            if path in blocked:
                result.files_skipped += 1
                continue
            result.files_new += 1
            try:
                outcome = self._transfer.transfer(
                    dest,
                    source,
                    entry.file,
                    src_folders.resolve(entry.relative_dir),
                    task.user_id,
                    duplicate_action=action,
                    file_path=path,
                )
            except Exception as e:
                logger.warning("Failed to mirror %s back to source: %s", path, e)
                result.add_error(f"{path}: {e}")
                continue
            self._count_outcome(result, entry, outcome)
            if outcome.result is not None:
                copied = source.get_metadata(outcome.result.id)
                self._record(task, source, dest, entry, entry.file.id, source_file=copied)

        return self._finish(task, "Mirror", result, start)

    def resolve_conflict(
        self,
        conflict_id: int,
        resolution: ConflictResolution | str,
    ) -> FileConflict:
        """Apply a resolution and perform the corrective copy.

        keep_source copies the source version over the destination,
        keep_target copies the destination version over the source, and
        keep_newer picks whichever snapshot was modified last.

        Raises:
            InvalidStateError: If the conflict is unknown or already resolved.
        """
        resolution = ConflictResolution(resolution)
        conflict = self._store.get_conflict(conflict_id)
        if conflict is None:
            raise InvalidStateError(f"Conflict {conflict_id} not found")
        if conflict.resolution != ConflictResolution.UNRESOLVED.value:
            raise InvalidStateError(f"Conflict {conflict_id} is already resolved")
        if resolution is ConflictResolution.UNRESOLVED:
            raise InvalidStateError("A conflict cannot be resolved as 'unresolved'")
        task = self._store.get_task(conflict.task_id)
        if task is None:
            raise InvalidStateError(f"Task {conflict.task_id} not found")

        effective = resolution
        if resolution is ConflictResolution.KEEP_NEWER:
            src_time = conflict.source_modified_at
            dst_time = conflict.dest_modified_at
            source_newer = dst_time is None or (src_time is not None and src_time >= dst_time)
            effective = ConflictResolution.KEEP_SOURCE if source_newer else ConflictResolution.KEEP_TARGET

        source, dest = self._providers(task)
        relative_dir = conflict.relative_path.rpartition("/")[0]
        entry = SyncEntry(source.get_metadata(conflict.source_file_id), conflict.relative_path)

        if effective is ConflictResolution.KEEP_SOURCE:
            folder = FolderResolver(dest, dest.resolve_folder(task.dest_folder_id)).resolve(relative_dir)
            outcome = self._transfer.transfer(
                source,
                dest,
                entry.file,
                folder,
                task.user_id,
                duplicate_action=DuplicateAction.REPLACE,
                overwrite=True,
                file_path=conflict.relative_path,
            )
            self._record(task, source, dest, entry, self._dest_id(outcome, None))
            details = "Source version copied over destination"
        else:
            src_root = source.resolve_folder(source_root(source, task))
            folder = FolderResolver(source, src_root).resolve(relative_dir)
            outcome = self._transfer.transfer(
                dest,
                source,
                dest.get_metadata(conflict.dest_file_id),
                folder,
                task.user_id,
                duplicate_action=DuplicateAction.REPLACE,
                overwrite=True,
                file_path=conflict.relative_path,
            )
            written_id = outcome.result.id if outcome.result else conflict.source_file_id
            copied = source.get_metadata(written_id)
            self._record(task, source, dest, entry, conflict.dest_file_id, source_file=copied)
            details = "Destination version copied over source"

        if resolution is ConflictResolution.KEEP_NEWER:
            details = f"{details} (newer)"
        logger.info("Resolved conflict %s on %s: %s", conflict_id, conflict.relative_path, resolution.value)
        return self._store.resolve_conflict(conflict_id, resolution, details)
