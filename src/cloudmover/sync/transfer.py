"""File transfers between providers.

This module provides:
- FileTransfer: Copies one file, consulting the duplicate detector first
- FolderResolver: Recreates relative folder paths under a destination root
- TransferOutcome: What happened to a file

Cross-provider copies download then upload, keeping the source modified
time. Same-provider copies use the provider's server-side copy.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from cloudmover.core.types import DuplicateAction
from cloudmover.sync.duplicates import (
    DuplicateCheck,
    MatchType,
    apply_resolution,
    compute_hash,
)
from cloudmover.sync.filters import normalize_path

if TYPE_CHECKING:
    from cloudmover.providers.base import RemoteFile, StorageProvider, UploadResult
    from cloudmover.sync.duplicates import DuplicateDetector

logger = logging.getLogger(__name__)


def is_same_provider(source: StorageProvider, dest: StorageProvider) -> bool:
    """Check if a server-side copy is possible."""
    return source is dest or source.name == dest.name


@dataclass
class TransferOutcome:
    """Result of transferring one file.

    Attributes:
        written: True if a file was written to the destination.
        file_name: Name the file was (or would have been) written under.
        result: Written file, or None when skipped.
        content_hash: SHA-256 of the content when it was known.
        duplicate: Duplicate lookup that led to a skip or rename.
    """

    written: bool
    file_name: str
    result: UploadResult | None = None
    content_hash: str | None = None
    duplicate: DuplicateCheck | None = None

    @property
    def skipped(self) -> bool:
        """Check if the duplicate policy prevented the write."""
        return not self.written


class FileTransfer:
    """Copies single files between providers for one user."""

    def __init__(self, detector: DuplicateDetector | None = None) -> None:
        self._detector = detector

    def transfer(
        self,
        source: StorageProvider,
        dest: StorageProvider,
        file: RemoteFile,
        dest_folder: str,
        user_id: str,
        duplicate_action: DuplicateAction | str = DuplicateAction.SKIP,
        overwrite: bool = False,
        hash_match_only: bool = False,
        file_path: str | None = None,
        on_fetched: Callable[[], None] | None = None,
    ) -> TransferOutcome:
        """Copy one file into a destination folder.

        Args:
            source: Provider holding the file.
            dest: Provider to write to.
            file: Source file metadata.
            dest_folder: Destination folder id.
            user_id: Owner, for duplicate lookups.
            duplicate_action: Policy when the destination already has it.
            overwrite: Replace a same-name file at the destination.
            hash_match_only: Ignore duplicates found by name and size alone.
            file_path: Relative path recorded in the hash registry.
            on_fetched: Called once the source content (or metadata, for a
                server-side copy) is in hand, before anything is written.

        Returns:
            What was written, or why nothing was.
        """
        name = file.name
        same_provider = is_same_provider(source, dest)
        data: bytes | None = None
        content_hash = file.sha256

        if not same_provider or overwrite:
            data = source.download(file.id)
            content_hash = compute_hash(data)

        if on_fetched is not None:
            on_fetched()

        if self._detector is not None:
            check = self._detector.check(user_id, name, file.size, content_hash, dest.name)
            if check.is_duplicate and not (hash_match_only and check.match_type is not MatchType.HASH):
                resolution = apply_resolution(name, duplicate_action)
                if not resolution.write:
                    logger.info(
                        "Skipping %s: duplicate of %s (%s match)",
                        name,
                        check.duplicate_file.file_id if check.duplicate_file else "?",
                        check.match_type.value,
                    )
                    return TransferOutcome(False, name, content_hash=content_hash, duplicate=check)
                name = resolution.file_name
                overwrite = overwrite or resolution.overwrite
                if overwrite and data is None:
                    data = source.download(file.id)
                    content_hash = compute_hash(data)

        if data is None:
            result = dest.copy(file.id, dest_folder, name)
        else:
            result = dest.upload(
                name,
                data,
                dest_folder,
                modified_time=file.modified_time,
                overwrite=overwrite,
            )

        if self._detector is not None:
            self._detector.register_file(
                user_id=user_id,
                file_name=result.name,
                file_size=file.size,
                provider=dest.name,
                file_id=result.id,
                content_hash=content_hash,
                file_path=file_path,
            )
        logger.debug("Copied %s (%s -> %s) as %s", file.name, source.name, dest.name, result.id)
        return TransferOutcome(True, name, result=result, content_hash=content_hash)


class FolderResolver:
    """Maps relative folder paths to destination folder ids.

    Folders are looked up by name before being created, and resolved ids
    are cached for the lifetime of the resolver.
    """

    def __init__(self, provider: StorageProvider, root_id: str) -> None:
        self._provider = provider
        self._cache: dict[str, str] = {"": root_id}
        self._lock = threading.Lock()

    def resolve(self, relative_dir: str) -> str:
        """Get (creating as needed) the folder id of a relative path."""
        relative_dir = normalize_path(relative_dir)
        with self._lock:
            if relative_dir in self._cache:
                return self._cache[relative_dir]
            parent, _, name = relative_dir.rpartition("/")
        parent_id = self.resolve(parent)
        folder = self._provider.ensure_folder(name, parent_id)
        with self._lock:
            self._cache[relative_dir] = folder.id
        return folder.id
