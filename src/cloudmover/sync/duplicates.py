"""Duplicate detection before writes.

A file is looked up in two phases:
1. Metadata: same user, same name and same size (and provider when given).
   If a content hash is known and one of the candidates has it, the match
   is a "hash" match; otherwise it is still a duplicate, as a "metadata"
   match.
2. Content: the SHA-256 hash alone, regardless of name and size.
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, BinaryIO

from cloudmover.core.types import DuplicateAction

if TYPE_CHECKING:
    from cloudmover.store.database import JobStore
    from cloudmover.store.models import FileHash

logger = logging.getLogger(__name__)

HASH_CHUNK_SIZE = 1024 * 1024


class MatchType(str, Enum):
    """How a duplicate was found."""

    HASH = "hash"
    METADATA = "metadata"
    NONE = "none"


@dataclass
class DuplicateFile:
    """Registered file that matched."""

    file_id: str
    file_name: str
    provider: str
    created_at: datetime | None = None

    @classmethod
    def from_record(cls, record: FileHash) -> DuplicateFile:
        """Create from a file hash row."""
        return cls(
            file_id=record.file_id,
            file_name=record.file_name,
            provider=record.provider,
            created_at=record.created_at,
        )


@dataclass
class DuplicateCheck:
    """Outcome of a duplicate lookup."""

    is_duplicate: bool
    match_type: MatchType = MatchType.NONE
    duplicate_file: DuplicateFile | None = None


@dataclass
class Resolution:
    """What the writer should do with a file.

    Attributes:
        write: False when the write must be skipped.
        overwrite: Replace the existing destination file.
        file_name: Name to write under.
    """

    write: bool
    overwrite: bool
    file_name: str


def compute_hash(content: bytes | BinaryIO | Iterable[bytes]) -> str:
    """Compute the SHA-256 hex digest of bytes, a binary stream or chunks."""
    digest = hashlib.sha256()
    if isinstance(content, (bytes, bytearray, memoryview)):
        digest.update(content)
    elif hasattr(content, "read"):
        while chunk := content.read(HASH_CHUNK_SIZE):
            digest.update(chunk)
    else:
        for chunk in content:
            digest.update(chunk)
    return digest.hexdigest()


def suffixed_name(file_name: str) -> str:
    """Insert ``_copy`` before the extension (text after the last dot)."""
    stem, dot, ext = file_name.rpartition(".")
    if not dot:
        return f"{file_name}_copy"
    return f"{stem}_copy.{ext}"


def apply_resolution(file_name: str, action: DuplicateAction | str) -> Resolution:
    """Translate a duplicate action into a write decision.

    Args:
        file_name: Name the file would be written under.
        action: skip, replace or copy_with_suffix.

    Returns:
        Write decision for a file known to be a duplicate.
    """
    action = DuplicateAction(action)
    if action is DuplicateAction.SKIP:
        return Resolution(write=False, overwrite=False, file_name=file_name)
    if action is DuplicateAction.REPLACE:
        return Resolution(write=True, overwrite=True, file_name=file_name)
    return Resolution(write=True, overwrite=False, file_name=suffixed_name(file_name))


class DuplicateDetector:
    """Looks up and records written files in the file hash registry."""

    def __init__(self, store: JobStore) -> None:
        self._store = store

    def check(
        self,
        user_id: str,
        file_name: str,
        file_size: int,
        content_hash: str | None = None,
        provider: str | None = None,
    ) -> DuplicateCheck:
        """Check whether a user already has this file.

        Args:
            user_id: Owner of the file.
            file_name: Name of the file to write.
            file_size: Size in bytes.
            content_hash: SHA-256 of the content, when known.
            provider: Restrict the metadata phase to one provider.

        Returns:
            The match, or ``is_duplicate=False`` with match type "none".
        """
        matches = self._store.find_file_hashes_by_metadata(user_id, file_name, file_size, provider)
        if matches:
            if content_hash:
                for match in matches:
                    if match.content_hash == content_hash:
                        return DuplicateCheck(True, MatchType.HASH, DuplicateFile.from_record(match))
            return DuplicateCheck(True, MatchType.METADATA, DuplicateFile.from_record(matches[0]))

        if content_hash:
            match = self._store.find_file_hash(user_id, content_hash)
            if match is not None:
                return DuplicateCheck(True, MatchType.HASH, DuplicateFile.from_record(match))

        return DuplicateCheck(False)

    def register_file(
        self,
        user_id: str,
        file_name: str,
        file_size: int,
        provider: str,
        file_id: str,
        content_hash: str | None = None,
        file_path: str | None = None,
    ) -> None:
        """Record a file after it was written."""
        self._store.add_file_hash(
            user_id=user_id,
            file_name=file_name,
            file_size=file_size,
            provider=provider,
            file_id=file_id,
            content_hash=content_hash,
            file_path=file_path,
        )
        logger.debug("Registered %s (%d bytes) on %s for user %s", file_name, file_size, provider, user_id)
