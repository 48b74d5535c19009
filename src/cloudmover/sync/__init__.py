"""Sync module - Sync engine, transfers and duplicate detection."""

from cloudmover.sync.duplicates import (
    DuplicateCheck,
    DuplicateDetector,
    DuplicateFile,
    MatchType,
    Resolution,
    apply_resolution,
    compute_hash,
)
from cloudmover.sync.engine import (
    FileChange,
    SyncEngine,
    SyncEntry,
    SyncResult,
    classify_file,
    enumerate_files,
)
from cloudmover.sync.filters import FolderFilter
from cloudmover.sync.transfer import FileTransfer, FolderResolver, TransferOutcome

__all__ = [
    # Duplicates
    "DuplicateCheck",
    "DuplicateDetector",
    "DuplicateFile",
    "MatchType",
    "Resolution",
    "apply_resolution",
    "compute_hash",
    # Engine
    "FileChange",
    "SyncEngine",
    "SyncEntry",
    "SyncResult",
    "classify_file",
    "enumerate_files",
    # Filters
    "FolderFilter",
    # Transfers
    "FileTransfer",
    "FolderResolver",
    "TransferOutcome",
]
