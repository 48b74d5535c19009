"""Storage provider contract.

This module provides:
- RemoteFile: Metadata of a file or folder on a provider
- ResourceRef: Result of parsing a share/browse URL
- UploadResult: Identity of a written file
- StorageProvider: Abstract interface every provider adapter implements

Provider adapters translate their API failures into the exceptions of
``cloudmover.core.errors`` so callers never see HTTP details.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime

from cloudmover.core.errors import InvalidInputError
from cloudmover.core.types import ItemType


@dataclass
class RemoteFile:
    """File or folder metadata from a provider.

    Attributes:
        id: Provider identifier used for every other call (a Drive file id,
            a Dropbox path).
        name: Display name.
        is_folder: True for folders.
        size: Size in bytes (0 for folders).
        modified_time: Last content modification, timezone-aware.
        mime_type: MIME type when the provider reports one.
        content_hash: Provider fingerprint of the content, if any. Only
            comparable between files of the same provider (Dropbox reports a
            hash of per-block hashes, Drive an MD5 or SHA-256 checksum).
        sha256: SHA-256 of the content, set only when the provider reports
            a plain digest.
        web_url: Link for humans, if any.
    """

    id: str
    name: str
    is_folder: bool = False
    size: int = 0
    modified_time: datetime | None = None
    mime_type: str | None = None
    content_hash: str | None = None
    sha256: str | None = None
    web_url: str | None = None

    @property
    def item_type(self) -> ItemType:
        """Get the resource kind."""
        return ItemType.FOLDER if self.is_folder else ItemType.FILE


@dataclass
class ResourceRef:
    """Resource a URL points to."""

    provider: str
    resource_id: str
    item_type: ItemType

    @property
    def is_folder(self) -> bool:
        """Check if the URL points at a folder."""
        return self.item_type is ItemType.FOLDER


@dataclass
class UploadResult:
    """File written by an upload or a server-side copy."""

    id: str
    name: str
    url: str | None = None
    size: int = 0


class StorageProvider(ABC):
    """Interface of a remote storage provider bound to one user's credentials.

    Implementations must be safe to call from several threads.
    """

    name: str = ""
    root_id: str = ""

    @abstractmethod
    def parse_resource_url(self, url: str) -> ResourceRef:
        """Extract the resource id and kind from a share or browse URL.

        Raises:
            InvalidInputError: If the URL does not belong to this provider.
        """

    @abstractmethod
    def get_metadata(self, resource_id: str) -> RemoteFile:
        """Get metadata of a file or folder."""

    @abstractmethod
    def list_children(self, folder_id: str) -> list[RemoteFile]:
        """List the direct children of a folder (files and folders)."""

    @abstractmethod
    def download(self, file_id: str) -> bytes:
        """Download the full content of a file."""

    @abstractmethod
    def upload(
        self,
        name: str,
        data: bytes,
        dest_folder: str,
        modified_time: datetime | None = None,
        overwrite: bool = False,
    ) -> UploadResult:
        """Write a file into a folder.

        Args:
            name: File name in the destination folder.
            data: File content.
            dest_folder: Destination folder id.
            modified_time: Source modification time to keep as metadata.
            overwrite: Replace an existing file with the same name instead of
                creating another one.
        """

    @abstractmethod
    def copy(self, file_id: str, dest_folder: str, name: str | None = None) -> UploadResult:
        """Copy a file server-side into a folder of the same provider."""

    @abstractmethod
    def create_folder(self, name: str, parent_id: str) -> RemoteFile:
        """Create a folder."""

    def find_child(self, parent_id: str, name: str) -> RemoteFile | None:
        """Find a direct child by name.

        Returns:
            The first child with this name, or None.
        """
        for child in self.list_children(parent_id):
            if child.name == name:
                return child
        return None

    def ensure_folder(self, name: str, parent_id: str) -> RemoteFile:
        """Get a child folder by name, creating it when missing."""
        existing = self.find_child(parent_id, name)
        if existing is not None:
            if not existing.is_folder:
                raise InvalidInputError(
                    f"'{name}' exists and is not a folder", provider=self.name
                )
            return existing
        return self.create_folder(name, parent_id)

    def resolve_folder(self, folder_id: str | None) -> str:
        """Map an empty destination to the provider root."""
        return folder_id or self.root_id

    def close(self) -> None:
        """Release network resources."""
