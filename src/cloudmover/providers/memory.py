"""Process-local storage provider.

Holds a tree of folders and files in memory. Used for dry runs and as the
provider double in tests, where it also supports failure injection and
artificial latency.
"""

from __future__ import annotations

import hashlib
import itertools
import threading
import time
from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import UTC, datetime

from cloudmover.core.errors import InvalidInputError, NotFoundError
from cloudmover.core.types import ItemType, ProviderName
from cloudmover.providers.base import RemoteFile, ResourceRef, StorageProvider, UploadResult

URL_PREFIX = "memory://"


@dataclass
class _Node:
    id: str
    name: str
    parent_id: str | None
    is_folder: bool
    data: bytes = b""
    modified_time: datetime | None = None


class InMemoryProvider(StorageProvider):
    """In-memory folder tree with the StorageProvider interface.

    Usage:
        provider = InMemoryProvider()
        folder = provider.add_folder("Photos")
        provider.add_file("a.jpg", b"...", parent_id=folder.id)
        provider.fail_next("download", TransientError("boom"), times=2)
    """

    root_id = "root"

    def __init__(self, name: str = ProviderName.MEMORY.value) -> None:
        self.name = name
        self._lock = threading.RLock()
        self._ids = itertools.count(1)
        self._nodes: dict[str, _Node] = {
            self.root_id: _Node(self.root_id, "", None, True, modified_time=datetime.now(UTC))
        }
        self._failures: dict[str, list[Exception]] = defaultdict(list)
        self.calls: Counter[str] = Counter()
        self.latency: dict[str, float] = {}
        self.closed = False

    # === Test helpers ===

    def add_folder(self, name: str, parent_id: str = "root") -> RemoteFile:
        """Create a folder directly."""
        with self._lock:
            node = self._insert(name, parent_id, is_folder=True, data=b"", modified_time=None)
            return self._to_remote(node)

    def add_file(
        self,
        name: str,
        data: bytes,
        parent_id: str = "root",
        modified_time: datetime | None = None,
    ) -> RemoteFile:
        """Create a file directly."""
        with self._lock:
            node = self._insert(name, parent_id, is_folder=False, data=data, modified_time=modified_time)
            return self._to_remote(node)

    def update_file(self, file_id: str, data: bytes, modified_time: datetime | None = None) -> None:
        """Replace the content of a file."""
        with self._lock:
            node = self._node(file_id)
            node.data = data
            node.modified_time = modified_time or datetime.now(UTC)

    def set_modified_time(self, file_id: str, modified_time: datetime) -> None:
        """Change the modification time of a file."""
        with self._lock:
            self._node(file_id).modified_time = modified_time

    def read(self, file_id: str) -> bytes:
        """Get the content of a file without counting a download."""
        with self._lock:
            return self._node(file_id).data

    def names_in(self, folder_id: str = "root") -> list[str]:
        """List child names of a folder, sorted."""
        with self._lock:
            return sorted(n.name for n in self._nodes.values() if n.parent_id == folder_id)

    def fail_next(self, operation: str, error: Exception, times: int = 1) -> None:
        """Make the next ``times`` calls of an operation raise ``error``."""
        with self._lock:
            self._failures[operation].extend([error] * times)

    def _enter(self, operation: str) -> None:
        with self._lock:
            self.calls[operation] += 1
            failures = self._failures.get(operation)
            error = failures.pop(0) if failures else None
        delay = self.latency.get(operation, 0.0)
        if delay:
            time.sleep(delay)
        if error is not None:
            raise error

    # === Internals ===

    def _insert(
        self,
        name: str,
        parent_id: str,
        is_folder: bool,
        data: bytes,
        modified_time: datetime | None,
    ) -> _Node:
        parent = self._node(parent_id)
        if not parent.is_folder:
            raise InvalidInputError(f"'{parent.name}' is not a folder", self.name)
        if not name or "/" in name:
            raise InvalidInputError(f"Invalid name '{name}'", self.name)
        node_id = f"{self.name}-{next(self._ids)}"
        node = _Node(
            id=node_id,
            name=name,
            parent_id=parent.id,
            is_folder=is_folder,
            data=data,
            modified_time=modified_time or datetime.now(UTC),
        )
        self._nodes[node_id] = node
        return node

    def _node(self, node_id: str) -> _Node:
        node = self._nodes.get(node_id or self.root_id)
        if node is None:
            raise NotFoundError(f"{node_id} not found", self.name, 404)
        return node

    def _to_remote(self, node: _Node) -> RemoteFile:
        digest = None if node.is_folder else hashlib.sha256(node.data).hexdigest()
        return RemoteFile(
            id=node.id,
            name=node.name,
            is_folder=node.is_folder,
            size=0 if node.is_folder else len(node.data),
            modified_time=node.modified_time,
            mime_type=None if node.is_folder else "application/octet-stream",
            content_hash=digest,
            sha256=digest,
            web_url=f"{URL_PREFIX}{node.id}",
        )

    # === StorageProvider ===

    def parse_resource_url(self, url: str) -> ResourceRef:
        """Parse ``memory://<id>`` URLs."""
        if not url.startswith(URL_PREFIX):
            raise InvalidInputError("Invalid memory URL format", self.name)
        node_id = url[len(URL_PREFIX):].strip("/")
        with self._lock:
            node = self._node(node_id)
            item_type = ItemType.FOLDER if node.is_folder else ItemType.FILE
        return ResourceRef(self.name, node.id, item_type)

    def get_metadata(self, resource_id: str) -> RemoteFile:
        """Get metadata of a node."""
        self._enter("get_metadata")
        with self._lock:
            return self._to_remote(self._node(resource_id))

    def list_children(self, folder_id: str) -> list[RemoteFile]:
        """List children of a folder, sorted by name."""
        self._enter("list_children")
        with self._lock:
            folder = self._node(folder_id)
            if not folder.is_folder:
                raise InvalidInputError(f"'{folder.name}' is not a folder", self.name)
            children = [n for n in self._nodes.values() if n.parent_id == folder.id]
            return [self._to_remote(n) for n in sorted(children, key=lambda n: n.name)]

    def download(self, file_id: str) -> bytes:
        """Read a file's content."""
        self._enter("download")
        with self._lock:
            node = self._node(file_id)
            if node.is_folder:
                raise InvalidInputError(f"'{node.name}' is a folder", self.name)
            return node.data

    def upload(
        self,
        name: str,
        data: bytes,
        dest_folder: str,
        modified_time: datetime | None = None,
        overwrite: bool = False,
    ) -> UploadResult:
        """Write a file, replacing a same-name file when ``overwrite``."""
        self._enter("upload")
        with self._lock:
            folder_id = self.resolve_folder(dest_folder)
            existing = None
            if overwrite:
                existing = next(
                    (
                        n
                        for n in self._nodes.values()
                        if n.parent_id == folder_id and n.name == name and not n.is_folder
                    ),
                    None,
                )
            if existing is not None:
                existing.data = data
                existing.modified_time = modified_time or datetime.now(UTC)
                node = existing
            else:
                node = self._insert(name, folder_id, False, data, modified_time)
            return UploadResult(id=node.id, name=node.name, url=f"{URL_PREFIX}{node.id}", size=len(data))

    def copy(self, file_id: str, dest_folder: str, name: str | None = None) -> UploadResult:
        """Duplicate a file into a folder."""
        self._enter("copy")
        with self._lock:
            source = self._node(file_id)
            node = self._insert(
                name or source.name,
                self.resolve_folder(dest_folder),
                False,
                source.data,
                source.modified_time,
            )
            return UploadResult(id=node.id, name=node.name, url=f"{URL_PREFIX}{node.id}", size=len(node.data))

    def create_folder(self, name: str, parent_id: str) -> RemoteFile:
        """Create a folder."""
        self._enter("create_folder")
        with self._lock:
            return self._to_remote(self._insert(name, self.resolve_folder(parent_id), True, b"", None))

    def close(self) -> None:
        """Mark the provider closed."""
        self.closed = True
