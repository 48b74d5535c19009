"""Dropbox adapter using the Dropbox v2 HTTP API.

Dropbox addresses files by path, so ``RemoteFile.id`` is the display path
and the root folder is the empty string. Shared links are accepted as ids
as well and resolved through the sharing endpoints.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import UTC, datetime
from typing import Any

import httpx

from cloudmover.core.errors import (
    AuthorizationError,
    InvalidInputError,
    NotFoundError,
    ProviderError,
    QuotaExceededError,
    RateLimitedError,
)
from cloudmover.core.types import ItemType, ProviderName
from cloudmover.providers.base import RemoteFile, ResourceRef, UploadResult
from cloudmover.providers.http import HTTPProvider, parse_retry_after

logger = logging.getLogger(__name__)

API_URL = "https://api.dropboxapi.com/2"
CONTENT_URL = "https://content.dropboxapi.com/2"

_FILE_LINK_RE = re.compile(r"dropbox\.com/(?:s|scl/fi)/([^/]+)/(.+)")
_FOLDER_LINK_RE = re.compile(r"dropbox\.com/(?:sh|scl/fo)/([^/]+)/([^/]+)")
_HOME_RE = re.compile(r"dropbox\.com/home(/.*)?$")

_NOT_FOUND_TAGS = ("not_found", "not_file", "not_folder")
_INVALID_TAGS = ("malformed_path", "disallowed_name", "invalid_", "restricted_content", "conflict")


def parse_dropbox_url(url: str) -> ResourceRef:
    """Parse a Dropbox shared link or a ``/home/...`` browse URL.

    Shared links keep the full URL as resource id. Browse URLs map to the
    folder path they show.

    Raises:
        InvalidInputError: If the URL is not a Dropbox link.
    """
    provider = ProviderName.DROPBOX.value
    base_url = url.split("?")[0]
    if _FILE_LINK_RE.search(base_url):
        return ResourceRef(provider, url, ItemType.FILE)
    if _FOLDER_LINK_RE.search(base_url):
        return ResourceRef(provider, url, ItemType.FOLDER)
    if match := _HOME_RE.search(base_url):
        path = (match.group(1) or "").rstrip("/")
        return ResourceRef(provider, path, ItemType.FOLDER)
    raise InvalidInputError("Invalid Dropbox URL format", provider=provider)


def _is_link(resource_id: str) -> bool:
    return resource_id.startswith(("https://", "http://"))


def _join(folder: str, name: str) -> str:
    return f"{folder.rstrip('/')}/{name}"


def _format_time(value: datetime) -> str:
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class DropboxProvider(HTTPProvider):
    """Dropbox files addressed by path."""

    name = ProviderName.DROPBOX.value
    root_id = ""

    def parse_resource_url(self, url: str) -> ResourceRef:
        """Parse a Dropbox URL."""
        return parse_dropbox_url(url)

    def _raise_for_response(self, response: httpx.Response) -> None:
        status = response.status_code
        summary = ""
        try:
            summary = response.json().get("error_summary", "")
        except ValueError:
            summary = response.text[:200]
        message = f"Dropbox API error {status}: {summary}".rstrip(": ")

        if status in (401, 403):
            raise AuthorizationError(message, self.name, status)
        if status == 507 or "insufficient_space" in summary:
            raise QuotaExceededError(message, self.name, status)
        if status == 409:
            if any(tag in summary for tag in _NOT_FOUND_TAGS):
                raise NotFoundError(message, self.name, status)
            if "too_many_write_operations" in summary:
                raise RateLimitedError(
                    message, self.name, status, retry_after=parse_retry_after(response)
                )
            if any(tag in summary for tag in _INVALID_TAGS):
                raise InvalidInputError(message, self.name, status)
            raise ProviderError(message, self.name, status)
        if status == 400:
            raise InvalidInputError(message, self.name, status)
        self._raise_common(response, message)
        raise ProviderError(message, self.name, status)

    def _rpc(self, endpoint: str, body: dict[str, Any]) -> dict[str, Any]:
        return self._send("POST", f"{API_URL}{endpoint}", json=body).json()

    def _to_remote(self, data: dict[str, Any]) -> RemoteFile:
        is_folder = data.get(".tag") == "folder"
        return RemoteFile(
            id=data.get("path_display") or data.get("id") or data.get("url", ""),
            name=data.get("name", ""),
            is_folder=is_folder,
            size=int(data.get("size") or 0),
            modified_time=_parse_time(data.get("client_modified") or data.get("server_modified")),
            content_hash=data.get("content_hash"),
            web_url=data.get("url"),
        )

    def get_metadata(self, resource_id: str) -> RemoteFile:
        """Get metadata of a path or a shared link."""
        if _is_link(resource_id):
            data = self._rpc("/sharing/get_shared_link_metadata", {"url": resource_id})
            remote = self._to_remote(data)
            if not data.get("path_lower"):
                # Links not mounted in the user's Dropbox stay addressed by URL
                remote.id = resource_id
            return remote
        if not resource_id:
            return RemoteFile(id="", name="", is_folder=True)
        return self._to_remote(self._rpc("/files/get_metadata", {"path": resource_id}))

    def list_children(self, folder_id: str) -> list[RemoteFile]:
        """List a folder, following cursors."""
        if _is_link(folder_id):
            body: dict[str, Any] = {"path": "", "shared_link": {"url": folder_id}}
        else:
            body = {"path": folder_id, "recursive": False}
        data = self._rpc("/files/list_folder", body)
        entries = list(data.get("entries", []))
        while data.get("has_more"):
            data = self._rpc("/files/list_folder/continue", {"cursor": data["cursor"]})
            entries.extend(data.get("entries", []))
        return [self._to_remote(entry) for entry in entries if entry.get(".tag") != "deleted"]

    def download(self, file_id: str) -> bytes:
        """Download a file by path or shared link."""
        if _is_link(file_id):
            endpoint = "/sharing/get_shared_link_file"
            arg: dict[str, Any] = {"url": file_id}
        else:
            endpoint = "/files/download"
            arg = {"path": file_id}
        response = self._send(
            "POST",
            f"{CONTENT_URL}{endpoint}",
            headers={"Dropbox-API-Arg": json.dumps(arg)},
        )
        return response.content

    def upload(
        self,
        name: str,
        data: bytes,
        dest_folder: str,
        modified_time: datetime | None = None,
        overwrite: bool = False,
    ) -> UploadResult:
        """Upload a file in a single request."""
        arg: dict[str, Any] = {
            "path": _join(self.resolve_folder(dest_folder), name),
            "mode": "overwrite" if overwrite else "add",
            "autorename": not overwrite,
            "mute": True,
        }
        if modified_time is not None:
            arg["client_modified"] = _format_time(modified_time)
        response = self._send(
            "POST",
            f"{CONTENT_URL}/files/upload",
            content=data,
            headers={
                "Dropbox-API-Arg": json.dumps(arg),
                "Content-Type": "application/octet-stream",
            },
        )
        created = self._to_remote(response.json())
        logger.debug("Uploaded %s to Dropbox as %s", name, created.id)
        return UploadResult(
            id=created.id,
            name=created.name,
            url=f"https://www.dropbox.com/home{created.id}",
            size=len(data),
        )

    def copy(self, file_id: str, dest_folder: str, name: str | None = None) -> UploadResult:
        """Copy a file server-side."""
        if _is_link(file_id):
            raise InvalidInputError("Shared links cannot be copied server-side", self.name)
        target = _join(self.resolve_folder(dest_folder), name or file_id.rsplit("/", 1)[-1])
        data = self._rpc(
            "/files/copy_v2",
            {"from_path": file_id, "to_path": target, "autorename": True},
        )
        created = self._to_remote(data["metadata"])
        return UploadResult(
            id=created.id,
            name=created.name,
            url=f"https://www.dropbox.com/home{created.id}",
            size=created.size,
        )

    def create_folder(self, name: str, parent_id: str) -> RemoteFile:
        """Create a folder."""
        data = self._rpc(
            "/files/create_folder_v2",
            {"path": _join(self.resolve_folder(parent_id), name), "autorename": False},
        )
        metadata = dict(data["metadata"])
        metadata[".tag"] = "folder"
        return self._to_remote(metadata)
