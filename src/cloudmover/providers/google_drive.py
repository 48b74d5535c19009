"""Google Drive adapter using the Drive v3 REST API."""

from __future__ import annotations

import json
import logging
import re
import uuid
from datetime import datetime
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

API_URL = "https://www.googleapis.com/drive/v3"
UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3"

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
FILE_FIELDS = "id,name,mimeType,size,modifiedTime,md5Checksum,sha256Checksum,webViewLink"

# Native Google documents have no binary content and must be exported
EXPORT_FORMATS = {
    "application/vnd.google-apps.document": (
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        ".docx",
    ),
    "application/vnd.google-apps.spreadsheet": (
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        ".xlsx",
    ),
    "application/vnd.google-apps.presentation": (
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
        ".pptx",
    ),
    "application/vnd.google-apps.drawing": ("image/png", ".png"),
}

_FOLDER_RE = re.compile(r"/folders/([a-zA-Z0-9_-]+)")
_FILE_RE = re.compile(r"/file/d/([a-zA-Z0-9_-]+)")
_OPEN_RE = re.compile(r"[?&]id=([a-zA-Z0-9_-]+)")

_RATE_LIMIT_REASONS = {"rateLimitExceeded", "userRateLimitExceeded"}
_QUOTA_REASONS = {"storageQuotaExceeded", "quotaExceeded"}


def parse_drive_url(url: str) -> ResourceRef:
    """Parse a Google Drive share or browse URL.

    Recognizes ``/folders/<id>`` (folder), ``/file/d/<id>`` (file) and
    ``?id=<id>`` (file) forms.

    Raises:
        InvalidInputError: If no id can be found.
    """
    provider = ProviderName.GOOGLE.value
    if match := _FOLDER_RE.search(url):
        return ResourceRef(provider, match.group(1), ItemType.FOLDER)
    if match := _FILE_RE.search(url):
        return ResourceRef(provider, match.group(1), ItemType.FILE)
    if match := _OPEN_RE.search(url):
        return ResourceRef(provider, match.group(1), ItemType.FILE)
    raise InvalidInputError("Invalid Google Drive URL format", provider=provider)


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _format_time(value: datetime) -> str:
    return value.isoformat().replace("+00:00", "Z")


def _escape_query(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


class GoogleDriveProvider(HTTPProvider):
    """Google Drive files addressed by file id. The root folder is ``root``."""

    name = ProviderName.GOOGLE.value
    root_id = "root"

    def parse_resource_url(self, url: str) -> ResourceRef:
        """Parse a Drive URL."""
        return parse_drive_url(url)

    def _raise_for_response(self, response: httpx.Response) -> None:
        status = response.status_code
        message = f"Google Drive API error {status}"
        reason = ""
        try:
            error = response.json().get("error", {})
            message = error.get("message", message)
            errors = error.get("errors") or [{}]
            reason = errors[0].get("reason", "")
        except (ValueError, AttributeError):
            pass

        if status == 401:
            raise AuthorizationError(message, self.name, status)
        if status == 403:
            if reason in _RATE_LIMIT_REASONS:
                raise RateLimitedError(
                    message, self.name, status, retry_after=parse_retry_after(response)
                )
            if reason in _QUOTA_REASONS:
                raise QuotaExceededError(message, self.name, status)
            raise AuthorizationError(message, self.name, status)
        if status == 404:
            raise NotFoundError(message, self.name, status)
        if status in (400, 413):
            raise InvalidInputError(message, self.name, status)
        self._raise_common(response, message)
        raise ProviderError(message, self.name, status)

    def _to_remote(self, data: dict[str, Any]) -> RemoteFile:
        mime_type = data.get("mimeType")
        return RemoteFile(
            id=data["id"],
            name=data.get("name", ""),
            is_folder=mime_type == FOLDER_MIME_TYPE,
            size=int(data.get("size") or 0),
            modified_time=_parse_time(data.get("modifiedTime")),
            mime_type=mime_type,
            content_hash=data.get("sha256Checksum") or data.get("md5Checksum"),
            sha256=data.get("sha256Checksum"),
            web_url=data.get("webViewLink"),
        )

    def get_metadata(self, resource_id: str) -> RemoteFile:
        """Get metadata of a file or folder."""
        response = self._send(
            "GET",
            f"{API_URL}/files/{resource_id}",
            params={"fields": FILE_FIELDS, "supportsAllDrives": "true"},
        )
        return self._to_remote(response.json())

    def _query(self, q: str) -> list[RemoteFile]:
        files: list[RemoteFile] = []
        page_token: str | None = None
        while True:
            params = {
                "q": q,
                "fields": f"nextPageToken,files({FILE_FIELDS})",
                "pageSize": "1000",
                "supportsAllDrives": "true",
                "includeItemsFromAllDrives": "true",
            }
            if page_token:
                params["pageToken"] = page_token
            data = self._send("GET", f"{API_URL}/files", params=params).json()
            files.extend(self._to_remote(item) for item in data.get("files", []))
            page_token = data.get("nextPageToken")
            if not page_token:
                return files

    def list_children(self, folder_id: str) -> list[RemoteFile]:
        """List files and folders directly under a folder."""
        return self._query(f"'{_escape_query(folder_id)}' in parents and trashed=false")

    def find_child(self, parent_id: str, name: str) -> RemoteFile | None:
        """Find a direct child by name with a single query."""
        matches = self._query(
            f"name='{_escape_query(name)}' and '{_escape_query(parent_id)}' in parents "
            "and trashed=false"
        )
        return matches[0] if matches else None

    def download(self, file_id: str) -> bytes:
        """Download file content, exporting native Google documents."""
        meta = self.get_metadata(file_id)
        if meta.is_folder:
            raise InvalidInputError(f"'{meta.name}' is a folder", self.name)
        if meta.mime_type in EXPORT_FORMATS:
            export_mime, _ = EXPORT_FORMATS[meta.mime_type]
            response = self._send(
                "GET",
                f"{API_URL}/files/{file_id}/export",
                params={"mimeType": export_mime},
            )
        else:
            response = self._send(
                "GET",
                f"{API_URL}/files/{file_id}",
                params={"alt": "media", "supportsAllDrives": "true"},
            )
        return response.content

    def _multipart(self, metadata: dict[str, Any], data: bytes) -> tuple[bytes, str]:
        boundary = uuid.uuid4().hex
        body = b"".join(
            [
                f"--{boundary}\r\n".encode(),
                b"Content-Type: application/json; charset=UTF-8\r\n\r\n",
                json.dumps(metadata).encode(),
                f"\r\n--{boundary}\r\n".encode(),
                b"Content-Type: application/octet-stream\r\n\r\n",
                data,
                f"\r\n--{boundary}--".encode(),
            ]
        )
        return body, f"multipart/related; boundary={boundary}"

    def upload(
        self,
        name: str,
        data: bytes,
        dest_folder: str,
        modified_time: datetime | None = None,
        overwrite: bool = False,
    ) -> UploadResult:
        """Upload a file with a multipart request.

        With ``overwrite``, an existing file with the same name in the folder
        gets a new revision instead of a sibling copy.
        """
        dest_folder = self.resolve_folder(dest_folder)
        metadata: dict[str, Any] = {"name": name}
        if modified_time is not None:
            metadata["modifiedTime"] = _format_time(modified_time)

        existing = self.find_child(dest_folder, name) if overwrite else None
        params = {"uploadType": "multipart", "fields": FILE_FIELDS, "supportsAllDrives": "true"}
        if existing is not None and not existing.is_folder:
            body, content_type = self._multipart(metadata, data)
            response = self._send(
                "PATCH",
                f"{UPLOAD_URL}/files/{existing.id}",
                params=params,
                content=body,
                headers={"Content-Type": content_type},
            )
        else:
            metadata["parents"] = [dest_folder]
            body, content_type = self._multipart(metadata, data)
            response = self._send(
                "POST",
                f"{UPLOAD_URL}/files",
                params=params,
                content=body,
                headers={"Content-Type": content_type},
            )
        created = self._to_remote(response.json())
        logger.debug("Uploaded %s to Drive folder %s as %s", name, dest_folder, created.id)
        return UploadResult(
            id=created.id,
            name=created.name,
            url=f"https://drive.google.com/file/d/{created.id}/view",
            size=len(data),
        )

    def copy(self, file_id: str, dest_folder: str, name: str | None = None) -> UploadResult:
        """Copy a file server-side."""
        body: dict[str, Any] = {"parents": [self.resolve_folder(dest_folder)]}
        if name:
            body["name"] = name
        response = self._send(
            "POST",
            f"{API_URL}/files/{file_id}/copy",
            params={"fields": FILE_FIELDS, "supportsAllDrives": "true"},
            json=body,
        )
        created = self._to_remote(response.json())
        return UploadResult(
            id=created.id,
            name=created.name,
            url=created.web_url or f"https://drive.google.com/file/d/{created.id}/view",
            size=created.size,
        )

    def create_folder(self, name: str, parent_id: str) -> RemoteFile:
        """Create a folder."""
        response = self._send(
            "POST",
            f"{API_URL}/files",
            params={"fields": FILE_FIELDS, "supportsAllDrives": "true"},
            json={
                "name": name,
                "mimeType": FOLDER_MIME_TYPE,
                "parents": [self.resolve_folder(parent_id)],
            },
        )
        return self._to_remote(response.json())
