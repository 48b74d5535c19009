"""Shared httpx plumbing for REST provider adapters."""

from __future__ import annotations

import logging
from abc import abstractmethod
from typing import Any

import httpx

from cloudmover.core.errors import RateLimitedError, TransientError
from cloudmover.providers.base import StorageProvider

logger = logging.getLogger(__name__)


def parse_retry_after(response: httpx.Response) -> float | None:
    """Read a Retry-After header given in seconds."""
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class HTTPProvider(StorageProvider):
    """StorageProvider backed by an authenticated httpx client.

    Usage:
        with GoogleDriveProvider(access_token) as drive:
            drive.get_metadata(file_id)
    """

    def __init__(
        self,
        access_token: str,
        timeout: float = 60.0,
    ) -> None:
        """Initialize the provider.

        Args:
            access_token: OAuth access token of the user.
            timeout: Request timeout in seconds.
        """
        self._client = httpx.Client(
            timeout=timeout,
            headers={"Authorization": f"Bearer {access_token}"},
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> HTTPProvider:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request and map failures to provider errors."""
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientError(f"{self.name} request timed out: {e}", provider=self.name) from e
        except httpx.TransportError as e:
            raise TransientError(f"{self.name} network error: {e}", provider=self.name) from e
        if response.status_code >= 400:
            self._raise_for_response(response)
        return response

    def _raise_common(self, response: httpx.Response, message: str) -> None:
        """Raise for statuses every provider reports the same way."""
        status = response.status_code
        if status == 429:
            raise RateLimitedError(
                message, self.name, status, retry_after=parse_retry_after(response)
            )
        if status >= 500:
            raise TransientError(message, self.name, status)

    @abstractmethod
    def _raise_for_response(self, response: httpx.Response) -> None:
        """Raise the ProviderError matching an error response."""
