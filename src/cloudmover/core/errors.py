"""Error taxonomy for transfer operations.

Provider adapters raise these exceptions at the StorageProvider boundary so
that the worker and the sync engine can decide on retries by category instead
of by message text.

Categories:
- TRANSIENT: network, timeout, temporary 5xx (retried)
- RATE_LIMITED: provider throttling (retried)
- AUTHORIZATION: expired/revoked/missing token (not retried, reconnect needed)
- NOT_FOUND: missing file or folder (not retried)
- INVALID_INPUT: disallowed name, unsupported type, bad URL (not retried)
- QUOTA: storage full / quota exceeded (not retried)
"""

from __future__ import annotations

from enum import Enum


class ErrorCategory(str, Enum):
    """Semantic category of a transfer failure."""

    TRANSIENT = "transient"
    RATE_LIMITED = "rate_limited"
    AUTHORIZATION = "authorization"
    NOT_FOUND = "not_found"
    INVALID_INPUT = "invalid_input"
    QUOTA = "quota"


RETRYABLE_CATEGORIES = frozenset({ErrorCategory.TRANSIENT, ErrorCategory.RATE_LIMITED})


class CloudMoverError(Exception):
    """Base exception for cloudmover."""


class ProviderError(CloudMoverError):
    """Failure reported by a storage provider.

    Attributes:
        category: Semantic category used for retry decisions.
        provider: Provider name, when known.
        status_code: HTTP status code, when the failure came from an API call.
    """

    category = ErrorCategory.TRANSIENT

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        """Whether retrying the same call later can succeed."""
        return self.category in RETRYABLE_CATEGORIES


class TransientError(ProviderError):
    """Network failure, timeout or temporary provider outage."""

    category = ErrorCategory.TRANSIENT


class RateLimitedError(ProviderError):
    """Provider is throttling requests."""

    category = ErrorCategory.RATE_LIMITED

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        status_code: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, provider, status_code)
        self.retry_after = retry_after


class AuthorizationError(ProviderError):
    """Token expired, revoked or missing. The user must reconnect."""

    category = ErrorCategory.AUTHORIZATION
    reconnect_required = True


class NotFoundError(ProviderError):
    """File or folder does not exist."""

    category = ErrorCategory.NOT_FOUND


class InvalidInputError(ProviderError):
    """Request can never succeed as issued (bad URL, name or file type)."""

    category = ErrorCategory.INVALID_INPUT


class QuotaExceededError(ProviderError):
    """Destination storage is full."""

    category = ErrorCategory.QUOTA


class TransferTimeoutError(TransientError):
    """A job exceeded its wall-clock budget."""


class JobCancelledError(CloudMoverError):
    """Raised at a cancellation checkpoint when a cancel was requested."""

    def __init__(self, message: str = "Job was cancelled by user") -> None:
        super().__init__(message)


class JobNotFoundError(CloudMoverError):
    """Raised by the store when a job id does not exist."""


class TaskNotFoundError(CloudMoverError):
    """Raised when a scheduled task id does not exist."""


class InvalidStateError(CloudMoverError):
    """Raised when an operation is not allowed in the record's current state."""


def is_retryable(error: BaseException) -> bool:
    """Decide whether a failed job should be retried.

    Provider errors are classified by category. Cancellation is never
    retried. Anything else (bugs in glue code, unexpected library errors)
    is treated as transient so that a later attempt can still succeed.

    Args:
        error: The exception raised by the job execution.

    Returns:
        True if the job should go back to pending with backoff.
    """
    if isinstance(error, JobCancelledError):
        return False
    if isinstance(error, ProviderError):
        return error.retryable
    return True
