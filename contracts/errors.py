"""Error taxonomy shared by adapters, the orchestrator and persistence.

Every failure surfaced to a caller is a ``GenerationError`` (or
``StorageQuotaExceeded``) carrying an ``ErrorKind`` and a short message.
Cancellation is deliberately not an error subclass.
"""

from enum import Enum
from typing import Optional

UNKNOWN_MESSAGE_LIMIT = 100


class ErrorKind(str, Enum):
    """Uniform classification returned to callers regardless of provider."""
    AUTH = "auth"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    NETWORK_TRANSIENT = "network_transient"
    INVALID_REQUEST = "invalid_request"
    UNKNOWN = "unknown"
    STORAGE_QUOTA_EXCEEDED = "storage_quota_exceeded"


RETRYABLE_KINDS = frozenset({
    ErrorKind.RATE_LIMITED,
    ErrorKind.SERVER_ERROR,
    ErrorKind.NETWORK_TRANSIENT,
})


def truncate_message(message: str, limit: int = UNKNOWN_MESSAGE_LIMIT) -> str:
    """Shorten a message for display, matching the provider-error convention."""
    message = (message or "").strip()
    if len(message) < limit:
        return message
    return message[: limit - 20] + "..."


class GenerationError(Exception):
    """A classified failure of a generation request."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        status: Optional[int] = None,
        provider: Optional[str] = None,
    ):
        if kind == ErrorKind.UNKNOWN:
            message = truncate_message(message) or "Unknown error"
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status = status
        self.provider = provider

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    def __repr__(self) -> str:
        return f"GenerationError(kind={self.kind.value!r}, message={self.message!r}, status={self.status!r})"


class GenerationCancelled(Exception):
    """Raised when a generation observes its cancel token."""

    def __init__(self, message: str = "Generation cancelled"):
        super().__init__(message)


class GenerationInProgress(Exception):
    """Raised when a generation is requested while another one is active."""

    def __init__(self, stage: Optional[str] = None):
        detail = f" (stage: {stage})" if stage else ""
        super().__init__(f"A generation is already in progress{detail}")
        self.stage = stage


class StorageQuotaExceeded(Exception):
    """Raised when a project document cannot be written for lack of space."""

    kind = ErrorKind.STORAGE_QUOTA_EXCEEDED

    def __init__(self, message: str = "Storage full: project could not be saved"):
        super().__init__(message)
        self.message = message
