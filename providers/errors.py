"""Error classification at the adapter boundary.

Adapters translate their SDK's exceptions into ``GenerationError`` with a
uniform ``ErrorKind``. Status codes win over message patterns.
"""

import logging
from typing import Optional, Union

from contracts import ErrorKind, GenerationError, truncate_message

logger = logging.getLogger(__name__)


# Short user-facing messages keyed by HTTP status or provider error code
SHORT_MESSAGES = {
    "400": "Invalid request parameters",
    "401": "Invalid API key",
    "402": "Insufficient credits",
    "403": "Access denied",
    "404": "Model not found",
    "408": "Request timed out - try again",
    "413": "Prompt too long for model",
    "422": "Invalid request parameters",
    "429": "Rate limited - try again shortly",
    "500": "Provider error - try again",
    "502": "Provider error - try again",
    "503": "Provider error - try again",
    "504": "Provider timed out - try again",
    "529": "Provider overloaded - try again",
    "context_length_exceeded": "Prompt too long for model",
    "server_error": "Provider disconnected",
    "rate_limit_exceeded": "Rate limited - try again shortly",
    "invalid_api_key": "Invalid API key",
}

CODE_KINDS = {
    "context_length_exceeded": ErrorKind.INVALID_REQUEST,
    "server_error": ErrorKind.SERVER_ERROR,
    "rate_limit_exceeded": ErrorKind.RATE_LIMITED,
    "invalid_api_key": ErrorKind.AUTH,
}

# (pattern, kind) checked in order against the lowercased message
MESSAGE_PATTERNS = [
    ("api key", ErrorKind.AUTH),
    ("api_key", ErrorKind.AUTH),
    ("unauthorized", ErrorKind.AUTH),
    ("permission denied", ErrorKind.AUTH),
    ("rate limit", ErrorKind.RATE_LIMITED),
    ("too many requests", ErrorKind.RATE_LIMITED),
    ("resource_exhausted", ErrorKind.RATE_LIMITED),
    ("quota", ErrorKind.RATE_LIMITED),
    ("overloaded", ErrorKind.SERVER_ERROR),
    ("unavailable", ErrorKind.SERVER_ERROR),
    ("internal error", ErrorKind.SERVER_ERROR),
    ("timed out", ErrorKind.NETWORK_TRANSIENT),
    ("timeout", ErrorKind.NETWORK_TRANSIENT),
    ("connection", ErrorKind.NETWORK_TRANSIENT),
    ("network", ErrorKind.NETWORK_TRANSIENT),
    ("failed to fetch", ErrorKind.NETWORK_TRANSIENT),
    ("context_length_exceeded", ErrorKind.INVALID_REQUEST),
    ("invalid", ErrorKind.INVALID_REQUEST),
]


def classify_status(status: int) -> ErrorKind:
    """Map an HTTP status code to an error kind."""
    if status in (401, 403):
        return ErrorKind.AUTH
    if status == 429:
        return ErrorKind.RATE_LIMITED
    if status in (408, 409):
        return ErrorKind.NETWORK_TRANSIENT
    if status >= 500:
        return ErrorKind.SERVER_ERROR
    if 400 <= status < 500:
        return ErrorKind.INVALID_REQUEST
    return ErrorKind.UNKNOWN


def classify_message(message: str) -> ErrorKind:
    """Classify an error from its message text when no status is available."""
    lowered = (message or "").lower()
    for pattern, kind in MESSAGE_PATTERNS:
        if pattern in lowered:
            return kind
    return ErrorKind.UNKNOWN


def short_error_message(code: Union[str, int, None], full_message: Optional[str] = None) -> str:
    """Convert a status or provider error code to a short message."""
    code_str = str(code) if code is not None else ""
    if code_str in SHORT_MESSAGES:
        return SHORT_MESSAGES[code_str]
    if full_message:
        return truncate_message(full_message)
    return f"Error: {code_str}" if code_str else "Unknown error"


def _status_of(exc: BaseException) -> Optional[int]:
    for attr in ("status_code", "code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and not isinstance(value, bool) and 100 <= value < 600:
            return value
    return None


def classify_exception(exc: BaseException, provider: Optional[str] = None) -> GenerationError:
    """Classify an arbitrary exception into a ``GenerationError``.

    Used as the fallback after an adapter's SDK-specific checks.
    """
    if isinstance(exc, GenerationError):
        return exc

    message = str(exc) or exc.__class__.__name__
    status = _status_of(exc)
    if status is not None:
        kind = classify_status(status)
        return GenerationError(kind, short_error_message(status, message), status=status, provider=provider)

    class_name = exc.__class__.__name__
    if "Timeout" in class_name or "Connect" in class_name or isinstance(exc, (ConnectionError, TimeoutError)):
        return GenerationError(
            ErrorKind.NETWORK_TRANSIENT,
            f"Network error connecting to {provider or 'provider'}",
            provider=provider,
        )

    kind = classify_message(message)
    if kind == ErrorKind.UNKNOWN:
        logger.error("Unclassified %s error: %s", provider or "provider", truncate_message(message))
    return GenerationError(kind, truncate_message(message), provider=provider)


def error_from_code(code: Union[str, int, None], message: Optional[str], provider: Optional[str] = None) -> GenerationError:
    """Build a classified error from a provider error code (status or string code)."""
    if isinstance(code, int) or (isinstance(code, str) and code.isdigit()):
        status = int(code)
        return GenerationError(classify_status(status), short_error_message(status, message), status=status, provider=provider)
    code_str = str(code or "")
    kind = CODE_KINDS.get(code_str) or classify_message(message or code_str)
    return GenerationError(kind, short_error_message(code_str or None, message), provider=provider)
