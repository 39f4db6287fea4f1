"""Exponential backoff around request establishment."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from config import settings
from contracts import CancelToken, GenerationCancelled, GenerationError
from providers.errors import classify_exception

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]
RetryCallback = Callable[[int, int, float, GenerationError], None]


def backoff_delay_ms(attempt: int, base_delay_ms: int, max_delay_ms: int) -> int:
    """Delay before retry number ``attempt`` (1-based): base * 2^(attempt-1), capped."""
    return min(base_delay_ms * (2 ** (attempt - 1)), max_delay_ms)


def retry_status_label(attempt: int, retries: int, delay_ms: float) -> str:
    return f"Retry {attempt}/{retries} in {round(delay_ms)}ms..."


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    retries: Optional[int] = None,
    base_delay_ms: Optional[int] = None,
    max_delay_ms: Optional[int] = None,
    sleep: SleepFn = asyncio.sleep,
    on_retry: Optional[RetryCallback] = None,
    cancel_token: Optional[CancelToken] = None,
    provider: Optional[str] = None,
) -> T:
    """Run ``operation``, retrying retryable classified failures.

    Only rate-limited, server and transient network errors are retried; auth,
    invalid-request and unknown errors propagate on first occurrence. The
    cancel token is checked before every attempt and after every sleep.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        retries: Retries after the first attempt (default from settings)
        base_delay_ms: Delay before the first retry, doubled per attempt
        max_delay_ms: Upper bound for a single delay
        sleep: Awaitable sleep taking seconds (injectable for tests)
        on_retry: Called with (attempt, retries, delay_ms, error) before sleeping
        cancel_token: Aborts further attempts with GenerationCancelled
        provider: Provider id used when classifying unexpected exceptions

    Raises:
        GenerationError: The last classified error once retries are exhausted
        GenerationCancelled: If the token fires between attempts
    """
    retries = settings.retry_attempts if retries is None else retries
    base_delay_ms = settings.retry_base_delay_ms if base_delay_ms is None else base_delay_ms
    max_delay_ms = settings.retry_max_delay_ms if max_delay_ms is None else max_delay_ms

    attempt = 0
    while True:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        try:
            return await operation()
        except GenerationError as exc:
            error = exc
        except GenerationCancelled:
            raise
        except Exception as exc:
            error = classify_exception(exc, provider=provider)
            error.__cause__ = exc

        attempt += 1
        if not error.retryable or attempt > retries:
            if error.retryable:
                logger.error("Giving up after %d retries: %s", retries, error.message)
            raise error

        delay_ms = backoff_delay_ms(attempt, base_delay_ms, max_delay_ms)
        logger.warning(
            "Retryable %s error (attempt %d/%d), retrying in %dms: %s",
            error.kind.value, attempt, retries, delay_ms, error.message,
        )
        if on_retry is not None:
            on_retry(attempt, retries, delay_ms, error)
        await sleep(delay_ms / 1000)
