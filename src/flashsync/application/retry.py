"""
Error classification and retry with exponential backoff.

Only errors classified as retryable (network, unavailable, timeout, rate
limit) are retried. Everything else fails fast.
"""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

import httpx

from flashsync.domain.constants import (
    BACKOFF_BASE_DELAY,
    BACKOFF_MAX_ATTEMPTS,
    BACKOFF_MAX_DELAY,
)
from flashsync.domain.errors import (
    FlashsyncError,
    PermissionDeniedError,
    RemoteError,
    TransientRemoteError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TRANSIENT_STATUS = {408, 429, 500, 502, 503, 504}


def classify_error(exc: BaseException) -> FlashsyncError:
    """
    Map an arbitrary exception onto the error taxonomy.

    Errors that are already ``FlashsyncError`` instances pass through unchanged.
    """
    if isinstance(exc, FlashsyncError):
        return exc
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status in (401, 403):
            return PermissionDeniedError(
                f"Permission denied ({status})", context={"status": status}
            )
        if status in _TRANSIENT_STATUS or status >= 500:
            return TransientRemoteError(
                f"Remote service unavailable ({status})", context={"status": status}
            )
        return RemoteError(f"Remote request failed ({status})", context={"status": status})
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
        return TransientRemoteError(f"Network error: {exc}")
    if isinstance(exc, (asyncio.TimeoutError, ConnectionError)):
        return TransientRemoteError(f"Network error: {exc}")
    if isinstance(exc, PermissionError):
        return PermissionDeniedError(str(exc))
    return RemoteError(str(exc) or exc.__class__.__name__)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = BACKOFF_MAX_ATTEMPTS,
    base_delay: float = BACKOFF_BASE_DELAY,
    max_delay: float = BACKOFF_MAX_DELAY,
) -> T:
    """
    Run ``operation`` up to ``max_attempts`` times.

    Waits ``base_delay * 2**attempt`` (capped at ``max_delay``) between
    attempts. Non-retryable errors are raised immediately.

    Raises:
        FlashsyncError: the classified error of the last attempt.
    """
    attempts = max(1, max_attempts)
    for attempt in range(attempts):
        try:
            return await operation()
        except Exception as e:
            error = classify_error(e)
            if not error.retryable or attempt == attempts - 1:
                if error is e:
                    raise
                raise error from e
            delay = min(base_delay * (2**attempt), max_delay)
            logger.warning(
                f"Attempt {attempt + 1}/{attempts} failed ({error.code}: {error.message}), "
                f"retrying in {delay:.1f}s"
            )
            await asyncio.sleep(delay)
    raise AssertionError("unreachable")
