"""
Bounded retry with exponential backoff.

Wraps fallible async operations against external services. Only
server-class failures are retried; everything else surfaces at once.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_DELAY = 1.0  # seconds


def _status_of(error: BaseException) -> Optional[int]:
    """Read an HTTP-like status from an error, if it carries one."""
    for attr in ("status_code", "status"):
        status = getattr(error, attr, None)
        if isinstance(status, int) and not isinstance(status, bool):
            return status
    return None


def is_transient(error: BaseException) -> bool:
    """Whether an error is a service-unavailable or server-class failure.

    Errors without a status are treated as non-transient.
    """
    status = _status_of(error)
    return status is not None and (status == 503 or status >= 500)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = DEFAULT_MAX_RETRIES,
    initial_delay: float = DEFAULT_INITIAL_DELAY,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run an async operation, retrying transient failures.

    The delay doubles after every retry (1s, 2s, 4s, ... by default).
    Backoff state lives in this call only, so concurrent callers never
    share it.

    Args:
        operation: Zero-argument coroutine factory, invoked once per attempt
        max_retries: Retries allowed after the first attempt
        initial_delay: Seconds to wait before the first retry
        sleep: Awaitable used for backoff waits

    Returns:
        Whatever the operation returns on its first successful attempt

    Raises:
        Exception: The last failure, unchanged, when it is non-transient
            or retries are exhausted
    """
    retries_left = max_retries
    delay = initial_delay
    attempt = 1

    while True:
        try:
            return await operation()
        except Exception as e:
            if retries_left <= 0 or not is_transient(e):
                raise
            logger.warning(
                "Transient failure on attempt %d (status %s), retrying in %.1fs",
                attempt, _status_of(e), delay
            )

        await sleep(delay)
        retries_left -= 1
        delay *= 2
        attempt += 1
