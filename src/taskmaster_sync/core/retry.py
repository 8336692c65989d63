"""Bounded exponential-backoff retry for remote calls.

Only ``TransientRemoteError`` (and its ``RateLimitedError`` subclass) is
retried.  Anything else propagates on the first failure.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from typing import TypeVar

from ..errors import RateLimitedError, TransientRemoteError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 1.0  # seconds
DEFAULT_MAX_DELAY = 30.0  # seconds
DEFAULT_JITTER = 0.0


def _is_retryable_error(exc: Exception) -> bool:
    return isinstance(exc, TransientRemoteError)


def _calculate_delay(
    attempt: int, base_delay: float, max_delay: float, jitter: float
) -> float:
    """Return the delay before the next attempt.

    Args:
        attempt: Attempt that just failed (0-indexed).
        base_delay: Delay after the first failure, in seconds.
        max_delay: Upper bound in seconds.
        jitter: Random extra fraction (0.1 = up to 10% more).
    """
    delay = min(base_delay * (2**attempt), max_delay)
    return delay + delay * jitter * random.random()


def retry_with_backoff(
    func: Callable[[], T],
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    jitter: float = DEFAULT_JITTER,
    operation_name: str = "operation",
) -> T:
    """Call *func* until it succeeds or *max_attempts* is reached.

    With the defaults the waits between attempts are 1s then 2s.  A
    ``RateLimitedError`` carrying ``retry_after`` waits at least that long.

    Args:
        func: Zero-argument callable performing one attempt.
        max_attempts: Total number of attempts, including the first.
        base_delay: Delay after the first failure, in seconds.
        max_delay: Upper bound for a single delay.
        jitter: Random jitter factor added to each delay.
        operation_name: Label used in log messages.

    Returns:
        Whatever *func* returns.

    Raises:
        TransientRemoteError: The last error, once attempts are exhausted.
        Exception: Any non-retryable error, immediately.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    for attempt in range(max_attempts):
        try:
            result = func()
        except Exception as exc:
            if not _is_retryable_error(exc):
                raise

            if attempt == max_attempts - 1:
                logger.error(
                    "%s failed after %d attempts: %s",
                    operation_name,
                    attempt + 1,
                    exc,
                )
                raise

            delay = _calculate_delay(attempt, base_delay, max_delay, jitter)
            if isinstance(exc, RateLimitedError) and exc.retry_after:
                delay = max(delay, exc.retry_after)
            logger.warning(
                "%s failed (attempt %d/%d), retrying in %.2fs: %s",
                operation_name,
                attempt + 1,
                max_attempts,
                delay,
                exc,
            )
            time.sleep(delay)
        else:
            if attempt > 0:
                logger.info(
                    "%s succeeded after %d attempts",
                    operation_name,
                    attempt + 1,
                )
            return result

    raise AssertionError("unreachable")  # pragma: no cover
