"""Retry logic with linear backoff."""

from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

from claude_usage.errors import APIError

logger = logging.getLogger(__name__)

# Default retry configuration
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 1.0  # seconds
DEFAULT_TIMEOUT = 30  # seconds

T = TypeVar("T")


def calculate_backoff_delay(attempt: int, base_delay: float = DEFAULT_BASE_DELAY) -> float:
    """Delay to wait after a failed attempt.

    Linear: attempt 1 waits ``base_delay``, attempt 2 waits twice that.

    Args:
        attempt: Number of the attempt that just failed (1-indexed).
        base_delay: Base delay in seconds.
    """
    return attempt * base_delay


def is_retryable_error(error: Exception) -> bool:
    """Determine if an error should trigger a retry.

    Only APIError subclasses flagged ``retryable`` (transient network
    failures and 5xx responses) qualify.
    """
    return isinstance(error, APIError) and error.retryable


def retry_request(
    request_func: Callable[[], T],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
    on_retry: Callable[[int, Exception, float], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Execute a request with automatic retry on transient failures.

    Args:
        request_func: Function to execute (should make the HTTP request).
        max_attempts: Total number of attempts, including the first.
        base_delay: Base delay between retries in seconds.
        on_retry: Optional callback called before each retry with
                  (attempt_number, error, delay).
        sleep: Function used to wait between attempts. May raise to abort.

    Returns:
        Result of the request function.

    Raises:
        The last exception if all attempts are exhausted, or the first
        non-retryable exception.
    """
    for attempt in range(1, max_attempts + 1):
        try:
            return request_func()
        except Exception as e:
            if attempt >= max_attempts or not is_retryable_error(e):
                raise

            delay = calculate_backoff_delay(attempt, base_delay)
            logger.debug("Attempt %d failed (%s); retrying in %.1fs", attempt, e, delay)

            if on_retry:
                on_retry(attempt, e, delay)

            sleep(delay)

    raise RuntimeError("Unexpected retry loop exit")


__all__ = [
    "DEFAULT_MAX_ATTEMPTS",
    "DEFAULT_BASE_DELAY",
    "DEFAULT_TIMEOUT",
    "calculate_backoff_delay",
    "is_retryable_error",
    "retry_request",
]
