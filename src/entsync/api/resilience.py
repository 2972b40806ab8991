#!/usr/bin/env python3
"""Retry helpers for callers of the Entity Synchronization Engine.

The engine never retries on its own: network and database calls block and
either complete or raise. Callers that want retries wrap operations with
the helpers below.

Example:
    @retry(max_attempts=3, backoff_factor=2.0)
    def fetch_users():
        return provider.with_entity(User).get_list_a()

Author: Entity Sync Team
"""
import logging
import random
import time
from functools import wraps
from typing import Any, Callable, Optional, TypeVar

from .exceptions import (
    BackendUnreachable,
    NetworkError,
    RateLimitError,
    ServerError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ============================================
# Retry with Exponential Backoff
# ============================================

DEFAULT_RETRYABLE_EXCEPTIONS = (
    NetworkError,
    RateLimitError,
    ServerError,
    BackendUnreachable,
)


def retry(
    max_attempts: int = 3,
    backoff_factor: float = 2.0,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    jitter: bool = True,
    retryable_exceptions: tuple = DEFAULT_RETRYABLE_EXCEPTIONS,
    on_retry: Optional[Callable[[Exception, int], None]] = None,
    sleep: Callable[[float], Any] = time.sleep,
):
    """Decorator for retrying functions with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts (including first try)
        backoff_factor: Multiplier for delay between attempts
        initial_delay: Initial delay in seconds before first retry
        max_delay: Maximum delay in seconds between retries
        jitter: Add random jitter to prevent thundering herd
        retryable_exceptions: Tuple of exception types to retry on
        on_retry: Optional callback called before each retry with (exception, attempt)
        sleep: Function used to wait between attempts

    Returns:
        Decorator function
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            delay = initial_delay

            for attempt in range(1, max_attempts + 1):
                try:
                    return func(*args, **kwargs)

                except retryable_exceptions as e:
                    if attempt >= max_attempts:
                        logger.error(f"All {max_attempts} attempts failed. Last error: {e}")
                        raise

                    if isinstance(e, RateLimitError) and e.retry_after:
                        delay = float(e.retry_after)

                    actual_delay = min(delay, max_delay)
                    if jitter:
                        actual_delay = actual_delay * (0.5 + random.random())

                    if on_retry:
                        on_retry(e, attempt)

                    logger.warning(
                        f"Attempt {attempt}/{max_attempts} failed: {e}. "
                        f"Retrying in {actual_delay:.1f}s"
                    )
                    sleep(actual_delay)
                    delay = min(delay * backoff_factor, max_delay)

            raise RuntimeError("Retry logic error")

        return wrapper
    return decorator


def retry_call(
    func: Callable[..., T],
    *args,
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    retryable_exceptions: tuple = DEFAULT_RETRYABLE_EXCEPTIONS,
    sleep: Callable[[float], Any] = time.sleep,
    **kwargs,
) -> T:
    """Retry a single call inline.

    Example:
        users = retry_call(users_provider.get_list_a, max_attempts=5)
    """
    wrapped = retry(
        max_attempts=max_attempts,
        initial_delay=initial_delay,
        retryable_exceptions=retryable_exceptions,
        sleep=sleep,
    )(func)
    return wrapped(*args, **kwargs)


__all__ = [
    "DEFAULT_RETRYABLE_EXCEPTIONS",
    "retry",
    "retry_call",
]
