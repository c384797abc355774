"""Retry logic and decorators using tenacity.

This module provides retry decorators for target store and blob store calls,
with exponential backoff and jitter.
"""

from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from forum_migration.client.exceptions import TransientStoreError
from forum_migration.utils.logging import get_logger

logger = get_logger(__name__)

# Type variable for decorated functions
F = TypeVar("F", bound=Callable[..., Any])


def retry_with_backoff(
    max_attempts: int = 5,
    min_wait: float = 2,
    max_wait: float = 60,
    retry_on_exceptions: tuple = (TransientStoreError,),
) -> Callable[[F], F]:
    """Retry decorator for coroutine functions, with exponential backoff and jitter.

    Args:
        max_attempts: Maximum number of retry attempts
        min_wait: Minimum wait time in seconds
        max_wait: Maximum wait time in seconds
        retry_on_exceptions: Tuple of exception types to retry on

    Returns:
        Decorated coroutine function with retry logic
    """

    def decorator(func: F) -> F:
        @wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            async for attempt_obj in AsyncRetrying(
                stop=stop_after_attempt(max_attempts),
                wait=wait_random_exponential(multiplier=1, min=min_wait, max=max_wait),
                retry=retry_if_exception_type(retry_on_exceptions),
                reraise=True,
            ):
                with attempt_obj:
                    attempt = attempt_obj.retry_state.attempt_number
                    if attempt > 1:
                        logger.info(
                            "retry_attempt",
                            function=func.__name__,
                            attempt=attempt,
                            max_attempts=max_attempts,
                        )
                    return await func(*args, **kwargs)

        return async_wrapper  # type: ignore

    return decorator


async def call_with_retry(
    func: Callable[..., Any],
    *args: Any,
    max_attempts: int = 3,
    min_wait: float = 0.5,
    max_wait: float = 10,
    **kwargs: Any,
) -> Any:
    """Await ``func(*args, **kwargs)`` retrying transient store errors.

    Used where the attempt count comes from configuration rather than a
    decorator argument.

    Args:
        func: Coroutine function to call
        *args: Positional arguments for ``func``
        max_attempts: Maximum number of attempts
        min_wait: Minimum wait time in seconds
        max_wait: Maximum wait time in seconds
        **kwargs: Keyword arguments for ``func``

    Returns:
        Result of the call

    Raises:
        TransientStoreError: If all attempts are exhausted
    """
    wrapped = retry_with_backoff(
        max_attempts=max_attempts, min_wait=min_wait, max_wait=max_wait
    )(func)
    return await wrapped(*args, **kwargs)
