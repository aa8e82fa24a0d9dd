"""Async retry helpers with exponential backoff for transient backend faults.

Usage:
    @with_retry(max_attempts=3, backoff_factor=2.0)
    async def fetch_lessons():
        ...

    lessons = await retry_async(backend.list_lessons, course_id, max_attempts=5)
"""

import asyncio
import functools
import random
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from .exceptions import BackendUnavailableError
from .logging_config import get_logger

logger = get_logger('retry')

T = TypeVar('T')

DEFAULT_RETRYABLE: Tuple[Type[Exception], ...] = (
    BackendUnavailableError,
    TimeoutError,
    ConnectionError,
)


def with_retry(
    max_attempts: int = 3,
    initial_delay: float = 0.5,
    max_delay: float = 10.0,
    backoff_factor: float = 2.0,
    jitter: bool = True,
    retryable_exceptions: Tuple[Type[Exception], ...] = DEFAULT_RETRYABLE,
    on_retry: Optional[Callable[[Exception, int, float], None]] = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorator for retrying coroutines with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts (including initial)
        initial_delay: Initial delay between retries in seconds
        max_delay: Maximum delay between retries in seconds
        backoff_factor: Multiplier for delay after each retry
        jitter: Add random jitter to prevent thundering herd
        retryable_exceptions: Tuple of exception types to retry
        on_retry: Optional callback called before each retry
                  with (exception, attempt_number, delay)

    Returns:
        Decorated coroutine function with retry behavior
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        name = getattr(func, '__name__', repr(func))

        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            delay = initial_delay

            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)

                except retryable_exceptions as e:
                    if attempt == max_attempts:
                        logger.error(
                            f"Failed after {max_attempts} attempts: {name}"
                        )
                        raise

                    # Honour a retry_after hint from the backend
                    retry_after = getattr(e, 'retry_after', None)
                    if retry_after:
                        delay = min(retry_after, max_delay)

                    if jitter:
                        actual_delay = delay * (0.5 + random.random())
                    else:
                        actual_delay = delay

                    logger.warning(
                        f"Attempt {attempt}/{max_attempts} failed for {name}: {e}. "
                        f"Retrying in {actual_delay:.1f}s..."
                    )

                    if on_retry:
                        on_retry(e, attempt, actual_delay)

                    await asyncio.sleep(actual_delay)

                    delay = min(delay * backoff_factor, max_delay)

            raise RuntimeError("unreachable")  # pragma: no cover

        return wrapper
    return decorator


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args,
    max_attempts: int = 3,
    initial_delay: float = 0.5,
    max_delay: float = 10.0,
    backoff_factor: float = 2.0,
    jitter: bool = True,
    retryable_exceptions: Tuple[Type[Exception], ...] = DEFAULT_RETRYABLE,
    **kwargs
) -> T:
    """Functional interface for retrying a single coroutine call.

    Example:
        lessons = await retry_async(
            backend.list_lessons,
            course_id,
            max_attempts=5,
        )
    """
    decorated = with_retry(
        max_attempts=max_attempts,
        initial_delay=initial_delay,
        max_delay=max_delay,
        backoff_factor=backoff_factor,
        jitter=jitter,
        retryable_exceptions=retryable_exceptions,
    )(func)

    return await decorated(*args, **kwargs)
