"""
Retry decorator for async calls that can fail transiently.
"""

import asyncio
import functools
from typing import Callable, Tuple, Type

from ..venue.exceptions import TransientError
from .logger import get_logger

logger = get_logger(__name__)


def retry_on_transient_error(
    max_attempts: int = 3,
    backoff_base: float = 2,
    max_delay: float = 30,
    exceptions: Tuple[Type[Exception], ...] = (TransientError,)
):
    """
    Decorator to retry async functions on transient errors.

    Delay before retry ``n`` (0-based) is ``min(backoff_base ** n, max_delay)``.
    The last failure is re-raised.

    Args:
        max_attempts: Total number of calls (default: 3)
        backoff_base: Base for exponential backoff calculation (default: 2)
        max_delay: Upper bound for a single delay in seconds
        exceptions: Tuple of exception types to retry on

    Example:
        @retry_on_transient_error(max_attempts=3)
        async def send_message(text):
            ...
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    def decorator(func: Callable):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    attempt += 1
                    if attempt >= max_attempts:
                        logger.error(
                            "max_retries_exceeded",
                            function=func.__name__,
                            attempts=attempt,
                            error=str(e)
                        )
                        raise

                    delay = min(backoff_base ** (attempt - 1), max_delay)
                    logger.warning(
                        "retrying_after_error",
                        function=func.__name__,
                        attempt=attempt,
                        max_attempts=max_attempts,
                        delay_seconds=delay,
                        error=str(e)
                    )
                    await asyncio.sleep(delay)

        return wrapper
    return decorator
