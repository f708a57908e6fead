"""
Retry decorator with exponential backoff for async provider calls
"""

import asyncio
import functools
import logging
from typing import Callable, Optional, Tuple, Type

logger = logging.getLogger(__name__)


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    giveup: Optional[Callable[[BaseException], bool]] = None
):
    """
    Retry an async function on failure, doubling the delay after each attempt.

    Args:
        max_retries: Retries after the first attempt
        base_delay: Delay before the first retry (seconds)
        max_delay: Upper bound for a single delay (seconds)
        retry_on: Exception types that trigger a retry
        giveup: Optional predicate; when it returns True the error is raised immediately
    """
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except retry_on as e:
                    if attempt >= max_retries or (giveup is not None and giveup(e)):
                        raise
                    delay = min(base_delay * (2 ** attempt), max_delay)
                    attempt += 1
                    logger.warning(
                        f"{func.__name__} failed ({e}); retry {attempt}/{max_retries} in {delay:.1f}s"
                    )
                    await asyncio.sleep(delay)
        return wrapper
    return decorator
