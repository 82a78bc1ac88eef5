"""
Retry with exponential backoff and jitter for calls to external services.
"""
import logging
import random
import time
from functools import wraps
from typing import Any, Callable, Iterator, TypeVar

T = TypeVar('T')

logger = logging.getLogger(__name__)


def backoff_delays(
    retries: int,
    initial_delay: float,
    max_delay: float,
    exponential_base: float = 2.0,
    jitter: bool = True,
) -> Iterator[float]:
    """Yield the wait before each retry, capped at ``max_delay``."""
    delay = initial_delay
    for _ in range(retries):
        extra = delay * 0.25 * random.random() if jitter else 0.0
        yield min(delay + extra, max_delay)
        delay *= exponential_base


def retry_with_backoff(
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    exceptions: tuple = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
):
    """
    Retry the decorated call on ``exceptions``; the last failure propagates.

    Args:
        max_retries: Retries after the first attempt
        initial_delay: Wait before the first retry, in seconds
        max_delay: Upper bound for a single wait
        exponential_base: Growth factor between waits
        jitter: Add up to 25% random jitter to each wait
        exceptions: Exception types that trigger a retry
        sleep: Function used to wait between attempts
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            delays = backoff_delays(max_retries, initial_delay, max_delay, exponential_base, jitter)
            attempt = 0
            while True:
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    wait = next(delays, None)
                    if wait is None:
                        raise
                    attempt += 1
                    logger.warning(
                        "retrying_after_error",
                        extra={"operation": func.__name__, "attempt": attempt, "error": str(e)},
                    )
                    sleep(wait)

        return wrapper
    return decorator
