"""
Retry with exponential backoff for transient failures.

Used around network calls that may fail for a moment without anything
being wrong with the run itself: status webhook deliveries and Docker
image pulls.
"""

import time
from functools import wraps
from typing import Callable, Iterator, Tuple, Type

from runslot.utils.logging import get_logger

log = get_logger("retry")

def backoff_delays(delay: float, backoff: float = 2.0, max_delay: float = 30.0) -> Iterator[float]:
    """
    Yield the pause before each retry: delay, delay * backoff, ... capped at max_delay.
    """
    while True:
        yield min(delay, max_delay)
        delay *= backoff

def retry(max_attempts: int = 3,
          delay: float = 1.0,
          backoff: float = 2.0,
          max_delay: float = 30.0,
          exceptions: Tuple[Type[Exception], ...] = (Exception,),
          ) -> Callable:
    """
    Retry the decorated call while it raises one of the given exceptions.

    The last failure is re-raised once max_attempts calls have failed.
    Exceptions of other types propagate on the first attempt.

    :param max_attempts: Total number of calls, at least 1.
    :param delay: Pause before the first retry, in seconds.
    :param backoff: Factor applied to the pause after every retry.
    :param max_delay: Upper bound of a single pause.
    :param exceptions: Exception types treated as transient.
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            pauses = backoff_delays(delay, backoff, max_delay)
            for attempt in range(1, max_attempts + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_attempts:
                        log.error(f"{func.__name__} gave up after {attempt} attempt(s): {e}")
                        raise
                    pause = next(pauses)
                    log.warning(f"{func.__name__} failed ({attempt}/{max_attempts}): {e}; retrying in {pause:.1f}s")
                    time.sleep(pause)

        return wrapper
    return decorator
