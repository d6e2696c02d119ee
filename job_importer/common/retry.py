"""
Exponential backoff helpers.

`backoff_delay` gives the wait between attempts of a failed queue entry
(5s, 10s, 20s, ... by default). `retry_with_backoff` retries a call that
hits transient connection errors, such as opening the database pool while
PostgreSQL is still starting.
"""

import logging
import time
from functools import wraps
from typing import Any, Callable, TypeVar

F = TypeVar("F", bound=Callable[..., Any])

logger = logging.getLogger(__name__)


def backoff_delay(attempts_made: int, initial_delay: float = 5.0, multiplier: float = 2.0) -> float:
    """
    Seconds to wait after `attempts_made` failed attempts.

    Examples:
        >>> [backoff_delay(n) for n in (1, 2, 3)]
        [5.0, 10.0, 20.0]
        >>> backoff_delay(0)
        0.0
    """
    if attempts_made <= 0:
        return 0.0
    return initial_delay * multiplier ** (attempts_made - 1)


def retry_with_backoff(
    retries: int = 3,
    initial_delay: float = 1.0,
    multiplier: float = 2.0,
    exceptions: tuple[type[Exception], ...] = (ConnectionError, TimeoutError),
) -> Callable[[F], F]:
    """
    Retry the decorated call on `exceptions`.

    The call runs at most `retries + 1` times. The last error is re-raised
    once every retry is used up; other exceptions propagate immediately.

    Usage:
        @retry_with_backoff(retries=3, exceptions=(psycopg2.OperationalError,))
        def open_pool():
            ...
    """

    def decorator(func: F) -> F:
        # callable objects have no __name__
        name = getattr(func, "__name__", type(func).__name__)

        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            failures = 0
            while True:
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    failures += 1
                    if failures > retries:
                        logger.error(
                            f"{name} gave up after {failures} attempts",
                            extra={"call": name, "error_type": type(e).__name__},
                        )
                        raise

                    delay = backoff_delay(failures, initial_delay, multiplier)
                    logger.warning(
                        f"{name} failed ({e}), retry {failures}/{retries} in {delay:.1f}s",
                        extra={
                            "call": name,
                            "retry": failures,
                            "delay_seconds": delay,
                            "error_type": type(e).__name__,
                        },
                    )
                    time.sleep(delay)

        return wrapper  # type: ignore[return-value]

    return decorator
