"""Utility functions for Client Reports."""

import time
from functools import wraps
from typing import Any, Callable, TypeVar

import structlog

logger = structlog.get_logger()

F = TypeVar("F", bound=Callable[..., Any])


def _always(exc: Exception) -> bool:
    return True


def retry_on_failure(
    max_retries: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    should_retry: Callable[[Exception], bool] = _always,
    sleep: Callable[[float], None] | None = None,
) -> Callable[[F], F]:
    """Decorator to retry a blocking function on failure with exponential backoff.

    Meant for synchronous provider calls that run in a worker thread.

    Args:
        max_retries: Maximum number of retry attempts.
        delay: Initial delay between retries in seconds.
        backoff: Multiplier for delay after each retry.
        should_retry: Returns False for errors that are not worth retrying;
            those are raised immediately.
        sleep: Sleep function. Defaults to ``time.sleep``.

    Returns:
        Decorated function with retry logic.
    """

    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            current_delay = delay

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    if not should_retry(e):
                        raise
                    if attempt >= max_retries:
                        logger.error(
                            "function_retry_exhausted",
                            function=func.__name__,
                            attempts=max_retries + 1,
                            error=str(e),
                        )
                        raise
                    logger.warning(
                        "function_retry",
                        function=func.__name__,
                        attempt=attempt + 1,
                        max_retries=max_retries,
                        delay=current_delay,
                        error=str(e),
                    )
                    (sleep or time.sleep)(current_delay)
                    current_delay *= backoff

            raise AssertionError("unreachable")

        return wrapper  # type: ignore

    return decorator


TRUNCATION_MARKER = "... [truncated]"


def truncate(text: str, max_chars: int) -> str:
    """Cut ``text`` to ``max_chars`` and mark the cut."""
    if len(text) > max_chars:
        return text[:max_chars] + TRUNCATION_MARKER
    return text
