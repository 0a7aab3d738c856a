"""Retry utility with exponential backoff.

Invocations are synchronous, so the delay blocks the caller. Supports
transient vs permanent failure classification via retryable_exceptions
and an optional is_transient predicate.
"""

import logging
import time
from collections.abc import Callable
from functools import wraps
from typing import Any

logger = logging.getLogger(__name__)


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    retryable_exceptions: tuple[type[Exception], ...] | None = None,
    is_transient: Callable[[Exception], bool] | None = None,
) -> Callable:
    """Decorator for retrying functions with exponential backoff.

    Delay follows the formula: base_delay * 2^attempt

    Args:
        max_retries: Maximum number of retry attempts (default 3).
        base_delay: Base delay in seconds before first retry (default 1.0).
        retryable_exceptions: Tuple of exception types eligible for retry.
            If None, all exceptions are eligible.
        is_transient: Optional predicate further narrowing which eligible
            exceptions are retried (e.g. only HTTP 429/5xx).

    Returns:
        Decorator that wraps a function with retry logic. The final
        exception carries the attempt count as ``_retry_count``.
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            last_error: Exception | None = None
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except Exception as exc:
                    last_error = exc
                    permanent = (
                        retryable_exceptions is not None
                        and not isinstance(exc, retryable_exceptions)
                    ) or (is_transient is not None and not is_transient(exc))
                    if permanent:
                        exc._retry_count = attempt  # type: ignore[attr-defined]
                        raise
                    if attempt < max_retries:
                        delay = base_delay * (2**attempt)
                        logger.warning(
                            "Retry %d/%d for %s after %.1fs: %s",
                            attempt + 1,
                            max_retries,
                            func.__name__,
                            delay,
                            exc,
                        )
                        time.sleep(delay)
            last_error._retry_count = max_retries  # type: ignore[union-attr]
            raise last_error  # type: ignore[misc]

        return wrapper

    return decorator
