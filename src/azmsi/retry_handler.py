"""Retry logic with exponential backoff for transient failures.

Azure's control plane is eventually consistent: a freshly created managed
identity is not immediately visible to the role assignment API, and CLI calls
occasionally fail with throttling or gateway errors. This module provides a
single decorator to retry such operations.

Usage:
    @retry_with_exponential_backoff(max_attempts=3)
    def azure_operation():
        ...

    # Only retry errors that look transient
    @retry_with_exponential_backoff(
        max_attempts=6,
        initial_delay=10.0,
        retryable_exceptions=(subprocess.CalledProcessError,),
        retry_if=lambda e: "PrincipalNotFound" in (e.stderr or ""),
    )
    def assign():
        ...
"""

import functools
import logging
import random
import subprocess
import time
from typing import Any, Callable, TypeVar

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

DEFAULT_RETRYABLE_EXCEPTIONS: tuple[type[Exception], ...] = (
    TimeoutError,
    ConnectionError,
    subprocess.TimeoutExpired,
)


def retry_with_exponential_backoff(
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 30.0,
    jitter: bool = True,
    retryable_exceptions: tuple[type[Exception], ...] | None = None,
    retry_if: Callable[[Exception], bool] | None = None,
) -> Callable[[F], F]:
    """Decorator for retrying operations with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts (default: 3)
        initial_delay: Initial delay in seconds (default: 1.0)
        max_delay: Maximum delay between retries in seconds (default: 30.0)
        jitter: Add +/-25% random jitter to delays (default: True)
        retryable_exceptions: Exception types to retry
            (default: timeouts and connection errors)
        retry_if: Optional predicate; a retryable exception for which it
            returns False is re-raised immediately

    Returns:
        Decorated function that will retry on transient failures
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    if retryable_exceptions is None:
        retryable_exceptions = DEFAULT_RETRYABLE_EXCEPTIONS

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            delay = initial_delay

            for attempt in range(1, max_attempts + 1):
                try:
                    result = func(*args, **kwargs)
                    if attempt > 1:
                        logger.info(
                            f"{func.__name__} succeeded on attempt {attempt}/{max_attempts}"
                        )
                    return result

                except retryable_exceptions as e:
                    if retry_if is not None and not retry_if(e):
                        raise

                    if attempt >= max_attempts:
                        logger.error(
                            f"{func.__name__} failed after {max_attempts} attempts: "
                            f"{_safe_error_message(e)}"
                        )
                        raise

                    actual_delay = delay
                    if jitter:
                        jitter_amount = delay * 0.25
                        actual_delay = delay + random.uniform(-jitter_amount, jitter_amount)
                    actual_delay = min(actual_delay, max_delay)

                    logger.warning(
                        f"{func.__name__} failed on attempt {attempt}/{max_attempts}, "
                        f"retrying in {actual_delay:.2f}s: {_safe_error_message(e)}"
                    )
                    time.sleep(actual_delay)
                    delay *= 2

            raise RuntimeError(f"{func.__name__} failed with unknown error")

        return wrapper  # type: ignore

    return decorator


def _safe_error_message(exception: Exception) -> str:
    """Create a short error message for logs.

    CalledProcessError carries the az CLI's stderr, which is far more useful
    than the generic "returned non-zero exit status" text.
    """
    if isinstance(exception, subprocess.CalledProcessError) and exception.stderr:
        error_str = str(exception.stderr).strip()
    else:
        error_str = str(exception)

    if len(error_str) > 200:
        error_str = error_str[:200] + "..."

    return error_str


__all__ = ["DEFAULT_RETRYABLE_EXCEPTIONS", "retry_with_exponential_backoff"]
