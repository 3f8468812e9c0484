"""Retry logic for object storage calls with exponential backoff.

Only snapshot fetches (S3 GetObject and the public-URL GET) are retried here.
Producer sends are not: a batch that is not acknowledged within the send
timeout fails the bridge run and leaves the snapshot unmarked for the next
run. Per-record database errors are never retried locally either; they rely
on upstream redelivery instead.
"""

import logging
import time
from functools import wraps
from typing import Any, Callable, TypeVar

F = TypeVar("F", bound=Callable[..., Any])

logger = logging.getLogger(__name__)


def retry_with_backoff(
    max_retries: int = 3,
    initial_delay: float = 1.0,
    backoff_factor: float = 2.0,
    exceptions: tuple[type[Exception], ...] = (ConnectionError, TimeoutError),
) -> Callable[[F], F]:
    """Decorator to retry a function with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts (default: 3)
        initial_delay: Delay in seconds before the first retry (default: 1.0)
        backoff_factor: Multiplier applied to the delay after each retry
                       delay = initial_delay * (backoff_factor ** attempt)
        exceptions: Exception types that trigger a retry. Anything else
                    propagates immediately.

    Returns:
        Decorated function that retries on the listed exceptions

    Example:
        @retry_with_backoff(max_retries=3, initial_delay=0.5)
        def open_snapshot(bucket, key):
            return s3.get_object(Bucket=bucket, Key=key)["Body"]

    Backoff with initial_delay=1.0, backoff_factor=2.0:
        Attempt 1: no delay
        Attempt 2: 1 second
        Attempt 3: 2 seconds
        Attempt 4: 4 seconds
    """

    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            last_exception = None

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    last_exception = e

                    if attempt < max_retries:
                        delay = initial_delay * (backoff_factor**attempt)

                        logger.warning(
                            "Function %s failed (attempt %d/%d): %s. Retrying in %.1f seconds...",
                            func.__name__,
                            attempt + 1,
                            max_retries + 1,
                            e,
                            delay,
                            extra={
                                "function": func.__name__,
                                "retry_attempt": attempt + 1,
                                "max_retries": max_retries + 1,
                                "delay_seconds": delay,
                                "exception_type": type(e).__name__,
                            },
                        )

                        time.sleep(delay)
                    else:
                        logger.error(
                            "Function %s failed after %d attempts",
                            func.__name__,
                            max_retries + 1,
                            extra={
                                "function": func.__name__,
                                "total_attempts": max_retries + 1,
                                "exception_type": type(e).__name__,
                            },
                        )

            raise last_exception  # type: ignore

        return wrapper  # type: ignore

    return decorator


def retry_transport_call(
    max_retries: int = 3,
    extra_exceptions: tuple[type[Exception], ...] = (),
) -> Callable[[F], F]:
    """Convenience decorator for S3 and HTTP snapshot fetches.

    Retries connection and timeout errors plus any client-specific transient
    errors passed in ``extra_exceptions`` (for example botocore's
    ``EndpointConnectionError`` or requests' ``ConnectionError``).

    Args:
        max_retries: Maximum number of retry attempts (default: 3)
        extra_exceptions: Additional exception types to treat as transient

    Returns:
        Decorated function
    """
    return retry_with_backoff(
        max_retries=max_retries,
        initial_delay=1.0,
        backoff_factor=2.0,
        exceptions=(ConnectionError, TimeoutError) + tuple(extra_exceptions),
    )
