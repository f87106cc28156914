"""
Royalty Ledger - Retry Logic with Exponential Backoff

Ledger calls that lose a lock race fail fast with BusyError or
ConcurrencyConflictError instead of blocking. The ledger never retries on
its own, so no operation is repeated behind its caller's back; this module
is the helper callers on a request path wrap their ledger calls in.

Usage:
    from retry import retry_with_backoff, retry_call

    @retry_with_backoff(max_retries=3, base_delay=0.05)
    def pay_out():
        return ledger.distribute(caller, "track-1", 1_000)

    result = retry_call(ledger.flush_pending, args=(caller, "track-1"))

Environment Variables:
    RETRY_MAX_ATTEMPTS=3
    RETRY_BASE_DELAY=0.05
    RETRY_MAX_DELAY=2.0
    RETRY_EXPONENTIAL_BASE=2.0
    RETRY_JITTER=0.1
"""

import logging
import os
import random
import time
from dataclasses import dataclass
from functools import wraps
from typing import Any, Callable, Type

from royalty_exceptions import BusyError, ConcurrencyConflictError

logger = logging.getLogger(__name__)

DEFAULT_RETRYABLE = (BusyError, ConcurrencyConflictError)


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_retries: int = 3
    base_delay: float = 0.05  # Initial delay in seconds
    max_delay: float = 2.0  # Maximum delay between retries
    exponential_base: float = 2.0  # Multiplier for exponential backoff
    jitter: float = 0.1  # Random jitter factor (0.0 to 1.0)
    retryable_exceptions: tuple = DEFAULT_RETRYABLE

    @classmethod
    def from_env(cls) -> "RetryConfig":
        """Create configuration from environment variables."""
        return cls(
            max_retries=int(os.getenv("RETRY_MAX_ATTEMPTS", "3")),
            base_delay=float(os.getenv("RETRY_BASE_DELAY", "0.05")),
            max_delay=float(os.getenv("RETRY_MAX_DELAY", "2.0")),
            exponential_base=float(os.getenv("RETRY_EXPONENTIAL_BASE", "2.0")),
            jitter=float(os.getenv("RETRY_JITTER", "0.1")),
        )


@dataclass
class RetryStats:
    """Statistics from retry operations."""

    attempts: int = 0
    retries: int = 0
    total_delay: float = 0.0
    last_error: str | None = None

    def record_attempt(self, delay: float = 0.0, error: str | None = None):
        """Record an attempt."""
        self.attempts += 1
        if error:
            self.last_error = error
        if delay > 0:
            self.retries += 1
            self.total_delay += delay


def calculate_delay(
    attempt: int,
    base_delay: float,
    exponential_base: float,
    max_delay: float,
    jitter: float
) -> float:
    """
    Calculate delay with exponential backoff and jitter.

    Args:
        attempt: Current attempt number (0-indexed)
        base_delay: Initial delay in seconds
        exponential_base: Multiplier for exponential growth
        max_delay: Maximum delay cap
        jitter: Random jitter factor (0.0 to 1.0)

    Returns:
        Delay in seconds
    """
    delay = min(base_delay * (exponential_base ** attempt), max_delay)

    # delay * (1 + random(-jitter, +jitter))
    if jitter > 0:
        delay += delay * jitter * (2 * random.random() - 1)

    return max(0, delay)


def is_retryable_exception(
    exception: Exception,
    retryable_types: tuple[Type[Exception], ...]
) -> bool:
    """Check if an exception should trigger a retry."""
    return isinstance(exception, retryable_types)


def _run_with_retries(
    func: Callable,
    args: tuple,
    kwargs: dict,
    config: RetryConfig,
    stats: RetryStats,
    on_retry: Callable[[int, Exception, float], None] | None = None,
) -> Any:
    name = getattr(func, "__name__", repr(func))
    for attempt in range(config.max_retries + 1):
        try:
            result = func(*args, **kwargs)
            stats.record_attempt()
            return result
        except Exception as e:
            if not is_retryable_exception(e, config.retryable_exceptions):
                raise

            if attempt >= config.max_retries:
                stats.record_attempt(error=str(e))
                logger.error(f"Max retries ({config.max_retries}) exceeded for {name}: {e}")
                raise

            delay = calculate_delay(
                attempt, config.base_delay, config.exponential_base,
                config.max_delay, config.jitter,
            )
            stats.record_attempt(delay=delay, error=str(e))
            logger.warning(
                f"Retry {attempt + 1}/{config.max_retries} for {name} "
                f"after {delay:.2f}s delay: {e}"
            )
            if on_retry:
                on_retry(attempt + 1, e, delay)
            time.sleep(delay)


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 0.05,
    max_delay: float = 2.0,
    exponential_base: float = 2.0,
    jitter: float = 0.1,
    retryable_exceptions: tuple = DEFAULT_RETRYABLE,
    on_retry: Callable[[int, Exception, float], None] | None = None,
):
    """
    Decorator for retrying functions with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay between retries in seconds
        max_delay: Maximum delay between retries
        exponential_base: Base for exponential backoff calculation
        jitter: Random jitter factor (0.0 to 1.0)
        retryable_exceptions: Tuple of exception types to retry
        on_retry: Optional callback called on each retry (attempt, exception, delay)
    """
    config = RetryConfig(
        max_retries=max_retries,
        base_delay=base_delay,
        max_delay=max_delay,
        exponential_base=exponential_base,
        jitter=jitter,
        retryable_exceptions=retryable_exceptions,
    )

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            return _run_with_retries(func, args, kwargs, config, RetryStats(), on_retry)

        return wrapper
    return decorator


def retry_call(
    func: Callable,
    args: tuple = (),
    kwargs: dict | None = None,
    config: RetryConfig | None = None,
    stats: RetryStats | None = None,
) -> Any:
    """
    Execute a function with retry logic.

    Args:
        func: Function to call
        args: Positional arguments
        kwargs: Keyword arguments
        config: Retry configuration
        stats: Optional RetryStats to fill in

    Returns:
        Result of the function call
    """
    return _run_with_retries(
        func,
        args,
        kwargs or {},
        config or RetryConfig(),
        stats if stats is not None else RetryStats(),
    )
