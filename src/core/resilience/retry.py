"""
Retry utilities with exception-aware handling.

Uses the exception hierarchy to make retry decisions:
- Transient errors: retry after a delay (fixed or exponential backoff)
- Permanent errors: fail immediately (no retry)

The tenant bootstrap uses a fixed, jitter-free delay with unbounded attempts;
other callers can opt into exponential backoff with equal jitter.
"""

import asyncio
import logging
import random
from collections.abc import Callable
from dataclasses import dataclass, field
from functools import wraps

from core.errors.exceptions import (
    AgentError,
    classify_exception,
    is_retryable_error,
)

logger = logging.getLogger(__name__)


def _error_category(error: Exception) -> str:
    cat = error.category if isinstance(error, AgentError) else classify_exception(error)
    return cat.value if hasattr(cat, "value") else str(cat)


@dataclass
class RetryConfig:
    """Configuration for retry behavior.

    max_attempts=None retries forever.
    """

    max_attempts: int | None = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True

    # If True, don't retry permanent errors even if attempts remain
    respect_permanent: bool = True

    # Optional set of exception types to always retry (overrides classification)
    always_retry: set[type[Exception]] = field(default_factory=set)

    def __post_init__(self):
        """Ensure proper types from YAML/env vars."""
        if self.max_attempts is not None:
            self.max_attempts = int(self.max_attempts)
            if self.max_attempts < 1:
                raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        self.base_delay = float(self.base_delay)
        self.max_delay = float(self.max_delay)
        self.exponential_base = float(self.exponential_base)

    @classmethod
    def fixed(cls, delay: float, max_attempts: int | None = None) -> "RetryConfig":
        """Constant delay between attempts, no jitter."""
        return cls(
            max_attempts=max_attempts,
            base_delay=delay,
            max_delay=delay,
            exponential_base=1.0,
            jitter=False,
        )

    def get_delay(self, attempt: int) -> float:
        """
        Calculate the delay before the next attempt.

        Args:
            attempt: 0-indexed attempt number that just failed

        Returns:
            Delay in seconds
        """
        base_delay = min(self.base_delay * (self.exponential_base**attempt), self.max_delay)
        if not self.jitter:
            return base_delay

        # Equal jitter: half fixed, half random
        return (base_delay / 2) + random.uniform(0, base_delay / 2)

    def should_retry(self, error: Exception, attempt: int) -> bool:
        """
        Determine if error should be retried.

        Args:
            error: The exception that occurred
            attempt: 0-indexed current attempt
        """
        if self.max_attempts is not None and attempt >= self.max_attempts - 1:
            return False

        if self.always_retry and isinstance(error, tuple(self.always_retry)):
            return True

        if not self.respect_permanent:
            return True

        return is_retryable_error(error)


DEFAULT_RETRY = RetryConfig(max_attempts=3, base_delay=1.0)


def with_retry_async(
    config: RetryConfig | None = None,
    on_retry: Callable[[Exception, int, float], None] | None = None,
):
    """
    Decorator for retrying async functions.

    Args:
        config: Retry configuration (defaults to DEFAULT_RETRY)
        on_retry: Callback before each retry (error, attempt, delay)

    Usage:
        @with_retry_async(config=RetryConfig.fixed(2.5))
        async def list_tenants():
            ...
    """
    if config is None:
        config = DEFAULT_RETRY

    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    error_category = _error_category(e)

                    if not config.should_retry(e, attempt):
                        logger.error(
                            "Giving up on %s after %d attempt(s): %s",
                            func.__name__,
                            attempt + 1,
                            str(e)[:200],
                            extra={
                                "operation": func.__name__,
                                "attempt": attempt + 1,
                                "max_attempts": config.max_attempts,
                                "error_category": error_category,
                                "error_message": str(e)[:200],
                            },
                        )
                        raise

                    delay = config.get_delay(attempt)
                    logger.warning(
                        "Retryable error for %s, will retry",
                        func.__name__,
                        extra={
                            "operation": func.__name__,
                            "attempt": attempt + 1,
                            "max_attempts": config.max_attempts,
                            "error_category": error_category,
                            "delay_seconds": round(delay, 2),
                            "error_message": str(e)[:200],
                        },
                    )

                    if on_retry:
                        try:
                            on_retry(e, attempt, delay)
                        except Exception as cb_err:
                            logger.warning(
                                "Error in on_retry callback for %s: %s",
                                func.__name__,
                                str(cb_err)[:100],
                            )

                    await asyncio.sleep(delay)
                    attempt += 1
                    continue

                if attempt > 0:
                    logger.info(
                        "Retry succeeded for %s after %d attempts",
                        func.__name__,
                        attempt + 1,
                        extra={"operation": func.__name__, "attempt": attempt + 1},
                    )
                return result

        return wrapper

    return decorator


__all__ = [
    "RetryConfig",
    "with_retry_async",
    "DEFAULT_RETRY",
]
