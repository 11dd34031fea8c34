"""
Resilience patterns module.

Components:
    - RetryConfig: Fixed or exponential backoff configuration
    - @with_retry_async decorator: Retry async callables by error category
"""

from .retry import (
    DEFAULT_RETRY,
    RetryConfig,
    with_retry_async,
)

__all__ = [
    "RetryConfig",
    "with_retry_async",
    "DEFAULT_RETRY",
]
