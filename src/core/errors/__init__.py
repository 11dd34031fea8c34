"""
Error classification and exception hierarchy.

Provides:
- ErrorCategory enum for classifying errors
- AgentError hierarchy for typed exceptions
- Classification utilities for error handling
"""

from core.errors.exceptions import (
    # Base classes
    AgentError,
    AuthError,
    PermanentError,
    TransientError,
    # Domain errors
    DirectoryApiError,
    InitializationError,
    MalformedMessageError,
    ResolutionError,
    TransportError,
    UnknownDeviceError,
    UnknownTenantError,
    # Classification utilities
    classify_exception,
    classify_http_status,
    is_retryable_error,
    wrap_exception,
)
from core.types import ErrorCategory

__all__ = [
    # Enums
    "ErrorCategory",
    # Base classes
    "AgentError",
    "AuthError",
    "TransientError",
    "PermanentError",
    # Domain errors
    "DirectoryApiError",
    "InitializationError",
    "MalformedMessageError",
    "ResolutionError",
    "TransportError",
    "UnknownDeviceError",
    "UnknownTenantError",
    # Classification utilities
    "classify_exception",
    "classify_http_status",
    "is_retryable_error",
    "wrap_exception",
]
