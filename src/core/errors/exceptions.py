"""
Unified exception hierarchy for the IoT agent runtime.

Provides typed exceptions with retry classification so sessions, the cache
and the application surface can decide what to swallow, retry or propagate.
"""

# Import ErrorCategory from canonical source to avoid duplicate enum issues
# (comparing enums from different classes always returns False)
from core.types import ErrorCategory


class AgentError(Exception):
    """
    Base exception for all agent errors.

    Attributes:
        message: Human-readable error description
        category: Error classification for retry decisions
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        return self.category in (
            ErrorCategory.TRANSIENT,
            ErrorCategory.AUTH,
            ErrorCategory.UNKNOWN,
        )

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


# =============================================================================
# Category base classes
# =============================================================================


class AuthError(AgentError):
    """Base class for authentication errors."""

    category = ErrorCategory.AUTH


class TransientError(AgentError):
    """Base class for transient/retriable errors."""

    category = ErrorCategory.TRANSIENT


class PermanentError(AgentError):
    """Base class for permanent/non-retriable errors."""

    category = ErrorCategory.PERMANENT


# =============================================================================
# Domain-Specific Errors
# =============================================================================


class ResolutionError(TransientError):
    """Topic or tenant lookup against the directory service failed.

    Retried by the caller (tenant bootstrap retries internally), never by
    the resolver itself.
    """

    def __init__(
        self,
        message: str,
        tenant: str | None = None,
        subject: str | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message, cause, {"tenant": tenant, "subject": subject})
        self.tenant = tenant
        self.subject = subject


class TransportError(TransientError):
    """Broker connect/publish/subscribe failure."""

    pass


class UnknownDeviceError(PermanentError):
    """Device is absent upstream or known-absent in the device cache."""

    def __init__(self, device_id: str, tenant: str, cause: Exception | None = None):
        super().__init__(
            f"Unknown device '{device_id}' for tenant '{tenant}'",
            cause,
            {"device_id": device_id, "tenant": tenant},
        )
        self.device_id = device_id
        self.tenant = tenant


class UnknownTenantError(PermanentError):
    """Tenant is not known to the platform."""

    pass


class InitializationError(PermanentError):
    """Agent could not be initialized (bad configuration, missing collaborators)."""

    pass


class MalformedMessageError(PermanentError):
    """Inbound payload could not be decoded into an event envelope."""

    def __init__(
        self,
        message: str,
        topic: str | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message, cause, {"topic": topic})
        self.topic = topic


class DirectoryApiError(AgentError):
    """Non-success response (other than the documented 404 contracts) from a directory service."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        category: ErrorCategory = ErrorCategory.TRANSIENT,
        cause: Exception | None = None,
    ):
        super().__init__(message, cause, {"status_code": status_code})
        self.status_code = status_code
        self.category = category


# =============================================================================
# Error Classification Utilities
# =============================================================================


def classify_http_status(status_code: int) -> ErrorCategory:
    """Classify HTTP status code into error category."""
    if 200 <= status_code < 300:
        return ErrorCategory.UNKNOWN  # Not an error

    if status_code == 401:
        return ErrorCategory.AUTH

    if status_code == 429:
        return ErrorCategory.TRANSIENT  # Rate limited

    if 400 <= status_code < 500:
        return ErrorCategory.PERMANENT  # Client errors, won't fix with retry

    if status_code >= 500:
        return ErrorCategory.TRANSIENT  # Server errors, may recover

    return ErrorCategory.UNKNOWN


def classify_exception(exc: Exception) -> ErrorCategory:
    """Classify an exception into error category."""
    if isinstance(exc, AgentError):
        return exc.category

    exc_type = type(exc).__name__.lower()
    exc_str = str(exc).lower()

    connection_markers = (
        "connectionerror",
        "connection refused",
        "connection reset",
        "kafkaconnectionerror",
        "nobrokersavailable",
        "name resolution",
        "broken pipe",
    )
    if any(m in exc_type or m in exc_str for m in connection_markers):
        return ErrorCategory.TRANSIENT

    if "timeout" in exc_type or "timeout" in exc_str:
        return ErrorCategory.TRANSIENT

    if "401" in exc_str or "unauthorized" in exc_str:
        return ErrorCategory.AUTH

    if "404" in exc_str or "not found" in exc_str:
        return ErrorCategory.PERMANENT

    return ErrorCategory.UNKNOWN


def is_retryable_error(exc: Exception) -> bool:
    """
    Check if exception should be retried.

    Retryable: transient, auth and unknown errors.
    Non-retryable: permanent errors (404, malformed payloads, bad config).
    """
    if isinstance(exc, AgentError):
        return exc.is_retryable

    return classify_exception(exc) in (
        ErrorCategory.TRANSIENT,
        ErrorCategory.AUTH,
        ErrorCategory.UNKNOWN,
    )


def wrap_exception(exc: Exception, context: dict | None = None) -> AgentError:
    """Wrap a generic exception in the AgentError subclass matching its category."""
    if isinstance(exc, AgentError):
        if context:
            exc.context.update(context)
        return exc

    category = classify_exception(exc)
    if category == ErrorCategory.AUTH:
        return AuthError(str(exc), cause=exc, context=context)
    if category == ErrorCategory.TRANSIENT:
        return TransientError(str(exc), cause=exc, context=context)
    if category == ErrorCategory.PERMANENT:
        return PermanentError(str(exc), cause=exc, context=context)
    return AgentError(str(exc), cause=exc, context=context)
