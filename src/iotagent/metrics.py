"""
Prometheus metrics for the IoT agent runtime.

Focused on essential metrics:
- Inbound message counts and decode failures
- Outbound publish counts, failures and drops
- Publish buffer depth and broker connection status
- Device cache lookups and size
- Directory request latency

Metrics live in a dedicated registry so several agents (or test runs) in one
process never collide on the global default registry.
"""

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

REGISTRY = CollectorRegistry()


# =============================================================================
# Inbound
# =============================================================================

messages_consumed_counter = Counter(
    "iotagent_messages_consumed_total",
    "Total number of messages consumed by inbound sessions",
    labelnames=["subject"],
    registry=REGISTRY,
)

malformed_messages_counter = Counter(
    "iotagent_malformed_messages_total",
    "Inbound messages dropped because they could not be decoded",
    labelnames=["subject"],
    registry=REGISTRY,
)

callback_errors_counter = Counter(
    "iotagent_callback_errors_total",
    "Exceptions raised by application callbacks",
    labelnames=["event"],
    registry=REGISTRY,
)

active_sessions_gauge = Gauge(
    "iotagent_active_sessions",
    "Inbound sessions currently in READY state",
    labelnames=["subject"],
    registry=REGISTRY,
)

# =============================================================================
# Outbound
# =============================================================================

events_published_counter = Counter(
    "iotagent_events_published_total",
    "Total number of events delivered to the broker",
    labelnames=["subject"],
    registry=REGISTRY,
)

publish_errors_counter = Counter(
    "iotagent_publish_errors_total",
    "Publish failures by error type",
    labelnames=["subject", "error_type"],
    registry=REGISTRY,
)

events_dropped_counter = Counter(
    "iotagent_events_dropped_total",
    "Outbound events dropped before reaching the broker",
    labelnames=["reason"],
    registry=REGISTRY,
)

buffered_events_gauge = Gauge(
    "iotagent_buffered_events",
    "Events waiting in the publish buffer",
    registry=REGISTRY,
)

connection_status_gauge = Gauge(
    "iotagent_connection_status",
    "Broker connection status (1=connected, 0=disconnected)",
    labelnames=["component"],
    registry=REGISTRY,
)

# =============================================================================
# Device cache / directory
# =============================================================================

cache_lookups_counter = Counter(
    "iotagent_device_cache_lookups_total",
    "Device cache lookups by result",
    labelnames=["result"],
    registry=REGISTRY,
)

cache_entries_gauge = Gauge(
    "iotagent_device_cache_entries",
    "Entries currently held by the device cache",
    registry=REGISTRY,
)

directory_request_duration_seconds = Histogram(
    "iotagent_directory_request_duration_seconds",
    "Time spent on directory service requests",
    labelnames=["endpoint", "status"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=REGISTRY,
)


# =============================================================================
# Convenience Functions
# =============================================================================


def record_message_consumed(subject: str, success: bool = True) -> None:
    """Record a consumed message; failures count as malformed."""
    messages_consumed_counter.labels(subject=subject).inc()
    if not success:
        malformed_messages_counter.labels(subject=subject).inc()


def record_callback_error(event: str) -> None:
    callback_errors_counter.labels(event=event).inc()


def record_event_published(subject: str) -> None:
    events_published_counter.labels(subject=subject).inc()


def record_publish_error(subject: str, error_type: str) -> None:
    publish_errors_counter.labels(subject=subject, error_type=error_type).inc()


def record_event_dropped(reason: str) -> None:
    events_dropped_counter.labels(reason=reason).inc()


def update_buffered_events(count: int) -> None:
    buffered_events_gauge.set(count)


def update_connection_status(component: str, connected: bool) -> None:
    """Update broker connection status."""
    connection_status_gauge.labels(component=component).set(1 if connected else 0)


def update_session_ready(subject: str, ready: bool) -> None:
    if ready:
        active_sessions_gauge.labels(subject=subject).inc()
    else:
        active_sessions_gauge.labels(subject=subject).dec()


def record_cache_lookup(result: str) -> None:
    cache_lookups_counter.labels(result=result).inc()


def update_cache_entries(count: int) -> None:
    cache_entries_gauge.set(count)


def observe_directory_request(endpoint: str, status: str, duration: float) -> None:
    directory_request_duration_seconds.labels(endpoint=endpoint, status=status).observe(duration)


__all__ = [
    "REGISTRY",
    # Metrics
    "messages_consumed_counter",
    "malformed_messages_counter",
    "callback_errors_counter",
    "active_sessions_gauge",
    "events_published_counter",
    "publish_errors_counter",
    "events_dropped_counter",
    "buffered_events_gauge",
    "connection_status_gauge",
    "cache_lookups_counter",
    "cache_entries_gauge",
    "directory_request_duration_seconds",
    # Helper functions
    "record_message_consumed",
    "record_callback_error",
    "record_event_published",
    "record_publish_error",
    "record_event_dropped",
    "update_buffered_events",
    "update_connection_status",
    "update_session_ready",
    "record_cache_lookup",
    "update_cache_entries",
    "observe_directory_request",
]
