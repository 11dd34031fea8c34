"""Tests for the Prometheus metric helpers."""

from iotagent.metrics import (
    REGISTRY,
    record_cache_lookup,
    record_event_dropped,
    record_message_consumed,
    update_connection_status,
    update_session_ready,
)


def sample(name, **labels):
    return REGISTRY.get_sample_value(name, labels) or 0.0


def test_malformed_messages_counted_separately():
    consumed = sample("iotagent_messages_consumed_total", subject="metrics.test")
    malformed = sample("iotagent_malformed_messages_total", subject="metrics.test")

    record_message_consumed("metrics.test")
    record_message_consumed("metrics.test", success=False)

    assert sample("iotagent_messages_consumed_total", subject="metrics.test") == consumed + 2
    assert sample("iotagent_malformed_messages_total", subject="metrics.test") == malformed + 1


def test_dropped_events_by_reason():
    before = sample("iotagent_events_dropped_total", reason="buffer_full")
    record_event_dropped("buffer_full")
    assert sample("iotagent_events_dropped_total", reason="buffer_full") == before + 1


def test_session_ready_gauge():
    before = sample("iotagent_active_sessions", subject="metrics.gauge")
    update_session_ready("metrics.gauge", True)
    assert sample("iotagent_active_sessions", subject="metrics.gauge") == before + 1
    update_session_ready("metrics.gauge", False)
    assert sample("iotagent_active_sessions", subject="metrics.gauge") == before


def test_connection_status():
    update_connection_status("producer", connected=True)
    assert sample("iotagent_connection_status", component="producer") == 1
    update_connection_status("producer", connected=False)
    assert sample("iotagent_connection_status", component="producer") == 0


def test_cache_lookups():
    before = sample("iotagent_device_cache_lookups_total", result="hit")
    record_cache_lookup("hit")
    assert sample("iotagent_device_cache_lookups_total", result="hit") == before + 1
