"""Tests for JSON and console log formatters."""

import json
import logging
import sys

from core.logging.context import set_log_context
from core.logging.formatters import ConsoleFormatter, JSONFormatter
from core.logging.kafka_context import KafkaLogContext


def make_record(msg="hello", level=logging.INFO, exc_info=None, **extra):
    record = logging.LogRecord(
        name="iotagent.test",
        level=level,
        pathname=__file__,
        lineno=10,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:

    def test_base_fields(self):
        entry = json.loads(JSONFormatter().format(make_record()))

        assert entry["level"] == "INFO"
        assert entry["logger"] == "iotagent.test"
        assert entry["message"] == "hello"
        assert entry["ts"].endswith("Z")
        assert "file" not in entry

    def test_file_location_on_error(self):
        entry = json.loads(JSONFormatter().format(make_record(level=logging.ERROR)))
        assert entry["file"].endswith(":10")

    def test_extra_fields_included(self):
        record = make_record(tenant="acme", topic="acme.device", session_state="ready")
        entry = json.loads(JSONFormatter().format(record))

        assert entry["tenant"] == "acme"
        assert entry["topic"] == "acme.device"
        assert entry["session_state"] == "ready"

    def test_unknown_extra_fields_ignored(self):
        entry = json.loads(JSONFormatter().format(make_record(not_a_field="x")))
        assert "not_a_field" not in entry

    def test_numeric_fields_coerced(self):
        entry = json.loads(JSONFormatter().format(make_record(http_status="404", buffered="3")))
        assert entry["http_status"] == 404
        assert entry["buffered"] == 3

    def test_url_secrets_redacted(self):
        record = make_record(http_url="http://auth:5000/admin/tenants?token=abc&x=1")
        entry = json.loads(JSONFormatter().format(record))
        assert entry["http_url"] == "http://auth:5000/admin/tenants?token=[REDACTED]&x=1"

    def test_context_injected(self):
        set_log_context(tenant="acme", worker_id="iotagent-brave-otter")
        with KafkaLogContext(topic="acme.device", partition=2, offset=5):
            entry = json.loads(JSONFormatter().format(make_record()))

        assert entry["tenant"] == "acme"
        assert entry["worker_id"] == "iotagent-brave-otter"
        assert entry["kafka_topic"] == "acme.device"
        assert entry["kafka_offset"] == 5

    def test_exception_included(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = make_record(level=logging.ERROR, exc_info=sys.exc_info())

        entry = json.loads(JSONFormatter().format(record))
        assert entry["exception"]["type"] == "ValueError"
        assert entry["exception"]["message"] == "boom"
        assert "Traceback" in entry["exception"]["stacktrace"]


class TestConsoleFormatter:

    def test_tags_from_record(self):
        output = ConsoleFormatter().format(make_record(tenant="acme", device_id="d1"))
        assert "[acme] [dev:d1] hello" in output

    def test_tags_from_context(self):
        set_log_context(tenant="globex")
        output = ConsoleFormatter().format(make_record())
        assert "[globex] hello" in output

    def test_no_tags(self):
        output = ConsoleFormatter().format(make_record())
        assert output.endswith("iotagent.test - hello")
