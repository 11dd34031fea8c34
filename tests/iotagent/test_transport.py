"""Tests for aiokafka client settings."""

from unittest.mock import patch

from config.config import AgentConfig
from iotagent.transport import (
    build_consumer_config,
    build_producer_config,
    build_security_config,
)


class TestSecurityConfig:

    def test_plaintext(self):
        assert build_security_config(AgentConfig()) == {}

    def test_sasl_plaintext(self):
        config = AgentConfig(
            security_protocol="SASL_PLAINTEXT",
            sasl_plain_username="agent",
            sasl_plain_password="secret",
        )
        assert build_security_config(config) == {
            "security_protocol": "SASL_PLAINTEXT",
            "sasl_mechanism": "PLAIN",
            "sasl_plain_username": "agent",
            "sasl_plain_password": "secret",
        }

    def test_ssl_builds_context(self):
        with patch("iotagent.transport.create_ssl_context", return_value="ctx") as create:
            security = build_security_config(AgentConfig(security_protocol="SSL"))

        create.assert_called_once()
        assert security == {"security_protocol": "SSL", "ssl_context": "ctx"}


class TestConsumerConfig:

    def test_defaults(self):
        config = build_consumer_config(AgentConfig(), "iotagent-brave-otter")

        assert config["bootstrap_servers"] == "kafka:9092"
        assert config["group_id"] == "iotagent-brave-otter"
        assert config["auto_offset_reset"] == "latest"
        assert config["enable_auto_commit"] is True

    def test_consumer_defaults_override(self):
        agent_config = AgentConfig(consumer_defaults={"auto_offset_reset": "earliest", "max_poll_records": 50})
        config = build_consumer_config(agent_config, "group")

        assert config["auto_offset_reset"] == "earliest"
        assert config["max_poll_records"] == 50


class TestProducerConfig:

    def test_defaults(self):
        config = build_producer_config(AgentConfig())
        assert config["bootstrap_servers"] == "kafka:9092"
        assert config["acks"] == 1
        assert "group_id" not in config

    def test_translates_settings(self):
        agent_config = AgentConfig(
            producer_defaults={
                "acks": "all",
                "batch_size": 16384,
                "retries": 3,
                "compression_type": "none",
                "linger_ms": 5,
            }
        )
        config = build_producer_config(agent_config)

        assert config["acks"] == "all"
        assert config["max_batch_size"] == 16384
        assert "batch_size" not in config
        assert "retries" not in config
        assert config["compression_type"] is None
        assert config["linger_ms"] == 5

    def test_numeric_string_acks(self):
        config = build_producer_config(AgentConfig(producer_defaults={"acks": "0"}))
        assert config["acks"] == 0
