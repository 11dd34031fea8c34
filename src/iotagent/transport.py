"""aiokafka client settings built from the agent configuration.

Both inbound sessions and the outbound session connect with the same
bootstrap servers and security settings; only the role-specific defaults
differ.
"""

from typing import Any, Dict

from aiokafka.helpers import create_ssl_context

from config.config import AgentConfig

# Producer settings that aiokafka spells differently or does not accept
_PRODUCER_RENAMES = {"batch_size": "max_batch_size"}
_PRODUCER_UNSUPPORTED = {"retries", "buffer_memory", "max_in_flight_requests_per_connection"}


def build_security_config(config: AgentConfig) -> Dict[str, Any]:
    """Security options shared by consumers and producers."""
    if config.security_protocol == "PLAINTEXT":
        return {}

    security: Dict[str, Any] = {"security_protocol": config.security_protocol}

    if config.security_protocol in ("SSL", "SASL_SSL"):
        security["ssl_context"] = create_ssl_context()

    if config.security_protocol.startswith("SASL"):
        security["sasl_mechanism"] = config.sasl_mechanism
        if config.sasl_mechanism == "PLAIN":
            security["sasl_plain_username"] = config.sasl_plain_username
            security["sasl_plain_password"] = config.sasl_plain_password

    return security


def build_consumer_config(config: AgentConfig, group_id: str) -> Dict[str, Any]:
    """Keyword arguments for AIOKafkaConsumer."""
    consumer_config: Dict[str, Any] = {
        "bootstrap_servers": config.bootstrap_servers,
        "group_id": group_id,
        "request_timeout_ms": config.request_timeout_ms,
        "metadata_max_age_ms": config.metadata_max_age_ms,
        "enable_auto_commit": True,
        "auto_offset_reset": "latest",
    }
    consumer_config.update(config.consumer_defaults)
    consumer_config.update(build_security_config(config))
    return consumer_config


def build_producer_config(config: AgentConfig) -> Dict[str, Any]:
    """Keyword arguments for AIOKafkaProducer."""
    producer_config: Dict[str, Any] = {
        "bootstrap_servers": config.bootstrap_servers,
        "request_timeout_ms": config.request_timeout_ms,
        "metadata_max_age_ms": config.metadata_max_age_ms,
    }

    for key, value in config.producer_defaults.items():
        if key in _PRODUCER_UNSUPPORTED:
            continue
        producer_config[_PRODUCER_RENAMES.get(key, key)] = value

    # aiokafka requires int for 0/1, or "all"
    acks = producer_config.get("acks", 1)
    if isinstance(acks, str) and acks.lstrip("-").isdigit():
        acks = int(acks)
    producer_config["acks"] = acks

    if producer_config.get("compression_type") == "none":
        producer_config["compression_type"] = None

    producer_config.update(build_security_config(config))
    return producer_config
