"""IoT agent configuration from YAML file.

Loads from config/config.yaml with all settings in one place:
- Kafka connection settings and consumer/producer defaults
- Platform service addresses and subjects (device-manager, auth, data-broker, iota)
- Device cache TTLs, tenant bootstrap retry and producer reconnect policy

Environment variables ARE supported using ${VAR_NAME} syntax in YAML files.
"""

import json
import logging
import os
import re
import sys
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file and return dict."""
    if not path.exists():
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand ${VAR_NAME} and ${VAR_NAME:-default} environment variables in config data."""
    if isinstance(data, dict):
        return {key: _expand_env_vars(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        pattern = r"\$\{([^}:]+)(?::-(([^}]*))?)?\}"

        def replacer(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) is not None else match.group(0)
            return os.getenv(var_name, default_value)

        return re.sub(pattern, replacer, data)
    else:
        return data


def _to_bool(value: Any) -> bool:
    # bool('false') would be True
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


DEFAULT_CONFIG_FILE = Path(__file__).parent / "config.yaml"

VALID_SECURITY_PROTOCOLS = ["PLAINTEXT", "SSL", "SASL_PLAINTEXT", "SASL_SSL"]


@dataclass
class AgentConfig:
    """IoT agent configuration.

    Configuration structure:
        kafka:
          connection: {...}           # Shared connection settings
          group_id / group_id_prefix  # Consumer group naming
          consumer_defaults: {...}    # Passed through to AIOKafkaConsumer
          producer_defaults: {...}    # Passed through to AIOKafkaProducer
        device-manager: {manager, subject, internal_endpoint}
        auth: {manager, subject}
        data-broker: {manager}
        iota: {subject, internal_tenant}
        http: {timeout_seconds}
        cache: {device_ttl_seconds, invalid_ttl_seconds}
        tenancy: {bootstrap_retry, bootstrap_retry_delay_seconds}
        producer: {reconnect_delay_seconds, buffer_max_size}

    Kafka timing values in milliseconds, everything else in seconds.
    """

    # =========================================================================
    # KAFKA CONNECTION
    # =========================================================================
    bootstrap_servers: str = "kafka:9092"
    security_protocol: str = "PLAINTEXT"
    sasl_mechanism: str = "PLAIN"
    sasl_plain_username: str = ""
    sasl_plain_password: str = ""
    request_timeout_ms: int = 40000
    metadata_max_age_ms: int = 300000
    group_id: str = ""
    group_id_prefix: str = "iotagent"
    consumer_defaults: Dict[str, Any] = field(default_factory=dict)
    producer_defaults: Dict[str, Any] = field(default_factory=dict)

    # =========================================================================
    # PLATFORM SERVICES
    # =========================================================================
    device_manager_url: str = "http://device-manager:5000"
    auth_url: str = "http://auth:5000"
    data_broker_url: str = "http://data-broker:80"
    use_internal_device_endpoint: bool = True
    http_timeout_seconds: float = 30.0

    # =========================================================================
    # SUBJECTS
    # =========================================================================
    device_subject: str = "dojot.device-manager.device"
    tenancy_subject: str = "dojot.tenancy"
    iota_subject: str = "device-data"
    internal_tenant: str = "internal"

    # =========================================================================
    # DEVICE CACHE
    # =========================================================================
    device_ttl_seconds: float = 60.0
    invalid_ttl_seconds: float = 300.0

    # =========================================================================
    # TENANT BOOTSTRAP / PRODUCER
    # =========================================================================
    bootstrap_retry: bool = True
    bootstrap_retry_delay_seconds: float = 2.5
    reconnect_delay_seconds: float = 20.0
    buffer_max_size: int = 0

    @property
    def prune_interval_seconds(self) -> float:
        """Cache sweep interval: one third of the normal TTL."""
        return self.device_ttl_seconds / 3

    def validate(self) -> None:
        """Validate configuration for correctness and constraints."""
        if not self.bootstrap_servers:
            raise ValueError("bootstrap_servers is required in kafka.connection section")

        if self.security_protocol not in VALID_SECURITY_PROTOCOLS:
            raise ValueError(
                f"kafka.connection: security_protocol must be one of "
                f"{VALID_SECURITY_PROTOCOLS}, got '{self.security_protocol}'"
            )

        for name in ("device_manager_url", "auth_url", "data_broker_url"):
            url = getattr(self, name)
            if not url.startswith(("http://", "https://")):
                raise ValueError(f"{name} must start with http:// or https://, got: {url!r}")

        for name in ("device_subject", "tenancy_subject", "iota_subject", "internal_tenant"):
            if not getattr(self, name):
                raise ValueError(f"{name} must not be empty")

        settings = {
            "device_ttl_seconds": self.device_ttl_seconds,
            "invalid_ttl_seconds": self.invalid_ttl_seconds,
            "http_timeout_seconds": self.http_timeout_seconds,
        }
        for key in settings:
            self._validate_min(settings, key, 0, inclusive=False, context="agent")

        settings = {
            "bootstrap_retry_delay_seconds": self.bootstrap_retry_delay_seconds,
            "reconnect_delay_seconds": self.reconnect_delay_seconds,
            "buffer_max_size": self.buffer_max_size,
        }
        for key in settings:
            self._validate_min(settings, key, 0, inclusive=True, context="agent")

        self._validate_consumer_settings(self.consumer_defaults, "kafka.consumer_defaults")
        self._validate_producer_settings(self.producer_defaults, "kafka.producer_defaults")

    @staticmethod
    def _validate_enum(
        settings: Dict[str, Any],
        key: str,
        valid_values: List[Any],
        context: str
    ) -> None:
        """Validate that a setting's value is in a list of valid values."""
        if key in settings and settings[key] not in valid_values:
            raise ValueError(
                f"{context}: {key} must be one of {valid_values}, "
                f"got '{settings[key]}'"
            )

    @staticmethod
    def _validate_min(
        settings: Dict[str, Any],
        key: str,
        min_value: float,
        inclusive: bool,
        context: str
    ) -> None:
        """Validate that a setting's value meets a minimum threshold."""
        if key in settings:
            value = settings[key]
            if inclusive and value < min_value:
                raise ValueError(
                    f"{context}: {key} must be >= {min_value}, got {value}"
                )
            elif not inclusive and value <= min_value:
                raise ValueError(
                    f"{context}: {key} must be > {min_value}, got {value}"
                )

    def _validate_consumer_settings(self, settings: Dict[str, Any], context: str) -> None:
        if "heartbeat_interval_ms" in settings and "session_timeout_ms" in settings:
            heartbeat = settings["heartbeat_interval_ms"]
            session_timeout = settings["session_timeout_ms"]
            if heartbeat >= session_timeout / 3:
                raise ValueError(
                    f"{context}: heartbeat_interval_ms ({heartbeat}) must be < "
                    f"session_timeout_ms/3 ({session_timeout/3:.0f})"
                )

        self._validate_enum(settings, "auto_offset_reset", ["earliest", "latest", "none"], context)
        self._validate_min(settings, "max_poll_records", 1, inclusive=True, context=context)

    def _validate_producer_settings(self, settings: Dict[str, Any], context: str) -> None:
        self._validate_enum(settings, "acks", ["0", "1", "all", 0, 1, -1], context)
        self._validate_enum(settings, "compression_type", ["none", "gzip", "snappy", "lz4", "zstd"], context)
        self._validate_min(settings, "linger_ms", 0, inclusive=True, context=context)


def _deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge overlay into base dict."""
    result = base.copy()
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def config_from_dict(data: Dict[str, Any]) -> AgentConfig:
    """Build an AgentConfig from the (already env-expanded) YAML structure."""
    defaults = AgentConfig()

    kafka = data.get("kafka", {}) or {}
    connection = kafka.get("connection", {}) or {}
    devm = data.get("device-manager", {}) or {}
    auth = data.get("auth", {}) or {}
    broker = data.get("data-broker", {}) or {}
    iota = data.get("iota", {}) or {}
    http = data.get("http", {}) or {}
    cache = data.get("cache", {}) or {}
    tenancy = data.get("tenancy", {}) or {}
    producer = data.get("producer", {}) or {}

    return AgentConfig(
        bootstrap_servers=connection.get("bootstrap_servers", defaults.bootstrap_servers),
        security_protocol=connection.get("security_protocol", defaults.security_protocol),
        sasl_mechanism=connection.get("sasl_mechanism", defaults.sasl_mechanism),
        sasl_plain_username=connection.get("sasl_plain_username", ""),
        sasl_plain_password=connection.get("sasl_plain_password", ""),
        request_timeout_ms=int(connection.get("request_timeout_ms", defaults.request_timeout_ms)),
        metadata_max_age_ms=int(connection.get("metadata_max_age_ms", defaults.metadata_max_age_ms)),
        group_id=kafka.get("group_id") or "",
        group_id_prefix=kafka.get("group_id_prefix", defaults.group_id_prefix),
        consumer_defaults=kafka.get("consumer_defaults", {}) or {},
        producer_defaults=kafka.get("producer_defaults", {}) or {},
        device_manager_url=devm.get("manager", defaults.device_manager_url).rstrip("/"),
        auth_url=auth.get("manager", defaults.auth_url).rstrip("/"),
        data_broker_url=broker.get("manager", defaults.data_broker_url).rstrip("/"),
        use_internal_device_endpoint=_to_bool(devm.get("internal_endpoint", True)),
        http_timeout_seconds=float(http.get("timeout_seconds", defaults.http_timeout_seconds)),
        device_subject=devm.get("subject", defaults.device_subject),
        tenancy_subject=auth.get("subject", defaults.tenancy_subject),
        iota_subject=iota.get("subject", defaults.iota_subject),
        internal_tenant=iota.get("internal_tenant", defaults.internal_tenant),
        device_ttl_seconds=float(cache.get("device_ttl_seconds", defaults.device_ttl_seconds)),
        invalid_ttl_seconds=float(cache.get("invalid_ttl_seconds", defaults.invalid_ttl_seconds)),
        bootstrap_retry=_to_bool(tenancy.get("bootstrap_retry", True)),
        bootstrap_retry_delay_seconds=float(
            tenancy.get("bootstrap_retry_delay_seconds", defaults.bootstrap_retry_delay_seconds)
        ),
        reconnect_delay_seconds=float(
            producer.get("reconnect_delay_seconds", defaults.reconnect_delay_seconds)
        ),
        buffer_max_size=int(producer.get("buffer_max_size", defaults.buffer_max_size)),
    )


def load_config(
    config_path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> AgentConfig:
    """Load agent configuration from config.yaml.

    Overrides use the same section layout as the YAML file (for example
    {"device-manager": {"manager": "http://devm:5000"}}) and are deep-merged
    on top of it before validation.
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_FILE

    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path}\n" f"Expected file: config/config.yaml"
        )

    logger.info(f"Loading configuration from file: {config_path}")
    yaml_data = _expand_env_vars(load_yaml(config_path))

    if overrides:
        logger.debug(f"Applying overrides: {list(overrides.keys())}")
        yaml_data = _deep_merge(yaml_data, _expand_env_vars(overrides))

    config = config_from_dict(yaml_data)

    logger.debug(f"  - Bootstrap servers: {config.bootstrap_servers}")
    logger.debug(f"  - Device manager: {config.device_manager_url}")
    logger.debug(f"  - Auth: {config.auth_url}")
    logger.debug(f"  - Data broker: {config.data_broker_url}")

    config.validate()
    return config


_agent_config: Optional[AgentConfig] = None


def get_config() -> AgentConfig:
    """Get or load the singleton agent config instance."""
    global _agent_config
    if _agent_config is None:
        _agent_config = load_config()
    return _agent_config


def set_config(config: AgentConfig) -> None:
    """Set the singleton agent config instance (useful for testing)."""
    global _agent_config
    _agent_config = config


def reset_config() -> None:
    """Reset the singleton config instance (forces reload on next get_config() call)."""
    global _agent_config
    _agent_config = None


def _cli_main() -> int:
    """CLI entry point for config validation and debugging."""
    import argparse

    parser = argparse.ArgumentParser(
        description="IoT agent configuration tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Validate configuration
  python -m config.config --validate

  # Show the effective configuration as JSON
  python -m config.config --show --json
        """,
    )
    parser.add_argument("--validate", action="store_true", help="Validate configuration")
    parser.add_argument("--show", action="store_true", help="Display effective configuration")
    parser.add_argument("--config", type=Path, help="Path to config.yaml file")
    parser.add_argument("--json", action="store_true", help="Output in JSON format")

    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")

    if not args.validate and not args.show:
        parser.print_help()
        return 0

    try:
        config = load_config(config_path=args.config)
    except (FileNotFoundError, ValueError) as e:
        if args.json:
            print(json.dumps({"error": str(e)}))
        else:
            print(f"✗ Error: {e}", file=sys.stderr)
        return 1

    output: Dict[str, Any] = {}
    if args.validate:
        if args.json:
            output["validation"] = {"passed": True, "errors": []}
        else:
            print("✓ Configuration validation passed")

    if args.show:
        effective = asdict(config)
        effective["sasl_plain_password"] = "***" if config.sasl_plain_password else ""
        if args.json:
            output["config"] = effective
        else:
            print(yaml.dump(effective, default_flow_style=False, sort_keys=False))

    if args.json:
        print(json.dumps(output, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(_cli_main())
