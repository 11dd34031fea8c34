"""Agent configuration package."""

from config.config import (
    AgentConfig,
    config_from_dict,
    get_config,
    load_config,
    reset_config,
    set_config,
)

__all__ = [
    "AgentConfig",
    "config_from_dict",
    "get_config",
    "load_config",
    "reset_config",
    "set_config",
]
