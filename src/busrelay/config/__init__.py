"""Configuration: YAML + env overlay, resolved into RelaySettings."""

from busrelay.config.loader import _deep_update, env_overlay, load_config, load_config_with_env, parse_bool
from busrelay.config.schema import Config, RelaySettings, cfg

__all__ = [
    "Config",
    "RelaySettings",
    "_deep_update",
    "cfg",
    "env_overlay",
    "load_config",
    "load_config_with_env",
    "parse_bool",
]
