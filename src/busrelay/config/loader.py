"""Relay config sources: optional YAML file, .env, then BUSRELAY_*/AMQP variables.

Later sources win. The result is a plain dict that ``Config`` validates; the
relay core never reads the environment itself.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from loguru import logger

from busrelay.core.errors import ConfigurationError

# (env var, config key); for a shared key the first variable that is set wins
ENV_OVERLAY: tuple[tuple[str, str], ...] = (
    ("BUSRELAY_AMQP_URL", "broker_url"),
    ("AMQP", "broker_url"),
    ("BUSRELAY_SERVICE_NAME", "service_name"),
    ("BUSRELAY_EXCHANGE", "exchange"),
    ("BUSRELAY_IDENTITY", "identity"),
    ("BUSRELAY_BYTE_ORDER", "byte_order"),
    ("BUSRELAY_TAG_PUBLISHES", "tag_publishes"),
)

_BOOL_KEYS = frozenset({"tag_publishes"})


def _deep_update(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into base."""
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_update(result[key], value)
        else:
            result[key] = value
    return result


def parse_bool(val: str) -> bool | None:
    """Parse a yes/no style string; None if it is not one."""
    v = val.strip().lower()
    if v in ("1", "true", "yes", "on"):
        return True
    if v in ("0", "false", "no", "off"):
        return False
    return None


def env_overlay(environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Config keys set through the environment.

    Empty variables are ignored. A boolean variable that does not parse is
    ignored with a warning so the file value stays in effect.
    """
    environ = os.environ if environ is None else environ
    overlay: dict[str, Any] = {}
    for var, key in ENV_OVERLAY:
        if key in overlay:
            continue
        raw = (environ.get(var) or "").strip()
        if not raw:
            continue
        if key in _BOOL_KEYS:
            parsed = parse_bool(raw)
            if parsed is None:
                logger.warning("Ignoring {}={!r}: expected a boolean", var, raw)
                continue
            overlay[key] = parsed
        else:
            overlay[key] = raw
    return overlay


def load_config(path: str | Path) -> dict[str, Any]:
    """Read the YAML config file; a missing or empty file means no settings.

    Raises ConfigurationError when the file cannot be read or parsed.
    """
    path = Path(path)
    if not path.exists():
        logger.debug("No config file at {}; using defaults and environment", path)
        return {}

    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigurationError(
            f"Cannot read config file {path}: {exc}",
            code="unreadable_config",
            details={"path": str(path)},
            original_error=exc,
        ) from exc
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigurationError(
            f"Config file {path} is not valid YAML: {exc}",
            code="invalid_yaml",
            details={"path": str(path)},
            original_error=exc,
        ) from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring config file {}: top level is {}, not a mapping", path, type(data).__name__)
        return {}
    return data


def load_config_with_env(path: str | Path) -> dict[str, Any]:
    """YAML file settings with .env and process environment laid over them."""
    load_dotenv()
    overlay = env_overlay()
    if overlay:
        logger.debug("Environment overrides: {}", ", ".join(sorted(overlay)))
    return _deep_update(load_config(path), overlay)
