"""Config schema, accessor and the resolved settings handed to the relay."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from loguru import logger

from busrelay.config.loader import _deep_update, parse_bool
from busrelay.core.constants import (
    BYTE_ORDERS,
    DEFAULT_BROKER_URL,
    DEFAULT_EXCHANGE,
    DEFAULT_SERVICE_NAME,
    ByteOrder,
)
from busrelay.core.errors import ConfigurationError
from busrelay.identity import new_identity, validate_identity

_DEFAULTS: dict[str, Any] = {
    "service_name": DEFAULT_SERVICE_NAME,
    "exchange": DEFAULT_EXCHANGE,
    "byte_order": "little",
    "tag_publishes": True,
}


@dataclass(frozen=True)
class RelaySettings:
    """Resolved configuration for one relay process."""

    broker_url: str
    service_name: str
    identity: str
    exchange: str = DEFAULT_EXCHANGE
    byte_order: ByteOrder = "little"
    max_frame_bytes: int | None = None
    tag_publishes: bool = True
    consumer_tag: str | None = None


class Config:
    """Config accessor with attribute-style access for nested keys."""

    def __init__(self, data: dict[str, Any] | None = None) -> None:
        self._data = _deep_update(_DEFAULTS, data or {})
        self._generated_identity: str | None = None

    def reload(self, data: dict[str, Any], *, validate: bool = True) -> None:
        """Replace config data (already overlaid with the environment by the loader)."""
        self._data = _deep_update(_DEFAULTS, data or {})
        if validate:
            self._validate()
        logger.debug("Config reloaded: service={} exchange={}", self.service_name, self.exchange)

    def _validate(self) -> None:
        """Validate config values; raise ConfigurationError on failure."""
        if self.byte_order not in BYTE_ORDERS:
            raise ConfigurationError(
                f"byte_order must be one of {', '.join(BYTE_ORDERS)}",
                code="invalid_byte_order",
                details={"byte_order": self.byte_order},
            )
        raw_max = self._data.get("max_frame_bytes")
        if raw_max is not None:
            try:
                value = int(raw_max)
            except (TypeError, ValueError):
                value = 0
            if value <= 0:
                raise ConfigurationError(
                    "max_frame_bytes must be a positive integer",
                    code="invalid_max_frame_bytes",
                    details={"max_frame_bytes": raw_max},
                )
        if self._parsed_tag_publishes() is None:
            raise ConfigurationError(
                "tag_publishes must be a boolean",
                code="invalid_tag_publishes",
                details={"tag_publishes": self._data.get("tag_publishes")},
            )
        for key in ("service_name", "exchange"):
            val = getattr(self, key)
            if not val:
                raise ConfigurationError(f"{key} must not be empty", code=f"missing_{key}")
        configured = self.configured_identity
        if configured is not None:
            validate_identity(configured)

    @property
    def raw(self) -> dict[str, Any]:
        """Raw config dict."""
        return self._data

    def get(self, key: str, default: Any = None) -> Any:
        """Get value by dot-separated path."""
        parts = key.split(".")
        obj: Any = self._data
        for part in parts:
            if isinstance(obj, dict) and part in obj:
                obj = obj[part]
            else:
                return default
        return obj

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __contains__(self, key: str) -> bool:
        return key in self._data

    @property
    def broker_url(self) -> str:
        """Configured broker address, else the loopback default."""
        val = self._data.get("broker_url")
        if isinstance(val, str) and val.strip():
            return val.strip()
        return DEFAULT_BROKER_URL

    @property
    def service_name(self) -> str:
        return str(self._data.get("service_name", ""))

    @property
    def exchange(self) -> str:
        return str(self._data.get("exchange", ""))

    @property
    def byte_order(self) -> str:
        return str(self._data.get("byte_order", "little")).strip().lower()

    @property
    def max_frame_bytes(self) -> int | None:
        val = self._data.get("max_frame_bytes")
        return int(val) if val is not None else None

    @property
    def tag_publishes(self) -> bool:
        parsed = self._parsed_tag_publishes()
        return True if parsed is None else parsed

    def _parsed_tag_publishes(self) -> bool | None:
        # YAML may hand over a quoted "false"
        val = self._data.get("tag_publishes", True)
        if isinstance(val, str):
            return parse_bool(val)
        return bool(val)

    @property
    def consumer_tag(self) -> str | None:
        val = self._data.get("consumer_tag")
        return str(val) if val else None

    @property
    def identity_prefix(self) -> str:
        return str(self._data.get("identity_prefix", ""))

    @property
    def configured_identity(self) -> str | None:
        """Stable identity from config (or BUSRELAY_IDENTITY), if one was set."""
        val = self._data.get("identity")
        return str(val) if val else None

    @property
    def identity(self) -> str:
        """Configured identity, else one generated once per Config instance."""
        configured = self.configured_identity
        if configured is not None:
            return configured
        if self._generated_identity is None:
            self._generated_identity = new_identity(self.identity_prefix or None)
        return self._generated_identity

    def settings(self) -> RelaySettings:
        """Resolve into the settings struct the relay core consumes."""
        self._validate()
        return RelaySettings(
            broker_url=self.broker_url,
            service_name=self.service_name,
            identity=self.identity,
            exchange=self.exchange,
            byte_order=self.byte_order,  # type: ignore[arg-type]
            max_frame_bytes=self.max_frame_bytes,
            tag_publishes=self.tag_publishes,
            consumer_tag=self.consumer_tag,
        )


cfg: Config = Config({})
