"""Bus identity: names the relay's queue and tags its publishes."""

from __future__ import annotations

import re
import uuid

from busrelay.core.errors import ConfigurationError

_IDENTITY_RE = re.compile(r"[^a-zA-Z0-9_.:\-]")
# AMQP short string limit
_MAX_IDENTITY_LEN = 255


def _sanitize_prefix(prefix: str) -> str:
    """Strip characters that are awkward in queue names."""
    return _IDENTITY_RE.sub("", prefix)[:64]


def new_identity(prefix: str | None = None) -> str:
    """Fresh identity for this process, e.g. ``chrome-ext-<uuid4>``."""
    token = str(uuid.uuid4())
    clean = _sanitize_prefix(prefix or "")
    return f"{clean}-{token}" if clean else token


def validate_identity(identity: str) -> str:
    """Return identity unchanged if it can name an AMQP queue, else raise."""
    if not identity or not identity.strip():
        raise ConfigurationError("identity must not be empty", code="invalid_identity")
    if len(identity.encode("utf-8")) > _MAX_IDENTITY_LEN:
        raise ConfigurationError(
            "identity is longer than 255 bytes",
            code="invalid_identity",
            details={"length": len(identity.encode("utf-8"))},
        )
    if identity.startswith("amq."):
        raise ConfigurationError(
            "identity must not start with reserved prefix 'amq.'",
            code="invalid_identity",
            details={"identity": identity},
        )
    return identity
