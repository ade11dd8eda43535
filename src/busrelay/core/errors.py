"""Relay error taxonomy.

Every error is fatal to the relay. ``clean`` marks the two terminal close
signals (local EOF, bus subscription closed) that end a run without a fault.
"""

from __future__ import annotations


class RelayError(Exception):
    """Base for relay domain errors."""

    clean = False

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: dict[str, object] | None = None,
        original_error: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.details = details or {}
        self.original_error = original_error


class ConfigurationError(RelayError):
    """Config validation or load failure."""


class TransportError(RelayError):
    """Local framing transport failure."""


class FrameTruncated(TransportError):
    """Stream ended in the middle of a frame."""


class FrameReadFailed(TransportError):
    """Reading from the local byte source failed."""


class FrameWriteFailed(TransportError):
    """Writing a frame to the local byte sink failed."""


class FrameTooLarge(TransportError):
    """Frame length exceeds the configured limit."""


class TransportClosed(TransportError):
    """Local side closed on a frame boundary."""

    clean = True


class BusError(RelayError):
    """Message bus failure."""


class BusConnectFailed(BusError):
    """Broker connection or channel could not be opened."""


class BusTopologyFailed(BusError):
    """Exchange, queue or binding declaration failed."""


class BusSubscribeFailed(BusError):
    """Consumer could not be started on the queue."""


class BusPublishFailed(BusError):
    """Publishing to the exchange failed."""


class BusDeliveryError(BusError):
    """Broker reported a consumer-level error."""


class BusClosed(BusError):
    """Subscription or its channel closed."""

    clean = True
