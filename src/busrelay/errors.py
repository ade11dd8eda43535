"""Re-export from core.errors."""

from busrelay.core.errors import (
    BusClosed,
    BusConnectFailed,
    BusDeliveryError,
    BusError,
    BusPublishFailed,
    BusSubscribeFailed,
    BusTopologyFailed,
    ConfigurationError,
    FrameReadFailed,
    FrameTooLarge,
    FrameTruncated,
    FrameWriteFailed,
    RelayError,
    TransportClosed,
    TransportError,
)

__all__ = [
    "BusClosed",
    "BusConnectFailed",
    "BusDeliveryError",
    "BusError",
    "BusPublishFailed",
    "BusSubscribeFailed",
    "BusTopologyFailed",
    "ConfigurationError",
    "FrameReadFailed",
    "FrameTooLarge",
    "FrameTruncated",
    "FrameWriteFailed",
    "RelayError",
    "TransportClosed",
    "TransportError",
]
