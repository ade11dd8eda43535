"""Local side: native-messaging framing over stdio."""

from busrelay.transport.framing import FrameTransport, encode_frame
from busrelay.transport.stdio import open_stdio

__all__ = ["FrameTransport", "encode_frame", "open_stdio"]
