"""Native-messaging frame codec: 4-byte length prefix followed by the payload.

The prefix is an unsigned 32-bit integer. Browsers write it in the host's
native order, which is little-endian on every platform they ship on, so
``little`` is the default; ``big`` and ``native`` are available for peers
that agree on something else.
"""

from __future__ import annotations

import asyncio
import contextlib
import struct
from collections.abc import AsyncIterator
from typing import Protocol

from loguru import logger

from busrelay.core.constants import BYTE_ORDERS, LENGTH_PREFIX_SIZE, ByteOrder
from busrelay.core.errors import (
    FrameReadFailed,
    FrameTooLarge,
    FrameTruncated,
    FrameWriteFailed,
)

_PREFIX_FORMATS: dict[str, str] = {"little": "<I", "big": ">I", "native": "=I"}


class ByteSource(Protocol):
    async def readexactly(self, n: int) -> bytes: ...


class ByteSink(Protocol):
    def write(self, data: bytes) -> None: ...
    async def drain(self) -> None: ...
    def close(self) -> None: ...


def prefix_format(byte_order: ByteOrder) -> str:
    """struct format for the length prefix in the given byte order."""
    try:
        return _PREFIX_FORMATS[byte_order]
    except KeyError:
        raise ValueError(f"byte_order must be one of {BYTE_ORDERS}, got {byte_order!r}") from None


def encode_frame(payload: bytes, byte_order: ByteOrder = "little") -> bytes:
    """Return the wire bytes (prefix + payload) for one frame."""
    return struct.pack(prefix_format(byte_order), len(payload)) + payload


class FrameTransport:
    """Reads and writes native-messaging frames over an asyncio byte stream."""

    def __init__(
        self,
        reader: ByteSource,
        writer: ByteSink,
        *,
        byte_order: ByteOrder = "little",
        max_frame_bytes: int | None = None,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._byte_order = byte_order
        self._prefix = struct.Struct(prefix_format(byte_order))
        self._max_frame_bytes = max_frame_bytes

    @property
    def byte_order(self) -> ByteOrder:
        return self._byte_order

    async def decode(self) -> AsyncIterator[bytes]:
        """Yield frame payloads until the source closes on a frame boundary.

        Raises FrameTruncated when the source ends mid-frame, FrameReadFailed on
        OS-level read errors and FrameTooLarge when a declared length exceeds
        max_frame_bytes.
        """
        while True:
            header = await self._read(LENGTH_PREFIX_SIZE, at_boundary=True)
            if header is None:
                logger.debug("Local source closed on frame boundary")
                return
            (length,) = self._prefix.unpack(header)
            self._check_size(length)
            payload = await self._read(length, at_boundary=False) if length else b""
            yield payload or b""

    async def encode(self, payload: bytes) -> None:
        """Write one frame and drain the sink."""
        self._check_size(len(payload))
        try:
            self._writer.write(self._prefix.pack(len(payload)) + bytes(payload))
            await self._writer.drain()
        except (ConnectionError, OSError, RuntimeError) as exc:
            raise FrameWriteFailed(
                f"Error writing frame to local side: {exc}",
                code="write_failed",
                details={"length": len(payload)},
                original_error=exc,
            ) from exc

    def close(self) -> None:
        """Close the sink; errors on an already broken pipe are ignored."""
        with contextlib.suppress(Exception):
            self._writer.close()

    def _check_size(self, length: int) -> None:
        if self._max_frame_bytes is not None and length > self._max_frame_bytes:
            raise FrameTooLarge(
                f"Frame of {length} bytes exceeds limit of {self._max_frame_bytes}",
                code="frame_too_large",
                details={"length": length, "limit": self._max_frame_bytes},
            )

    async def _read(self, n: int, *, at_boundary: bool) -> bytes | None:
        try:
            return await self._reader.readexactly(n)
        except asyncio.IncompleteReadError as exc:
            if at_boundary and not exc.partial:
                return None
            raise FrameTruncated(
                f"Local stream ended mid-frame ({len(exc.partial)} of {n} bytes)",
                code="truncated",
                details={"expected": n, "received": len(exc.partial)},
                original_error=exc,
            ) from exc
        except (ConnectionError, OSError) as exc:
            raise FrameReadFailed(
                f"Error reading from local side: {exc}",
                code="read_failed",
                original_error=exc,
            ) from exc
