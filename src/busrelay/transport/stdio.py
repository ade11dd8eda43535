"""Process stdin/stdout as asyncio streams.

Browsers start the host with pipes on both ends. stdout carries frames only,
so nothing else in the process may write to it.
"""

from __future__ import annotations

import asyncio
import sys
from typing import IO

from loguru import logger


async def open_stdio(
    stdin: IO[bytes] | None = None,
    stdout: IO[bytes] | None = None,
) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    """Connect stdin/stdout pipes to the running loop and return (reader, writer)."""
    loop = asyncio.get_running_loop()
    stdin = stdin if stdin is not None else sys.stdin.buffer
    stdout = stdout if stdout is not None else sys.stdout.buffer

    reader = asyncio.StreamReader()
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), stdin)
    w_transport, w_protocol = await loop.connect_write_pipe(asyncio.streams.FlowControlMixin, stdout)
    writer = asyncio.StreamWriter(w_transport, w_protocol, reader, loop)
    logger.debug("stdio pipes attached (stdin fd={}, stdout fd={})", stdin.fileno(), stdout.fileno())
    return reader, writer
