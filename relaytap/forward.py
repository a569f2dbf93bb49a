from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from .common import ForwardError
from .traffic import TrafficKind, TrafficRecord, ascii_render, hex_dump

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 8192
BRIDGE_CHUNK_SIZE = 1024

ChunkObserver = Callable[[TrafficRecord], None]


def log_record(record: TrafficRecord) -> None:
    """Write the log lines for one relayed chunk."""
    direction = record.direction
    logger.info("%s: %d bytes", direction, record.size)

    if logger.isEnabledFor(logging.DEBUG):
        logger.debug("%s: Hex data: %s", direction, hex_dump(record.data))
        logger.debug("%s: ASCII representation: %s", direction, ascii_render(record.data))

    if record.kind is TrafficKind.QUERY:
        logger.info("%s: Possible database query traffic detected", direction)
    elif record.kind is TrafficKind.HTTP:
        logger.info("%s: HTTP traffic detected", direction)
        if record.first_line is not None:
            logger.info("%s: HTTP Status/Request: %s", direction, record.first_line)


async def forward(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    direction: str,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    observer: Optional[ChunkObserver] = None,
) -> int:
    """Copy bytes from `reader` to `writer` until end of stream.

    Args:
        reader: Source stream.
        writer: Destination stream.
        direction: Label used in every log line, e.g. "client -> target".
        chunk_size: Maximum bytes per read.
        observer: Optional callback receiving each TrafficRecord once it
            has been written and drained.

    Returns:
        Total number of bytes relayed.

    Raises:
        ForwardError: If a read or a write fails. Nothing is retried.
    """
    total = 0
    while True:
        try:
            data = await reader.read(chunk_size)
        except OSError as e:
            logger.error("%s: Error reading data: %s", direction, e)
            raise ForwardError(direction, "read", e) from e

        if not data:
            break

        record = TrafficRecord(direction, data)
        log_record(record)

        if writer.is_closing():
            e = ConnectionResetError("destination is closed")
            logger.error("%s: Error writing data: %s", direction, e)
            raise ForwardError(direction, "write", e)
        try:
            writer.write(data)
            await writer.drain()
        except OSError as e:
            logger.error("%s: Error writing data: %s", direction, e)
            raise ForwardError(direction, "write", e) from e
        total += len(data)
        if observer is not None:
            observer(record)

    logger.info("Connection from %s closed.", direction)
    return total
