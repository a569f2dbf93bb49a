from __future__ import annotations

import asyncio
import logging
from typing import Optional, Tuple

from .common import Connection
from .forward import DEFAULT_CHUNK_SIZE, forward
from .sessions import SessionRegistry
from .traffic import TrafficRecord

logger = logging.getLogger(__name__)


class ConnectionPair:
    """Relays one session between an inbound and an outbound connection.

    Each side is already split into an owned reader and writer, so the two
    directions never share a handle. A finished or failed direction only
    half-closes its destination; the other direction is left to finish on
    its own.
    """

    def __init__(
        self,
        inbound: Connection,
        outbound: Connection,
        *,
        session_id: int = 0,
        mode: str = "listen",
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        registry: Optional[SessionRegistry] = None,
    ):
        self.inbound = inbound
        self.outbound = outbound
        self.session_id = session_id
        self.mode = mode
        self.chunk_size = chunk_size
        self._registry = registry

    def _direction(self, src: Connection, dst: Connection) -> str:
        return f"[#{self.session_id}] {src.label} -> {dst.label}"

    async def _pump(self, src: Connection, dst: Connection, *, inbound: bool) -> int:
        direction = self._direction(src, dst)
        observer = None
        if self._registry is not None:
            registry = self._registry

            def observer(record: TrafficRecord) -> None:
                registry.record(self.session_id, record, inbound=inbound)

        try:
            return await forward(
                src.reader, dst.writer, direction, chunk_size=self.chunk_size, observer=observer
            )
        finally:
            self._half_close(dst, direction)

    @staticmethod
    def _half_close(dst: Connection, direction: str) -> None:
        # Only the write side is shut; the opposite direction keeps reading
        # from `dst` until its peer closes. Full teardown happens in run().
        if dst.is_closing():
            return
        try:
            if dst.writer.can_write_eof():
                dst.writer.write_eof()
        except OSError as e:
            logger.debug("%s: could not half-close destination: %s", direction, e)

    async def run(self) -> Tuple[int, int]:
        """Relay both directions until each has finished.

        Returns:
            Tuple of bytes relayed (inbound -> outbound, outbound -> inbound).

        Raises:
            ForwardError: The first failure, in direction order, after both
                directions have exited and both connections are closed.
        """
        if self._registry is not None:
            self._registry.open(self.session_id, self.mode, self.inbound.peer, self.outbound.peer)

        error: Optional[BaseException] = None
        try:
            results = await asyncio.gather(
                self._pump(self.inbound, self.outbound, inbound=True),
                self._pump(self.outbound, self.inbound, inbound=False),
                return_exceptions=True,
            )
            for r in results:
                if isinstance(r, BaseException):
                    error = r
                    break
        finally:
            await self.close()
            if self._registry is not None:
                self._registry.close(self.session_id, error=str(error) if error is not None else None)

        if error is not None:
            raise error
        sent, received = results
        logger.info(
            "[#%d] Session closed (%d bytes %s -> %s, %d bytes %s -> %s)",
            self.session_id,
            sent,
            self.inbound.label,
            self.outbound.label,
            received,
            self.outbound.label,
            self.inbound.label,
        )
        return sent, received

    async def close(self) -> None:
        await asyncio.gather(self.inbound.close(), self.outbound.close())
