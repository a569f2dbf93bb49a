from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass
from typing import Any, Optional


class RelayError(Exception):
    """Base class for errors raised by the relay engine."""


class ForwardError(RelayError):
    """Raised when one direction of a session fails to read or write."""

    def __init__(self, direction: str, op: str, cause: Optional[BaseException] = None):
        self.direction = direction
        self.op = op
        self.cause = cause
        msg = f"{direction}: {op} failed"
        if cause is not None:
            msg = f"{msg}: {cause}"
        super().__init__(msg)


def _format_peer(peer: Any) -> str:
    if isinstance(peer, (tuple, list)) and len(peer) >= 2:
        host = str(peer[0])
        if ":" in host:
            return f"[{host}]:{peer[1]}"
        return f"{host}:{peer[1]}"
    if peer is None:
        return "?"
    return str(peer)


@dataclass(eq=False)
class Connection:
    """One side of a session: the owned read and write halves of a stream."""

    reader: asyncio.StreamReader
    writer: asyncio.StreamWriter
    label: str = "peer"

    @property
    def peer(self) -> str:
        return _format_peer(self.writer.get_extra_info("peername"))

    def is_closing(self) -> bool:
        return self.writer.is_closing()

    async def close(self) -> None:
        """Close the stream. Safe to call more than once."""
        if not self.writer.is_closing():
            self.writer.close()
        with contextlib.suppress(Exception):
            await self.writer.wait_closed()
