import asyncio
from typing import List, Optional, Tuple

from relaytap.common import Connection


class FakeWriter:
    """In-memory stand-in for asyncio.StreamWriter."""

    def __init__(self, peer=("127.0.0.1", 40000), *, drain_error: Optional[BaseException] = None):
        self.buf = bytearray()
        self.peer = peer
        self.closed = False
        self.eof = False
        self.drain_error = drain_error

    def write(self, data: bytes) -> None:
        self.buf.extend(data)

    async def drain(self) -> None:
        if self.drain_error is not None:
            raise self.drain_error

    def is_closing(self) -> bool:
        return self.closed

    def close(self) -> None:
        self.closed = True

    async def wait_closed(self) -> None:
        return None

    def can_write_eof(self) -> bool:
        return True

    def write_eof(self) -> None:
        self.eof = True

    def get_extra_info(self, name, default=None):
        if name == "peername":
            return self.peer
        return default


class FailingReader:
    def __init__(self, exc: BaseException):
        self.exc = exc
        self.calls = 0

    async def read(self, n: int = -1) -> bytes:
        self.calls += 1
        raise self.exc


def fed_reader(*chunks: bytes, eof: bool = True) -> asyncio.StreamReader:
    reader = asyncio.StreamReader()
    for c in chunks:
        reader.feed_data(c)
    if eof:
        reader.feed_eof()
    return reader


async def read_all(reader: asyncio.StreamReader, timeout: float = 5.0) -> bytes:
    return await asyncio.wait_for(reader.read(), timeout=timeout)


class Acceptor:
    """Loopback server that hands accepted connections to the test."""

    def __init__(self):
        self.accepted: "asyncio.Queue[Connection]" = asyncio.Queue()
        self.server: Optional[asyncio.base_events.Server] = None

    async def start(self) -> Tuple[str, int]:
        self.server = await asyncio.start_server(self._on_client, "127.0.0.1", 0)
        host, port = self.server.sockets[0].getsockname()[:2]
        return host, port

    async def _on_client(self, reader, writer) -> None:
        await self.accepted.put(Connection(reader, writer, label="accepted"))

    async def next(self, timeout: float = 5.0) -> Connection:
        return await asyncio.wait_for(self.accepted.get(), timeout=timeout)

    async def stop(self) -> None:
        if self.server is not None:
            self.server.close()
            while not self.accepted.empty():
                conn = self.accepted.get_nowait()
                await conn.close()


async def tcp_connection(label: str = "client") -> Tuple[Connection, Connection, Acceptor]:
    """Return (dialed side, accepted side, acceptor) of a loopback TCP connection."""
    acceptor = Acceptor()
    host, port = await acceptor.start()
    reader, writer = await asyncio.open_connection(host, port)
    accepted = await acceptor.next()
    return Connection(reader, writer, label=label), accepted, acceptor


class EchoServer:
    """Loopback server that echoes every byte back until EOF."""

    def __init__(self, greeting: bytes = b""):
        self.greeting = greeting
        self.server: Optional[asyncio.base_events.Server] = None
        self.received: List[bytes] = []
        self.port = 0

    async def start(self) -> int:
        self.server = await asyncio.start_server(self._handle, "127.0.0.1", self.port)
        self.port = self.server.sockets[0].getsockname()[1]
        return self.port

    async def _handle(self, reader, writer) -> None:
        try:
            if self.greeting:
                writer.write(self.greeting)
                await writer.drain()
            while True:
                data = await reader.read(65536)
                if not data:
                    break
                self.received.append(data)
                writer.write(data)
                await writer.drain()
        except ConnectionError:
            pass
        finally:
            writer.close()

    async def stop(self) -> None:
        if self.server is not None:
            self.server.close()
