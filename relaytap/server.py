from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import List, Optional, Set

from .common import Connection
from .config import Endpoint, RelayConfig
from .pair import ConnectionPair
from .sessions import SessionRegistry

logger = logging.getLogger(__name__)


async def dial(endpoint: Endpoint, *, label: str, timeout: Optional[float] = None) -> Connection:
    """Open a TCP connection to `endpoint`.

    Raises:
        OSError: If the connection is refused or unreachable.
        asyncio.TimeoutError: If `timeout` elapses first.
    """
    coro = asyncio.open_connection(endpoint.host, endpoint.port)
    if timeout is not None:
        reader, writer = await asyncio.wait_for(coro, timeout=timeout)
    else:
        reader, writer = await coro
    return Connection(reader, writer, label=label)


class RelayServer:
    """Listen mode: accept inbound connections and pair each with a fresh
    outbound connection to the target."""

    def __init__(self, config: RelayConfig, registry: Optional[SessionRegistry] = None):
        """Initialize the relay server.

        Args:
            config: Relay configuration; `listen` and `target` must be set.
            registry: Optional session registry for the status API.
        """
        if not config.is_complete():
            raise ValueError("listen and target addresses are required")
        self.config = config
        self.listen: Endpoint = config.listen
        self.target: Endpoint = config.target
        self.registry = registry
        self._server: Optional[asyncio.base_events.Server] = None
        self._conns: Set[Connection] = set()
        self._counter = 0

    @property
    def sockets(self) -> List:
        if self._server is None:
            return []
        return list(self._server.sockets or [])

    @property
    def bound_address(self) -> Optional[str]:
        """Actual `host:port` bound, useful when the configured port is 0."""
        for sock in self.sockets:
            host, port = sock.getsockname()[:2]
            return str(Endpoint(host=host, port=port))
        return None

    async def start(self) -> None:
        """Bind the listen address.

        This method is idempotent; calling it on an already running server does nothing.
        """
        if self._server is not None:
            return
        self._server = await asyncio.start_server(self._handle_client, self.listen.host, self.listen.port)
        logger.info(
            "Starting relay: Listening on %s, forwarding to %s",
            self.bound_address or self.listen,
            self.target,
        )

    async def stop(self) -> None:
        """Stop accepting connections and close every open session.

        This method is idempotent.
        """
        if self._server is None:
            return
        server, self._server = self._server, None
        server.close()
        for conn in list(self._conns):
            conn.writer.close()
        await server.wait_closed()

    async def serve_forever(self) -> None:
        """Serve until cancelled, then stop."""
        await self.start()
        try:
            await asyncio.get_running_loop().create_future()
        finally:
            await self.stop()

    def _next_id(self) -> int:
        if self.registry is not None:
            return self.registry.next_id()
        self._counter += 1
        return self._counter

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        """Relay one accepted connection; runs in its own task."""
        inbound = Connection(reader, writer, label=self.config.inbound_label)
        session_id = self._next_id()
        logger.info("[#%d] New connection from %s", session_id, inbound.peer)
        self._conns.add(inbound)
        try:
            await self._relay(session_id, inbound)
        finally:
            self._conns.discard(inbound)

    async def _relay(self, session_id: int, inbound: Connection) -> None:
        try:
            outbound = await dial(
                self.target, label=self.config.outbound_label, timeout=self.config.connect_timeout
            )
        except (OSError, asyncio.TimeoutError) as e:
            err = str(e) or type(e).__name__
            logger.error("[#%d] Failed to connect to %s: %s", session_id, self.target, err)
            if self.registry is not None:
                self.registry.connect_failed(str(self.target), err)
            await inbound.close()
            return

        logger.info("[#%d] Connected to %s at %s", session_id, self.config.outbound_label, self.target)
        self._conns.add(outbound)
        pair = ConnectionPair(
            inbound,
            outbound,
            session_id=session_id,
            mode="listen",
            chunk_size=self.config.effective_chunk_size,
            registry=self.registry,
        )
        try:
            await pair.run()
        except Exception as e:  # noqa: BLE001
            logger.error("[#%d] Error handling connection: %s", session_id, e)
        finally:
            self._conns.discard(outbound)


class BridgeState(str, Enum):
    IDLE = "idle"
    DIALING = "dialing"
    BACKOFF = "backoff"
    RELAYING = "relaying"


class BridgeRelay:
    """Bridge mode: dial both addresses, relay between them, repeat.

    Sessions run one at a time. A failed dial discards whatever did connect
    and waits a fixed `retry_delay` before dialing both ends again.
    """

    def __init__(self, config: RelayConfig, registry: Optional[SessionRegistry] = None):
        if not config.is_complete():
            raise ValueError("source and target addresses are required")
        self.config = config
        self.source: Endpoint = config.listen
        self.target: Endpoint = config.target
        self.registry = registry
        self.state = BridgeState.IDLE
        self.attempts = 0
        self._counter = 0

    def _next_id(self) -> int:
        if self.registry is not None:
            return self.registry.next_id()
        self._counter += 1
        return self._counter

    async def _dial_both(self) -> Optional[tuple[Connection, Connection]]:
        timeout = self.config.bridge_connect_timeout
        source: Optional[Connection] = None
        try:
            source = await dial(self.source, label=self.config.inbound_label, timeout=timeout)
            target = await dial(self.target, label=self.config.outbound_label, timeout=timeout)
        except (OSError, asyncio.TimeoutError) as e:
            err = str(e) or type(e).__name__
            failed = self.target if source is not None else self.source
            logger.error("Failed to connect to %s: %s", failed, err)
            if self.registry is not None:
                self.registry.connect_failed(str(failed), err)
            if source is not None:
                await source.close()
            return None
        return source, target

    async def run_once(self) -> bool:
        """Run one dial and relay cycle.

        Returns:
            True if a session was established (however it ended), False if
            dialing failed and the backoff delay was observed.
        """
        self.state = BridgeState.DIALING
        self.attempts += 1
        pair_conns = await self._dial_both()
        if pair_conns is None:
            self.state = BridgeState.BACKOFF
            logger.info("Retrying in %.1f seconds", self.config.retry_delay)
            await asyncio.sleep(self.config.retry_delay)
            return False

        source, target = pair_conns
        session_id = self._next_id()
        logger.info("[#%d] Bridged %s <-> %s", session_id, self.source, self.target)
        self.state = BridgeState.RELAYING
        pair = ConnectionPair(
            source,
            target,
            session_id=session_id,
            mode="bridge",
            chunk_size=self.config.effective_chunk_size,
            registry=self.registry,
        )
        try:
            await pair.run()
        except Exception as e:  # noqa: BLE001
            logger.error("[#%d] Bridge session ended with error: %s", session_id, e)
        else:
            logger.info("[#%d] Bridge session ended", session_id)
        return True

    async def run_forever(self) -> None:
        logger.info("Starting bridge: %s <-> %s", self.source, self.target)
        try:
            while True:
                await self.run_once()
        finally:
            self.state = BridgeState.IDLE


def build_relay(config: RelayConfig, registry: Optional[SessionRegistry] = None):
    """Return the relay object for the configured mode."""
    if config.mode == "bridge":
        return BridgeRelay(config, registry)
    return RelayServer(config, registry)


async def serve(config: RelayConfig, registry: Optional[SessionRegistry] = None) -> None:
    """Run the configured relay until cancelled."""
    relay = build_relay(config, registry)
    if isinstance(relay, BridgeRelay):
        await relay.run_forever()
    else:
        await relay.serve_forever()
