from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.responses import ORJSONResponse

from . import __version__
from .config import RelayConfig
from .routes import router
from .server import BridgeRelay, build_relay
from .sessions import SessionRegistry

logger = logging.getLogger(__name__)


def create_app(config: RelayConfig, registry: Optional[SessionRegistry] = None) -> FastAPI:
    """Create the status API application.

    The relay for the configured mode runs for the lifetime of the app.
    """
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        relay = app.state.relay
        if isinstance(relay, BridgeRelay):
            app.state.relay_task = asyncio.create_task(relay.run_forever())
        else:
            await relay.start()
        yield
        task = getattr(app.state, "relay_task", None)
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            app.state.relay_task = None
        if not isinstance(relay, BridgeRelay):
            await relay.stop()

    app = FastAPI(title="relaytap", version=__version__, default_response_class=ORJSONResponse, lifespan=lifespan)

    app.state.config = config
    app.state.sessions = registry or SessionRegistry(event_maxlen=config.event_history)
    app.state.relay = build_relay(config, app.state.sessions)
    app.state.relay_task = None

    app.include_router(router)
    return app


def run_with_status(config: RelayConfig) -> None:
    """Serve the relay together with the status API under uvicorn.

    uvicorn picks uvloop on its own when it is installed.
    """
    import uvicorn

    logger.info("Status API on http://%s:%s", config.status_host, config.status_port)
    uvicorn.run(
        create_app(config),
        host=config.status_host,
        port=config.status_port,
        log_config=None,
        log_level=config.log_level.lower(),
    )
