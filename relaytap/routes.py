from __future__ import annotations

from fastapi import APIRouter, Query, Request
from fastapi.responses import ORJSONResponse

from .server import BridgeRelay

router = APIRouter(default_response_class=ORJSONResponse)


@router.get("/api/status")
async def get_status(request: Request):
    cfg = request.app.state.config
    relay = request.app.state.relay
    out = {
        "mode": cfg.mode,
        "listen": str(cfg.listen) if cfg.listen else None,
        "target": str(cfg.target) if cfg.target else None,
        "totals": request.app.state.sessions.totals(),
    }
    if isinstance(relay, BridgeRelay):
        out["state"] = relay.state.value
        out["attempts"] = relay.attempts
    else:
        out["bound"] = relay.bound_address
    return out


@router.get("/api/sessions")
async def get_sessions(request: Request):
    return {"sessions": request.app.state.sessions.active()}


@router.get("/api/events")
async def get_events(request: Request, limit: int = Query(default=100, ge=0, le=10000)):
    return {"events": request.app.state.sessions.events.snapshot(limit)}


@router.get("/api/config")
async def get_config(request: Request):
    return request.app.state.config.dump()
