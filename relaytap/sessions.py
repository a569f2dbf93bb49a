from __future__ import annotations

import itertools
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional

from .traffic import TrafficKind, TrafficRecord


@dataclass
class SessionEvent:
    ts: float
    kind: str
    data: Dict[str, Any]


class EventLog:
    """Bounded ring of recent session events. Raw bytes are never stored."""

    def __init__(self, maxlen: int = 400):
        self._events: Deque[SessionEvent] = deque(maxlen=max(1, maxlen))

    def add(self, kind: str, **data: Any) -> None:
        self._events.append(SessionEvent(ts=time.time(), kind=kind, data=data))

    def snapshot(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        events = list(self._events)
        if limit is not None:
            events = events[-limit:] if limit > 0 else []
        return [
            {
                "ts": e.ts,
                "kind": e.kind,
                **e.data,
            }
            for e in events
        ]

    def __len__(self) -> int:
        return len(self._events)


@dataclass
class SessionInfo:
    id: int
    mode: str
    inbound: str
    outbound: str
    started: float = field(default_factory=time.time)
    bytes_in: int = 0
    bytes_out: int = 0
    chunks_in: int = 0
    chunks_out: int = 0
    http_hits: int = 0
    query_hits: int = 0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "mode": self.mode,
            "inbound": self.inbound,
            "outbound": self.outbound,
            "started": self.started,
            "bytes_in": self.bytes_in,
            "bytes_out": self.bytes_out,
            "chunks_in": self.chunks_in,
            "chunks_out": self.chunks_out,
            "http_hits": self.http_hits,
            "query_hits": self.query_hits,
        }


class SessionRegistry:
    """Tracks active sessions and aggregate counters for the status API.

    `bytes_in` counts inbound -> outbound traffic, `bytes_out` the reverse.
    """

    def __init__(self, *, event_maxlen: int = 400):
        self.events = EventLog(maxlen=event_maxlen)
        self._ids = itertools.count(1)
        self._active: Dict[int, SessionInfo] = {}
        self.started = 0
        self.failed = 0
        self.connect_failures = 0
        self.bytes_in = 0
        self.bytes_out = 0

    def next_id(self) -> int:
        return next(self._ids)

    def open(self, session_id: int, mode: str, inbound: str, outbound: str) -> SessionInfo:
        info = SessionInfo(id=session_id, mode=mode, inbound=inbound, outbound=outbound)
        self._active[session_id] = info
        self.started += 1
        self.events.add("session_open", session=session_id, inbound=inbound, outbound=outbound)
        return info

    def record(self, session_id: int, record: TrafficRecord, *, inbound: bool) -> None:
        info = self._active.get(session_id)
        if inbound:
            self.bytes_in += record.size
        else:
            self.bytes_out += record.size
        if info is not None:
            if inbound:
                info.bytes_in += record.size
                info.chunks_in += 1
            else:
                info.bytes_out += record.size
                info.chunks_out += 1
        if record.kind is TrafficKind.OTHER:
            return
        if info is not None:
            if record.kind is TrafficKind.HTTP:
                info.http_hits += 1
            else:
                info.query_hits += 1
        self.events.add(
            record.kind.value,
            session=session_id,
            direction=record.direction,
            size=record.size,
            first_line=record.first_line,
        )

    def connect_failed(self, target: str, error: str) -> None:
        self.connect_failures += 1
        self.events.add("connect_error", target=target, error=error)

    def close(self, session_id: int, error: Optional[str] = None) -> None:
        info = self._active.pop(session_id, None)
        if error is not None:
            self.failed += 1
        data: Dict[str, Any] = {"session": session_id}
        if info is not None:
            data.update(bytes_in=info.bytes_in, bytes_out=info.bytes_out)
        if error is not None:
            data["error"] = error
        self.events.add("session_close", **data)

    def active(self) -> List[Dict[str, Any]]:
        return [s.as_dict() for s in self._active.values()]

    def totals(self) -> Dict[str, int]:
        return {
            "sessions_started": self.started,
            "sessions_active": len(self._active),
            "sessions_failed": self.failed,
            "connect_failures": self.connect_failures,
            "bytes_in": self.bytes_in,
            "bytes_out": self.bytes_out,
        }
