from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

# Printable ASCII plus the whitespace bytes kept as-is in the text rendering.
_PRINTABLE = frozenset(range(0x21, 0x7F)) | frozenset(b" \t\n\x0c\r")

_HTTP_PREFIXES = (b"HTTP/", b"GET ", b"POST ")


class TrafficKind(str, Enum):
    HTTP = "http"
    QUERY = "query"
    OTHER = "other"


def hex_dump(data: bytes) -> str:
    """Render bytes as uppercase, space separated hex pairs."""
    return " ".join(f"{b:02X}" for b in data)


def ascii_render(data: bytes) -> str:
    """Render bytes as text, replacing anything non-printable with '.'."""
    return "".join(chr(b) if b in _PRINTABLE else "." for b in data)


def http_first_line(data: bytes) -> Optional[str]:
    """Return the first line of the chunk if it is valid UTF-8."""
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        return None
    lines = text.splitlines()
    return lines[0] if lines else None


def classify(data: bytes) -> TrafficKind:
    """Best-effort label for a single chunk.

    Only the start of the chunk is inspected and nothing is carried over
    between chunks, so a signature split across two reads is not seen.
    """
    if data.startswith(b"Q"):
        return TrafficKind.QUERY
    if data.startswith(_HTTP_PREFIXES):
        return TrafficKind.HTTP
    return TrafficKind.OTHER


@dataclass
class TrafficRecord:
    direction: str
    data: bytes
    kind: TrafficKind = field(init=False)
    first_line: Optional[str] = field(init=False, default=None)

    def __post_init__(self) -> None:
        self.kind = classify(self.data)
        if self.kind is TrafficKind.HTTP:
            self.first_line = http_first_line(self.data)

    @property
    def size(self) -> int:
        return len(self.data)
