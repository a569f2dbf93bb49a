from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .forward import BRIDGE_CHUNK_SIZE, DEFAULT_CHUNK_SIZE

_ENV_PREFIX = "RELAYTAP_"


class Endpoint(BaseModel):
    """A validated `host:port` address."""

    model_config = ConfigDict(frozen=True)

    host: str
    port: int = Field(ge=0, le=65535)

    @field_validator("host")
    @classmethod
    def _check_host(cls, v: str) -> str:
        v = (v or "").strip()
        if v.startswith("[") and v.endswith("]"):
            v = v[1:-1]
        if not v or any(c.isspace() for c in v):
            raise ValueError("host must be a non-empty name or IP address")
        return v

    @classmethod
    def parse(cls, text: str) -> "Endpoint":
        """Parse `host:port` or `[v6addr]:port`.

        Raises:
            ValueError: If the text is not a valid address.
        """
        s = (text or "").strip()
        if s.startswith("["):
            host, sep, rest = s[1:].partition("]")
            if not sep or not rest.startswith(":"):
                raise ValueError(f"invalid address: {text!r}")
            port_s = rest[1:]
        else:
            host, sep, port_s = s.rpartition(":")
            if not sep or ":" in host:
                raise ValueError(f"invalid address: {text!r}")
        try:
            port = int(port_s)
        except ValueError:
            raise ValueError(f"invalid port in address: {text!r}") from None
        return cls(host=host, port=port)

    def __str__(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"

    def key(self) -> tuple[str, int]:
        return self.host.lower(), self.port


def _coerce_endpoint(v: Any) -> Any:
    if isinstance(v, str):
        return Endpoint.parse(v)
    return v


class RelayConfig(BaseModel):
    """Configuration for one relay process."""

    mode: Literal["listen", "bridge"] = Field(default="listen", description="Operating mode")
    listen: Optional[Endpoint] = Field(
        default=None, description="Listen address (listen mode) or first dialed address (bridge mode)"
    )
    target: Optional[Endpoint] = Field(default=None, description="Address every session is relayed to")
    chunk_size: Optional[int] = Field(
        default=None, gt=0, description="Bytes per read; defaults to 8192 (listen) or 1024 (bridge)"
    )
    connect_timeout: float = Field(default=5.0, gt=0, description="Target connect timeout in listen mode")
    bridge_connect_timeout: Optional[float] = Field(
        default=None, description="Dial timeout in bridge mode; None leaves it to the OS"
    )
    retry_delay: float = Field(default=5.0, ge=0, description="Fixed backoff between bridge dial attempts")
    inbound_label: str = "client"
    outbound_label: str = "target"
    log_level: str = "DEBUG"
    log_file: Optional[str] = None
    status_host: str = "127.0.0.1"
    status_port: Optional[int] = Field(default=None, ge=0, le=65535, description="Status API port")
    event_history: int = Field(default=400, gt=0)

    @field_validator("listen", "target", mode="before")
    @classmethod
    def _parse_endpoint(cls, v: Any) -> Any:
        return _coerce_endpoint(v)

    @field_validator("log_level")
    @classmethod
    def _check_level(cls, v: str) -> str:
        v = (v or "").strip().upper()
        if v not in ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"):
            raise ValueError(f"unknown log level: {v!r}")
        return v

    @model_validator(mode="after")
    def _check_endpoints(self):
        if self.target is not None and self.target.port == 0:
            raise ValueError("target port must not be 0")
        if self.mode == "bridge" and self.listen is not None and self.listen.port == 0:
            raise ValueError("bridge source port must not be 0")
        if self.listen is not None and self.target is not None and self.listen.key() == self.target.key():
            raise ValueError("The proxy listen address must be different from the target address.")
        return self

    @property
    def effective_chunk_size(self) -> int:
        if self.chunk_size is not None:
            return self.chunk_size
        return BRIDGE_CHUNK_SIZE if self.mode == "bridge" else DEFAULT_CHUNK_SIZE

    def is_complete(self) -> bool:
        return self.listen is not None and self.target is not None

    def dump(self) -> Dict[str, Any]:
        """Plain mapping suitable for YAML/JSON, with addresses as strings."""
        data = self.model_dump()
        for key in ("listen", "target"):
            ep = getattr(self, key)
            data[key] = str(ep) if ep is not None else None
        return data


def env_overrides(environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Collect `RELAYTAP_*` settings from the environment."""
    env = os.environ if environ is None else environ
    out: Dict[str, Any] = {}
    for key in ("mode", "listen", "target", "log_level", "log_file"):
        val = env.get(_ENV_PREFIX + key.upper())
        if val:
            out[key] = val
    port_s = env.get(_ENV_PREFIX + "STATUS_PORT")
    if port_s:
        try:
            out["status_port"] = int(port_s)
        except ValueError:
            raise ValueError(f"{_ENV_PREFIX}STATUS_PORT must be an integer, got {port_s!r}") from None
    return out


def load_config(
    path: Optional[Path] = None,
    *,
    overrides: Optional[Dict[str, Any]] = None,
    environ: Optional[Dict[str, str]] = None,
) -> RelayConfig:
    """Build the effective configuration.

    Precedence (lowest first): defaults, YAML file, `RELAYTAP_*` environment
    variables, explicit `overrides` (CLI flags). `None` override values are
    ignored.

    Args:
        path: Optional YAML file. A missing file is treated as empty.
        overrides: Values that win over everything else.
        environ: Environment mapping; defaults to `os.environ`.

    Returns:
        A validated `RelayConfig`.
    """
    data: Dict[str, Any] = {}
    if path is not None and path.exists():
        raw = yaml.safe_load(path.read_text()) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"{path}: expected a mapping at top level")
        data.update(raw)
    data.update(env_overrides(environ))
    for k, v in (overrides or {}).items():
        if v is not None:
            data[k] = v
    return RelayConfig.model_validate(data)


def save_config(cfg: RelayConfig, path: Path) -> None:
    """Persist configuration as YAML."""
    path.write_text(yaml.safe_dump(cfg.dump(), sort_keys=False))
