from __future__ import annotations

import logging
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def parse_level(v: Optional[str], default: int = logging.INFO) -> int:
    if not v:
        return default
    level = logging.getLevelName(str(v).strip().upper())
    return level if isinstance(level, int) else default


def setup_logging(level: str = "DEBUG", log_file: Optional[str] = None) -> logging.Logger:
    """Configure the `relaytap` logger with a console and optional file handler.

    Calling it again replaces the handlers installed by a previous call.
    """
    log = logging.getLogger("relaytap")
    for h in list(log.handlers):
        log.removeHandler(h)
        h.close()
    log.setLevel(parse_level(level, logging.DEBUG))

    fmt = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    ch = logging.StreamHandler(sys.stderr)
    ch.setFormatter(fmt)
    log.addHandler(ch)

    if log_file:
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setFormatter(fmt)
        log.addHandler(fh)

    # Route uvicorn's own loggers through the same handlers.
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        ulog = logging.getLogger(name)
        ulog.handlers = list(log.handlers)
        ulog.propagate = False
    return log
