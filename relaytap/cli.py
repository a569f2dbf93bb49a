from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Callable, Dict, Any, List, Optional

from pydantic import ValidationError

from .config import Endpoint, RelayConfig, load_config, save_config
from .logsetup import setup_logging
from .server import serve

logger = logging.getLogger("relaytap.cli")

LISTEN_PROMPT = (
    "Enter the address for this proxy to listen on "
    "(should be different from the target port, e.g., 0.0.0.0:15432):"
)
TARGET_PROMPT = "Enter the target address to forward to (e.g., 127.0.0.1:5432 or 172.17.0.3:5432):"
SOURCE_PROMPT = "Enter the first address to bridge (e.g., 10.0.0.5:9000):"
BRIDGE_TARGET_PROMPT = "Enter the second address to bridge (e.g., 127.0.0.1:5432):"


def prompt_for_address(prompt: str, *, read: Callable[[], str] = input) -> Endpoint:
    """Ask on stdin until a valid `host:port` is entered."""
    while True:
        print(prompt)
        try:
            text = read()
        except EOFError:
            raise SystemExit(1)
        try:
            return Endpoint.parse(text)
        except ValueError:
            print("Invalid address. Please try again.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="relaytap",
        description="Transparent TCP relay that logs and annotates the traffic it forwards",
    )
    parser.add_argument("--mode", "-m", choices=("listen", "bridge"), default=None, help="Operating mode")
    parser.add_argument(
        "--listen", "--source", "-l", dest="listen", default=None,
        help="Listen address (listen mode) or first address to dial (bridge mode)",
    )
    parser.add_argument("--target", "-t", default=None, help="Target address host:port")
    parser.add_argument("--config", "-c", type=Path, default=None, help="YAML config file")
    parser.add_argument("--chunk-size", type=int, default=None, help="Bytes per read")
    parser.add_argument("--connect-timeout", type=float, default=None, help="Target connect timeout (listen mode)")
    parser.add_argument("--retry-delay", type=float, default=None, help="Delay between bridge dial attempts")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING or ERROR")
    parser.add_argument("--log-file", default=None, help="Also write logs to this file")
    parser.add_argument("--status-host", default=None, help="Status API bind host")
    parser.add_argument("--status-port", type=int, default=None, help="Serve the status API on this port")
    parser.add_argument("--save-config", type=Path, default=None, help="Write the effective config to this file")
    return parser


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    return {
        "mode": args.mode,
        "listen": args.listen,
        "target": args.target,
        "chunk_size": args.chunk_size,
        "connect_timeout": args.connect_timeout,
        "retry_delay": args.retry_delay,
        "log_level": args.log_level,
        "log_file": args.log_file,
        "status_host": args.status_host,
        "status_port": args.status_port,
    }


def resolve_config(
    args: argparse.Namespace,
    *,
    read: Callable[[], str] = input,
    environ: Optional[Dict[str, str]] = None,
) -> RelayConfig:
    """Merge file, environment and flags, prompting for missing addresses.

    Raises:
        ValidationError: If the resulting configuration is invalid.
    """
    env = os.environ if environ is None else environ
    path = args.config
    if path is None and env.get("RELAYTAP_CONFIG"):
        path = Path(env["RELAYTAP_CONFIG"])

    overrides = _overrides(args)
    cfg = load_config(path, overrides=overrides, environ=env)
    if cfg.is_complete():
        return cfg

    bridge = cfg.mode == "bridge"
    if cfg.listen is None:
        overrides["listen"] = prompt_for_address(SOURCE_PROMPT if bridge else LISTEN_PROMPT, read=read)
    if cfg.target is None:
        overrides["target"] = prompt_for_address(BRIDGE_TARGET_PROMPT if bridge else TARGET_PROMPT, read=read)
    return load_config(path, overrides=overrides, environ=env)


def _report_config_error(e: Exception) -> None:
    if isinstance(e, ValidationError):
        for err in e.errors():
            msg = str(err.get("msg", ""))
            if msg.startswith("Value error, "):
                msg = msg[len("Value error, "):]
            loc = ".".join(str(p) for p in err.get("loc", ()))
            logger.error("%s%s", f"{loc}: " if loc else "", msg)
    else:
        logger.error("%s", e)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    # Configure logging early so config errors are reported in the usual format.
    setup_logging(args.log_level or "INFO", args.log_file)
    try:
        cfg = resolve_config(args)
    except (ValidationError, ValueError) as e:
        _report_config_error(e)
        return 1

    setup_logging(cfg.log_level, cfg.log_file)
    if args.save_config is not None:
        save_config(cfg, args.save_config)
        logger.info("Saved configuration to %s", args.save_config)

    try:
        if cfg.status_port is not None:
            from .app import run_with_status
            run_with_status(cfg)
        else:
            asyncio.run(serve(cfg))
    except KeyboardInterrupt:
        logger.info("Stopping relay")
    except OSError as e:
        logger.error("Relay failed: %s", e)
        return 1
    return 0


def run() -> None:
    sys.exit(main())
