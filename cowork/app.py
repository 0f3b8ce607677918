"""cowork-bridge — server entry point."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from cowork.engine.config import BridgeConfig
from cowork.engine.errors import ConfigError
from cowork.engine.redaction import RedactingFilter
from cowork.engine.yaml_config import load_yaml_config

DEFAULT_CONFIG_NAME = "cowork.yaml"
DEFAULT_LOG_FILE = Path.home() / ".cowork" / "logs" / "cowork-bridge.log"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"


def configure_logging(level: str, log_file: str | Path | None = None) -> Path:
    """Route the root logger to a rotating file and stderr.

    Both handlers redact auth material. Returns the log file path.
    """
    log_path = Path(log_file) if log_file else DEFAULT_LOG_FILE
    log_path.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(LOG_FORMAT)
    redactor = RedactingFilter()

    file_handler = RotatingFileHandler(
        log_path, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    file_handler.addFilter(redactor)
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    stream_handler.addFilter(redactor)
    root.addHandler(file_handler)
    root.addHandler(stream_handler)
    return log_path


def _resolve_config_path(explicit: str | None) -> Path | None:
    if explicit:
        return Path(explicit)
    candidate = Path.cwd() / DEFAULT_CONFIG_NAME
    return candidate if candidate.exists() else None


def build_config(args: argparse.Namespace) -> BridgeConfig:
    """Environment config, then the YAML file, then CLI flags."""
    config = BridgeConfig.from_env()
    config_path = _resolve_config_path(args.config)
    if config_path is not None:
        config = load_yaml_config(config_path, base=config)
    if args.host is not None:
        config.host = args.host
    if args.port is not None:
        config.port = args.port
    if args.log_level is not None:
        config.log_level = args.log_level.upper()
    if args.verbose:
        config.log_level = "DEBUG"
    if args.log_file is not None:
        config.log_file = args.log_file
    return config


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="cowork-bridge",
        description="Run Claude Code sessions behind an HTTP + SSE channel bridge",
    )
    parser.add_argument(
        "--config", metavar="PATH",
        help=f"YAML config file (default: ./{DEFAULT_CONFIG_NAME} when present)",
    )
    parser.add_argument(
        "--host", default=None,
        help="Address to bind (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port", type=int, default=None,
        help="Port to bind; 0 picks a free port (default: 0)",
    )
    parser.add_argument(
        "--log-level", default=None,
        help="Root log level (default: INFO)",
    )
    parser.add_argument(
        "--log-file", default=None,
        help=f"Log file path (default: {DEFAULT_LOG_FILE})",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args()

    try:
        config = build_config(args)
    except FileNotFoundError as exc:
        print(f"Error: config file not found: {exc.filename}", file=sys.stderr)
        sys.exit(2)
    except (ConfigError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(2)

    log_path = configure_logging(config.log_level, config.log_file)
    logger = logging.getLogger(__name__)
    logger.info(
        "Starting cowork bridge cwd=%s host=%s port=%s config=%s log=%s",
        os.getcwd(),
        config.host,
        config.port,
        args.config or "<auto>",
        log_path,
    )

    from cowork.server.server import CoworkServer

    server = CoworkServer(config)
    try:
        asyncio.run(server.start())
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
