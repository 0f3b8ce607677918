"""One-shot CLI: run a single message through a fresh session.

Every event is printed to stdout as one JSON object per line.

Usage:
    cowork-run "list the files in this project"
    cowork-run --cwd ~/projects/demo --model claude-sonnet-4-5 "Fix the tests"
    cowork-run --message-file prompt.md
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import uuid
from pathlib import Path

from cowork.adapters.channel_router import ChannelRouter
from cowork.adapters.surfaces import StreamSurface

from .config import BridgeConfig
from .errors import AgentExitError, AgentSpawnError, BridgeError
from .models import SessionOptions
from .process_manager import SessionProcessManager
from .redaction import RedactingFilter


async def run_once(
    config: BridgeConfig,
    message: str,
    options: SessionOptions,
    stream=None,
) -> int:
    """Start a session, send *message*, stop. Returns an exit code."""
    router = ChannelRouter(
        addresses=config.known_addresses,
        namespaces=config.event_namespaces,
    )
    router.attach_surface(StreamSurface(stream or sys.stdout))
    manager = SessionProcessManager(config, event_callback=router.make_callback())

    session_id = str(uuid.uuid4())
    await manager.start(session_id, options)
    try:
        await manager.send(session_id, message)
    except (AgentSpawnError, AgentExitError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        await manager.shutdown()
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="cowork-run",
        description="Send one message to Claude Code and stream its events",
    )
    parser.add_argument(
        "message",
        nargs="?",
        default=None,
        help="The message to send (inline string)",
    )
    parser.add_argument(
        "--message-file", "-f",
        default=None,
        help="Read the message from a file",
    )
    parser.add_argument(
        "--model",
        default=None,
        help="Model passed to the agent (default: from config)",
    )
    parser.add_argument(
        "--system-prompt",
        default=None,
        help="System prompt passed to the agent",
    )
    parser.add_argument(
        "--cwd",
        default=None,
        help="Working directory for the agent (default: current dir)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args()

    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )
    for handler in logging.getLogger().handlers:
        handler.addFilter(RedactingFilter())

    message = _resolve_message(args.message, args.message_file)
    config = BridgeConfig.from_env()
    options = SessionOptions(
        cwd=args.cwd or config.default_cwd,
        model=args.model,
        system_prompt=args.system_prompt,
    )

    try:
        code = asyncio.run(run_once(config, message, options))
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(1)
    except BridgeError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    sys.exit(code)


def _resolve_message(inline: str | None, file_path: str | None) -> str:
    """Get the message from the inline arg or a file. Exactly one is required."""
    if inline and file_path:
        print("Error: Provide either a message or --message-file, not both.", file=sys.stderr)
        sys.exit(1)

    if file_path:
        p = Path(file_path)
        if not p.is_file():
            print(f"Error: Message file not found: {file_path}", file=sys.stderr)
            sys.exit(1)
        return p.read_text(encoding="utf-8").strip()

    if inline:
        return inline

    print("Error: Provide a message or --message-file.", file=sys.stderr)
    sys.exit(1)


if __name__ == "__main__":
    main()
