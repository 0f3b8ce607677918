"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via COWORK_* env vars,
or layer a YAML file on top with yaml_config.load_yaml_config().
"""
from __future__ import annotations

import logging
import os
import shlex
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


# Async callback receiving every wire payload a session produces.
# Signature: async def callback(payload: dict[str, Any]) -> None
EventCallback = Callable[[dict[str, Any]], Awaitable[None]]

# Fixed addresses of the two preload scripts that always listen.
MAIN_VIEW_ADDRESS = "5fdd886a-1e8d-42a1-8970-2f5b612dd244"
MAIN_PROCESS_ADDRESS = "c42e5915-d1f8-48a1-a373-fe793971fdbd"


async def fire_event(
    callback: EventCallback | None,
    event: dict[str, Any],
) -> None:
    """Fire an event callback if set, logging and swallowing errors."""
    if callback is None:
        return
    try:
        await callback(event)
    except Exception:
        # A broken display surface must never take down a session.
        logger.exception("Event callback failed for %s", event.get("type"))


@dataclass
class BridgeConfig:
    """Session bridge configuration."""

    # Explicit path of the claude binary; None probes the usual
    # install locations (see process_manager.resolve_agent_command).
    agent_command: str | None = None
    # Prefix wrapped around every spawn, e.g. a bwrap invocation.
    sandbox_command: list[str] = field(default_factory=list)
    default_model: str | None = None
    default_cwd: str | None = None
    # Session working directories must live under this root when set.
    workspace_root: str | None = None

    # Sends accepted while one is running; 0 disables the bound.
    max_backlog: int = 100
    # Characters of each agent stderr chunk written to the log.
    stderr_log_chars: int = 200

    # Extra names allowed through the environment filter.
    env_allowlist_extra: list[str] = field(default_factory=list)
    # Trusted variables added to every spawn.
    extra_env: dict[str, str] = field(default_factory=dict)

    # Channel fan-out
    known_addresses: list[str] = field(
        default_factory=lambda: [MAIN_VIEW_ADDRESS, MAIN_PROCESS_ADDRESS]
    )
    event_namespaces: list[str] = field(
        default_factory=lambda: ["claude.web", "claude.hybrid"]
    )

    # HTTP + SSE server
    host: str = "127.0.0.1"
    port: int = 0
    sse_queue_size: int = 5000

    # Logging
    log_level: str = "INFO"
    log_file: str | None = None

    @classmethod
    def from_env(cls) -> BridgeConfig:
        """Load configuration from COWORK_* environment variables."""
        cowork_vars = sorted(k for k in os.environ if k.startswith("COWORK_"))
        if cowork_vars:
            # Names only: values may carry paths or tokens.
            logger.info(
                "BridgeConfig.from_env: COWORK_* env overrides: %s",
                ", ".join(cowork_vars),
            )
        else:
            logger.debug("BridgeConfig.from_env: no COWORK_* env vars set, using defaults")

        defaults = cls()
        config = cls(
            agent_command=(
                os.getenv("COWORK_AGENT_COMMAND")
                or os.getenv("CLAUDE_CODE_PATH")
                or None
            ),
            sandbox_command=shlex.split(os.getenv("COWORK_SANDBOX_COMMAND", "")),
            default_model=os.getenv("COWORK_DEFAULT_MODEL") or None,
            default_cwd=os.getenv("COWORK_DEFAULT_CWD") or None,
            workspace_root=os.getenv("COWORK_WORKSPACE_ROOT") or None,
            max_backlog=int(os.getenv(
                "COWORK_MAX_BACKLOG", str(defaults.max_backlog)
            )),
            host=os.getenv("COWORK_HOST", defaults.host),
            port=int(os.getenv("COWORK_PORT", str(defaults.port))),
            log_level=os.getenv("COWORK_LOG_LEVEL", defaults.log_level).upper(),
            log_file=os.getenv("COWORK_LOG_FILE") or None,
        )
        logger.info(
            "BridgeConfig.from_env: agent=%s sandbox=%s cwd=%s max_backlog=%d",
            config.agent_command or "<auto>",
            config.sandbox_command[0] if config.sandbox_command else "<none>",
            config.default_cwd or "<process cwd>",
            config.max_backlog,
        )
        return config
