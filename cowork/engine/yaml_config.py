"""YAML configuration loader.

Loads a single YAML file layered over the COWORK_* environment
config. Every section is optional; missing keys keep the env value.

Example YAML:
    agent:
      command: ~/.local/bin/claude
      default_model: claude-sonnet-4-5
      sandbox: [bwrap, --die-with-parent, --ro-bind, /, /, --]

    sessions:
      default_cwd: ~/projects
      workspace_root: ~/projects
      max_backlog: 50

    environment:
      allow: [SSL_CERT_FILE, HTTPS_PROXY]
      extra:
        CLAUDE_CODE_ENTRYPOINT: cowork-linux

    channels:
      addresses: [0d6a8f3e-5c1b-4d7e-9a2f-1b3c5d7e9f10]
      namespaces: [claude.web, claude.hybrid]

    server:
      host: 127.0.0.1
      port: 8765
      sse_queue_size: 5000

    logging:
      level: DEBUG
      file: ~/.cowork/logs/cowork-bridge.log
"""
from __future__ import annotations

import dataclasses
import logging
import os
import shlex
from pathlib import Path
from typing import Any

import yaml

from .config import BridgeConfig
from .errors import ConfigError

logger = logging.getLogger(__name__)

KNOWN_SECTIONS = ("agent", "sessions", "environment", "channels", "server", "logging")


def _expand(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return os.path.expanduser(os.path.expandvars(str(value)))


def _section(raw: dict, name: str, path: Path) -> dict:
    section = raw.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(str(path), f"section '{name}' must be a mapping")
    return section


def _string_list(value: Any, key: str, path: Path) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return shlex.split(value)
    if isinstance(value, list):
        return [str(item) for item in value]
    raise ConfigError(str(path), f"'{key}' must be a list or a string")


def _int(value: Any, key: str, path: Path) -> int:
    if isinstance(value, bool):
        raise ConfigError(str(path), f"'{key}' must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(str(path), f"'{key}' must be an integer") from exc


def load_yaml_config(
    path: str | Path,
    base: BridgeConfig | None = None,
) -> BridgeConfig:
    """Load *path* and return a BridgeConfig layered over *base*.

    *base* defaults to BridgeConfig.from_env(). Raises
    FileNotFoundError for a missing file and ConfigError for
    malformed content.
    """
    path = Path(path)
    logger.info(
        "load_yaml_config: loading %s (exists=%s)", path, path.exists()
    )
    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error(
            "load_yaml_config: config file not found at %s (absolute path: %s)",
            path, path.absolute(),
        )
        raise
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise ConfigError(str(path), f"YAML parse error: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(str(path), "top level must be a mapping")

    unknown = sorted(k for k in raw if k not in KNOWN_SECTIONS)
    if unknown:
        logger.warning(
            "load_yaml_config: ignoring unknown sections in %s: %s",
            path.name, ", ".join(unknown),
        )

    config = dataclasses.replace(base) if base is not None else BridgeConfig.from_env()

    agent = _section(raw, "agent", path)
    if "command" in agent:
        config.agent_command = _expand(agent["command"])
    if "default_model" in agent:
        config.default_model = agent["default_model"] or None
    if "sandbox" in agent:
        config.sandbox_command = _string_list(agent["sandbox"], "agent.sandbox", path)
    if "stderr_log_chars" in agent:
        config.stderr_log_chars = _int(agent["stderr_log_chars"], "agent.stderr_log_chars", path)

    sessions = _section(raw, "sessions", path)
    if "default_cwd" in sessions:
        config.default_cwd = _expand(sessions["default_cwd"])
    if "workspace_root" in sessions:
        config.workspace_root = _expand(sessions["workspace_root"])
    if "max_backlog" in sessions:
        config.max_backlog = _int(sessions["max_backlog"], "sessions.max_backlog", path)

    environment = _section(raw, "environment", path)
    if "allow" in environment:
        config.env_allowlist_extra = _string_list(
            environment["allow"], "environment.allow", path,
        )
    extra = environment.get("extra") or {}
    if not isinstance(extra, dict):
        raise ConfigError(str(path), "'environment.extra' must be a mapping")
    config.extra_env = {**config.extra_env, **{str(k): str(v) for k, v in extra.items()}}

    channels = _section(raw, "channels", path)
    for address in _string_list(channels.get("addresses"), "channels.addresses", path):
        if address not in config.known_addresses:
            config.known_addresses = [*config.known_addresses, address]
    if "namespaces" in channels:
        namespaces = _string_list(channels["namespaces"], "channels.namespaces", path)
        if not namespaces:
            raise ConfigError(str(path), "'channels.namespaces' must not be empty")
        config.event_namespaces = namespaces

    server = _section(raw, "server", path)
    if "host" in server:
        config.host = str(server["host"])
    if "port" in server:
        config.port = _int(server["port"], "server.port", path)
    if "sse_queue_size" in server:
        config.sse_queue_size = _int(server["sse_queue_size"], "server.sse_queue_size", path)

    logging_raw = _section(raw, "logging", path)
    if "level" in logging_raw:
        config.log_level = str(logging_raw["level"]).upper()
    if "file" in logging_raw:
        config.log_file = _expand(logging_raw["file"])

    logger.info(
        "Parsed YAML config %s, sections: %s",
        path.name, ", ".join(sorted(raw)) if raw else "(empty)",
    )
    return config
