from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from cowork.engine.config import MAIN_VIEW_ADDRESS, BridgeConfig, fire_event
from cowork.engine.errors import ConfigError
from cowork.engine.yaml_config import load_yaml_config


def _clean_env(**extra):
    env = {k: v for k, v in os.environ.items() if not k.startswith("COWORK_") and k != "CLAUDE_CODE_PATH"}
    env.update(extra)
    return env


def test_defaults():
    config = BridgeConfig()

    assert config.max_backlog == 100
    assert config.host == "127.0.0.1"
    assert config.known_addresses[0] == MAIN_VIEW_ADDRESS
    assert config.event_namespaces == ["claude.web", "claude.hybrid"]


def test_from_env_reads_cowork_variables():
    env = _clean_env(
        CLAUDE_CODE_PATH="/opt/claude",
        COWORK_SANDBOX_COMMAND="bwrap --die-with-parent --",
        COWORK_MAX_BACKLOG="7",
        COWORK_PORT="8765",
        COWORK_LOG_LEVEL="debug",
        COWORK_WORKSPACE_ROOT="/work",
    )
    with patch.dict(os.environ, env, clear=True):
        config = BridgeConfig.from_env()

    assert config.agent_command == "/opt/claude"
    assert config.sandbox_command == ["bwrap", "--die-with-parent", "--"]
    assert config.max_backlog == 7
    assert config.port == 8765
    assert config.log_level == "DEBUG"
    assert config.workspace_root == "/work"


def test_agent_command_variable_beats_claude_code_path():
    env = _clean_env(CLAUDE_CODE_PATH="/a", COWORK_AGENT_COMMAND="/b")
    with patch.dict(os.environ, env, clear=True):
        assert BridgeConfig.from_env().agent_command == "/b"


def test_yaml_layers_over_base(tmp_path: Path):
    path = tmp_path / "cowork.yaml"
    path.write_text(
        "agent:\n"
        "  command: /usr/local/bin/claude\n"
        "  default_model: claude-sonnet-4-5\n"
        "  sandbox: [bwrap, --ro-bind, /, /, --]\n"
        "sessions:\n"
        "  default_cwd: $PROJECTS/demo\n"
        "  max_backlog: 5\n"
        "environment:\n"
        "  allow: [SSL_CERT_FILE]\n"
        "  extra:\n"
        "    CLAUDE_CODE_ENTRYPOINT: cowork\n"
        "channels:\n"
        "  addresses: [0d6a8f3e-5c1b-4d7e-9a2f-1b3c5d7e9f10]\n"
        "server:\n"
        "  port: 9000\n"
        "logging:\n"
        "  level: warning\n",
        encoding="utf-8",
    )
    base = BridgeConfig(host="0.0.0.0", extra_env={"KEEP": "1"})

    with patch.dict(os.environ, {"PROJECTS": "/srv/projects"}):
        config = load_yaml_config(path, base=base)

    assert config.agent_command == "/usr/local/bin/claude"
    assert config.default_model == "claude-sonnet-4-5"
    assert config.sandbox_command == ["bwrap", "--ro-bind", "/", "/", "--"]
    assert config.default_cwd == "/srv/projects/demo"
    assert config.max_backlog == 5
    assert config.env_allowlist_extra == ["SSL_CERT_FILE"]
    assert config.extra_env == {"KEEP": "1", "CLAUDE_CODE_ENTRYPOINT": "cowork"}
    assert config.known_addresses[-1] == "0d6a8f3e-5c1b-4d7e-9a2f-1b3c5d7e9f10"
    assert len(config.known_addresses) == 3
    assert config.host == "0.0.0.0"
    assert config.port == 9000
    assert config.log_level == "WARNING"
    # The base object is not modified.
    assert base.port == 0
    assert len(base.known_addresses) == 2


def test_empty_yaml_keeps_base(tmp_path: Path):
    path = tmp_path / "cowork.yaml"
    path.write_text("", encoding="utf-8")

    config = load_yaml_config(path, base=BridgeConfig(max_backlog=3))

    assert config.max_backlog == 3


def test_missing_yaml_raises_file_not_found(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_yaml_config(tmp_path / "absent.yaml", base=BridgeConfig())


@pytest.mark.parametrize("content, message", [
    ("agent: [unclosed\n", "YAML parse error"),
    ("- just\n- a list\n", "top level must be a mapping"),
    ("sessions: 5\n", "section 'sessions' must be a mapping"),
    ("channels:\n  namespaces: []\n", "must not be empty"),
    ("environment:\n  extra: [a]\n", "must be a mapping"),
    ("sessions:\n  max_backlog: [1]\n", "'sessions.max_backlog' must be an integer"),
    ("server:\n  port: eighty\n", "'server.port' must be an integer"),
    ("agent:\n  stderr_log_chars: true\n", "'agent.stderr_log_chars' must be an integer"),
])
def test_malformed_yaml_raises_config_error(tmp_path: Path, content, message):
    path = tmp_path / "cowork.yaml"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(ConfigError, match=message):
        load_yaml_config(path, base=BridgeConfig())


@pytest.mark.asyncio
async def test_fire_event_swallows_callback_errors():
    calls = []

    async def broken(event):
        calls.append(event)
        raise RuntimeError("surface exploded")

    await fire_event(broken, {"type": "data"})
    await fire_event(None, {"type": "data"})

    assert calls == [{"type": "data"}]
