"""End-to-end tests against a real (fake) agent subprocess."""
from __future__ import annotations

import asyncio
import json
import logging
import os
import sys

import pytest

from cowork.engine.config import BridgeConfig
from cowork.engine.errors import AgentExitError, AgentSpawnError, SessionStoppedError
from cowork.engine.models import SessionOptions
from cowork.engine.process_manager import SessionProcessManager

from fake_agent import write_fake_agent

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="POSIX subprocess semantics")


@pytest.fixture
def agent(tmp_path):
    return write_fake_agent(tmp_path)


@pytest.fixture
def workdir(tmp_path):
    path = tmp_path / "proj"
    path.mkdir()
    return path


def _manager(agent_path, events, **config_kwargs):
    async def capture(payload):
        events.append(payload)

    return SessionProcessManager(
        BridgeConfig(agent_command=str(agent_path), **config_kwargs),
        event_callback=capture,
        environ={"PATH": os.environ.get("PATH", ""), "HOME": str(agent_path.parent)},
    )


@pytest.mark.asyncio
async def test_send_round_trip_with_real_process(agent, workdir):
    events = []
    manager = _manager(agent, events)
    await manager.start("S1", SessionOptions(cwd=str(workdir)))

    await manager.send("S1", "hello")
    await manager.send("S1", "again")

    texts = [e.text for e in manager.get_transcript("S1")]
    assert texts == [
        "hello",
        "echo: hello resumed=None",
        "again",
        "echo: again resumed=conv-123",
    ]
    assert manager.store.get("S1").continuation_token == "conv-123"
    types = [e["type"] for e in events]
    assert types.count("result") == 2
    assert types.count("sessionsUpdated") == 2
    assert {"type": "data", "sessionId": "S1", "data": "plain progress line"} in events


@pytest.mark.asyncio
async def test_line_split_across_writes_is_reassembled(agent, workdir):
    events = []
    manager = _manager(agent, events)
    await manager.start("S1", SessionOptions(cwd=str(workdir)))

    await manager.send("S1", "split please")

    assert "joined é" in [e.text for e in manager.get_transcript("S1")]


@pytest.mark.asyncio
async def test_nonzero_exit_rejects_send(agent, workdir):
    events = []
    manager = _manager(agent, events)
    await manager.start("S1", SessionOptions(cwd=str(workdir)))

    with pytest.raises(AgentExitError, match="exited with code 4"):
        await manager.send("S1", "please fail")

    errors = [e for e in events if e["type"] == "error"]
    assert len(errors) == 1
    assert "result" not in [e["type"] for e in events]


@pytest.mark.asyncio
async def test_missing_binary_rejects_send(tmp_path, workdir):
    events = []
    manager = _manager(tmp_path / "does-not-exist", events)
    await manager.start("S1", SessionOptions(cwd=str(workdir)))

    with pytest.raises(AgentSpawnError):
        await manager.send("S1", "hello")

    assert [e["type"] for e in events][-1] == "error"


@pytest.mark.asyncio
async def test_stop_terminates_running_process(agent, workdir):
    events = []
    manager = _manager(agent, events)
    await manager.start("S1", SessionOptions(cwd=str(workdir)))

    task = asyncio.create_task(manager.send("S1", "sleep now"))
    for _ in range(200):
        if any(e["type"] == "data" for e in events):
            break
        await asyncio.sleep(0.01)

    manager.stop("S1")

    with pytest.raises(SessionStoppedError):
        await asyncio.wait_for(task, timeout=10)
    assert not manager.store.has_session("S1")


@pytest.mark.asyncio
async def test_stderr_is_logged_redacted_and_never_dispatched(agent, workdir, caplog):
    events = []
    manager = _manager(agent, events)
    await manager.start("S1", SessionOptions(cwd=str(workdir)))

    with caplog.at_level(logging.INFO, logger="cowork.engine.process_manager"):
        await manager.send("S1", "hello")

    stderr_lines = [r.getMessage() for r in caplog.records if "stderr[" in r.getMessage()]
    assert stderr_lines
    assert all("sk-ant-secret123456" not in line for line in stderr_lines)
    assert all("loading" not in json.dumps(e) for e in events)
