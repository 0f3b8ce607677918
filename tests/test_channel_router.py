from __future__ import annotations

import asyncio
import io
import json
import logging

import pytest

from cowork.adapters.channel_router import ChannelRouter, build_channel_name
from cowork.adapters.surfaces import QueueSurface, StreamSurface
from cowork.engine.config import MAIN_PROCESS_ADDRESS, MAIN_VIEW_ADDRESS

NEW_ADDRESS = "0d6a8f3e-5c1b-4d7e-9a2f-1b3c5d7e9f10"


class _Recorder:
    def __init__(self, destroyed=False, fail=False):
        self.sent = []
        self.destroyed = destroyed
        self.fail = fail

    def is_destroyed(self):
        return self.destroyed

    def send(self, channel, payload):
        if self.fail:
            raise RuntimeError("renderer gone")
        self.sent.append((channel, payload))


def test_channel_name_grammar():
    assert build_channel_name("abc-1", "claude.web") == (
        "$eipc_message$_abc-1_$_claude.web_$_LocalAgentModeSessions_$_onEvent"
    )


def test_extract_address_round_trips():
    channel = build_channel_name(NEW_ADDRESS, "claude.hybrid")
    assert ChannelRouter.extract_address(channel) == NEW_ADDRESS


@pytest.mark.parametrize("channel", ["", "random", "$eipc_message$_NOTHEX_$_x", None, 42])
def test_extract_address_rejects_other_strings(channel):
    assert ChannelRouter.extract_address(channel) is None


def test_default_addresses_and_channels():
    router = ChannelRouter()

    assert router.addresses == [MAIN_VIEW_ADDRESS, MAIN_PROCESS_ADDRESS]
    assert len(router.build_channels()) == 4


def test_register_address_is_idempotent():
    router = ChannelRouter()

    assert router.register_address(NEW_ADDRESS) is True
    assert router.register_address(NEW_ADDRESS) is False
    assert router.addresses.count(NEW_ADDRESS) == 1
    assert len(router.build_channels()) == 6


def test_observe_channel_registers_embedded_address():
    router = ChannelRouter(addresses=[])

    assert router.observe_channel(build_channel_name(NEW_ADDRESS, "claude.web")) == NEW_ADDRESS
    assert router.observe_channel("not a channel") is None
    assert router.addresses == [NEW_ADDRESS]


def test_dispatch_reaches_every_channel_on_every_live_surface():
    router = ChannelRouter()
    first, second = _Recorder(), _Recorder()
    router.attach_surface(first)
    router.attach_surface(second)

    count = router.dispatch({"type": "result", "sessionId": "S1"})

    assert count == 8
    assert router.dispatched_total == 8
    assert {c for c, _ in first.sent} == set(router.build_channels())


def test_dead_and_failing_surfaces_are_skipped():
    router = ChannelRouter()
    healthy = _Recorder()
    router.attach_surface(_Recorder(destroyed=True))
    router.attach_surface(_Recorder(fail=True))
    router.attach_surface(healthy)

    count = router.dispatch({"type": "data", "sessionId": "S1"})

    assert count == 4
    assert len(healthy.sent) == 4
    assert len(router.surfaces) == 3


class _BrokenLiveness(_Recorder):
    def is_destroyed(self):
        raise RuntimeError("webContents already released")


def test_surface_failing_liveness_check_does_not_abort_fan_out():
    router = ChannelRouter()
    first = _Recorder()
    last = _Recorder()
    router.attach_surface(first)
    router.attach_surface(_BrokenLiveness())
    router.attach_surface(last)

    count = router.dispatch({"type": "data", "sessionId": "S1"})

    assert count == 8
    assert len(first.sent) == 4
    assert len(last.sent) == 4
    assert router.dispatched_total == 8


def test_high_frequency_events_skip_info_log(caplog):
    router = ChannelRouter()
    with caplog.at_level(logging.INFO, logger="cowork.adapters.channel_router"):
        router.dispatch({"type": "streamEvent", "sessionId": "S1"})
        router.dispatch({"type": "toolProgress", "sessionId": "S1"})
        router.dispatch({"type": "result", "sessionId": "S1"})

    dispatch_lines = [r.getMessage() for r in caplog.records if r.getMessage().startswith("dispatch ")]
    assert len(dispatch_lines) == 1
    assert "result" in dispatch_lines[0]


def test_detach_surface():
    router = ChannelRouter()
    surface = _Recorder()
    router.attach_surface(surface)
    router.detach_surface(surface)
    router.detach_surface(surface)

    assert router.dispatch({"type": "data"}) == 0


@pytest.mark.asyncio
async def test_make_callback_dispatches():
    router = ChannelRouter(addresses=[NEW_ADDRESS], namespaces=["claude.web"])
    surface = QueueSurface()
    router.attach_surface(surface)

    await router.make_callback()({"type": "data", "sessionId": "S1"})

    channel, payload = await asyncio.wait_for(surface.get(), timeout=1)
    assert channel == build_channel_name(NEW_ADDRESS, "claude.web")
    assert payload["sessionId"] == "S1"


def test_queue_surface_channel_filter_and_overflow():
    wanted = build_channel_name(MAIN_VIEW_ADDRESS, "claude.web")
    filtered = QueueSurface(channel=wanted)
    tiny = QueueSurface(maxsize=1)
    router = ChannelRouter()
    router.attach_surface(filtered)
    router.attach_surface(tiny)

    count = router.dispatch({"type": "data"})

    # All four channels "succeed" on the filtered surface; only one fits in tiny.
    assert count == 5
    assert filtered.qsize() == 1
    assert filtered.get_nowait()[0] == wanted
    assert tiny.qsize() == 1


def test_closed_queue_surface_is_destroyed():
    surface = QueueSurface()
    surface.close()
    assert surface.is_destroyed()


def test_stream_surface_writes_one_line_per_event():
    stream = io.StringIO()
    router = ChannelRouter()
    router.attach_surface(StreamSurface(stream))

    router.dispatch({"type": "data", "sessionId": "S1"})
    router.dispatch({"type": "result", "sessionId": "S1"})

    lines = stream.getvalue().splitlines()
    assert [json.loads(line)["type"] for line in lines] == ["data", "result"]
