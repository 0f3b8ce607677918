"""Display surfaces: the recipients a ChannelRouter sends to."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Protocol, TextIO, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class DisplaySurface(Protocol):
    def is_destroyed(self) -> bool: ...

    def send(self, channel: str, payload: dict[str, Any]) -> None: ...


class QueueSurface:
    """Buffers (channel, payload) pairs for an async consumer.

    With *channel* set, only sends on that exact channel are kept.
    A full queue raises asyncio.QueueFull, which the router treats
    as a failed send for this surface only.
    """

    def __init__(self, maxsize: int = 5000, channel: str | None = None) -> None:
        self._queue: asyncio.Queue[tuple[str, dict[str, Any]]] = asyncio.Queue(maxsize=maxsize)
        self._channel = channel
        self._closed = False

    @property
    def channel(self) -> str | None:
        return self._channel

    def is_destroyed(self) -> bool:
        return self._closed

    def send(self, channel: str, payload: dict[str, Any]) -> None:
        if self._closed:
            raise RuntimeError("surface is closed")
        if self._channel is not None and channel != self._channel:
            return
        self._queue.put_nowait((channel, payload))

    async def get(self) -> tuple[str, dict[str, Any]]:
        return await self._queue.get()

    def get_nowait(self) -> tuple[str, dict[str, Any]]:
        return self._queue.get_nowait()

    def qsize(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        self._closed = True


class StreamSurface:
    """Writes one JSON object per line to a text stream.

    Only the first channel of each event is written when
    *first_channel_only* is set, which keeps terminal output to one
    line per event.
    """

    def __init__(self, stream: TextIO, first_channel_only: bool = True) -> None:
        self._stream = stream
        self._first_channel_only = first_channel_only
        self._last_payload: dict[str, Any] | None = None

    def is_destroyed(self) -> bool:
        return self._stream.closed

    def send(self, channel: str, payload: dict[str, Any]) -> None:
        if self._first_channel_only:
            if payload is self._last_payload:
                return
            self._last_payload = payload
            line = json.dumps(payload)
        else:
            line = json.dumps({"channel": channel, "payload": payload})
        self._stream.write(line + "\n")
        self._stream.flush()
