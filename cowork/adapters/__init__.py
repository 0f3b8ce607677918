"""Adapters package - Bridge between the session engine and display surfaces.

Holds the channel router that fans session events out to every known
channel, and the surfaces those events are delivered to.
"""
from __future__ import annotations

__all__ = [
    "ChannelRouter",
    "DisplaySurface",
    "QueueSurface",
    "StreamSurface",
]

from cowork.adapters.channel_router import ChannelRouter
from cowork.adapters.surfaces import DisplaySurface, QueueSurface, StreamSurface
