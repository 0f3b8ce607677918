"""Fans session events out to every known channel and display surface.

A channel name embeds the address of the surface it belongs to:

    $eipc_message$_<address>_$_<namespace>_$_LocalAgentModeSessions_$_onEvent

Every event goes out on the cross product of known addresses and
namespaces, to every attached surface that is still alive. The
address set only grows; a dead surface is skipped, never removed
here.
"""
from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from typing import Any

from cowork.adapters.surfaces import DisplaySurface
from cowork.engine.config import MAIN_PROCESS_ADDRESS, MAIN_VIEW_ADDRESS, EventCallback

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "$eipc_message$"
CHANNEL_SUFFIX = "LocalAgentModeSessions_$_onEvent"
DEFAULT_NAMESPACES = ("claude.web", "claude.hybrid")

_ADDRESS_RE = re.compile(r"\$eipc_message\$_([a-f0-9-]+)_\$")

# Streaming deltas and progress ticks would flood the log.
HIGH_FREQUENCY_EVENT_TYPES = frozenset({"streamEvent", "toolProgress"})


def build_channel_name(address: str, namespace: str) -> str:
    return f"{CHANNEL_PREFIX}_{address}_$_{namespace}_$_{CHANNEL_SUFFIX}"


class ChannelRouter:
    """Known addresses, namespaces and surfaces, plus the dispatch loop."""

    def __init__(
        self,
        addresses: Iterable[str] | None = None,
        namespaces: Iterable[str] | None = None,
    ) -> None:
        # dict keeps insertion order, which keeps channel order stable.
        self._addresses: dict[str, None] = {}
        for address in (MAIN_VIEW_ADDRESS, MAIN_PROCESS_ADDRESS) if addresses is None else addresses:
            self._addresses[address] = None
        self._namespaces = list(namespaces or DEFAULT_NAMESPACES)
        self._surfaces: list[DisplaySurface] = []
        self._dispatched_total = 0

    @property
    def addresses(self) -> list[str]:
        return list(self._addresses)

    @property
    def namespaces(self) -> list[str]:
        return list(self._namespaces)

    @property
    def surfaces(self) -> list[DisplaySurface]:
        return list(self._surfaces)

    @property
    def dispatched_total(self) -> int:
        """Successful per-recipient sends since construction."""
        return self._dispatched_total

    def register_address(self, address: str) -> bool:
        """Add *address* to the known set. Returns True if it was new."""
        if not address or address in self._addresses:
            return False
        self._addresses[address] = None
        logger.info("Registered channel address %s (%d known)", address, len(self._addresses))
        return True

    @staticmethod
    def extract_address(channel: Any) -> str | None:
        """Pull the address token out of a channel name, or None."""
        if not isinstance(channel, str):
            return None
        match = _ADDRESS_RE.search(channel)
        return match.group(1) if match else None

    def observe_channel(self, channel: Any) -> str | None:
        """Register the address embedded in *channel*, if any."""
        address = self.extract_address(channel)
        if address is not None:
            self.register_address(address)
        return address

    def build_channels(self) -> list[str]:
        return [
            build_channel_name(address, namespace)
            for address in self._addresses
            for namespace in self._namespaces
        ]

    def attach_surface(self, surface: DisplaySurface) -> None:
        if surface not in self._surfaces:
            self._surfaces.append(surface)

    def detach_surface(self, surface: DisplaySurface) -> None:
        try:
            self._surfaces.remove(surface)
        except ValueError:
            pass

    def dispatch(self, payload: dict[str, Any]) -> int:
        """Send *payload* on every channel to every live surface.

        Returns the number of successful sends. A surface that is
        destroyed or raises is skipped; the rest still receive it.
        """
        event_type = payload.get("type")
        channels = self.build_channels()
        if event_type not in HIGH_FREQUENCY_EVENT_TYPES:
            logger.info(
                "dispatch %s session=%s channels=%d surfaces=%d",
                event_type, payload.get("sessionId"), len(channels), len(self._surfaces),
            )

        sent = 0
        for surface in list(self._surfaces):
            for channel in channels:
                try:
                    if surface.is_destroyed():
                        break
                    surface.send(channel, payload)
                except Exception as exc:
                    logger.debug("dispatch to %r on %s failed: %s", surface, channel, exc)
                    continue
                sent += 1
        self._dispatched_total += sent
        return sent

    async def _callback(self, payload: dict[str, Any]) -> None:
        self.dispatch(payload)

    def make_callback(self) -> EventCallback:
        """Return the async callback for SessionProcessManager."""
        return self._callback
