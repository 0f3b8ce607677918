"""Session lifecycle state machine.

Defines valid transitions and enforces them. Invalid transitions
raise ValueError rather than silently proceeding.

State Diagram:

    UNINITIALIZED ──> INITIALIZING ──> READY <──> PROCESSING

    Any state ──> STOPPED  (explicit stop, terminal)

A session is READY as soon as it is initialized: the agent process
is spawned per message, not per session.
"""
from __future__ import annotations

from .models import SessionStatus

VALID_TRANSITIONS: dict[SessionStatus, set[SessionStatus]] = {
    SessionStatus.UNINITIALIZED: {
        SessionStatus.INITIALIZING,
        SessionStatus.STOPPED,
    },
    SessionStatus.INITIALIZING: {
        SessionStatus.READY,
        SessionStatus.STOPPED,
    },
    SessionStatus.READY: {
        SessionStatus.PROCESSING,
        SessionStatus.STOPPED,
    },
    SessionStatus.PROCESSING: {
        SessionStatus.READY,
        SessionStatus.STOPPED,
    },
    SessionStatus.STOPPED: set(),
}


def validate_transition(current: SessionStatus, target: SessionStatus) -> None:
    """Validate a state transition. Raises ValueError if invalid."""
    allowed = VALID_TRANSITIONS.get(current, set())
    if target not in allowed:
        allowed_str = ", ".join(s.value for s in allowed) or "none (terminal)"
        raise ValueError(
            f"Invalid state transition: {current.value} -> {target.value}. "
            f"Allowed from {current.value}: {allowed_str}"
        )
