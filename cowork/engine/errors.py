"""Exception hierarchy for the session bridge.

Only subprocess-level failures (spawn, abnormal exit) and explicit
rejections (stopped session, full backlog) propagate out of send().
Parse and fan-out problems are absorbed where they happen.
"""
from __future__ import annotations


class BridgeError(Exception):
    """Base exception for all session bridge errors."""


class UnknownSessionError(BridgeError):
    """Operation addressed a session id the store does not know."""
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Unknown session: {session_id}")


class AgentSpawnError(BridgeError):
    """The agent binary could not be started (missing, not executable)."""
    def __init__(self, session_id: str, reason: str):
        self.session_id = session_id
        self.reason = reason
        super().__init__(reason)


class AgentExitError(BridgeError):
    """The agent process exited abnormally.

    ``returncode`` follows asyncio conventions: a negative value is the
    number of the signal that terminated the process.
    """
    def __init__(self, session_id: str, returncode: int):
        self.session_id = session_id
        self.returncode = returncode
        if returncode < 0:
            detail = f"was terminated by signal {-returncode}"
        else:
            detail = f"exited with code {returncode}"
        super().__init__(f"Claude Code {detail}")


class SessionStoppedError(BridgeError):
    """The session was stopped while this send was pending or running."""
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session {session_id} was stopped")


class BacklogFullError(BridgeError):
    """Too many sends are already queued behind the active one."""
    def __init__(self, session_id: str, limit: int):
        self.session_id = session_id
        self.limit = limit
        super().__init__(
            f"Session {session_id} already has {limit} queued messages"
        )


class ConfigError(BridgeError):
    """Configuration file could not be loaded or is malformed."""
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid config {path}: {reason}")
