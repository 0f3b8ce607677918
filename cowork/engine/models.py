"""Core data models for the session bridge.

All dataclasses, enums, and type aliases. Single source of truth
to avoid circular imports.
"""
from __future__ import annotations

import asyncio
import json
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class SessionStatus(str, Enum):
    """Session lifecycle states. See lifecycle.py for transition rules."""
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    PROCESSING = "processing"
    STOPPED = "stopped"


class EventKind(str, Enum):
    """Discriminator of a classified stdout line."""
    SYSTEM = "system"
    MESSAGE = "message"
    RESULT = "result"
    ERROR = "error"
    PASSTHROUGH = "passthrough"


# Wire type names understood by the renderer.
SESSIONS_UPDATED = "sessionsUpdated"
DATA = "data"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def text_block(text: str) -> dict[str, Any]:
    return {"type": "text", "text": text}


def _optional_str(data: dict[str, Any], *keys: str) -> str | None:
    """First truthy value among *keys*; it must be a string."""
    for key in keys:
        value = data.get(key)
        if not value:
            continue
        if not isinstance(value, str):
            raise TypeError(f"{key} must be a string, not {type(value).__name__}")
        return value
    return None


@dataclass
class Attachment:
    """A file or image the user attached in the GUI."""
    path: str | None = None
    name: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Attachment:
        return cls(
            path=_optional_str(data, "path", "filePath"),
            name=_optional_str(data, "name"),
        )


@dataclass
class SessionOptions:
    """Caller-supplied options for a new session."""
    cwd: str | None = None
    model: str | None = None
    system_prompt: str | None = None
    initial_message: str | None = None
    # Trusted additions merged over the filtered environment on every spawn.
    env: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionOptions:
        """Build options from a GUI/HTTP payload (camelCase or snake_case).

        Raises TypeError when a field has the wrong type.
        """
        info = data.get("info") if isinstance(data.get("info"), dict) else {}
        env = data.get("env") or {}
        if not isinstance(env, dict):
            raise TypeError(f"env must be a mapping, not {type(env).__name__}")
        return cls(
            cwd=_optional_str(data, "cwd", "workingDirectory"),
            model=_optional_str(data, "model"),
            system_prompt=_optional_str(data, "system_prompt", "systemPrompt"),
            initial_message=(
                _optional_str(data, "initial_message", "initialMessage")
                or _optional_str(info, "message")
            ),
            env={str(k): str(v) for k, v in env.items()},
        )


@dataclass
class TranscriptEntry:
    """One append-only transcript record (user, assistant or tool)."""
    role: str
    content: list[dict[str, Any]]
    tool_use_id: str | None = None
    timestamp: datetime = field(default_factory=_utcnow)

    @classmethod
    def user(cls, text: str) -> TranscriptEntry:
        return cls(role="user", content=[text_block(text)])

    @classmethod
    def from_message(cls, message: dict[str, Any]) -> TranscriptEntry:
        content = message.get("content")
        if isinstance(content, str):
            content = [text_block(content)]
        elif not isinstance(content, list):
            content = []
        return cls(
            role=str(message.get("role") or "assistant"),
            content=content,
            tool_use_id=message.get("tool_use_id"),
        )

    @property
    def text(self) -> str:
        """Concatenated text of all text blocks."""
        return "".join(
            str(block.get("text", ""))
            for block in self.content
            if isinstance(block, dict) and block.get("type") == "text"
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.tool_use_id:
            d["tool_use_id"] = self.tool_use_id
        return d


# ── Classified events ──


@dataclass
class ClassifiedEvent:
    """Normalized result of classifying one line of agent stdout."""
    session_id: str
    # Conversation id echoed by the agent, used for --resume.
    correlator: str | None = None

    @property
    def kind(self) -> EventKind:
        raise NotImplementedError

    def to_payload(self) -> dict[str, Any]:
        """Convert to the JSON-serializable payload sent to display surfaces."""
        raise NotImplementedError


@dataclass
class SystemEvent(ClassifiedEvent):
    data: str | None = None
    initialization_status: str | None = None

    @property
    def kind(self) -> EventKind:
        return EventKind.SYSTEM

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": "system", "sessionId": self.session_id}
        if self.data is not None:
            payload["data"] = self.data
        if self.initialization_status is not None:
            payload["initializationStatus"] = self.initialization_status
        return payload


@dataclass
class MessageEvent(ClassifiedEvent):
    message: dict[str, Any] = field(default_factory=dict)

    @property
    def kind(self) -> EventKind:
        return EventKind.MESSAGE

    @property
    def role(self) -> str:
        return str(self.message.get("role") or "assistant")

    def to_payload(self) -> dict[str, Any]:
        # The renderer drops unknown kinds, so messages travel as "data".
        return {
            "type": DATA,
            "sessionId": self.session_id,
            "data": json.dumps(self.message),
        }


@dataclass
class ResultEvent(ClassifiedEvent):
    data: str = ""

    @property
    def kind(self) -> EventKind:
        return EventKind.RESULT

    def to_payload(self) -> dict[str, Any]:
        return {"type": "result", "sessionId": self.session_id, "data": self.data}


@dataclass
class ErrorEvent(ClassifiedEvent):
    error: str = "Unknown error"
    code: str | int | None = None

    @property
    def kind(self) -> EventKind:
        return EventKind.ERROR

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": "error",
            "sessionId": self.session_id,
            "error": self.error,
        }
        if self.code is not None:
            payload["code"] = self.code
        return payload


@dataclass
class PassthroughEvent(ClassifiedEvent):
    """Unrecognized or unstructured output, kept for diagnostic visibility."""
    label: str = DATA
    data: str = ""

    @property
    def kind(self) -> EventKind:
        return EventKind.PASSTHROUGH

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.label, "sessionId": self.session_id, "data": self.data}


def sessions_updated_payload(session_id: str) -> dict[str, Any]:
    return {"type": SESSIONS_UPDATED, "sessionId": session_id}


# ── Session state ──


@dataclass
class PendingSend:
    """A send waiting in a session backlog."""
    text: str
    future: asyncio.Future


@dataclass
class SessionRecord:
    """All mutable state of one session."""
    session_id: str
    cwd: str
    model: str | None = None
    system_prompt: str | None = None
    env: dict[str, str] = field(default_factory=dict)
    status: SessionStatus = SessionStatus.UNINITIALIZED
    continuation_token: str | None = None
    processing: bool = False
    backlog: deque[PendingSend] = field(default_factory=deque)
    active_process: asyncio.subprocess.Process | None = field(default=None, repr=False)
    transcript: list[TranscriptEntry] = field(default_factory=list)
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def stopped(self) -> bool:
        return self.status == SessionStatus.STOPPED

    def summary(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "cwd": self.cwd,
            "model": self.model,
            "status": self.status.value,
            "processing": self.processing,
            "queued": len(self.backlog),
            "hasContinuation": self.continuation_token is not None,
            "createdAt": self.created_at.isoformat(),
        }
