"""Classifies Claude Code ``--output-format stream-json`` lines.

Each stdout line is expected to be one JSON object with a ``type``
discriminator:

    init / system   -> SystemEvent (subtype "init" marks the session ready)
    assistant       -> MessageEvent (role assistant)
    tool_use        -> MessageEvent (single tool_use block)
    tool_result     -> MessageEvent (role tool)
    result          -> ResultEvent
    error           -> ErrorEvent
    anything else   -> PassthroughEvent labelled with the unknown type

The agent binary is versioned independently, so the passthrough arm
is a permanent part of the grammar rather than a gap. Anything that
is not a JSON object degrades to a raw-text passthrough. Classification
never raises.
"""
from __future__ import annotations

import json
import logging
import uuid
from typing import Any

from .models import (
    DATA,
    ClassifiedEvent,
    ErrorEvent,
    MessageEvent,
    PassthroughEvent,
    ResultEvent,
    SystemEvent,
    text_block,
)

logger = logging.getLogger(__name__)

COMMENT_MARKERS = ("#", "//")
CORRELATOR_KEYS = ("session_id", "conversation_id", "conversationId")


def extract_correlator(payload: Any) -> str | None:
    """Return the conversation id echoed in a payload, if any."""
    if not isinstance(payload, dict):
        return None
    for key in CORRELATOR_KEYS:
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def _serialize(payload: dict[str, Any]) -> str:
    return json.dumps(payload)


def _classify_system(payload: dict, session_id: str, correlator: str | None) -> ClassifiedEvent:
    return SystemEvent(
        session_id=session_id,
        correlator=correlator,
        data=_serialize(payload),
        initialization_status="ready" if payload.get("subtype") == "init" else None,
    )


def _classify_assistant(payload: dict, session_id: str, correlator: str | None) -> ClassifiedEvent:
    message = payload.get("message")
    if not isinstance(message, dict):
        content = payload.get("content")
        if not content:
            content = [text_block(str(payload.get("text") or ""))]
        message = {"role": "assistant", "content": content}
    return MessageEvent(session_id=session_id, correlator=correlator, message=message)


def _classify_tool_use(payload: dict, session_id: str, correlator: str | None) -> ClassifiedEvent:
    block = {
        "type": "tool_use",
        "id": payload.get("id") or str(uuid.uuid4()),
        "name": payload.get("name") or payload.get("tool_name") or "unknown",
        "input": payload.get("input") or {},
    }
    return MessageEvent(
        session_id=session_id,
        correlator=correlator,
        message={"role": "assistant", "content": [block]},
    )


def _classify_tool_result(payload: dict, session_id: str, correlator: str | None) -> ClassifiedEvent:
    content = payload.get("content")
    if not content:
        content = [text_block(str(payload.get("output") or payload.get("text") or ""))]
    return MessageEvent(
        session_id=session_id,
        correlator=correlator,
        message={
            "role": "tool",
            "content": content,
            "tool_use_id": payload.get("tool_use_id") or payload.get("id"),
        },
    )


def _classify_result(payload: dict, session_id: str, correlator: str | None) -> ClassifiedEvent:
    return ResultEvent(session_id=session_id, correlator=correlator, data=_serialize(payload))


def _classify_error(payload: dict, session_id: str, correlator: str | None) -> ClassifiedEvent:
    error = payload.get("error") or payload.get("message") or "Unknown error"
    if not isinstance(error, str):
        error = _serialize(error) if isinstance(error, (dict, list)) else str(error)
    code = payload.get("code")
    if code is not None and not isinstance(code, (str, int)):
        code = str(code)
    return ErrorEvent(
        session_id=session_id,
        correlator=correlator,
        error=error,
        code=code or None,
    )


_HANDLERS = {
    "init": _classify_system,
    "system": _classify_system,
    "assistant": _classify_assistant,
    "tool_use": _classify_tool_use,
    "tool_result": _classify_tool_result,
    "result": _classify_result,
    "error": _classify_error,
}


def classify_line(line: str, session_id: str) -> ClassifiedEvent | None:
    """Classify one line of agent stdout.

    Returns None for blank lines and comment lines. Total over all
    string input: malformed data becomes a PassthroughEvent.
    """
    trimmed = line.strip()
    if not trimmed or trimmed.startswith(COMMENT_MARKERS):
        return None

    try:
        payload = json.loads(trimmed)
    except (ValueError, RecursionError):
        payload = None

    if not isinstance(payload, dict):
        return PassthroughEvent(session_id=session_id, label=DATA, data=trimmed)

    correlator = extract_correlator(payload)
    event_type = payload.get("type")
    if not isinstance(event_type, str) or not event_type:
        event_type = DATA

    handler = _HANDLERS.get(event_type)
    try:
        if handler is not None:
            return handler(payload, session_id, correlator)
        return PassthroughEvent(
            session_id=session_id,
            correlator=correlator,
            label=event_type,
            data=_serialize(payload),
        )
    except (TypeError, ValueError, AttributeError, RecursionError) as exc:
        # Shapes we could not normalize are still forwarded verbatim.
        logger.debug("Unclassifiable %s line for %s: %s", event_type, session_id, exc)
        return PassthroughEvent(
            session_id=session_id,
            correlator=correlator,
            label=event_type,
            data=trimmed,
        )
