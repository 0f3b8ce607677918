"""Per-session conversation state.

Holds transcript, working directory, model options, continuation
token and backlog bookkeeping for every live session. Safe for
single-event-loop usage: all mutation happens between awaits.
"""
from __future__ import annotations

import logging
import os

from .errors import UnknownSessionError
from .lifecycle import validate_transition
from .models import SessionOptions, SessionRecord, SessionStatus, TranscriptEntry

logger = logging.getLogger(__name__)


class ConversationStore:
    """Registry of SessionRecords keyed by caller-assigned session id.

    Constructed once per process. Transcripts are append-only and kept
    in insertion order for the lifetime of the session.
    """

    def __init__(self, default_cwd: str | None = None) -> None:
        self._sessions: dict[str, SessionRecord] = {}
        self._default_cwd = default_cwd

    def create_session(
        self,
        session_id: str,
        options: SessionOptions | None = None,
    ) -> SessionRecord:
        """Create (or replace) the record for *session_id*."""
        options = options or SessionOptions()
        if session_id in self._sessions:
            logger.warning("Replacing existing session record %s", session_id)
        record = SessionRecord(
            session_id=session_id,
            cwd=options.cwd or self._default_cwd or os.getcwd(),
            model=options.model or None,
            system_prompt=options.system_prompt or None,
            env=dict(options.env),
        )
        self._sessions[session_id] = record
        return record

    def get(self, session_id: str) -> SessionRecord:
        record = self._sessions.get(session_id)
        if record is None:
            raise UnknownSessionError(session_id)
        return record

    def has_session(self, session_id: str) -> bool:
        return session_id in self._sessions

    def list_sessions(self) -> list[SessionRecord]:
        return list(self._sessions.values())

    def append_transcript(self, session_id: str, entry: TranscriptEntry) -> None:
        """Add an entry to the end of a session's transcript."""
        self.get(session_id).transcript.append(entry)

    def get_transcript(self, session_id: str) -> list[TranscriptEntry]:
        """Return the transcript in insertion order (a copy)."""
        return list(self.get(session_id).transcript)

    def set_continuation_token(self, session_id: str, token: str) -> bool:
        """Store the resume token unless one is already set.

        First writer wins. Returns True when the token was stored.
        """
        record = self.get(session_id)
        if record.continuation_token is not None or not token:
            return False
        record.continuation_token = token
        return True

    def transition(self, session_id: str, target: SessionStatus) -> None:
        """Move a session to *target*, enforcing the lifecycle table."""
        record = self.get(session_id)
        if record.status == target:
            return
        validate_transition(record.status, target)
        logger.debug(
            "Session %s: %s -> %s",
            session_id, record.status.value, target.value,
        )
        record.status = target

    def destroy_session(self, session_id: str) -> SessionRecord:
        """Remove and return the record for *session_id*."""
        record = self._sessions.pop(session_id, None)
        if record is None:
            raise UnknownSessionError(session_id)
        return record
