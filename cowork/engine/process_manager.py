"""Per-session Claude Code subprocess management.

One ``claude --print --output-format stream-json`` process is spawned
per message, not per session. Multi-turn continuity comes from the
conversation id the agent echoes back, which is passed as
``--resume <id>`` on every later spawn for that session.

Within a session at most one process runs at a time. Sends that
arrive while one is active wait in the session backlog and are
started strictly in arrival order once the active one exits,
whether it succeeded or failed. Sessions are independent of each
other; there is no lock across sessions.

Every stdout line is classified as soon as it is complete and
forwarded through the event callback in read order. stderr is
diagnostic noise and only ever reaches the log.
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
import os
import shutil
import signal
from collections.abc import Coroutine, Iterable, Mapping
from pathlib import Path
from typing import Any

from .classifier import classify_line
from .config import BridgeConfig, EventCallback, fire_event
from .conversation_store import ConversationStore
from .env_policy import ENV_ALLOWLIST, filter_env
from .errors import (
    AgentExitError,
    AgentSpawnError,
    BacklogFullError,
    SessionStoppedError,
    UnknownSessionError,
)
from .line_buffer import LineBuffer
from .models import (
    ErrorEvent,
    MessageEvent,
    PendingSend,
    SessionOptions,
    SessionRecord,
    SessionStatus,
    SystemEvent,
    TranscriptEntry,
    sessions_updated_payload,
)
from .outbound import build_outbound_message
from .redaction import redact_for_logs

logger = logging.getLogger(__name__)

AGENT_COMMAND_NAME = "claude"
# Probed in order after the explicit override.
HOME_AGENT_LOCATIONS = (".npm-global/bin/claude", ".local/bin/claude")
SYSTEM_AGENT_LOCATIONS = ("/usr/local/bin/claude", "/usr/bin/claude")

STREAM_ARGS = ("--print", "--output-format", "stream-json", "--verbose")
STREAM_READ_SIZE = 64 * 1024
SHUTDOWN_GRACE_SECONDS = 5.0


def resolve_agent_command(
    override: str | None = None,
    home: str | None = None,
) -> str:
    """Locate the claude binary.

    Order: explicit override, ~/.npm-global/bin, ~/.local/bin,
    /usr/local/bin, /usr/bin, then whatever ``claude`` resolves to
    on PATH. When nothing is found the bare name is returned so the
    spawn error names the command that was tried.
    """
    if override:
        return override
    home = home or os.environ.get("HOME") or str(Path.home())
    candidates = [os.path.join(home, rel) for rel in HOME_AGENT_LOCATIONS]
    candidates.extend(SYSTEM_AGENT_LOCATIONS)
    for candidate in candidates:
        if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
            return candidate
    return shutil.which(AGENT_COMMAND_NAME) or AGENT_COMMAND_NAME


def _retrieve_exception(future: asyncio.Future) -> None:
    # Pending sends may be abandoned by their caller; mark the
    # exception as seen so asyncio does not report it at GC time.
    if not future.cancelled():
        future.exception()


def _chain(task: asyncio.Future, future: asyncio.Future) -> None:
    """Copy the outcome of *task* into *future* once it finishes."""
    def _copy(done: asyncio.Future) -> None:
        if future.done():
            return
        if done.cancelled():
            future.cancel()
        elif done.exception() is not None:
            future.set_exception(done.exception())
        else:
            future.set_result(done.result())
    task.add_done_callback(_copy)


class SessionProcessManager:
    """Owns agent subprocess lifecycle for every session.

    Constructed once per process. The event callback receives wire
    payloads (``{"type": ..., "sessionId": ...}``) in the order they
    were produced for each session.
    """

    def __init__(
        self,
        config: BridgeConfig | None = None,
        store: ConversationStore | None = None,
        event_callback: EventCallback | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._config = config or BridgeConfig()
        self._store = store or ConversationStore(default_cwd=self._config.default_cwd)
        self._event_callback = event_callback
        # None means "read os.environ at every spawn".
        self._environ = environ
        self._allowlist = ENV_ALLOWLIST | set(self._config.env_allowlist_extra)
        self._agent_command = resolve_agent_command(self._config.agent_command)
        self._tasks: set[asyncio.Task] = set()
        logger.info("SessionProcessManager initialized, claude=%s", self._agent_command)

    @property
    def agent_command(self) -> str:
        return self._agent_command

    @property
    def store(self) -> ConversationStore:
        return self._store

    # ── Public API ──

    async def start(
        self,
        session_id: str,
        options: SessionOptions | None = None,
    ) -> asyncio.Task | None:
        """Create a session and announce it as ready.

        The session accepts sends immediately; no process is spawned
        until the first message. If *options* carries an initial
        message it is submitted before this returns, ahead of any
        later send, and a task awaiting its outcome is returned.
        """
        options = options or SessionOptions()
        if options.model is None and self._config.default_model:
            options = dataclasses.replace(options, model=self._config.default_model)

        if self._store.has_session(session_id):
            logger.info("startSession %s: replacing running session", session_id)
            self.stop(session_id)

        logger.info("startSession %s cwd=%s", session_id, options.cwd or "<default>")
        record = self._store.create_session(session_id, options)

        self._store.transition(session_id, SessionStatus.INITIALIZING)
        await self._emit(SystemEvent(
            session_id=session_id, initialization_status="initializing",
        ).to_payload())
        if record.stopped:
            return None
        self._store.transition(session_id, SessionStatus.READY)
        await self._emit(SystemEvent(
            session_id=session_id, initialization_status="ready",
        ).to_payload())

        if options.initial_message and not record.stopped:
            # Submitted before returning so any later send queues behind it.
            outcome = await self._submit(session_id, options.initial_message)
            if outcome is not None:
                return self._spawn_task(
                    self._settle(outcome),
                    name=f"cowork-initial-{session_id}",
                )
        return None

    async def send(
        self,
        session_id: str,
        message: str | None,
        images: Iterable[Any] | None = None,
        files: Iterable[Any] | None = None,
    ) -> None:
        """Send one message and wait until its agent process exits.

        Raises AgentSpawnError or AgentExitError when the invocation
        fails, SessionStoppedError when the session is stopped first,
        and BacklogFullError when the backlog is at its limit. An
        unknown session id is logged and ignored.
        """
        outcome = await self._submit(session_id, message, images, files)
        if outcome is not None:
            await asyncio.shield(outcome)

    def stop(self, session_id: str) -> None:
        """Terminate the session's active process and drop the session.

        Best effort: the process may still be exiting when this
        returns. Queued sends are abandoned with SessionStoppedError.
        """
        try:
            record = self._store.get(session_id)
        except UnknownSessionError:
            logger.warning("stopSession: no session %s", session_id)
            return

        logger.info("stopSession %s", session_id)
        self._store.transition(session_id, SessionStatus.STOPPED)

        if record.active_process is not None:
            self._terminate(record.active_process, session_id)

        abandoned = list(record.backlog)
        record.backlog.clear()
        for pending in abandoned:
            if not pending.future.done():
                pending.future.set_exception(SessionStoppedError(session_id))
        if abandoned:
            logger.info("stopSession %s: abandoned %d queued message(s)", session_id, len(abandoned))

        self._store.destroy_session(session_id)

    def get_transcript(self, session_id: str) -> list[TranscriptEntry]:
        try:
            return self._store.get_transcript(session_id)
        except UnknownSessionError:
            logger.error("getTranscript: no session %s", session_id)
            return []

    def list_sessions(self) -> list[dict[str, Any]]:
        return [record.summary() for record in self._store.list_sessions()]

    async def shutdown(self, grace_seconds: float = SHUTDOWN_GRACE_SECONDS) -> None:
        """Stop every session and wait for their processes to exit."""
        for record in self._store.list_sessions():
            self.stop(record.session_id)
        pending = [t for t in self._tasks if not t.done()]
        if not pending:
            return
        _, still_running = await asyncio.wait(pending, timeout=grace_seconds)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning("shutdown: cancelled %d unfinished invocation(s)", len(still_running))
            await asyncio.wait(still_running)

    # ── Command + environment ──

    def build_command(self, record: SessionRecord) -> list[str]:
        cmd = [*self._config.sandbox_command, self._agent_command, *STREAM_ARGS]
        if record.model:
            cmd.extend(["--model", record.model])
        if record.system_prompt:
            cmd.extend(["--system-prompt", record.system_prompt])
        if record.continuation_token:
            cmd.extend(["--resume", record.continuation_token])
        return cmd

    def build_env(self, record: SessionRecord) -> dict[str, str]:
        """Filtered environment for one spawn, recomputed every time."""
        source = os.environ if self._environ is None else self._environ
        additions = {
            **self._config.extra_env,
            **record.env,
            "CLAUDE_CODE_SESSION_ID": record.session_id,
        }
        return filter_env(source, additions, self._allowlist)

    # ── Invocation scheduling ──

    def _spawn_task(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None and not isinstance(exc, SessionStoppedError):
            logger.debug("%s finished with %s: %s", task.get_name(), type(exc).__name__, exc)

    async def _submit(
        self,
        session_id: str,
        message: str | None,
        images: Iterable[Any] | None = None,
        files: Iterable[Any] | None = None,
    ) -> asyncio.Future | None:
        """Record the message and start or queue its invocation.

        Nothing is awaited between the backlog check and the hand-off,
        so messages are ordered by the time this is called. Returns
        the running task or the backlog future, or None for an unknown
        session.
        """
        try:
            record = self._store.get(session_id)
        except UnknownSessionError:
            logger.error("sendMessage: no session %s", session_id)
            return None

        text = build_outbound_message(message, images, files, cwd=record.cwd)

        limit = self._config.max_backlog
        if record.processing and limit > 0 and len(record.backlog) >= limit:
            error = BacklogFullError(session_id, limit)
            logger.warning("sendMessage %s rejected: %s", session_id, error)
            await self._emit(ErrorEvent(session_id=session_id, error=str(error)).to_payload())
            raise error

        logger.info("sendMessage %s: %s...", session_id, text[:80])
        self._store.append_transcript(session_id, TranscriptEntry.user(text))

        if record.processing:
            future = asyncio.get_running_loop().create_future()
            future.add_done_callback(_retrieve_exception)
            record.backlog.append(PendingSend(text=text, future=future))
            logger.info(
                "sendMessage %s: queued behind active invocation (%d waiting)",
                session_id, len(record.backlog),
            )
            return future

        return self._begin(record, text)

    async def _settle(self, outcome: asyncio.Future) -> None:
        await asyncio.shield(outcome)

    def _begin(self, record: SessionRecord, text: str) -> asyncio.Task:
        """Mark the session busy and start one invocation.

        Runs synchronously up to task creation so no other send can
        observe the session as idle in between.
        """
        record.processing = True
        self._store.transition(record.session_id, SessionStatus.PROCESSING)
        return self._spawn_task(
            self._run(record, text),
            name=f"cowork-send-{record.session_id}",
        )

    def _advance(self, record: SessionRecord) -> None:
        """Start the next backlog entry or return the session to ready."""
        if record.stopped:
            record.processing = False
            return
        if record.backlog:
            pending = record.backlog.popleft()
            logger.debug(
                "Session %s: dequeued message (%d still waiting)",
                record.session_id, len(record.backlog),
            )
            task = self._spawn_task(
                self._run(record, pending.text),
                name=f"cowork-send-{record.session_id}",
            )
            _chain(task, pending.future)
            return
        record.processing = False
        self._store.transition(record.session_id, SessionStatus.READY)

    async def _run(self, record: SessionRecord, text: str) -> None:
        session_id = record.session_id
        try:
            await self._invoke(record, text)
        except SessionStoppedError:
            raise
        except (AgentSpawnError, AgentExitError) as exc:
            logger.error("execMessage %s failed: %s", session_id, exc)
            await self._emit(ErrorEvent(session_id=session_id, error=str(exc)).to_payload())
            raise
        finally:
            self._advance(record)

    # ── Single invocation ──

    async def _invoke(self, record: SessionRecord, text: str) -> None:
        session_id = record.session_id
        cmd = self.build_command(record)
        env = self.build_env(record)
        logger.info(
            "spawn %s: %s %s%s (%d chars via stdin)",
            session_id,
            self._agent_command,
            " ".join(STREAM_ARGS),
            f" --resume {record.continuation_token}" if record.continuation_token else "",
            len(text),
        )

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                cwd=record.cwd,
                start_new_session=True,
            )
        except (OSError, ValueError, TypeError) as exc:
            raise AgentSpawnError(session_id, str(exc)) from exc

        record.active_process = proc
        if record.stopped:
            self._terminate(proc, session_id)

        try:
            await asyncio.gather(
                self._write_stdin(proc, text, session_id),
                self._pump_stdout(record, proc.stdout),
                self._drain_stderr(session_id, proc.stderr),
            )
            returncode = await proc.wait()
        except asyncio.CancelledError:
            if proc.returncode is None:
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass
            raise
        finally:
            if record.active_process is proc:
                record.active_process = None

        logger.info("process exited %s: returncode=%s", session_id, returncode)
        await self._emit(sessions_updated_payload(session_id))

        if record.stopped:
            raise SessionStoppedError(session_id)
        if returncode != 0:
            raise AgentExitError(session_id, returncode)

    async def _write_stdin(
        self,
        proc: asyncio.subprocess.Process,
        text: str,
        session_id: str,
    ) -> None:
        """Write the whole message, then signal end of input."""
        if proc.stdin is None:
            return
        try:
            proc.stdin.write(text.encode("utf-8"))
            await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            logger.warning("stdin for %s closed early: %s", session_id, exc)
        finally:
            proc.stdin.close()

    async def _pump_stdout(
        self,
        record: SessionRecord,
        stream: asyncio.StreamReader | None,
    ) -> None:
        if stream is None:
            return
        buffer = LineBuffer()
        while True:
            chunk = await stream.read(STREAM_READ_SIZE)
            if not chunk:
                break
            for line in buffer.feed(chunk):
                await self._process_line(record, line)
        tail = buffer.flush()
        if tail and tail.strip():
            await self._process_line(record, tail)

    async def _drain_stderr(
        self,
        session_id: str,
        stream: asyncio.StreamReader | None,
    ) -> None:
        if stream is None:
            return
        buffer = LineBuffer()
        limit = self._config.stderr_log_chars
        while True:
            chunk = await stream.read(STREAM_READ_SIZE)
            if not chunk:
                break
            for line in buffer.feed(chunk):
                self._log_stderr(session_id, line, limit)
        tail = buffer.flush()
        if tail:
            self._log_stderr(session_id, tail, limit)

    @staticmethod
    def _log_stderr(session_id: str, line: str, limit: int) -> None:
        text = line.strip()
        if text:
            logger.info("stderr[%s]: %s", session_id[:8], redact_for_logs(text)[:limit])

    async def _process_line(self, record: SessionRecord, line: str) -> None:
        if record.stopped:
            return
        session_id = record.session_id
        event = classify_line(line, session_id)
        if event is None:
            return

        if event.correlator and record.continuation_token is None:
            if self._store.set_continuation_token(session_id, event.correlator):
                logger.info("captured conversationId for %s: %s", session_id, event.correlator)

        if isinstance(event, MessageEvent):
            self._store.append_transcript(
                session_id, TranscriptEntry.from_message(event.message),
            )

        await self._emit(event.to_payload())

    async def _emit(self, payload: dict[str, Any]) -> None:
        await fire_event(self._event_callback, payload)

    @staticmethod
    def _terminate(proc: asyncio.subprocess.Process, session_id: str) -> None:
        if proc.returncode is not None:
            return
        try:
            proc.send_signal(signal.SIGTERM)
        except ProcessLookupError:
            logger.debug("stopSession %s: process already gone", session_id)
