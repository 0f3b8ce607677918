"""HTTP + SSE server for the cowork session bridge.

Exposes the session manager as a small REST API. Every SSE client is
a display surface attached to the channel router, so it receives the
same fan-out as any other surface.

Usage:
    cowork-bridge [--port PORT] [--config cowork.yaml]
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
import time
import uuid
from collections.abc import Mapping
from typing import Any

from aiohttp import web

from cowork.adapters.channel_router import ChannelRouter
from cowork.adapters.surfaces import QueueSurface
from cowork.engine.config import BridgeConfig
from cowork.engine.env_policy import is_path_safe
from cowork.engine.errors import (
    AgentExitError,
    AgentSpawnError,
    BacklogFullError,
    SessionStoppedError,
)
from cowork.engine.models import SessionOptions
from cowork.engine.outbound import coerce_attachments
from cowork.engine.process_manager import SessionProcessManager

logger = logging.getLogger(__name__)

SSE_KEEPALIVE_SECONDS = 30.0


class CoworkServer:
    """HTTP routing and SSE delivery around one SessionProcessManager.

    Thin adapter: session state lives in the manager and its store,
    channel state lives in the router.
    """

    def __init__(
        self,
        config: BridgeConfig | None = None,
        router: ChannelRouter | None = None,
        manager: SessionProcessManager | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._config = config or BridgeConfig()
        self._host = self._config.host
        self._port = self._config.port
        self._router = router or ChannelRouter(
            addresses=self._config.known_addresses,
            namespaces=self._config.event_namespaces,
        )
        self._manager = manager or SessionProcessManager(
            self._config,
            event_callback=self._router.make_callback(),
            environ=environ,
        )
        self._started_at = time.time()
        # SSE surface -> the handler task streaming it
        self._sse_clients: dict[QueueSurface, asyncio.Task] = {}
        self._background: set[asyncio.Task] = set()

        self._app = web.Application(middlewares=[self._request_logging_middleware])
        self._app.on_shutdown.append(self._on_app_shutdown)
        self._setup_routes()

    @property
    def app(self) -> web.Application:
        return self._app

    @property
    def router(self) -> ChannelRouter:
        return self._router

    @property
    def manager(self) -> SessionProcessManager:
        return self._manager

    @property
    def port(self) -> int:
        return self._port

    # ── Middleware ──

    @web.middleware
    async def _request_logging_middleware(self, request: web.Request, handler) -> web.StreamResponse:
        req_id = request.headers.get("x-cowork-request-id", str(uuid.uuid4())[:8])
        request["req_id"] = req_id
        start = time.monotonic()
        logger.info("HTTP %s %s req=%s from=%s", request.method, request.path_qs, req_id, request.remote)
        try:
            response = await handler(request)
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.info(
                "HTTP %s %s req=%s status=%s duration_ms=%.1f",
                request.method, request.path_qs, req_id,
                getattr(response, "status", "?"), elapsed_ms,
            )
            return response
        except web.HTTPException:
            raise
        except Exception:
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.exception("HTTP %s %s req=%s failed duration_ms=%.1f", request.method, request.path_qs, req_id, elapsed_ms)
            raise

    # ── Route setup ──

    def _setup_routes(self) -> None:
        r = self._app.router
        r.add_get("/health", self._handle_health)
        r.add_get("/events", self._handle_sse)
        r.add_post("/channels", self._handle_observe_channel)
        r.add_get("/sessions", self._handle_list_sessions)
        r.add_post("/sessions", self._handle_create_session)
        r.add_delete("/sessions/{id}", self._handle_stop_session)
        r.add_post("/sessions/{id}/messages", self._handle_send_message)
        r.add_get("/sessions/{id}/transcript", self._handle_get_transcript)

    # ── Lifecycle ──

    async def start(self) -> None:
        """Start the server and print the port to stdout."""
        runner = web.AppRunner(self._app)
        await runner.setup()
        site = web.TCPSite(runner, self._host, self._port)
        await site.start()

        actual_port = self._resolve_port(site, runner)
        if actual_port is None:
            raise RuntimeError("cowork server started but no listening socket was reported.")
        self._port = actual_port

        sys.stdout.write(json.dumps({"port": actual_port}) + "\n")
        sys.stdout.flush()
        logger.info("cowork server listening on %s:%d", self._host, actual_port)

        try:
            await asyncio.Event().wait()
        except (KeyboardInterrupt, asyncio.CancelledError):
            logger.info("Server shutting down")
        finally:
            # cleanup() runs on_shutdown, which stops every session.
            await runner.cleanup()

    async def shutdown(self) -> None:
        """Close SSE streams and stop every session."""
        current = asyncio.current_task()
        for surface, task in list(self._sse_clients.items()):
            surface.close()
            if task is not None and task is not current:
                task.cancel()
        await self._manager.shutdown()

    async def _on_app_shutdown(self, app: web.Application) -> None:
        await self.shutdown()

    @staticmethod
    def _resolve_port(site, runner) -> int | None:
        sockets = getattr(getattr(site, "_server", None), "sockets", None) or ()
        if sockets:
            return sockets[0].getsockname()[1]
        addresses = getattr(runner, "addresses", None) or ()
        if addresses:
            first = addresses[0]
            if isinstance(first, tuple) and len(first) >= 2:
                return int(first[1])
        return None

    # ── Helpers ──

    @staticmethod
    async def _read_json(request: web.Request) -> tuple[dict[str, Any] | None, web.Response | None]:
        """Return (body, None) or (None, 400 response)."""
        if not request.can_read_body:
            return {}, None
        try:
            body = await request.json()
        except ValueError:
            return None, web.json_response({"error": "Request body must be JSON"}, status=400)
        if not isinstance(body, dict):
            return None, web.json_response({"error": "Request body must be a JSON object"}, status=400)
        return body, None

    def _require_session(self, request: web.Request) -> tuple[str, web.Response | None]:
        """Return (session_id, None) or (session_id, 404 response)."""
        session_id = request.match_info["id"]
        if not self._manager.store.has_session(session_id):
            return session_id, web.json_response(
                {"error": f"Session {session_id} not found"},
                status=404,
            )
        return session_id, None

    def _track(self, task: asyncio.Task) -> None:
        self._background.add(task)
        task.add_done_callback(self._background_done)

    def _background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            # Already reported to surfaces as an error event.
            logger.info("Background send finished with %s: %s", type(exc).__name__, exc)

    # ── Handlers ──

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({
            "status": "ok",
            "pid": os.getpid(),
            "uptime_seconds": round(max(0.0, time.time() - self._started_at), 3),
            "agent_command": self._manager.agent_command,
            "sessions": len(self._manager.store.list_sessions()),
            "addresses": len(self._router.addresses),
            "sse_clients": len(self._sse_clients),
            "dispatched_total": self._router.dispatched_total,
        })

    async def _handle_sse(self, request: web.Request) -> web.StreamResponse:
        channel = request.query.get("channel")
        if channel is not None:
            self._router.observe_channel(channel)
            if channel not in self._router.build_channels():
                return web.json_response({"error": f"Not a session event channel: {channel}"}, status=400)

        response = web.StreamResponse(
            status=200,
            headers={
                "Content-Type": "text/event-stream",
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "Access-Control-Allow-Origin": "*",
            },
        )
        await response.prepare(request)

        surface = QueueSurface(maxsize=self._config.sse_queue_size, channel=channel)
        self._sse_clients[surface] = asyncio.current_task()
        self._router.attach_surface(surface)
        logger.info(
            "SSE client connected req=%s channel=%s active_clients=%d",
            request.get("req_id", "unknown"), channel or "*", len(self._sse_clients),
        )

        try:
            hello = {"sessions": [s["sessionId"] for s in self._manager.list_sessions()]}
            await response.write(f"event: connected\ndata: {json.dumps(hello)}\n\n".encode())
            while not surface.is_destroyed():
                try:
                    ch, payload = await asyncio.wait_for(surface.get(), timeout=SSE_KEEPALIVE_SECONDS)
                    data = json.dumps({"channel": ch, "payload": payload})
                    await response.write(f"event: {payload.get('type', 'data')}\ndata: {data}\n\n".encode())
                except asyncio.TimeoutError:
                    await response.write(b": keepalive\n\n")
                except ConnectionResetError:
                    break
        except asyncio.CancelledError:
            pass
        finally:
            surface.close()
            self._router.detach_surface(surface)
            self._sse_clients.pop(surface, None)
            logger.info(
                "SSE client disconnected req=%s active_clients=%d",
                request.get("req_id", "unknown"), len(self._sse_clients),
            )
        return response

    async def _handle_observe_channel(self, request: web.Request) -> web.Response:
        body, error = await self._read_json(request)
        if error:
            return error
        channel = body.get("channel")
        address = self._router.extract_address(channel)
        if address is None:
            return web.json_response({"error": f"Not a session event channel: {channel}"}, status=400)
        registered = self._router.register_address(address)
        return web.json_response({
            "address": address,
            "registered": registered,
            "channels": self._router.build_channels(),
        })

    async def _handle_list_sessions(self, request: web.Request) -> web.Response:
        return web.json_response({"sessions": self._manager.list_sessions()})

    async def _handle_create_session(self, request: web.Request) -> web.Response:
        body, error = await self._read_json(request)
        if error:
            return error
        session_id = body.get("sessionId") or body.get("session_id") or str(uuid.uuid4())
        if not isinstance(session_id, str):
            return web.json_response({"error": "sessionId must be a string"}, status=400)
        try:
            options = SessionOptions.from_dict(body)
        except (AttributeError, TypeError) as exc:
            return web.json_response({"error": f"Invalid session options: {exc}"}, status=400)

        root = self._config.workspace_root
        if root and options.cwd and not is_path_safe(root, options.cwd):
            logger.warning("Refusing session %s: cwd %s is outside %s", session_id, options.cwd, root)
            return web.json_response(
                {"error": f"Working directory is outside the workspace root: {options.cwd}"},
                status=403,
            )

        task = await self._manager.start(session_id, options)
        if task is not None:
            self._track(task)
        summary = self._manager.store.get(session_id).summary()
        return web.json_response({"sessionId": session_id, "session": summary}, status=201)

    async def _handle_stop_session(self, request: web.Request) -> web.Response:
        session_id, error = self._require_session(request)
        if error:
            return error
        self._manager.stop(session_id)
        return web.json_response({"sessionId": session_id, "stopped": True})

    async def _handle_send_message(self, request: web.Request) -> web.Response:
        session_id, error = self._require_session(request)
        if error:
            return error
        body, error = await self._read_json(request)
        if error:
            return error

        message = body.get("message")
        images = body.get("images") or []
        files = body.get("files") or []
        if message is not None and not isinstance(message, str):
            return web.json_response({"error": "message must be a string"}, status=400)
        if not isinstance(images, list) or not isinstance(files, list):
            return web.json_response({"error": "images and files must be lists"}, status=400)
        try:
            images = coerce_attachments(images)
            files = coerce_attachments(files)
        except TypeError as exc:
            return web.json_response({"error": f"Invalid attachment: {exc}"}, status=400)

        if not body.get("wait", True):
            self._track(asyncio.create_task(
                self._manager.send(session_id, message, images, files),
                name=f"cowork-http-send-{session_id}",
            ))
            return web.json_response({"sessionId": session_id, "status": "accepted"}, status=202)

        try:
            await self._manager.send(session_id, message, images, files)
        except BacklogFullError as exc:
            return web.json_response({"error": str(exc)}, status=429)
        except SessionStoppedError as exc:
            return web.json_response({"error": str(exc)}, status=409)
        except (AgentSpawnError, AgentExitError) as exc:
            return web.json_response({"error": str(exc)}, status=502)
        return web.json_response({"sessionId": session_id, "status": "completed"})

    async def _handle_get_transcript(self, request: web.Request) -> web.Response:
        session_id, error = self._require_session(request)
        if error:
            return error
        transcript = self._manager.get_transcript(session_id)
        return web.json_response({
            "sessionId": session_id,
            "transcript": [entry.to_dict() for entry in transcript],
        })
