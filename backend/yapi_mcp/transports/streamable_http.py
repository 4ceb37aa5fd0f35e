"""Multi-session streaming HTTP binding.

One path serves all three verbs: POST submits messages (and starts a session
with ``initialize``), GET opens the session's server-to-client SSE stream and
DELETE terminates the session. The wire handling of each session belongs to
its ``StreamableHTTPServerTransport``; this module owns session admission and
the routing table.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import uvicorn
from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from mcp.server.lowlevel import Server
from mcp.types import PARSE_ERROR
from starlette.types import Message, Receive, Scope, Send

from ..errors import SessionClosedError
from ..logging_setup import session_extra
from ..session import McpSession, SessionManager
from ..settings import ServerSettings

logger = logging.getLogger(__name__)

MCP_PATH = "/mcp"
SESSION_HEADER = "Mcp-Session-Id"
SERVER_ERROR = -32000


def _error_response(
    status_code: int, message: str, *, code: int = SERVER_ERROR
) -> JSONResponse:
    return JSONResponse(
        {"jsonrpc": "2.0", "id": None, "error": {"code": code, "message": message}},
        status_code=status_code,
    )


def is_initialize_request(payload: Any) -> bool:
    return (
        isinstance(payload, dict)
        and payload.get("method") == "initialize"
        and "id" in payload
    )


def _replay_body(body: bytes, receive: Receive) -> Receive:
    """Hand an already-read request body to the transport, then defer to ``receive``."""
    sent = False

    async def _receive() -> Message:
        nonlocal sent
        if not sent:
            sent = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return _receive


class _ResponseRecorder:
    """Forwards an ASGI response while keeping its status and body."""

    def __init__(self, send: Send):
        self._send = send
        self.status: int | None = None
        self.body = bytearray()

    async def __call__(self, message: Message) -> None:
        if message["type"] == "http.response.start":
            self.status = message["status"]
        elif message["type"] == "http.response.body":
            self.body.extend(message.get("body", b""))
        await self._send(message)

    def initialize_result(self) -> dict[str, Any] | None:
        """The ``initialize`` result when the reply was a successful JSON response."""
        if self.status is None or not 200 <= self.status < 300:
            return None
        try:
            reply = json.loads(bytes(self.body))
        except ValueError:
            return None
        if isinstance(reply, dict) and isinstance(reply.get("result"), dict):
            return reply["result"]
        return None


class McpEndpoint:
    """ASGI endpoint for ``/mcp`` that routes requests to their session."""

    def __init__(self, sessions: SessionManager, settings: ServerSettings):
        self.sessions = sessions
        self.settings = settings

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)
        session_id = request.headers.get(SESSION_HEADER)
        if request.method == "POST":
            response = await self._post(request, session_id, send)
        elif request.method == "GET":
            response = await self._get(request, session_id, send)
        else:
            response = await self._delete(session_id)
        if response is not None:
            await response(scope, receive, send)

    async def _post(
        self, request: Request, session_id: str | None, send: Send
    ) -> Response | None:
        body = await request.body()
        try:
            payload = json.loads(body)
        except ValueError as exc:
            logger.warning("rejected unparseable body: %s", exc, extra=session_extra(session_id))
            return _error_response(
                status.HTTP_400_BAD_REQUEST, f"Parse error: {exc}", code=PARSE_ERROR
            )
        receive = _replay_body(body, request.receive)

        if session_id is None:
            if not is_initialize_request(payload):
                return _error_response(
                    status.HTTP_400_BAD_REQUEST, "Bad Request: No valid session ID provided"
                )
            await self._start_session(request.scope, receive, send)
            return None

        session = await self.sessions.get(session_id)
        if session is None:
            return _error_response(status.HTTP_404_NOT_FOUND, "Session not found")
        try:
            await session.handle_request(request.scope, receive, send)
        except SessionClosedError:
            return _error_response(status.HTTP_404_NOT_FOUND, "Session not found")
        return None

    async def _start_session(self, scope: Scope, receive: Receive, send: Send) -> None:
        session = await self.sessions.create()
        recorder = _ResponseRecorder(send)
        await session.handle_request(scope, receive, recorder)
        result = recorder.initialize_result()
        if result is None:
            logger.info(
                "initialize failed status=%s; session discarded",
                recorder.status,
                extra=session_extra(session.session_id),
            )
            await session.close("initialize failed")
            await session.wait_closed(self.settings.shutdown_timeout_seconds)
            return
        session.activate(result.get("protocolVersion"))
        try:
            await self.sessions.register(session)
        except SessionClosedError:
            logger.warning(
                "session closed before it could be routed",
                extra=session_extra(session.session_id),
            )
            return
        logger.info(
            "session initialized protocol_version=%s",
            session.protocol_version,
            extra=session_extra(session.session_id),
        )

    async def _get(
        self, request: Request, session_id: str | None, send: Send
    ) -> Response | None:
        session = await self._lookup(session_id)
        if not isinstance(session, McpSession):
            return session
        logger.info("event stream opened", extra=session_extra(session_id))
        try:
            await session.handle_request(request.scope, request.receive, send)
        except SessionClosedError:
            return _error_response(status.HTTP_404_NOT_FOUND, "Session not found")
        finally:
            logger.info("event stream ended", extra=session_extra(session_id))
        return None

    async def _delete(self, session_id: str | None) -> Response:
        if session_id is None:
            return _error_response(
                status.HTTP_400_BAD_REQUEST, "Bad Request: Mcp-Session-Id header is required"
            )
        closed = await self.sessions.close(
            session_id,
            "terminated by client",
            timeout=self.settings.shutdown_timeout_seconds,
        )
        if not closed:
            return _error_response(status.HTTP_404_NOT_FOUND, "Session not found")
        return Response(status_code=status.HTTP_200_OK)

    async def _lookup(self, session_id: str | None) -> McpSession | Response:
        if session_id is None:
            return _error_response(
                status.HTTP_400_BAD_REQUEST, "Bad Request: Mcp-Session-Id header is required"
            )
        session = await self.sessions.get(session_id)
        if session is None:
            return _error_response(status.HTTP_404_NOT_FOUND, "Session not found")
        return session


def create_app(server: Server, settings: ServerSettings) -> FastAPI:
    """Construct the FastAPI application serving the MCP endpoint."""
    sessions = SessionManager(server, idle_timeout_seconds=settings.session_idle_timeout_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("streamable HTTP transport ready path=%s", MCP_PATH)
        reaper = asyncio.create_task(
            sessions.run_reaper(
                settings.idle_sweep_interval_seconds,
                timeout=settings.shutdown_timeout_seconds,
            ),
            name="mcp-session-reaper",
        )
        try:
            yield
        finally:
            reaper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reaper
            await sessions.close_all(timeout=settings.shutdown_timeout_seconds)

    app = FastAPI(title="YAPI MCP Server", lifespan=lifespan)
    app.state.sessions = sessions
    app.add_route(MCP_PATH, McpEndpoint(sessions, settings), methods=["GET", "POST", "DELETE"])
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
        expose_headers=[SESSION_HEADER],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        session_id = request.headers.get(SESSION_HEADER)
        extra = session_extra(session_id)
        logger.info(
            "http request method=%s path=%s", request.method, request.url.path, extra=extra
        )
        started = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "http response method=%s path=%s status=%s duration_ms=%.1f",
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - started) * 1000,
            extra=extra,
        )
        return response

    @app.get("/health")
    async def health() -> JSONResponse:
        return JSONResponse({"status": "ok"})

    return app


async def run_streamable_http_server(server: Server, settings: ServerSettings) -> None:
    """Serve the app with uvicorn until SIGINT/SIGTERM."""
    app = create_app(server, settings)
    config = uvicorn.Config(
        app,
        host=settings.host,
        port=settings.port,
        log_config=None,
        timeout_graceful_shutdown=max(1, round(settings.shutdown_timeout_seconds)),
    )
    logger.info(
        "YAPI MCP server listening on http://%s:%s%s", settings.host, settings.port, MCP_PATH
    )
    await uvicorn.Server(config).serve()


__all__ = [
    "MCP_PATH",
    "McpEndpoint",
    "SESSION_HEADER",
    "create_app",
    "is_initialize_request",
    "run_streamable_http_server",
]
