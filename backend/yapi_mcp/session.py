"""Streaming sessions and the routing table that owns them.

Each :class:`McpSession` pairs one ``StreamableHTTPServerTransport`` with one
task running the MCP server over that transport's streams. The
:class:`SessionManager` maps session ids to sessions behind a single lock, so
a request is never routed to a half-registered or half-closed session.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import secrets
import time

from mcp.server.lowlevel import Server
from mcp.server.streamable_http import StreamableHTTPServerTransport
from starlette.types import Receive, Scope, Send

from .errors import SessionClosedError
from .logging_setup import session_extra

logger = logging.getLogger(__name__)


class SessionState(str, enum.Enum):
    INITIALIZING = "initializing"
    ACTIVE = "active"
    CLOSED = "closed"


class McpSession:
    """One caller's streaming session."""

    def __init__(self, server: Server, session_id: str, *, json_response: bool = True):
        self.session_id = session_id
        self.state = SessionState.INITIALIZING
        self.protocol_version: str | None = None
        self.close_reason: str | None = None
        self.transport = StreamableHTTPServerTransport(
            mcp_session_id=session_id,
            is_json_response_enabled=json_response,
        )
        self._server = server
        self._task: asyncio.Task | None = None
        self._open_requests = 0
        self._last_activity = time.monotonic()

    @property
    def is_active(self) -> bool:
        return self.state is SessionState.ACTIVE

    @property
    def is_closed(self) -> bool:
        return self.state is SessionState.CLOSED

    def activate(self, protocol_version: str | None) -> None:
        if self.state is not SessionState.INITIALIZING:
            raise SessionClosedError(
                f"session {self.session_id} cannot be activated from {self.state.value}"
            )
        self.protocol_version = protocol_version
        self.state = SessionState.ACTIVE

    async def start(self) -> None:
        """Start the server task and wait until the transport streams are connected."""
        if self._task is not None:
            return
        connected = asyncio.Event()
        self._task = asyncio.create_task(
            self._run(connected), name=f"mcp-session-{self.session_id}"
        )
        waiter = asyncio.create_task(connected.wait())
        try:
            await asyncio.wait({waiter, self._task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
        if not connected.is_set():
            self._task.result()
            raise SessionClosedError(f"session {self.session_id} ended before it connected")

    async def _run(self, connected: asyncio.Event) -> None:
        extra = session_extra(self.session_id)
        try:
            async with self.transport.connect() as (read_stream, write_stream):
                connected.set()
                await self._server.run(
                    read_stream,
                    write_stream,
                    self._server.create_initialization_options(),
                    stateless=False,
                )
        except Exception as exc:
            if self.is_closed:
                logger.debug("session server task stopped after close: %r", exc, extra=extra)
            else:
                logger.exception("session server task failed", extra=extra)
        finally:
            await self.close("server task ended")

    async def handle_request(self, scope: Scope, receive: Receive, send: Send) -> None:
        """Pass one HTTP request to the session's transport."""
        if self.is_closed:
            raise SessionClosedError(f"session {self.session_id} is closed")
        self._open_requests += 1
        self._last_activity = time.monotonic()
        try:
            await self.transport.handle_request(scope, receive, send)
        finally:
            self._open_requests -= 1
            self._last_activity = time.monotonic()

    def idle_seconds(self, now: float | None = None) -> float:
        """Seconds since the last request finished; 0 while one is open.

        A GET event stream counts as an open request for as long as it lasts.
        """
        if self._open_requests:
            return 0.0
        now = time.monotonic() if now is None else now
        return max(0.0, now - self._last_activity)

    async def close(self, reason: str = "closed") -> bool:
        """Close the session; returns False when it was already closed.

        Terminating the transport ends every open stream, so a reply produced
        after this point is dropped by the transport instead of being written.
        """
        if self.is_closed:
            return False
        self.state = SessionState.CLOSED
        self.close_reason = reason
        logger.info("session closed reason=%s", reason, extra=session_extra(self.session_id))
        await self.transport.terminate()
        return True

    async def wait_closed(self, timeout: float | None = None) -> None:
        """Wait for the server task to drain, then cancel it."""
        if self._task is None or self._task is asyncio.current_task():
            return
        done, _ = await asyncio.wait({self._task}, timeout=timeout)
        if not done:
            logger.warning(
                "session task did not stop within %ss; cancelling",
                timeout,
                extra=session_extra(self.session_id),
            )
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)

    def __repr__(self) -> str:
        return f"McpSession(id={self.session_id!r}, state={self.state.value})"


class SessionManager:
    """Routing table from session id to session, guarded by one lock."""

    def __init__(
        self,
        server: Server,
        *,
        json_response: bool = True,
        idle_timeout_seconds: float | None = None,
    ):
        self.server = server
        self.json_response = json_response
        self.idle_timeout_seconds = idle_timeout_seconds
        self._sessions: dict[str, McpSession] = {}
        self._lock = asyncio.Lock()

    async def create(self) -> McpSession:
        """Start a session under a fresh id; it is routable only after ``register``."""
        session_id = secrets.token_hex(16)
        session = McpSession(self.server, session_id, json_response=self.json_response)
        await session.start()
        logger.info("session created", extra=session_extra(session_id))
        return session

    async def register(self, session: McpSession) -> None:
        async with self._lock:
            if session.is_closed:
                raise SessionClosedError(f"session {session.session_id} is closed")
            if session.session_id in self._sessions:
                raise ValueError(f"session id {session.session_id} is already routed")
            self._sessions[session.session_id] = session

    async def get(self, session_id: str) -> McpSession | None:
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is not None and session.is_closed:
                # The server task ended on its own; drop the stale entry.
                del self._sessions[session_id]
                session = None
        return session

    async def remove(self, session_id: str) -> McpSession | None:
        async with self._lock:
            return self._sessions.pop(session_id, None)

    async def close(
        self, session_id: str, reason: str, *, timeout: float | None = None
    ) -> bool:
        """Remove and close one session; False when the id is not routable."""
        session = await self.remove(session_id)
        if session is None:
            return False
        await session.close(reason)
        await session.wait_closed(timeout)
        return True

    async def close_all(self, reason: str = "server shutdown", timeout: float | None = None) -> int:
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            await session.close(reason)
        if sessions:
            await asyncio.gather(*(session.wait_closed(timeout) for session in sessions))
        logger.info("closed %s session(s) reason=%s", len(sessions), reason)
        return len(sessions)

    async def reap_idle(self, now: float | None = None, *, timeout: float | None = None) -> int:
        """Close sessions idle for longer than ``idle_timeout_seconds``."""
        if self.idle_timeout_seconds is None:
            return 0
        now = time.monotonic() if now is None else now
        async with self._lock:
            expired = [
                session
                for session in self._sessions.values()
                if session.is_closed or session.idle_seconds(now) >= self.idle_timeout_seconds
            ]
            for session in expired:
                del self._sessions[session.session_id]
        for session in expired:
            await session.close("idle timeout")
            await session.wait_closed(timeout)
        if expired:
            logger.info("reaped %s idle session(s)", len(expired))
        return len(expired)

    async def run_reaper(self, interval: float, *, timeout: float | None = None) -> None:
        """Periodically reap idle sessions until cancelled."""
        while True:
            await asyncio.sleep(interval)
            try:
                await self.reap_idle(timeout=timeout)
            except Exception:
                logger.exception("idle session sweep failed")

    async def count(self) -> int:
        async with self._lock:
            return len(self._sessions)


__all__ = ["McpSession", "SessionManager", "SessionState"]
