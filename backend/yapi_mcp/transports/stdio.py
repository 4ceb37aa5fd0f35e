"""Single-session binding over stdin/stdout.

Framing is handled by ``mcp.server.stdio.stdio_server`` (one JSON-RPC message
per line). Between that transport and the server sits a relay that tracks
requests still waiting for a reply: when input ends, whether by EOF or by a
shutdown request, the server keeps running until those replies are written or
the drain timeout elapses.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Any

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from mcp.server.lowlevel import Server
from mcp.server.stdio import stdio_server
from mcp.shared.message import SessionMessage
from mcp.types import JSONRPCError, JSONRPCRequest, JSONRPCResponse

logger = logging.getLogger(__name__)

STDIO_READ_LIMIT = 16 * 1024 * 1024

ReadStream = MemoryObjectReceiveStream[SessionMessage | Exception]
WriteStream = MemoryObjectSendStream[SessionMessage]


class StdinLines:
    """Async line iterator over an asyncio stream, closable from a signal handler.

    ``stdio_server`` only iterates its ``stdin`` argument line by line, so an
    instance can stand in for the thread-backed file wrapper it uses by
    default. Unlike that wrapper, :meth:`close` ends the iteration at once.
    """

    def __init__(self, reader: asyncio.StreamReader):
        self._reader = reader

    @classmethod
    async def open(cls, stream: Any = None) -> "StdinLines":
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader(limit=STDIO_READ_LIMIT)
        await loop.connect_read_pipe(
            lambda: asyncio.StreamReaderProtocol(reader), stream or sys.stdin
        )
        return cls(reader)

    def close(self) -> None:
        """Stop reading; the iteration ends after any line already buffered."""
        self._reader.feed_eof()

    def __aiter__(self) -> "StdinLines":
        return self

    async def __anext__(self) -> str:
        while True:
            try:
                line = await self._reader.readline()
            except ValueError as exc:
                logger.warning("skipping oversized input line: %s", exc)
                continue
            if not line:
                raise StopAsyncIteration
            if line.strip():
                return line.decode("utf-8", errors="replace")


class _DrainingRelay:
    """Copies messages between the stdio transport and the server.

    Input is closed to the server only once every request read so far has
    been answered, so replies to in-flight calls are still written.
    """

    def __init__(self, source: ReadStream, sink: WriteStream, drain_timeout: float):
        self._source = source
        self._sink = sink
        self._drain_timeout = drain_timeout
        self._to_server, self.server_read = anyio.create_memory_object_stream(0)
        self.server_write, self._from_server = anyio.create_memory_object_stream(0)
        self._pending: set[Any] = set()
        self._input_done = False
        self._drained = anyio.Event()

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def pump_input(self) -> None:
        async with self._to_server:
            async with self._source:
                async for item in self._source:
                    if isinstance(item, SessionMessage) and isinstance(
                        item.message.root, JSONRPCRequest
                    ):
                        self._pending.add(item.message.root.id)
                    await self._to_server.send(item)
            self._input_done = True
            if self._pending:
                logger.info("input closed; draining %s in-flight request(s)", self.pending)
            self._check_drained()
            with anyio.move_on_after(self._drain_timeout) as scope:
                await self._drained.wait()
            if scope.cancelled_caught:
                logger.warning(
                    "%s request(s) still in flight after %.1fs; stopping anyway",
                    self.pending,
                    self._drain_timeout,
                )

    async def pump_output(self) -> None:
        async with self._sink, self._from_server:
            async for item in self._from_server:
                await self._sink.send(item)
                root = item.message.root
                if isinstance(root, (JSONRPCResponse, JSONRPCError)):
                    self._pending.discard(root.id)
                    self._check_drained()

    def _check_drained(self) -> None:
        if self._input_done and not self._pending:
            self._drained.set()


async def serve_stdio(
    server: Server,
    *,
    stdin: Any = None,
    stdout: Any = None,
    drain_timeout: float = 5.0,
) -> None:
    """Run one session until input ends and in-flight requests are answered."""
    async with stdio_server(stdin, stdout) as (read_stream, write_stream):
        relay = _DrainingRelay(read_stream, write_stream, drain_timeout)
        logger.info("stdio transport ready")
        async with anyio.create_task_group() as tg:
            tg.start_soon(relay.pump_input)
            tg.start_soon(relay.pump_output)
            try:
                await server.run(
                    relay.server_read,
                    relay.server_write,
                    server.create_initialization_options(),
                )
            finally:
                await relay.server_write.aclose()
    logger.info("stdio session ended")


__all__ = ["STDIO_READ_LIMIT", "StdinLines", "serve_stdio"]
