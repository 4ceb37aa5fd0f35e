"""Command-line entrypoint for the YAPI MCP server."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import os
import signal
import sys
from typing import Any, Sequence

from mcp.server.lowlevel import Server

from . import SERVER_NAME, __version__, protocol
from .client import YapiClient
from .dispatcher import ToolDispatcher
from .env import load_dotenv_if_present
from .errors import ConfigurationError
from .logging_setup import configure_logging
from .settings import TRANSPORT_MODES, ServerSettings, Settings
from .transports.stdio import StdinLines, serve_stdio
from .transports.streamable_http import run_streamable_http_server

logger = logging.getLogger(__name__)

USAGE_HINT = """\
Required environment variables:
  YAPI_BASE_URL        base URL of the YAPI instance, e.g. https://yapi.example.com
  YAPI_PROJECT_TOKEN   project token from the YAPI project settings
Optional:
  YAPI_TIMEOUT_SECONDS, MCP_TRANSPORT, HOST, PORT, SHUTDOWN_TIMEOUT_SECONDS,
  SESSION_IDLE_TIMEOUT_SECONDS, LOG_LEVEL
"""


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=SERVER_NAME,
        description="Serve read-only YAPI documentation queries as MCP tools.",
        epilog=USAGE_HINT,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-t",
        "--transport",
        choices=TRANSPORT_MODES,
        default=None,
        help="Transport binding (default: streamable-http when PORT is set, else stdio).",
    )
    parser.add_argument(
        "-p",
        "--port",
        type=int,
        default=None,
        help="Port for the streamable-http transport (default: $PORT or 3000).",
    )
    parser.add_argument(
        "--host",
        default=None,
        help="Bind address for the streamable-http transport (default: $HOST or 0.0.0.0).",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (default: $LOG_LEVEL or INFO).",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def build_server(settings: Settings) -> Server:
    client = YapiClient(settings.backend)
    logger.info("YAPI backend %s", client.base_url)
    return protocol.build_server(ToolDispatcher(client), base_url=client.base_url)


async def _serve_stdio(
    server: Server,
    settings: ServerSettings,
    *,
    stdin: StdinLines | None = None,
    stdout: Any = None,
) -> None:
    """Serve stdio until EOF or a stop signal, then drain within the shutdown timeout."""
    loop = asyncio.get_running_loop()
    lines = stdin or await StdinLines.open()
    timeout = settings.shutdown_timeout_seconds
    stop = asyncio.Event()

    def _request_shutdown(signame: str) -> None:
        logger.info("received %s, draining in-flight requests", signame)
        stop.set()
        lines.close()

    installed: list[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, _request_shutdown, sig.name)
            installed.append(sig)

    serve_task = asyncio.create_task(
        serve_stdio(server, stdin=lines, stdout=stdout, drain_timeout=timeout)
    )
    stop_task = asyncio.create_task(stop.wait())
    try:
        await asyncio.wait({serve_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        if not serve_task.done():
            # The relay drains for up to ``timeout``; allow one more second to flush.
            done, _ = await asyncio.wait({serve_task}, timeout=timeout + 1)
            if not done:
                logger.warning("stdio session did not stop within %.1fs", timeout)
                serve_task.cancel()
                await asyncio.gather(serve_task, return_exceptions=True)
    finally:
        stop_task.cancel()
        for sig in installed:
            loop.remove_signal_handler(sig)
    if not serve_task.cancelled():
        serve_task.result()


async def serve(settings: Settings) -> None:
    server = build_server(settings)
    options = settings.server
    logger.info("starting %s %s transport=%s", SERVER_NAME, __version__, options.transport)
    if options.transport == "stdio":
        await _serve_stdio(server, options)
    else:
        await run_streamable_http_server(server, options)
    logger.info("server stopped")


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    load_dotenv_if_present()
    try:
        configure_logging(args.log_level or os.environ.get("LOG_LEVEL", "INFO"))
        settings = Settings.from_env(transport=args.transport, port=args.port, host=args.host)
        asyncio.run(serve(settings))
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}\n", file=sys.stderr)
        parser.print_usage(sys.stderr)
        print(USAGE_HINT, file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("Server interrupted.", file=sys.stderr)
        return 130
    return 0


def run() -> None:
    """Console-script entrypoint."""
    raise SystemExit(main())


if __name__ == "__main__":  # pragma: no cover
    run()
