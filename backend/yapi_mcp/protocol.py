"""MCP server definition shared by both transport bindings.

Handshake, version negotiation and JSON-RPC framing belong to the ``mcp``
SDK; this module only registers the list/call handlers that delegate to the
:class:`~yapi_mcp.dispatcher.ToolDispatcher`.
"""

from __future__ import annotations

import logging
from typing import Any

import mcp.types as types
from mcp.server.lowlevel import Server

from . import SERVER_NAME, __version__
from .dispatcher import ToolDispatcher

logger = logging.getLogger(__name__)

INSTRUCTIONS = (
    "Read-only access to the YAPI project at {base_url}. Use "
    "yapi_get_project_interface_menu to discover categories and interfaces, "
    "then yapi_get_interface_details for a single interface."
)


def build_server(dispatcher: ToolDispatcher, *, base_url: str) -> Server:
    """Create the low-level MCP server exposing the YAPI tools."""
    server: Server = Server(
        SERVER_NAME,
        version=__version__,
        instructions=INSTRUCTIONS.format(base_url=base_url),
    )

    @server.list_tools()
    async def list_tools() -> list[types.Tool]:
        return [types.Tool.model_validate(tool) for tool in dispatcher.list_tools()]

    # Arguments are validated by the dispatcher so every violation is reported at once.
    @server.call_tool(validate_input=False)
    async def call_tool(name: str, arguments: dict[str, Any]) -> types.CallToolResult:
        result = await dispatcher.call_tool(name, arguments)
        return types.CallToolResult.model_validate(result.to_protocol())

    @server.list_resources()
    async def list_resources() -> list[types.Resource]:
        return []

    @server.list_prompts()
    async def list_prompts() -> list[types.Prompt]:
        return []

    logger.debug("registered %s tool(s)", len(dispatcher.registry.names()))
    return server


__all__ = ["INSTRUCTIONS", "build_server"]
