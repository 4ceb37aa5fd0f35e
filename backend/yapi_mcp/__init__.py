"""MCP server exposing read-only YAPI documentation queries as tools."""

from __future__ import annotations

__version__ = "0.3.0"
SERVER_NAME = "yapi-mcp-server"

__all__ = ["SERVER_NAME", "__version__"]
