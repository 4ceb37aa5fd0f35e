"""Tool dispatcher: name lookup, argument validation, backend call, result mapping."""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Mapping

from mcp.types import INTERNAL_ERROR, INVALID_PARAMS, TextContent
from pydantic import BaseModel, ConfigDict, Field, model_validator

from .client import YapiClient
from .errors import (
    ArgumentValidationError,
    BackendBusinessError,
    BackendError,
    BackendSchemaError,
    BackendTransportError,
    ConfigurationError,
    format_violations,
)
from .schemas import validate_arguments
from .tools import ToolRegistry, build_registry

logger = logging.getLogger(__name__)

# Backend failure codes
BACKEND_ERROR = -32000
BACKEND_UNAUTHORIZED = -32001
BACKEND_NOT_FOUND = -32002
BACKEND_CONFIGURATION = -32003

YAPI_TOKEN_INVALID = 40011


class ToolCallResult(BaseModel):
    """Outcome of one invocation: a success payload or an error descriptor."""

    model_config = ConfigDict(extra="forbid")

    tool_name: str
    content: list[TextContent] = Field(default_factory=list)
    is_error: bool = False
    error_code: int | None = None
    error_kind: str | None = None

    @model_validator(mode="after")
    def _validate_error_fields(self) -> "ToolCallResult":
        if self.is_error and (self.error_code is None or self.error_kind is None):
            raise ValueError("error results require error_code and error_kind")
        if not self.is_error and self.error_code is not None:
            raise ValueError("successful results cannot carry an error code")
        return self

    @property
    def text(self) -> str:
        return "\n".join(item.text for item in self.content)

    @classmethod
    def success(cls, tool_name: str, payload: Any) -> "ToolCallResult":
        text = json.dumps(payload, indent=2, ensure_ascii=False)
        return cls(tool_name=tool_name, content=[TextContent(type="text", text=text)])

    @classmethod
    def failure(cls, tool_name: str, message: str, *, code: int, kind: str) -> "ToolCallResult":
        return cls(
            tool_name=tool_name,
            content=[TextContent(type="text", text=message)],
            is_error=True,
            error_code=code,
            error_kind=kind,
        )

    def to_protocol(self) -> dict[str, Any]:
        """Render as an MCP ``tools/call`` result."""
        result: dict[str, Any] = {
            "content": [
                item.model_dump(by_alias=True, exclude_none=True) for item in self.content
            ],
            "isError": self.is_error,
        }
        if self.is_error:
            result["_meta"] = {"errorCode": self.error_code, "errorKind": self.error_kind}
        return result


def backend_error_code(exc: BackendError) -> int:
    if isinstance(exc, BackendBusinessError) and exc.code == YAPI_TOKEN_INVALID:
        return BACKEND_UNAUTHORIZED
    if isinstance(exc, BackendTransportError):
        if exc.status in (401, 403):
            return BACKEND_UNAUTHORIZED
        if exc.status == 404:
            return BACKEND_NOT_FOUND
    return BACKEND_ERROR


class ToolDispatcher:
    """Protocol-facing facade over the tool registry and the YAPI client.

    Dispatch holds no per-call state, so independent invocations may run
    concurrently on one instance.
    """

    def __init__(self, client: YapiClient, *, registry: ToolRegistry | None = None):
        self.client = client
        self.registry = registry or build_registry()

    def list_tools(self) -> list[dict[str, Any]]:
        return [spec.describe() for spec in self.registry.list()]

    async def call_tool(self, name: str, arguments: Mapping[str, Any] | None) -> ToolCallResult:
        started = time.perf_counter()
        result = await self._dispatch(name, arguments)
        elapsed_ms = (time.perf_counter() - started) * 1000
        outcome = f"error:{result.error_kind}" if result.is_error else "success"
        logger.info(
            "tool call tool=%s outcome=%s elapsed_ms=%.1f",
            name,
            outcome,
            elapsed_ms,
        )
        return result

    async def _dispatch(self, name: str, arguments: Mapping[str, Any] | None) -> ToolCallResult:
        spec = self.registry.get(name)
        if spec is None:
            return ToolCallResult.failure(
                name,
                f"Unknown tool name '{name}'. Available tools: "
                f"{', '.join(self.registry.names())}",
                code=INVALID_PARAMS,
                kind="unknown_tool",
            )

        try:
            args = validate_arguments(name, spec.input_model, arguments)
        except ArgumentValidationError as exc:
            logger.info("tool arguments rejected tool=%s violations=%s", name, exc.violations)
            return ToolCallResult.failure(name, str(exc), code=INVALID_PARAMS, kind="validation")

        try:
            payload = await spec.handler(self.client, args)
        except BackendBusinessError as exc:
            return ToolCallResult.failure(
                name,
                f"YAPI business error for tool {name}: {exc.backend_message} "
                f"(YAPI code: {exc.code})",
                code=backend_error_code(exc),
                kind="business",
            )
        except BackendTransportError as exc:
            if exc.status is None:
                message = f"YAPI request failed for tool {name}: {exc.reason}"
            else:
                message = (
                    f"YAPI request failed for tool {name} with HTTP status "
                    f"{exc.status}: {exc.reason}"
                )
            return ToolCallResult.failure(
                name, message, code=backend_error_code(exc), kind="transport"
            )
        except BackendSchemaError as exc:
            return ToolCallResult.failure(
                name,
                f"YAPI response for tool {name} did not match the expected format "
                f"({exc.api_path}): {format_violations(exc.violations)}",
                code=BACKEND_ERROR,
                kind="schema",
            )
        except ConfigurationError as exc:
            return ToolCallResult.failure(
                name,
                f"Server configuration error for tool {name}: {exc}",
                code=BACKEND_CONFIGURATION,
                kind="configuration",
            )
        except Exception:
            logger.exception("unexpected failure executing tool=%s", name)
            return ToolCallResult.failure(
                name,
                f"Internal server error executing tool {name}. See server logs for details.",
                code=INTERNAL_ERROR,
                kind="internal",
            )
        return ToolCallResult.success(name, payload)


__all__ = [
    "BACKEND_CONFIGURATION",
    "BACKEND_ERROR",
    "BACKEND_NOT_FOUND",
    "BACKEND_UNAUTHORIZED",
    "INTERNAL_ERROR",
    "INVALID_PARAMS",
    "ToolCallResult",
    "ToolDispatcher",
    "backend_error_code",
]
