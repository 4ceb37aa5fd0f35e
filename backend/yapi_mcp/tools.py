"""Tool registry and the four read-only YAPI tools."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable

from .schemas import (
    GetInterfaceDetailsArgs,
    GetProjectInfoArgs,
    GetProjectInterfaceMenuArgs,
    ListInterfacesByCategoryArgs,
    ToolArguments,
    argument_json_schema,
)

if TYPE_CHECKING:  # pragma: no cover
    from .client import YapiClient

ToolHandler = Callable[["YapiClient", Any], Awaitable[Any]]


@dataclass(frozen=True)
class ToolSpec:
    """Declarative definition of a tool."""

    name: str
    title: str
    description: str
    input_model: type[ToolArguments]
    handler: ToolHandler
    read_only: bool = True

    def describe(self) -> dict[str, Any]:
        """Protocol-facing metadata for ``tools/list``."""
        return {
            "name": self.name,
            "title": self.title,
            "description": self.description,
            "inputSchema": argument_json_schema(self.input_model),
            "annotations": {
                "title": self.title,
                "readOnlyHint": self.read_only,
                "destructiveHint": not self.read_only,
                "idempotentHint": self.read_only,
                "openWorldHint": True,
            },
        }


class ToolRegistry:
    """In-memory registry of available tools, in registration order."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"duplicate tool name {spec.name}")
        self._tools[spec.name] = spec

    def get(self, name: str) -> ToolSpec | None:
        return self._tools.get(name)

    def list(self) -> Iterable[ToolSpec]:
        return tuple(self._tools.values())

    def names(self) -> tuple[str, ...]:
        return tuple(self._tools)


# ----- YAPI tools ----------------------------------------------------------


async def _get_interface_details(client: "YapiClient", args: GetInterfaceDetailsArgs) -> Any:
    detail = await client.get_interface_details(args.interface_id)
    return detail.to_payload()


async def _list_interfaces_by_category(
    client: "YapiClient", args: ListInterfacesByCategoryArgs
) -> Any:
    page = await client.list_interfaces_by_category(args.category_id, args.page, args.limit)
    return page.to_payload()


async def _get_project_interface_menu(
    client: "YapiClient", args: GetProjectInterfaceMenuArgs
) -> Any:
    categories = await client.get_project_interface_menu()
    return [category.to_payload() for category in categories]


async def _get_project_info(client: "YapiClient", args: GetProjectInfoArgs) -> Any:
    project = await client.get_project_info()
    return project.to_payload()


YAPI_TOOLS: tuple[ToolSpec, ...] = (
    ToolSpec(
        name="yapi_get_interface_details",
        title="Get YAPI Interface Details",
        description=(
            "Get the full details of a YAPI interface: request and response "
            "parameters, types, body examples and status."
        ),
        input_model=GetInterfaceDetailsArgs,
        handler=_get_interface_details,
    ),
    ToolSpec(
        name="yapi_list_interfaces_by_category",
        title="List YAPI Interfaces by Category",
        description=(
            "List the interfaces in a YAPI category with basic information only "
            "(title, path, method). Supports pagination."
        ),
        input_model=ListInterfacesByCategoryArgs,
        handler=_list_interfaces_by_category,
    ),
    ToolSpec(
        name="yapi_get_project_interface_menu",
        title="Get YAPI Project Menu",
        description=(
            "Get the complete interface menu of the current YAPI project: every "
            "category with its interfaces (basic information only)."
        ),
        input_model=GetProjectInterfaceMenuArgs,
        handler=_get_project_interface_menu,
    ),
    ToolSpec(
        name="yapi_get_project_info",
        title="Get YAPI Project Info",
        description="Get basic information about the YAPI project the configured token belongs to.",
        input_model=GetProjectInfoArgs,
        handler=_get_project_info,
    ),
)


def build_registry() -> ToolRegistry:
    registry = ToolRegistry()
    for spec in YAPI_TOOLS:
        registry.register(spec)
    return registry


__all__ = ["ToolHandler", "ToolRegistry", "ToolSpec", "YAPI_TOOLS", "build_registry"]
