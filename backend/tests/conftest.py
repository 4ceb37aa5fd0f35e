from __future__ import annotations

import copy
import json
from typing import Any, Callable

import httpx
import pytest
from mcp.server.lowlevel import Server

from yapi_mcp import protocol
from yapi_mcp.client import YapiClient
from yapi_mcp.dispatcher import ToolDispatcher
from yapi_mcp.settings import BackendSettings

BASE_URL = "https://yapi.example.com"
TOKEN = "project-token-0123456789"

INTERFACE_DETAIL = {
    "_id": 42,
    "project_id": 11,
    "catid": 7,
    "title": "Get user",
    "path": "/api/user/{id}",
    "method": "GET",
    "uid": 3,
    "add_time": 1700000000,
    "up_time": 1700000100,
    "status": "done",
    "req_body_type": "json",
    "res_body_type": "json",
    "res_body": '{"type": "object", "properties": {"id": {"type": "number"}}}',
    "res_body_is_json_schema": True,
    "req_body_other": "plain text example",
    "req_params": [{"name": "id", "desc": "user id", "_id": "p1"}],
    "req_query": [{"name": "verbose", "required": "0", "_id": "q1"}],
    "req_headers": [
        {"name": "Content-Type", "value": "application/json", "required": "1", "_id": "h1"}
    ],
    "tag": ["user"],
    "__v": 0,
}

INTERFACE_SUMMARY = {
    "_id": 42,
    "project_id": 11,
    "catid": 7,
    "title": "Get user",
    "path": "/api/user/{id}",
    "method": "GET",
    "uid": 3,
    "add_time": 1700000000,
    "up_time": 1700000100,
    "status": "done",
    "edit_uid": 0,
}

CATEGORY_PAGE = {"count": 1, "total": 1, "list": [INTERFACE_SUMMARY]}

PROJECT_MENU = [
    {
        "_id": 7,
        "name": "Users",
        "project_id": 11,
        "desc": "User endpoints",
        "uid": 3,
        "add_time": 1700000000,
        "up_time": 1700000100,
        "list": [INTERFACE_SUMMARY],
    }
]

PROJECT_INFO = {
    "_id": 11,
    "name": "Demo project",
    "basepath": "/api",
    "project_type": "private",
    "uid": 3,
    "group_id": 5,
    "env": [{"name": "local", "domain": "http://127.0.0.1"}],
}


def envelope(data: Any, *, errcode: int = 0, errmsg: str = "成功！") -> dict[str, Any]:
    return {"errcode": errcode, "errmsg": errmsg, "data": copy.deepcopy(data)}


Route = Callable[[httpx.Request], Any]


class FakeYapi:
    """In-memory YAPI open API answering through ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.routes: dict[str, Route] = {}
        self.requests: list[httpx.Request] = []
        self.json(
            "/api/interface/get",
            lambda request: envelope(
                {**INTERFACE_DETAIL, "_id": int(request.url.params["id"])}
            ),
        )
        self.json("/api/interface/list_cat", lambda request: envelope(CATEGORY_PAGE))
        self.json("/api/interface/list_menu", lambda request: envelope(PROJECT_MENU))
        self.json("/api/project/get", lambda request: envelope(PROJECT_INFO))

    def json(self, path: str, body: Any, status_code: int = 200) -> None:
        def _route(request: httpx.Request) -> httpx.Response:
            payload = body(request) if callable(body) else body
            return httpx.Response(status_code, json=payload)

        self.routes[path] = _route

    def text(self, path: str, text: str, status_code: int = 200) -> None:
        self.routes[path] = lambda request: httpx.Response(
            status_code, text=text, headers={"Content-Type": "text/html"}
        )

    def route(self, path: str, handler: Route) -> None:
        self.routes[path] = handler

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get(request.url.path)
        if handler is None:
            return httpx.Response(404, text="not found")
        response = handler(request)
        if hasattr(response, "__await__"):
            response = await response
        return response

    def calls(self, path: str) -> list[httpx.Request]:
        return [request for request in self.requests if request.url.path == path]


def tool_payload(result) -> Any:
    """Decode the JSON document carried by a successful tool result."""
    return json.loads(result.text)


@pytest.fixture
def fake_yapi() -> FakeYapi:
    return FakeYapi()


@pytest.fixture
def backend_settings() -> BackendSettings:
    return BackendSettings(base_url=BASE_URL, token=TOKEN)


@pytest.fixture
def yapi_client(fake_yapi: FakeYapi, backend_settings: BackendSettings) -> YapiClient:
    return YapiClient(backend_settings, transport=httpx.MockTransport(fake_yapi))


@pytest.fixture
def dispatcher(yapi_client: YapiClient) -> ToolDispatcher:
    return ToolDispatcher(yapi_client)


@pytest.fixture
def mcp_server(dispatcher: ToolDispatcher, yapi_client: YapiClient) -> Server:
    return protocol.build_server(dispatcher, base_url=yapi_client.base_url)
