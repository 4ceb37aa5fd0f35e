from __future__ import annotations

import asyncio
import logging

import pytest

from conftest import INTERFACE_DETAIL, envelope, tool_payload
from yapi_mcp.dispatcher import (
    BACKEND_ERROR,
    BACKEND_NOT_FOUND,
    BACKEND_UNAUTHORIZED,
    INTERNAL_ERROR,
    INVALID_PARAMS,
    ToolCallResult,
)

TOOL_NAMES = [
    "yapi_get_interface_details",
    "yapi_list_interfaces_by_category",
    "yapi_get_project_interface_menu",
    "yapi_get_project_info",
]


def test_list_tools_is_the_fixed_set(dispatcher):
    tools = dispatcher.list_tools()

    assert [tool["name"] for tool in tools] == TOOL_NAMES
    for tool in tools:
        assert tool["description"]
        assert tool["inputSchema"]["type"] == "object"
        assert tool["annotations"]["readOnlyHint"] is True
        assert tool["annotations"]["destructiveHint"] is False
    assert dispatcher.list_tools() == tools


async def test_details_success_returns_formatted_payload(dispatcher):
    result = await dispatcher.call_tool("yapi_get_interface_details", {"interface_id": 42})

    assert result.is_error is False
    payload = tool_payload(result)
    assert payload["_id"] == 42
    assert payload["res_body"]["type"] == "object"
    assert result.text.startswith("{\n  ")
    assert result.to_protocol() == {
        "content": [{"type": "text", "text": result.text}],
        "isError": False,
    }


async def test_business_error_mentions_message_and_code(dispatcher, fake_yapi):
    fake_yapi.json("/api/interface/get", {"errcode": 40011, "errmsg": "token invalid"})

    result = await dispatcher.call_tool("yapi_get_interface_details", {"interface_id": 42})

    assert result.is_error is True
    assert result.error_kind == "business"
    assert result.error_code == BACKEND_UNAUTHORIZED
    assert "token invalid" in result.text
    assert "40011" in result.text


async def test_http_500_with_text_body(dispatcher, fake_yapi):
    fake_yapi.text("/api/interface/get", "upstream exploded", status_code=500)

    result = await dispatcher.call_tool("yapi_get_interface_details", {"interface_id": 42})

    assert result.is_error is True
    assert result.error_kind == "transport"
    assert result.error_code == BACKEND_ERROR
    assert "500" in result.text


@pytest.mark.parametrize(
    "status_code, expected_code",
    [(401, BACKEND_UNAUTHORIZED), (403, BACKEND_UNAUTHORIZED), (404, BACKEND_NOT_FOUND)],
)
async def test_http_status_maps_to_error_code(dispatcher, fake_yapi, status_code, expected_code):
    fake_yapi.json("/api/project/get", {"errmsg": "nope"}, status_code=status_code)

    result = await dispatcher.call_tool("yapi_get_project_info", {})

    assert result.error_code == expected_code
    assert str(status_code) in result.text


async def test_missing_response_field_is_schema_error(dispatcher, fake_yapi):
    data = {key: value for key, value in INTERFACE_DETAIL.items() if key != "title"}
    fake_yapi.json("/api/interface/get", envelope(data))

    result = await dispatcher.call_tool("yapi_get_interface_details", {"interface_id": 42})

    assert result.is_error is True
    assert result.error_kind == "schema"
    assert "title" in result.text
    assert "business" not in result.text.lower()


async def test_missing_argument_makes_no_backend_call(dispatcher, fake_yapi):
    result = await dispatcher.call_tool("yapi_get_interface_details", {})

    assert result.is_error is True
    assert result.error_kind == "validation"
    assert result.error_code == INVALID_PARAMS
    assert "interface_id" in result.text
    assert fake_yapi.requests == []


@pytest.mark.parametrize("bad_id", [0, -5])
async def test_non_positive_ids_make_no_backend_call(dispatcher, fake_yapi, bad_id):
    details = await dispatcher.call_tool("yapi_get_interface_details", {"interface_id": bad_id})
    listing = await dispatcher.call_tool(
        "yapi_list_interfaces_by_category", {"category_id": bad_id}
    )

    assert details.is_error and listing.is_error
    assert "interface_id" in details.text
    assert "category_id" in listing.text
    assert fake_yapi.requests == []


async def test_unknown_tool(dispatcher, fake_yapi):
    result = await dispatcher.call_tool("yapi_delete_everything", {})

    assert result.is_error is True
    assert result.error_code == INVALID_PARAMS
    assert "yapi_delete_everything" in result.text
    assert fake_yapi.requests == []


async def test_defaults_match_explicit_paging(dispatcher, fake_yapi):
    implicit = await dispatcher.call_tool("yapi_list_interfaces_by_category", {"category_id": 7})
    explicit = await dispatcher.call_tool(
        "yapi_list_interfaces_by_category", {"category_id": 7, "page": 1, "limit": 10}
    )

    assert implicit == explicit
    first, second = fake_yapi.calls("/api/interface/list_cat")
    assert first.url.params == second.url.params


async def test_repeated_calls_are_idempotent(dispatcher):
    first = await dispatcher.call_tool("yapi_get_project_interface_menu", {})
    second = await dispatcher.call_tool("yapi_get_project_interface_menu", {})

    assert first.is_error is False
    assert first == second
    assert tool_payload(first)[0]["list"][0]["title"] == "Get user"


async def test_concurrent_calls_are_independent(dispatcher):
    ids = [3, 1, 2]
    results = await asyncio.gather(
        *(
            dispatcher.call_tool("yapi_get_interface_details", {"interface_id": interface_id})
            for interface_id in ids
        )
    )
    assert [tool_payload(result)["_id"] for result in results] == ids


async def test_unexpected_failure_is_reported_generically(dispatcher, monkeypatch, caplog):
    async def _explode(self):
        raise RuntimeError("secret internal detail")

    monkeypatch.setattr(type(dispatcher.client), "get_project_info", _explode)

    with caplog.at_level(logging.ERROR, logger="yapi_mcp.dispatcher"):
        result = await dispatcher.call_tool("yapi_get_project_info", {})

    assert result.is_error is True
    assert result.error_code == INTERNAL_ERROR
    assert "secret internal detail" not in result.text
    assert "Internal server error" in result.text
    assert "secret internal detail" in caplog.text


async def test_each_call_logs_telemetry(dispatcher, caplog):
    with caplog.at_level(logging.INFO, logger="yapi_mcp.dispatcher"):
        await dispatcher.call_tool("yapi_get_project_info", {})
        await dispatcher.call_tool("yapi_get_interface_details", {})

    lines = [record.getMessage() for record in caplog.records if "tool call" in record.getMessage()]
    assert "tool=yapi_get_project_info outcome=success" in lines[0]
    assert "outcome=error:validation" in lines[1]
    assert "elapsed_ms=" in lines[0]


def test_error_result_protocol_shape():
    result = ToolCallResult.failure("t", "bad", code=INVALID_PARAMS, kind="validation")

    assert result.to_protocol() == {
        "content": [{"type": "text", "text": "bad"}],
        "isError": True,
        "_meta": {"errorCode": INVALID_PARAMS, "errorKind": "validation"},
    }


def test_error_result_requires_code():
    with pytest.raises(ValueError):
        ToolCallResult(tool_name="t", is_error=True)
