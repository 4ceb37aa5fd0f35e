from __future__ import annotations

import pytest
from pydantic import ValidationError

from conftest import INTERFACE_DETAIL, PROJECT_MENU, envelope
from yapi_mcp.errors import ArgumentValidationError
from yapi_mcp.schemas import (
    DecodedJson,
    GetInterfaceDetailsArgs,
    GetProjectInfoArgs,
    InterfaceDetail,
    InterfaceDetailResponse,
    ListInterfacesByCategoryArgs,
    ProjectMenuResponse,
    RawText,
    argument_json_schema,
    decode_embedded_json,
    validate_arguments,
)


def _paths(exc: ArgumentValidationError) -> set[str]:
    return {violation.path for violation in exc.violations}


def test_valid_arguments_are_accepted():
    args = validate_arguments("t", GetInterfaceDetailsArgs, {"interface_id": 42})
    assert args.interface_id == 42


def test_category_listing_defaults_are_applied():
    args = validate_arguments("t", ListInterfacesByCategoryArgs, {"category_id": 7})
    assert (args.category_id, args.page, args.limit) == (7, 1, 10)


def test_missing_required_field_is_named():
    with pytest.raises(ArgumentValidationError) as excinfo:
        validate_arguments("yapi_get_interface_details", GetInterfaceDetailsArgs, {})
    assert _paths(excinfo.value) == {"interface_id"}
    assert "yapi_get_interface_details" in str(excinfo.value)
    assert "required" in str(excinfo.value).lower()


@pytest.mark.parametrize("bad_id", [0, -1, "42", 4.2, True, None])
def test_non_positive_or_wrong_typed_ids_are_rejected(bad_id):
    with pytest.raises(ArgumentValidationError) as excinfo:
        validate_arguments("t", GetInterfaceDetailsArgs, {"interface_id": bad_id})
    assert _paths(excinfo.value) == {"interface_id"}


def test_every_violation_is_collected():
    with pytest.raises(ArgumentValidationError) as excinfo:
        validate_arguments(
            "t",
            ListInterfacesByCategoryArgs,
            {"category_id": 0, "page": -3, "limit": "ten"},
        )
    assert _paths(excinfo.value) == {"category_id", "page", "limit"}


def test_unknown_keys_are_ignored():
    args = validate_arguments("t", GetProjectInfoArgs, {"verbose": True})
    assert args.model_dump() == {}


def test_missing_arguments_mean_empty_object():
    assert validate_arguments("t", GetProjectInfoArgs, None).model_dump() == {}


def test_non_object_arguments_are_rejected():
    with pytest.raises(ArgumentValidationError, match="JSON object"):
        validate_arguments("t", GetProjectInfoArgs, [1, 2])  # type: ignore[arg-type]


def test_argument_schema_advertises_constraints():
    schema = argument_json_schema(ListInterfacesByCategoryArgs)
    assert schema["type"] == "object"
    assert schema["required"] == ["category_id"]
    category = schema["properties"]["category_id"]
    assert category["type"] == "integer"
    assert category["exclusiveMinimum"] == 0
    assert schema["properties"]["page"]["default"] == 1
    assert schema["properties"]["limit"]["default"] == 10
    assert schema["$schema"].startswith("https://json-schema.org/")


def test_argument_schema_for_no_argument_tool():
    schema = argument_json_schema(GetProjectInfoArgs)
    assert schema["properties"] == {}
    assert "required" not in schema


@pytest.mark.parametrize(
    "text, expected",
    [
        ('{"a": 1}', DecodedJson(value={"a": 1})),
        ("  [1, 2]\n", DecodedJson(value=[1, 2])),
        ("{broken", RawText(value="{broken")),
        ("{not: json}", RawText(value="{not: json}")),
        ('"quoted"', RawText(value='"quoted"')),
        ("42", RawText(value="42")),
        ("", RawText(value="")),
    ],
)
def test_decode_embedded_json(text, expected):
    assert decode_embedded_json(text) == expected


def test_interface_detail_keeps_unknown_fields_and_decodes_bodies():
    detail = InterfaceDetail.model_validate(INTERFACE_DETAIL)
    assert detail.id == 42
    assert detail.extensions["tag"] == ["user"]
    assert isinstance(detail.res_body, DecodedJson)
    assert isinstance(detail.req_body_other, RawText)
    assert detail.req_headers[0].extensions == {"value": "application/json"}

    payload = detail.to_payload()
    assert payload["_id"] == 42
    assert payload["res_body"]["type"] == "object"
    assert payload["req_body_other"] == "plain text example"
    assert payload["tag"] == ["user"]
    assert detail.req_query[0].type == "text"
    assert "type" not in payload["req_query"][0]


def test_response_shape_mismatch_names_field():
    data = {key: value for key, value in INTERFACE_DETAIL.items() if key != "title"}
    with pytest.raises(ValidationError) as excinfo:
        InterfaceDetailResponse.model_validate(envelope(data))
    locations = [error["loc"] for error in excinfo.value.errors()]
    assert ("data", "title") in locations


def test_response_rejects_wrong_field_types():
    data = {**INTERFACE_DETAIL, "catid": "seven"}
    with pytest.raises(ValidationError):
        InterfaceDetailResponse.model_validate(envelope(data))


def test_header_required_flag_is_constrained():
    data = {**INTERFACE_DETAIL, "req_headers": [{"name": "X", "required": "yes"}]}
    with pytest.raises(ValidationError):
        InterfaceDetail.model_validate(data)


def test_menu_categories_keep_nested_interfaces():
    menu = ProjectMenuResponse.model_validate(envelope(PROJECT_MENU)).data
    assert [category.name for category in menu] == ["Users"]
    assert menu[0].interfaces[0].title == "Get user"
    assert menu[0].to_payload()["list"][0]["_id"] == 42


def test_payload_keeps_explicit_nulls_from_the_backend():
    data = {**INTERFACE_DETAIL, "desc": None, "markdown": None, "owner": None}
    detail = InterfaceDetail.model_validate(data)

    payload = detail.to_payload()

    assert payload["desc"] is None
    assert payload["markdown"] is None
    assert payload["owner"] is None
    assert "edit_uid" not in payload
