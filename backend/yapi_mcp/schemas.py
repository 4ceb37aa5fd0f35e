"""Argument and response shapes for the YAPI tools.

Argument models are the single source for both argument validation and the
JSON Schema advertised through ``tools/list``. Response models describe the
backend envelopes; unknown fields on backend objects are kept in each model's
``model_extra`` so schema drift on the YAPI side does not break validation.
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Generic, Literal, Mapping, TypeVar, Union

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    PlainSerializer,
    StrictBool,
    StrictInt,
    StrictStr,
    ValidationError,
)

from .errors import ArgumentValidationError, FieldViolation, violations_from_pydantic

JSON_SCHEMA_2020_12 = "https://json-schema.org/draft/2020-12/schema"


# ----- Tool arguments ------------------------------------------------------


class ToolArguments(BaseModel):
    """Base class for tool argument models.

    Unknown keys are dropped rather than rejected; agents frequently send
    extra hints alongside the declared arguments.
    """

    model_config = ConfigDict(extra="ignore")


PositiveId = Annotated[StrictInt, Field(gt=0)]


class GetInterfaceDetailsArgs(ToolArguments):
    interface_id: PositiveId = Field(..., description="ID of the YAPI interface to fetch")


class ListInterfacesByCategoryArgs(ToolArguments):
    category_id: PositiveId = Field(..., description="ID of the YAPI category to list")
    page: PositiveId = Field(default=1, description="Page number (optional, defaults to 1)")
    limit: PositiveId = Field(
        default=10,
        description="Page size (optional, defaults to 10, at most 100 recommended)",
    )


class GetProjectInterfaceMenuArgs(ToolArguments):
    """The menu tool takes no arguments."""


class GetProjectInfoArgs(ToolArguments):
    """The project info tool takes no arguments."""


ArgsT = TypeVar("ArgsT", bound=ToolArguments)


def validate_arguments(
    tool_name: str, model: type[ArgsT], payload: Mapping[str, Any] | None
) -> ArgsT:
    """Validate ``payload`` against ``model``, collecting every violation.

    Omitted optional fields come back populated with their declared defaults.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, Mapping):
        raise ArgumentValidationError(
            tool_name,
            [FieldViolation(path="", message="Arguments must be a JSON object")],
        )
    try:
        return model.model_validate(dict(payload))
    except ValidationError as exc:
        raise ArgumentValidationError(tool_name, violations_from_pydantic(exc.errors())) from exc


def argument_json_schema(model: type[ToolArguments]) -> dict[str, Any]:
    """Describe ``model`` as JSON Schema for tool advertisement."""
    schema = model.model_json_schema()
    schema.pop("title", None)
    schema.pop("description", None)
    schema.setdefault("properties", {})
    schema["$schema"] = JSON_SCHEMA_2020_12
    return schema


# ----- Embedded JSON bodies ------------------------------------------------


class DecodedJson(BaseModel):
    """A string field whose content parsed as a JSON object or array."""

    kind: Literal["json"] = "json"
    value: Any


class RawText(BaseModel):
    """A string field left as-is because it is not a JSON object or array."""

    kind: Literal["text"] = "text"
    value: str


EmbeddedBody = Union[DecodedJson, RawText]


def decode_embedded_json(text: str) -> EmbeddedBody:
    """Best-effort decode of JSON stored inside a string field.

    YAPI stores example bodies and body schemas as strings. Only text that
    looks like an object or array is attempted; a parse failure keeps the text.
    """
    trimmed = text.strip()
    looks_structured = (trimmed.startswith("{") and trimmed.endswith("}")) or (
        trimmed.startswith("[") and trimmed.endswith("]")
    )
    if looks_structured:
        try:
            return DecodedJson(value=json.loads(trimmed))
        except ValueError:
            pass
    return RawText(value=text)


def _embedded_body_before(value: Any) -> Any:
    if isinstance(value, (DecodedJson, RawText)):
        return value
    if not isinstance(value, str):
        raise ValueError("Input should be a valid string")
    return decode_embedded_json(value)


EmbeddedJsonField = Annotated[
    EmbeddedBody,
    BeforeValidator(_embedded_body_before),
    PlainSerializer(lambda body: body.value),
]


# ----- Backend responses ---------------------------------------------------


class YapiModel(BaseModel):
    """Base for backend objects: extra fields are kept, known ones are typed."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    @property
    def extensions(self) -> dict[str, Any]:
        return dict(self.model_extra or {})

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)


class ReqParam(YapiModel):
    name: StrictStr
    example: StrictStr | None = None
    desc: StrictStr | None = None
    id: StrictStr | None = Field(default=None, alias="_id")


class ReqHeader(YapiModel):
    name: StrictStr
    type: StrictStr = "text"
    example: StrictStr | None = None
    desc: StrictStr | None = None
    required: Literal["0", "1"] | None = None
    id: StrictStr | None = Field(default=None, alias="_id")


class ReqBodyForm(ReqHeader):
    pass


class ReqQuery(ReqHeader):
    pass


class InterfaceSummary(YapiModel):
    id: StrictInt = Field(alias="_id")
    project_id: StrictInt
    catid: StrictInt
    title: StrictStr
    path: StrictStr
    method: StrictStr
    uid: StrictInt
    add_time: StrictInt
    up_time: StrictInt
    status: StrictStr | None = None
    edit_uid: StrictInt | None = None


class InterfaceDetail(InterfaceSummary):
    req_body_type: Literal["raw", "form", "json"] | None = None
    res_body: EmbeddedJsonField | None = None
    res_body_type: Literal["json", "raw", "xml"] | None = None
    req_body_form: list[ReqBodyForm] | None = None
    req_params: list[ReqParam] | None = None
    req_headers: list[ReqHeader] | None = None
    req_query: list[ReqQuery] | None = None
    res_body_is_json_schema: StrictBool | None = None
    req_body_other: EmbeddedJsonField | None = None
    desc: StrictStr | None = None
    markdown: StrictStr | None = None


class Category(YapiModel):
    id: StrictInt = Field(alias="_id")
    name: StrictStr
    project_id: StrictInt
    desc: StrictStr | None = None
    uid: StrictInt
    add_time: StrictInt
    up_time: StrictInt
    interfaces: list[InterfaceSummary] | None = Field(default=None, alias="list")


class ProjectInfo(YapiModel):
    id: StrictInt = Field(alias="_id")
    name: StrictStr
    basepath: StrictStr | None = None
    project_type: StrictStr | None = None
    uid: StrictInt
    group_id: StrictInt


class InterfaceListPage(YapiModel):
    count: StrictInt
    total: StrictInt
    interfaces: list[InterfaceSummary] = Field(alias="list")


DataT = TypeVar("DataT")


class YapiEnvelope(BaseModel, Generic[DataT]):
    """Every YAPI open API answer: business status plus payload."""

    model_config = ConfigDict(extra="allow")

    errcode: StrictInt
    errmsg: StrictStr
    data: DataT


InterfaceDetailResponse = YapiEnvelope[InterfaceDetail]
InterfaceListResponse = YapiEnvelope[InterfaceListPage]
ProjectMenuResponse = YapiEnvelope[list[Category]]
ProjectInfoResponse = YapiEnvelope[ProjectInfo]


__all__ = [
    "Category",
    "DecodedJson",
    "EmbeddedBody",
    "GetInterfaceDetailsArgs",
    "GetProjectInfoArgs",
    "GetProjectInterfaceMenuArgs",
    "InterfaceDetail",
    "InterfaceDetailResponse",
    "InterfaceListPage",
    "InterfaceListResponse",
    "InterfaceSummary",
    "ListInterfacesByCategoryArgs",
    "ProjectInfo",
    "ProjectInfoResponse",
    "ProjectMenuResponse",
    "RawText",
    "ReqBodyForm",
    "ReqHeader",
    "ReqParam",
    "ReqQuery",
    "ToolArguments",
    "YapiEnvelope",
    "YapiModel",
    "argument_json_schema",
    "decode_embedded_json",
    "validate_arguments",
]
