"""Async client for the YAPI open API.

The client owns everything about backend connectivity: URL construction,
token injection, and classifying failures into transport, business, and
schema errors. It keeps only immutable configuration and never retries.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping, TypeVar
from urllib.parse import urlsplit

import httpx
from pydantic import BaseModel, ValidationError

from . import __version__
from .errors import (
    BackendBusinessError,
    BackendSchemaError,
    BackendTransportError,
    ConfigurationError,
    violations_from_pydantic,
)
from .schemas import (
    Category,
    InterfaceDetail,
    InterfaceDetailResponse,
    InterfaceListPage,
    InterfaceListResponse,
    ProjectInfo,
    ProjectInfoResponse,
    ProjectMenuResponse,
)
from .settings import BackendSettings

logger = logging.getLogger(__name__)

USER_AGENT = f"yapi-mcp-server/{__version__}"
BODY_PREVIEW_CHARS = 200

EnvelopeT = TypeVar("EnvelopeT", bound=BaseModel)


def normalize_base_url(raw: str) -> str:
    """Reduce a configured YAPI URL to ``scheme://host[:port]``.

    A path component (for example ``/project/12/interface/api``) is tolerated
    for older configurations but dropped with a warning.
    """
    candidate = (raw or "").strip()
    try:
        parts = urlsplit(candidate)
        netloc = parts.netloc
        # Accessing .port validates the port component.
        parts.port
    except ValueError as exc:
        raise ConfigurationError(
            f'Invalid YAPI_BASE_URL provided: "{raw}". It should be a valid URL '
            'like "https://yapi.example.com".'
        ) from exc
    if parts.scheme not in ("http", "https") or not netloc:
        raise ConfigurationError(
            f'Invalid YAPI_BASE_URL provided: "{raw}". It should be a valid URL '
            'like "https://yapi.example.com".'
        )
    if parts.path not in ("", "/"):
        logger.warning(
            "YAPI_BASE_URL %r includes a path (%r); it should be just the base "
            "domain such as https://yapi.example.com. Removing the path.",
            candidate,
            parts.path,
        )
    return f"{parts.scheme}://{netloc}"


class YapiClient:
    """Read-only YAPI operations used by the MCP tools."""

    def __init__(
        self,
        settings: BackendSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = normalize_base_url(settings.base_url)
        self.api_base = f"{self.base_url}/api"
        self._token = settings.token
        self._timeout = settings.timeout_seconds
        self._transport = transport
        logger.info("YAPI client initialized api_base=%s", self.api_base)

    async def get_interface_details(self, interface_id: int) -> InterfaceDetail:
        envelope = await self._request(
            "/interface/get", InterfaceDetailResponse, params={"id": interface_id}
        )
        return envelope.data

    async def list_interfaces_by_category(
        self, category_id: int, page: int = 1, limit: int = 10
    ) -> InterfaceListPage:
        envelope = await self._request(
            "/interface/list_cat",
            InterfaceListResponse,
            params={"catid": category_id, "page": page, "limit": limit},
        )
        return envelope.data

    async def get_project_interface_menu(self) -> list[Category]:
        envelope = await self._request("/interface/list_menu", ProjectMenuResponse)
        return envelope.data

    async def get_project_info(self) -> ProjectInfo:
        envelope = await self._request("/project/get", ProjectInfoResponse)
        return envelope.data

    def _client_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "headers": {"Accept": "application/json", "User-Agent": USER_AGENT},
        }
        if self._timeout is not None:
            kwargs["timeout"] = httpx.Timeout(self._timeout)
        if self._transport is not None:
            kwargs["transport"] = self._transport
        return kwargs

    async def _request(
        self,
        api_path: str,
        envelope_model: type[EnvelopeT],
        *,
        params: Mapping[str, Any] | None = None,
    ) -> EnvelopeT:
        url = f"{self.api_base}{api_path}"
        query: dict[str, Any] = {"token": self._token}
        query.update({key: value for key, value in (params or {}).items() if value is not None})
        log_query = {key: value for key, value in query.items() if key != "token"}
        logger.info("YAPI request GET %s params=%s", api_path, log_query)

        try:
            async with httpx.AsyncClient(**self._client_kwargs()) as client:
                response = await client.get(url, params=query)
        except httpx.HTTPError as exc:
            reason = self._redact(f"Network error during request to {api_path}: {exc!r}")
            logger.warning("YAPI request failed api_path=%s reason=%s", api_path, reason)
            raise BackendTransportError(reason, api_path=api_path) from exc

        logger.info("YAPI response status=%s api_path=%s", response.status_code, api_path)
        body = self._parse_body(response, api_path)

        if isinstance(body, dict):
            errcode = body.get("errcode")
            if isinstance(errcode, int) and not isinstance(errcode, bool) and errcode != 0:
                errmsg = body.get("errmsg")
                message = (
                    errmsg
                    if isinstance(errmsg, str) and errmsg
                    else f"YAPI operation failed with code {errcode}"
                )
                logger.warning(
                    "YAPI business error api_path=%s errcode=%s errmsg=%s",
                    api_path,
                    errcode,
                    message,
                )
                raise BackendBusinessError(errcode, message, api_path=api_path)

        try:
            return envelope_model.model_validate(body)
        except ValidationError as exc:
            violations = violations_from_pydantic(exc.errors())
            logger.warning(
                "YAPI response failed validation api_path=%s violations=%s",
                api_path,
                [str(violation) for violation in violations],
            )
            raise BackendSchemaError(violations, api_path=api_path) from exc

    def _parse_body(self, response: httpx.Response, api_path: str) -> Any:
        try:
            body: Any = response.json()
            parsed = True
        except (ValueError, UnicodeDecodeError):
            body = response.text
            parsed = False

        if not response.is_success:
            detail = body.get("errmsg") if isinstance(body, dict) else None
            reason = detail if isinstance(detail, str) and detail else response.reason_phrase
            if not parsed:
                reason = f"{reason or 'request failed'}. Body: {self._preview(body)}"
            reason = self._redact(
                reason or f"YAPI request failed with status {response.status_code}"
            )
            logger.warning(
                "YAPI HTTP error api_path=%s status=%s body=%s",
                api_path,
                response.status_code,
                self._preview(body),
            )
            raise BackendTransportError(
                reason, api_path=api_path, status=response.status_code, body=body
            )

        if not parsed:
            content_type = response.headers.get("content-type", "N/A")
            reason = self._redact(
                f"Failed to parse JSON response from YAPI for {api_path} "
                f"(Content-Type: {content_type}). Body: {self._preview(body)}"
            )
            logger.warning("YAPI returned a non-JSON body api_path=%s", api_path)
            raise BackendTransportError(
                reason, api_path=api_path, status=response.status_code, body=body
            )
        return body

    def _preview(self, body: Any) -> str:
        text = body if isinstance(body, str) else json.dumps(body, ensure_ascii=False)
        return self._redact(text[:BODY_PREVIEW_CHARS])

    def _redact(self, text: str) -> str:
        if self._token and self._token in text:
            return text.replace(self._token, "***")
        return text

    def __repr__(self) -> str:
        return f"YapiClient(base_url={self.base_url!r})"


__all__ = ["USER_AGENT", "YapiClient", "normalize_base_url"]
