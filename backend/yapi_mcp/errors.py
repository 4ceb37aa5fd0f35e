"""Error taxonomy shared by the backend client, dispatcher and transports."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence


@dataclass(frozen=True)
class FieldViolation:
    """One failed constraint, addressed by a dotted path into the payload."""

    path: str
    message: str

    def __str__(self) -> str:
        return f"{self.path or '<root>'}: {self.message}"


def format_violations(violations: Sequence[FieldViolation]) -> str:
    return "; ".join(str(violation) for violation in violations)


class YapiMcpError(Exception):
    """Base class for failures raised by this package."""


class ConfigurationError(YapiMcpError):
    """Raised when startup inputs are missing or invalid."""


class ArgumentValidationError(YapiMcpError):
    """Raised when tool arguments do not match the tool's schema."""

    def __init__(self, tool_name: str, violations: Sequence[FieldViolation]):
        self.tool_name = tool_name
        self.violations = tuple(violations)
        super().__init__(
            f"Invalid arguments for tool {tool_name}: {format_violations(self.violations)}"
        )


class BackendError(YapiMcpError):
    """Base class for failures of a single backend round trip."""

    def __init__(self, message: str, *, api_path: str):
        super().__init__(message)
        self.api_path = api_path


class BackendBusinessError(BackendError):
    """The backend answered but reported a non-zero business status."""

    def __init__(self, code: int, message: str, *, api_path: str):
        self.code = code
        self.backend_message = message
        super().__init__(f"{message} (YAPI code: {code})", api_path=api_path)


class BackendTransportError(BackendError):
    """Network failure, non-2xx HTTP status, or a body that is not JSON."""

    def __init__(
        self,
        reason: str,
        *,
        api_path: str,
        status: int | None = None,
        body: Any = None,
    ):
        self.reason = reason
        self.status = status
        self.body = body
        if status is None:
            message = reason
        else:
            message = f"HTTP {status}: {reason}"
        super().__init__(message, api_path=api_path)


class BackendSchemaError(BackendError):
    """The backend body parsed as JSON but did not have the expected shape."""

    def __init__(self, violations: Sequence[FieldViolation], *, api_path: str):
        self.violations = tuple(violations)
        super().__init__(
            f"YAPI response validation failed for {api_path}: "
            f"{format_violations(self.violations)}",
            api_path=api_path,
        )


class SessionClosedError(YapiMcpError):
    """Raised when a message is routed to a session that is already closed."""


def violations_from_pydantic(errors: Sequence[dict[str, Any]]) -> tuple[FieldViolation, ...]:
    """Convert ``ValidationError.errors()`` entries into field violations."""
    violations = []
    for error in errors:
        path = ".".join(str(part) for part in error.get("loc", ()))
        violations.append(FieldViolation(path=path, message=str(error.get("msg", "invalid"))))
    return tuple(violations)


__all__ = [
    "ArgumentValidationError",
    "BackendBusinessError",
    "BackendError",
    "BackendSchemaError",
    "BackendTransportError",
    "ConfigurationError",
    "FieldViolation",
    "SessionClosedError",
    "YapiMcpError",
    "format_violations",
    "violations_from_pydantic",
]
