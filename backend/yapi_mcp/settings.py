"""Process settings for the YAPI MCP server."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal, Mapping

from .errors import ConfigurationError

TransportMode = Literal["stdio", "streamable-http"]

TRANSPORT_MODES: tuple[TransportMode, ...] = ("stdio", "streamable-http")
DEFAULT_PORT = 3000
DEFAULT_HOST = "0.0.0.0"
DEFAULT_SHUTDOWN_TIMEOUT_SECONDS = 5.0
DEFAULT_SESSION_IDLE_TIMEOUT_SECONDS = 1800.0


def _env_str(
    env: Mapping[str, str], name: str, default: str | None = None
) -> str | None:
    value = env.get(name)
    if value is None:
        return default
    normalized = value.strip()
    return normalized or default


def _parse_float(name: str, raw: str) -> float:
    try:
        parsed = float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from exc
    if parsed <= 0:
        raise ConfigurationError(f"{name} must be positive, got {parsed}")
    return parsed


def _parse_port(name: str, raw: str | int) -> int:
    try:
        port = int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc
    if not 0 < port <= 65535:
        raise ConfigurationError(f"{name} must be between 1 and 65535, got {port}")
    return port


@dataclass(frozen=True)
class BackendSettings:
    """Connection details for the YAPI instance."""

    base_url: str
    token: str
    timeout_seconds: float | None = None

    def __post_init__(self) -> None:
        if not self.base_url or not self.base_url.strip():
            raise ConfigurationError("YAPI_BASE_URL environment variable is not configured.")
        if not self.token or not self.token.strip():
            raise ConfigurationError(
                "YAPI_PROJECT_TOKEN environment variable is not configured."
            )

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "BackendSettings":
        env = os.environ if env is None else env
        raw_timeout = _env_str(env, "YAPI_TIMEOUT_SECONDS")
        return cls(
            base_url=_env_str(env, "YAPI_BASE_URL") or "",
            token=_env_str(env, "YAPI_PROJECT_TOKEN") or "",
            timeout_seconds=(
                _parse_float("YAPI_TIMEOUT_SECONDS", raw_timeout) if raw_timeout else None
            ),
        )

    def __repr__(self) -> str:
        return (
            f"BackendSettings(base_url={self.base_url!r}, token='***', "
            f"timeout_seconds={self.timeout_seconds!r})"
        )


@dataclass(frozen=True)
class ServerSettings:
    """Transport selection and HTTP listener configuration."""

    transport: TransportMode
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    shutdown_timeout_seconds: float = DEFAULT_SHUTDOWN_TIMEOUT_SECONDS
    session_idle_timeout_seconds: float = DEFAULT_SESSION_IDLE_TIMEOUT_SECONDS

    def __post_init__(self) -> None:
        if self.transport not in TRANSPORT_MODES:
            raise ConfigurationError(
                f"Invalid transport mode: {self.transport!r}. "
                "Use 'stdio' or 'streamable-http'."
            )
        _parse_port("port", self.port)
        if self.session_idle_timeout_seconds <= 0:
            raise ConfigurationError("session idle timeout must be positive")

    @property
    def idle_sweep_interval_seconds(self) -> float:
        return min(60.0, max(1.0, self.session_idle_timeout_seconds / 4))

    @classmethod
    def from_env(
        cls,
        env: Mapping[str, str] | None = None,
        *,
        transport: str | None = None,
        port: str | int | None = None,
        host: str | None = None,
    ) -> "ServerSettings":
        env = os.environ if env is None else env
        env_port = _env_str(env, "PORT")
        if transport is None:
            transport = _env_str(env, "MCP_TRANSPORT")
        if transport is None:
            transport = "streamable-http" if env_port else "stdio"
        if port is None:
            port = env_port or DEFAULT_PORT
        raw_shutdown = _env_str(env, "SHUTDOWN_TIMEOUT_SECONDS")
        raw_idle = _env_str(env, "SESSION_IDLE_TIMEOUT_SECONDS")
        return cls(
            transport=transport.strip().lower(),  # type: ignore[arg-type]
            host=host or _env_str(env, "HOST", DEFAULT_HOST) or DEFAULT_HOST,
            port=_parse_port("PORT", port),
            shutdown_timeout_seconds=(
                _parse_float("SHUTDOWN_TIMEOUT_SECONDS", raw_shutdown)
                if raw_shutdown
                else DEFAULT_SHUTDOWN_TIMEOUT_SECONDS
            ),
            session_idle_timeout_seconds=(
                _parse_float("SESSION_IDLE_TIMEOUT_SECONDS", raw_idle)
                if raw_idle
                else DEFAULT_SESSION_IDLE_TIMEOUT_SECONDS
            ),
        )


class Settings:
    """Container for application settings."""

    def __init__(self, *, backend: BackendSettings, server: ServerSettings) -> None:
        self.backend = backend
        self.server = server

    @classmethod
    def from_env(
        cls,
        env: Mapping[str, str] | None = None,
        *,
        transport: str | None = None,
        port: str | int | None = None,
        host: str | None = None,
    ) -> "Settings":
        return cls(
            backend=BackendSettings.from_env(env),
            server=ServerSettings.from_env(env, transport=transport, port=port, host=host),
        )


__all__ = [
    "BackendSettings",
    "ServerSettings",
    "Settings",
    "TRANSPORT_MODES",
    "TransportMode",
]
