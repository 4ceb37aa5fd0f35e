"""Logging configuration for the server process.

Records always go to stderr: in stdio mode stdout carries protocol frames.
"""

from __future__ import annotations

import logging
import sys

from .errors import ConfigurationError

LOG_FORMAT = "%(asctime)s %(levelname)s [session=%(session_id)s] %(name)s: %(message)s"


class _SessionIdFilter(logging.Filter):
    """Ensure every log record has a session_id attribute."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "session_id"):
            record.session_id = "-"
        return True


def configure_logging(level: str | int = "INFO") -> None:
    if isinstance(level, str):
        name = level.strip().upper() or "INFO"
        level = logging.getLevelName(name)
        if not isinstance(level, int):
            raise ConfigurationError(f"Unknown log level: {name!r}")
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)
    root_logger = logging.getLogger()
    session_filter = _SessionIdFilter()
    for handler in root_logger.handlers:
        handler.addFilter(session_filter)
    # httpx logs full request URLs at INFO, including the token query parameter.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def session_extra(session_id: str | None) -> dict[str, str]:
    return {"session_id": session_id or "-"}


__all__ = ["LOG_FORMAT", "configure_logging", "session_extra"]
