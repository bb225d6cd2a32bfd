"""structlog setup for the health link service.

Every entry carries the request id, and link ids go through ``redact_id``.
Fields that could hold a link key or an EHR credential are replaced before
rendering, whatever the call site passed.
"""

from __future__ import annotations

import logging
import os
import sys
from contextvars import ContextVar
from typing import Any

import structlog

request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)

ID_PREFIX_LENGTH = 8
REDACTED = "<redacted>"

# A shlink or viewer URL embeds the decryption key.
SECRET_FIELDS = frozenset({
    "key",
    "encryption_key",
    "shlink",
    "viewer_url",
    "access_token",
    "authorization",
    "cookie",
    "session_secret",
})

_configured = False


def _add_request_id(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    rid = request_id_ctx.get()
    if rid is not None:
        event_dict["request_id"] = rid
    return event_dict


def _scrub_secrets(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    for field in SECRET_FIELDS.intersection(event_dict):
        event_dict[field] = REDACTED
    return event_dict


def redact_id(value: str | None) -> str:
    """Truncate a link id to a short prefix for correlation in logs."""
    if not value or len(value) < ID_PREFIX_LENGTH:
        return REDACTED
    return f"{value[:ID_PREFIX_LENGTH]}..."


def configure_logging(
    *,
    level: str | None = None,
    json_output: bool | None = None,
) -> None:
    """Configure structlog and route stdlib logging through it. Idempotent.

    ``level`` defaults to ``LOG_LEVEL`` (INFO); ``json_output`` defaults to
    ``LOG_FORMAT == "json"`` (the default format).
    """
    global _configured
    if _configured:
        return
    _configured = True

    level = level or os.environ.get("LOG_LEVEL", "INFO")
    if json_output is None:
        json_output = os.environ.get("LOG_FORMAT", "json") == "json"

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            _add_request_id,
            _scrub_secrets,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output else structlog.dev.ConsoleRenderer()
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    ))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # botocore and httpx log request lines at INFO.
    for name in ("uvicorn.access", "botocore", "httpx"):
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
