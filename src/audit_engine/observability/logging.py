"""structlog setup for the audit engine.

Every audit operation logs a key/value event through ``get_logger``. Only
the process entry point calls ``configure_logging``; an embedding host
keeps whatever structlog configuration it already has.

Secret-bearing keys (signing secret, session and CSRF tokens, service role
key) are masked by a processor before rendering, so a stray
``logger.info(..., session_token=...)`` cannot leak them.
"""

from __future__ import annotations

import logging
import os
import sys
from contextvars import ContextVar
from typing import Any, MutableMapping

import structlog

# Correlation ID of the request being served, set by RequestIdMiddleware.
request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)

REDACTED = "<redacted>"

SECRET_FIELDS = frozenset({
    "secret_key",
    "session_token",
    "csrf_token",
    "supabase_service_role_key",
})


def add_request_id(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    rid = request_id_ctx.get()
    if rid is not None:
        event_dict.setdefault("request_id", rid)
    return event_dict


def redact_secret_fields(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    for key in SECRET_FIELDS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = REDACTED
    return event_dict


def configure_logging(
    *,
    level: str | None = None,
    json_output: bool | None = None,
) -> None:
    """Route structlog through stdlib logging on stdout.

    Args:
        level: Log level name. Defaults to ``LOG_LEVEL`` or INFO.
        json_output: JSON lines when True, console output when False.
            Defaults to ``LOG_FORMAT != "console"``.
    """
    if structlog.is_configured():
        return

    level = level or os.environ.get("LOG_LEVEL", "INFO")
    if json_output is None:
        json_output = os.environ.get("LOG_FORMAT", "json") != "console"

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_request_id,
            redact_secret_fields,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
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


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger bound to ``name``."""
    return structlog.get_logger(name)
