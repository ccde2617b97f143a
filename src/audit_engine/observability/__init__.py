"""Observability infrastructure for the audit engine.

Provides structured logging, Prometheus metrics, and request-ID
correlation middleware.

Quick start::

    from audit_engine.observability import configure_logging, get_logger
    from audit_engine.observability.middleware import RequestIdMiddleware

    configure_logging()
    app.add_middleware(RequestIdMiddleware)
"""

from .logging import configure_logging, get_logger, request_id_ctx
from .metrics import metrics_text

__all__ = [
    "configure_logging",
    "get_logger",
    "metrics_text",
    "request_id_ctx",
]
