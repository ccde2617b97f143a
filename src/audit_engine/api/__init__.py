"""HTTP surface for the audit engine."""

from .app import create_app
from .middleware import CSRFMiddleware, RateLimitMiddleware
from .routes import create_audit_router

__all__ = [
    "CSRFMiddleware",
    "RateLimitMiddleware",
    "create_app",
    "create_audit_router",
]
