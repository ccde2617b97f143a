"""FastAPI application factory for the audit engine.

For uvicorn, use the ``--factory`` flag::

    uvicorn audit_engine.api.app:create_app --factory

or ``python -m audit_engine``.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from ..config.settings import AuditSettings
from ..errors import ValidationError
from ..observability.logging import get_logger
from ..observability.metrics import metrics_text
from ..observability.middleware import RequestIdMiddleware, RequestLoggingMiddleware
from ..rate_limiter import DEFAULT_RATE_LIMIT, RateLimitConfig
from ..service import SecurityAuditService, create_audit_service
from .middleware import CSRFMiddleware, RateLimitMiddleware
from .routes import create_audit_router

logger = get_logger(__name__)


def create_app(
    service: SecurityAuditService | None = None,
    *,
    settings: AuditSettings | None = None,
    rate_limit: RateLimitConfig = DEFAULT_RATE_LIMIT,
    csrf_exempt_paths: tuple[str, ...] = (),
) -> FastAPI:
    """Create a configured audit FastAPI application.

    Args:
        service: Pre-built audit service. When None, one is built from
            ``settings`` (or the environment) and closed on shutdown.
        settings: Settings used only when ``service`` is None.
        rate_limit: Per-client-address limit applied to API routes.
        csrf_exempt_paths: Path prefixes that skip CSRF validation.

    Returns:
        Configured FastAPI application ready for uvicorn.run().

    Raises:
        SecretValidationError: If no valid signing secret is configured.
    """
    owns_service = service is None
    if service is None:
        service = create_audit_service(settings)
    audit = service

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info('audit_api_startup', environment=audit.settings.environment)
        yield
        if owns_service:
            audit.close()
        logger.info('audit_api_shutdown')

    app = FastAPI(
        title='Audit Engine',
        description='Security audit trail, request guards and reporting',
        version='0.1.0',
        lifespan=lifespan,
    )
    app.state.audit = audit

    # ── Middleware stack (last added runs first) ────────────────
    # Order of execution: RequestId -> Logging -> RateLimit -> CSRF -> route
    app.add_middleware(CSRFMiddleware, service=audit, exempt_paths=csrf_exempt_paths)
    app.add_middleware(RateLimitMiddleware, service=audit, config=rate_limit)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIdMiddleware)

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return JSONResponse(
            status_code=422,
            content={'error': 'validation_error', 'detail': str(exc)},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content={'error': 'validation_error', 'detail': jsonable_encoder(exc.errors())},
        )

    # ── Routes ──────────────────────────────────────────────────

    @app.get('/health')
    async def health():
        return {
            'status': 'ok',
            'environment': audit.settings.environment,
            'buffered_events': len(audit.store),
        }

    @app.get('/metrics')
    async def metrics():
        body, content_type = metrics_text()
        return Response(content=body, media_type=content_type)

    app.include_router(create_audit_router(audit))
    return app
