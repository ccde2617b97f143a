"""Request guards for the audit HTTP surface.

``RateLimitMiddleware`` applies the fixed-window limiter per client
address. ``CSRFMiddleware`` checks the ``X-CSRF-Token`` header against the
token derived from the session cookie on mutating requests.

Both guards record their rejections through the audit service, so a
blocked request always leaves a signed event behind.
"""

from __future__ import annotations

import math
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from ..csrf import CSRF_TOKEN_HEADER, SESSION_COOKIE
from ..events import AuditEventType, RequestContext
from ..observability.logging import get_logger
from ..rate_limiter import DEFAULT_RATE_LIMIT, RateLimitConfig
from ..service import SecurityAuditService

logger = get_logger(__name__)

# ── Constants ─────────────────────────────────────────────────────────

SAFE_METHODS = frozenset({'GET', 'HEAD', 'OPTIONS'})
DEFAULT_RATE_LIMIT_EXEMPT = ('/health', '/metrics')


def request_context(request: Request) -> RequestContext:
    """Audit context for an incoming request."""
    return RequestContext(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get('user-agent'),
        resource=request.url.path,
        action=request.method,
    )


def _is_exempt(path: str, prefixes: tuple[str, ...]) -> bool:
    return any(path.startswith(prefix) for prefix in prefixes)


# ── Rate limiting ─────────────────────────────────────────────────────


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-client-address fixed-window rate limiting.

    Rejected requests get ``429`` with ``Retry-After`` in whole seconds.
    Allowed responses carry ``X-RateLimit-Remaining``.

    Args:
        app: The ASGI application.
        service: Audit service whose limiter counts the requests.
        config: Window and request budget applied to every client.
        exempt_paths: Path prefixes that are never counted.
    """

    def __init__(
        self,
        app,
        service: SecurityAuditService,
        config: RateLimitConfig = DEFAULT_RATE_LIMIT,
        exempt_paths: tuple[str, ...] = DEFAULT_RATE_LIMIT_EXEMPT,
    ) -> None:
        super().__init__(app)
        self._service = service
        self._config = config
        self._exempt_paths = exempt_paths

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint,
    ) -> Response:
        if _is_exempt(request.url.path, self._exempt_paths):
            return await call_next(request)

        ctx = request_context(request)
        identifier = f'ip:{ctx.ip_address or "unknown"}'
        limiter = self._service.rate_limiter
        decision = limiter.check(identifier, self._config, context=ctx)

        if not decision.allowed:
            retry_after = math.ceil(decision.retry_after())
            return JSONResponse(
                status_code=429,
                content={
                    'error': 'rate_limit_exceeded',
                    'detail': f'Too many requests; retry in {retry_after}s',
                },
                headers={
                    'Retry-After': str(max(retry_after, 1)),
                    'X-RateLimit-Remaining': '0',
                },
            )

        response = await call_next(request)
        response.headers['X-RateLimit-Remaining'] = str(decision.remaining)
        return response


# ── CSRF ──────────────────────────────────────────────────────────────


class CSRFMiddleware(BaseHTTPMiddleware):
    """Validate session-bound CSRF tokens on mutation requests.

    The session token is read from the ``session`` cookie and the client
    token from the ``X-CSRF-Token`` header. Failures return ``403`` and are
    recorded as ``UNAUTHORIZED_ACCESS``.

    Args:
        app: The ASGI application.
        service: Audit service that derives tokens and records failures.
        cookie_name: Name of the session cookie.
        exempt_paths: Path prefixes that skip CSRF validation.
        exempt_check: Optional callable ``(request) -> bool`` for
            custom exemption logic (e.g. bearer-token service calls).
    """

    def __init__(
        self,
        app,
        service: SecurityAuditService,
        cookie_name: str = SESSION_COOKIE,
        exempt_paths: tuple[str, ...] = (),
        exempt_check: Callable[[Request], bool] | None = None,
    ) -> None:
        super().__init__(app)
        self._service = service
        self._cookie_name = cookie_name
        self._exempt_paths = exempt_paths
        self._exempt_check = exempt_check

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint,
    ) -> Response:
        if request.method in SAFE_METHODS:
            return await call_next(request)
        if _is_exempt(request.url.path, self._exempt_paths):
            return await call_next(request)
        if self._exempt_check is not None and self._exempt_check(request):
            return await call_next(request)

        session_token = request.cookies.get(self._cookie_name)
        header_token = request.headers.get(CSRF_TOKEN_HEADER)

        if not session_token:
            reason = 'no_session_token'
        elif not header_token:
            reason = 'missing_csrf_token'
        elif not self._service.validate_csrf_token(header_token, session_token):
            reason = 'csrf_token_mismatch'
        else:
            return await call_next(request)

        logger.warning('csrf_validation_failed', reason=reason, path=request.url.path)
        self._service.record(
            AuditEventType.UNAUTHORIZED_ACCESS,
            details={'reason': reason, 'guard': 'csrf'},
            context=request_context(request),
        )
        return JSONResponse(
            status_code=403,
            content={'error': 'csrf_validation_failed', 'detail': reason},
        )
