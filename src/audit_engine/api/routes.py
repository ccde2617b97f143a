"""Audit reporting and CSRF token endpoints.

Response contracts:
  GET /api/v1/audit/trail/{resource_type}/{resource_id} → 200 { events: [...] }
  GET /api/v1/audit/security-events                     → 200 { events: [...] }
  GET /api/v1/audit/users/{actor_id}/activity           → 200 { total_events, events_by_type, recent_events }
  GET /api/v1/audit/report                              → 200 { total_events, security_events, top_users, top_ips, event_distribution }
  GET /api/v1/audit/integrity                           → 200 { checked, tampered: [...] }
  GET /api/v1/csrf-token                                → 200 { csrf_token } | 401

Reads come from the in-memory buffer only.
"""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from ..csrf import SESSION_COOKIE
from ..reporting import DEFAULT_LIMIT
from ..service import SecurityAuditService


def create_audit_router(
    service: SecurityAuditService,
    *,
    cookie_name: str = SESSION_COOKIE,
) -> APIRouter:
    """Create the audit router bound to ``service``."""
    router = APIRouter(prefix='/api/v1', tags=['audit'])

    @router.get('/audit/trail/{resource_type}/{resource_id}')
    async def audit_trail(
        resource_type: str,
        resource_id: str,
        limit: int = Query(DEFAULT_LIMIT),
    ):
        events = service.get_audit_trail(resource_type, resource_id, limit)
        return {'events': [e.to_dict() for e in events]}

    @router.get('/audit/security-events')
    async def security_events(limit: int = Query(DEFAULT_LIMIT)):
        events = service.get_security_events(limit)
        return {'events': [e.to_dict() for e in events]}

    @router.get('/audit/users/{actor_id}/activity')
    async def user_activity(actor_id: str, hours: float = Query(24.0)):
        return service.get_user_activity(actor_id, hours).to_dict()

    @router.get('/audit/report')
    async def security_report():
        return service.generate_security_report().to_dict()

    @router.get('/audit/integrity')
    async def integrity():
        checked = len(service.store)
        tampered = service.find_tampered_events()
        return {
            'checked': checked,
            'tampered': [asdict(m) for m in tampered],
        }

    @router.get('/csrf-token')
    async def csrf_token(request: Request):
        session_token = request.cookies.get(cookie_name)
        if not session_token:
            return JSONResponse(
                status_code=401,
                content={
                    'error': 'session_required',
                    'detail': f'Missing {cookie_name} cookie',
                },
            )
        return {'csrf_token': service.generate_csrf_token(session_token)}

    return router
