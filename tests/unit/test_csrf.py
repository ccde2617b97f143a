"""CSRF token service and middleware tests.

Tests:
  - Round-trip: a token validates for its own session only
  - Validation of missing and empty values
  - Middleware: safe methods pass through
  - Middleware: mutations without cookie or header → 403
  - Middleware: mutations with wrong token → 403 and an audit event
  - Middleware: mutations with valid token → 200
  - Middleware: exempt paths and exempt_check bypass validation
"""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from audit_engine.api.middleware import CSRFMiddleware
from audit_engine.csrf import CSRF_TOKEN_HEADER, CSRFTokenService
from audit_engine.errors import ValidationError
from audit_engine.events import AuditEventType
from audit_engine.signer import EventSigner

# =====================================================================
# Token service
# =====================================================================


@pytest.fixture
def tokens(signer) -> CSRFTokenService:
    return CSRFTokenService(signer)


class TestCSRFTokenService:

    @pytest.mark.parametrize('session', ['s', 'session-abc', 'ünïcødé', 'x' * 500])
    def test_round_trip(self, tokens, session):
        assert tokens.validate_token(tokens.generate_token(session), session)

    def test_other_session_fails(self, tokens):
        assert not tokens.validate_token(tokens.generate_token('s1'), 's2')

    def test_token_is_hex_digest(self, tokens):
        token = tokens.generate_token('s1')
        assert len(token) == 64
        int(token, 16)

    def test_token_depends_on_secret(self, tokens):
        other = CSRFTokenService(EventSigner('another-secret-that-is-long-enough-123456'))
        assert other.generate_token('s1') != tokens.generate_token('s1')

    @pytest.mark.parametrize('token,session', [
        (None, 's1'),
        ('', 's1'),
        ('abc', None),
        ('abc', ''),
    ])
    def test_missing_values_fail(self, tokens, token, session):
        assert tokens.validate_token(token, session) is False

    def test_empty_session_round_trips(self, tokens):
        token = tokens.generate_token('')
        assert tokens.validate_token(token, '')
        assert not tokens.validate_token(token, 's1')
        assert not tokens.validate_token(token, None)

    def test_generate_rejects_non_string_session(self, tokens):
        with pytest.raises(ValidationError):
            tokens.generate_token(None)


# =====================================================================
# Middleware
# =====================================================================


def _make_app(service, **kwargs) -> FastAPI:
    app = FastAPI()

    @app.get('/api/v1/things')
    async def list_things():
        return {'ok': True}

    @app.post('/api/v1/things')
    async def create_thing():
        return {'created': True}

    @app.post('/auth/callback')
    async def callback():
        return {'ok': True}

    app.add_middleware(CSRFMiddleware, service=service, **kwargs)
    return app


def _client(app, session: str | None = 'sess-1') -> AsyncClient:
    cookies = {'session': session} if session else None
    return AsyncClient(
        transport=ASGITransport(app=app), base_url='http://test', cookies=cookies,
    )


def _unauthorized(service):
    return [
        e for e in service.store.snapshot()
        if e.event_type is AuditEventType.UNAUTHORIZED_ACCESS
    ]


@pytest.mark.asyncio
async def test_safe_method_passes(service):
    async with _client(_make_app(service), session=None) as client:
        resp = await client.get('/api/v1/things')
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_valid_token_passes(service):
    token = service.generate_csrf_token('sess-1')
    async with _client(_make_app(service)) as client:
        resp = await client.post('/api/v1/things', headers={CSRF_TOKEN_HEADER: token})
    assert resp.status_code == 200
    assert _unauthorized(service) == []


@pytest.mark.asyncio
async def test_missing_header_is_rejected(service):
    async with _client(_make_app(service)) as client:
        resp = await client.post('/api/v1/things')
    assert resp.status_code == 403
    assert resp.json() == {'error': 'csrf_validation_failed', 'detail': 'missing_csrf_token'}


@pytest.mark.asyncio
async def test_missing_session_is_rejected(service):
    token = service.generate_csrf_token('sess-1')
    async with _client(_make_app(service), session=None) as client:
        resp = await client.post('/api/v1/things', headers={CSRF_TOKEN_HEADER: token})
    assert resp.status_code == 403
    assert resp.json()['detail'] == 'no_session_token'


@pytest.mark.asyncio
async def test_token_for_other_session_is_rejected_and_audited(service):
    token = service.generate_csrf_token('someone-else')
    async with _client(_make_app(service)) as client:
        resp = await client.post(
            '/api/v1/things',
            headers={CSRF_TOKEN_HEADER: token, 'User-Agent': 'pytest-agent'},
        )

    assert resp.status_code == 403
    [event] = _unauthorized(service)
    assert event.details == {'reason': 'csrf_token_mismatch', 'guard': 'csrf'}
    assert event.resource == '/api/v1/things'
    assert event.action == 'POST'
    assert event.user_agent == 'pytest-agent'


@pytest.mark.asyncio
async def test_exempt_path_bypasses(service):
    app = _make_app(service, exempt_paths=('/auth/',))
    async with _client(app, session=None) as client:
        resp = await client.post('/auth/callback')
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_exempt_check_bypasses(service):
    app = _make_app(
        service,
        exempt_check=lambda request: request.headers.get('authorization', '').startswith('Bearer '),
    )
    async with _client(app, session=None) as client:
        resp = await client.post('/api/v1/things', headers={'Authorization': 'Bearer svc'})
    assert resp.status_code == 200
