"""Unit tests for the audit engine's structlog processors."""

from __future__ import annotations

from audit_engine.observability.logging import (
    REDACTED,
    add_request_id,
    redact_secret_fields,
    request_id_ctx,
)


class TestRedactSecretFields:

    def test_masks_secret_keys(self):
        event = redact_secret_fields(None, 'info', {
            'event': 'csrf_token_issued',
            'session_token': 'sess-1',
            'csrf_token': 'abc',
            'actor_id': 'u1',
        })
        assert event == {
            'event': 'csrf_token_issued',
            'session_token': REDACTED,
            'csrf_token': REDACTED,
            'actor_id': 'u1',
        }

    def test_leaves_empty_values(self):
        event = redact_secret_fields(None, 'info', {'event': 'x', 'secret_key': ''})
        assert event['secret_key'] == ''


class TestAddRequestId:

    def test_injects_current_request_id(self):
        token = request_id_ctx.set('req-1')
        try:
            event = add_request_id(None, 'info', {'event': 'x'})
        finally:
            request_id_ctx.reset(token)
        assert event['request_id'] == 'req-1'

    def test_absent_outside_request(self):
        assert 'request_id' not in add_request_id(None, 'info', {'event': 'x'})
