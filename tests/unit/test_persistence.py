"""Unit tests for durable audit sinks and the background dispatcher.

Uses httpx.MockTransport to verify PostgREST writes without a real Supabase.
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from typing import Any

import httpx
import pytest

from audit_engine.db.errors import SupabaseAuthError, SupabaseConflictError, SupabaseError
from audit_engine.db.supabase_client import SupabaseClient
from audit_engine.errors import PersistenceFailure
from audit_engine.event_store import EventStore
from audit_engine.events import AuditEvent, AuditEventType
from audit_engine.persistence import PersistenceDispatcher
from audit_engine.sinks import (
    InMemoryActivitySink,
    JsonlActivitySink,
    SupabaseActivitySink,
    event_to_row,
)


class FailingSink:
    def __init__(self) -> None:
        self.calls = 0

    async def write(self, event: AuditEvent) -> None:
        self.calls += 1
        raise PersistenceFailure(event.id, 'disk on fire')


class SlowSink:
    async def write(self, event: AuditEvent) -> None:
        await asyncio.sleep(5)


def _event(**details: Any) -> AuditEvent:
    return AuditEvent(
        id='evt-1',
        timestamp=datetime(2026, 1, 1, tzinfo=timezone.utc),
        event_type=AuditEventType.CASE_UPDATED,
        actor_id='7',
        details=details,
        signature='sig',
    )


# ── Row mapping ─────────────────────────────────────────────────────


class TestEventToRow:

    def test_row_shape(self):
        row = event_to_row(_event(case_id=42, note='x'))
        assert row == {
            'id': 'evt-1',
            'resource_id': '42',
            'actor_id': '7',
            'event_type': 'CASE_UPDATED',
            'details': json.dumps({'case_id': 42, 'note': 'x'}, sort_keys=True),
            'signature': 'sig',
            'created_at': '2026-01-01T00:00:00+00:00',
        }

    def test_resource_id_falls_back_to_id(self):
        assert event_to_row(_event(id=5))['resource_id'] == '5'

    def test_resource_id_is_nullable(self):
        assert event_to_row(_event(note='x'))['resource_id'] is None


# ── JSONL sink ──────────────────────────────────────────────────────


class TestJsonlActivitySink:

    def test_persisted_events_verify(self, tmp_path, signer):
        sink = JsonlActivitySink(tmp_path / 'audit' / 'events.jsonl')
        dispatcher = PersistenceDispatcher(sink)
        store = EventStore(signer, dispatcher=dispatcher)
        try:
            recorded = [
                store.record(AuditEventType.CASE_CREATED, actor_id='u1', details={'id': n})
                for n in range(3)
            ]
            assert dispatcher.flush(5)
        finally:
            dispatcher.close()

        persisted = list(sink.read_events())
        assert {e.id for e in persisted} == {e.id for e in recorded}
        assert all(signer.verify(e) for e in persisted)

    def test_malformed_lines_are_skipped(self, tmp_path):
        path = tmp_path / 'events.jsonl'
        sink = JsonlActivitySink(path)
        asyncio.run(sink.write(_event(id=1)))
        with open(path, 'a', encoding='utf-8') as f:
            f.write('{not json\n\n')

        assert [e.id for e in sink.read_events()] == ['evt-1']

    def test_missing_file_yields_nothing(self, tmp_path):
        sink = JsonlActivitySink(tmp_path / 'events.jsonl')
        assert list(sink.read_events()) == []

    def test_io_error_becomes_persistence_failure(self, tmp_path):
        sink = JsonlActivitySink(tmp_path / 'events.jsonl')
        sink.path = tmp_path  # a directory cannot be opened for append
        with pytest.raises(PersistenceFailure) as exc_info:
            asyncio.run(sink.write(_event()))
        assert exc_info.value.event_id == 'evt-1'


# ── Dispatcher ──────────────────────────────────────────────────────


class TestPersistenceDispatcher:

    def test_failing_sink_never_reaches_caller(self, signer, metric):
        sink = FailingSink()
        dispatcher = PersistenceDispatcher(sink)
        store = EventStore(signer, dispatcher=dispatcher)
        before = metric('audit_persist_failures_total')
        try:
            event = store.record(AuditEventType.LOGIN_FAILURE, actor_id='u1')
            assert dispatcher.flush(5)
        finally:
            dispatcher.close()

        assert sink.calls == 1
        assert store.snapshot() == [event]
        assert metric('audit_persist_failures_total') == before + 1

    def test_slow_sink_times_out(self, signer, metric):
        dispatcher = PersistenceDispatcher(SlowSink(), timeout_seconds=0.05)
        store = EventStore(signer, dispatcher=dispatcher)
        before = metric('audit_persist_failures_total')
        try:
            store.record(AuditEventType.LOGIN_FAILURE, actor_id='u1')
            assert dispatcher.flush(5)
        finally:
            dispatcher.close()

        assert metric('audit_persist_failures_total') == before + 1

    def test_submit_after_close_is_skipped(self):
        sink = InMemoryActivitySink()
        dispatcher = PersistenceDispatcher(sink)
        dispatcher.close()

        dispatcher.submit(_event())

        assert dispatcher.pending == 0
        assert sink.rows == []

    def test_flush_without_writes(self):
        dispatcher = PersistenceDispatcher(InMemoryActivitySink())
        assert dispatcher.flush(0.1)
        dispatcher.close()


# ── Supabase sink ───────────────────────────────────────────────────


def _make_sink(handler, table: str = 'public.audit_events') -> SupabaseActivitySink:
    transport = httpx.MockTransport(handler)
    client = httpx.AsyncClient(transport=transport)
    sc = SupabaseClient(
        supabase_url='https://test.supabase.co',
        service_role_key='svc-key',
        http_client=client,
    )
    return SupabaseActivitySink(sc, table=table)


@pytest.mark.asyncio
async def test_supabase_sink_inserts_row():
    seen: dict[str, Any] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        seen['method'] = request.method
        seen['url'] = str(request.url)
        seen['body'] = json.loads(request.content)
        seen['headers'] = dict(request.headers)
        return httpx.Response(201)

    sink = _make_sink(handler)
    await sink.write(_event(caseId='c-9'))

    assert seen['method'] == 'POST'
    assert seen['url'] == 'https://test.supabase.co/rest/v1/audit_events'
    assert seen['headers']['content-profile'] == 'public'
    assert seen['headers']['prefer'] == 'return=minimal'
    assert seen['headers']['authorization'] == 'Bearer svc-key'
    assert seen['body']['resource_id'] == 'c-9'
    assert seen['body']['event_type'] == 'CASE_UPDATED'
    assert json.loads(seen['body']['details']) == {'caseId': 'c-9'}


@pytest.mark.asyncio
async def test_supabase_sink_custom_schema():
    seen: dict[str, Any] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        seen['url'] = str(request.url)
        seen['profile'] = request.headers.get('content-profile')
        return httpx.Response(201)

    await _make_sink(handler, table='audit.events').write(_event())

    assert seen['url'].endswith('/rest/v1/events')
    assert seen['profile'] == 'audit'


@pytest.mark.asyncio
@pytest.mark.parametrize('status,error,retryable', [
    (401, SupabaseAuthError, False),
    (409, SupabaseConflictError, False),
    (503, SupabaseError, True),
])
async def test_supabase_sink_raises_on_error(status, error, retryable):
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json={'message': 'nope', 'code': 'X1'})

    with pytest.raises(error) as exc_info:
        await _make_sink(handler).write(_event())
    assert exc_info.value.status_code == status
    assert exc_info.value.table == 'audit_events'
    assert exc_info.value.retryable is retryable
    assert 'table=audit_events' in str(exc_info.value)
    assert 'svc-key' not in str(exc_info.value)


def test_supabase_client_repr_redacts_key():
    sc = SupabaseClient(supabase_url='https://x.supabase.co', service_role_key='svc-key')
    assert 'svc-key' not in repr(sc)
