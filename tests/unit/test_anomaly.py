"""Unit tests for suspicious-activity heuristics."""

from __future__ import annotations

import pytest

from audit_engine.anomaly import (
    REASON_BULK_OPERATIONS,
    REASON_EXPORTS,
    REASON_FAILED_LOGINS,
    REASON_HIGH_RATE,
    AnomalyDetector,
)
from audit_engine.config.settings import AnomalyThresholds
from audit_engine.errors import ValidationError
from audit_engine.events import AuditEventType


@pytest.fixture
def detector(store) -> AnomalyDetector:
    return AnomalyDetector(store)


def _record(store, event_type, count, actor='u1'):
    for _ in range(count):
        store.record(event_type, actor_id=actor)


def _suspicious_events(store):
    return [e for e in store.snapshot() if e.event_type is AuditEventType.SUSPICIOUS_ACTIVITY]


class TestThresholds:

    def test_quiet_actor(self, detector, store):
        _record(store, AuditEventType.CASE_VIEWED, 3)
        result = detector.detect('u1', 'view')
        assert not result.suspicious
        assert result.reasons == []
        assert _suspicious_events(store) == []

    def test_failed_logins_at_threshold_are_not_flagged(self, detector, store):
        _record(store, AuditEventType.LOGIN_FAILURE, 5)
        assert not detector.detect('u1', 'login').suspicious

    def test_failed_logins_above_threshold(self, detector, store):
        _record(store, AuditEventType.LOGIN_FAILURE, 6)
        result = detector.detect('u1', 'login')
        assert result.suspicious
        assert result.reasons == [REASON_FAILED_LOGINS]

    def test_high_request_rate(self, detector, store):
        _record(store, AuditEventType.CASE_VIEWED, 51)
        assert detector.detect('u1', 'view').reasons == [REASON_HIGH_RATE]

    def test_bulk_operations(self, detector, store):
        _record(store, AuditEventType.BULK_DELETE, 2)
        _record(store, AuditEventType.BULK_UPDATE, 2)
        assert detector.detect('u1', 'bulk').reasons == [REASON_BULK_OPERATIONS]

    def test_exports(self, detector, store):
        _record(store, AuditEventType.EXPORT_DATA, 3)
        assert detector.detect('u1', 'export').reasons == [REASON_EXPORTS]

    def test_reasons_keep_fixed_order(self, detector, store):
        _record(store, AuditEventType.EXPORT_DATA, 3)
        _record(store, AuditEventType.LOGIN_FAILURE, 6)
        assert detector.detect('u1', 'mixed').reasons == [
            REASON_FAILED_LOGINS,
            REASON_EXPORTS,
        ]

    def test_custom_thresholds(self, store):
        detector = AnomalyDetector(store, AnomalyThresholds(max_exports=0))
        _record(store, AuditEventType.EXPORT_DATA, 1)
        assert detector.detect('u1', 'export').reasons == [REASON_EXPORTS]


class TestWindow:

    def test_old_events_are_ignored(self, detector, store, clock):
        _record(store, AuditEventType.LOGIN_FAILURE, 6)
        clock.advance(61)
        assert not detector.detect('u1', 'login').suspicious

    def test_event_exactly_at_window_edge_is_excluded(self, detector, store, clock):
        _record(store, AuditEventType.LOGIN_FAILURE, 6)
        clock.advance(60)
        assert not detector.detect('u1', 'login').suspicious

    def test_other_actors_do_not_count(self, detector, store):
        _record(store, AuditEventType.LOGIN_FAILURE, 6, actor='u2')
        assert not detector.detect('u1', 'login').suspicious

    def test_integer_actor_matches_string_ids(self, detector, store):
        _record(store, AuditEventType.LOGIN_FAILURE, 6, actor=7)
        assert detector.detect(7, 'login').suspicious


class TestVerdictRecording:

    def test_suspicious_verdict_is_recorded(self, detector, store, metric):
        before = metric('audit_suspicious_activity_total')
        _record(store, AuditEventType.EXPORT_DATA, 3)

        detector.detect('u1', 'nightly-export')

        [event] = _suspicious_events(store)
        assert event.actor_id == 'u1'
        assert event.details == {'reasons': [REASON_EXPORTS], 'activity': 'nightly-export'}
        assert store.verify(event)
        assert metric('audit_suspicious_activity_total') == before + 1

    def test_empty_actor_is_rejected(self, detector):
        with pytest.raises(ValidationError):
            detector.detect('', 'login')

    def test_result_to_dict(self, detector, store):
        _record(store, AuditEventType.EXPORT_DATA, 3)
        assert detector.detect('u1', 'x').to_dict() == {
            'suspicious': True,
            'reasons': [REASON_EXPORTS],
        }
