"""Pytest configuration for audit_engine tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from prometheus_client import REGISTRY

from audit_engine.config.settings import AuditSettings
from audit_engine.event_store import EventStore
from audit_engine.service import create_audit_service
from audit_engine.signer import EventSigner

TEST_SECRET = 'test-audit-secret-0123456789abcdef-0123456789'


class FakeClock:
    """Controllable UTC clock for windowed queries."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> datetime:
        self.current += timedelta(seconds=seconds)
        return self.current


def metric_value(name: str, labels: dict[str, str] | None = None) -> float:
    """Current value of a Prometheus sample, 0.0 if never observed."""
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


@pytest.fixture
def secret() -> str:
    return TEST_SECRET


@pytest.fixture
def metric():
    """Read a Prometheus sample; tests assert on deltas."""
    return metric_value


@pytest.fixture
def signer() -> EventSigner:
    return EventSigner(TEST_SECRET)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(signer, clock) -> EventStore:
    return EventStore(signer, clock=clock)


@pytest.fixture
def settings() -> AuditSettings:
    return AuditSettings(secret_key=TEST_SECRET)


@pytest.fixture
def service(settings):
    svc = create_audit_service(settings)
    yield svc
    svc.close()
