"""Prometheus metrics for the audit engine.

Metric names follow Prometheus conventions. Every counter here is
incremented by engine code, never by the HTTP layer, so embedded
deployments without the API still export them.

Usage::

    from audit_engine.observability.metrics import AUDIT_EVENTS_RECORDED

    AUDIT_EVENTS_RECORDED.labels(event_type="LOGIN_FAILURE").inc()
"""

from __future__ import annotations

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

# ---------------------------------------------------------------------------
# Event store
# ---------------------------------------------------------------------------

AUDIT_EVENTS_RECORDED = Counter(
    "audit_events_recorded_total",
    "Audit events recorded, by event type.",
    labelnames=["event_type"],
    registry=REGISTRY,
)

AUDIT_BUFFER_EVENTS = Gauge(
    "audit_buffer_events",
    "Events currently held in the in-memory audit buffer.",
    registry=REGISTRY,
)

AUDIT_PERSIST_FAILURES = Counter(
    "audit_persist_failures_total",
    "Durable audit writes that failed or timed out.",
    registry=REGISTRY,
)

AUDIT_TAMPER_DETECTIONS = Counter(
    "audit_tamper_detections_total",
    "Stored audit events whose signature failed verification.",
    registry=REGISTRY,
)

# ---------------------------------------------------------------------------
# Request guards
# ---------------------------------------------------------------------------

RATE_LIMIT_REJECTIONS = Counter(
    "audit_rate_limit_rejections_total",
    "Requests rejected by the fixed-window rate limiter.",
    registry=REGISTRY,
)

SANITIZER_VIOLATIONS = Counter(
    "audit_sanitizer_violations_total",
    "Inputs neutralised by the input guard, by kind (sql, html).",
    labelnames=["kind"],
    registry=REGISTRY,
)

SUSPICIOUS_ACTIVITY_FLAGS = Counter(
    "audit_suspicious_activity_total",
    "Suspicious-activity verdicts returned by the anomaly detector.",
    registry=REGISTRY,
)


def metrics_text() -> tuple[bytes, str]:
    """Generate Prometheus exposition text and content-type header."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
