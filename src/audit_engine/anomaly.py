"""Rule-based suspicious-activity detection over recent events.

The detector reads the event store's buffer for a single actor and applies
count thresholds over a trailing window. Thresholds come from
``AnomalyThresholds`` and are not calibrated for any particular traffic
profile; tune them per deployment.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from .config.settings import AnomalyThresholds
from .errors import ValidationError
from .event_store import EventStore
from .events import BULK_EVENT_TYPES, AuditEventType
from .observability.logging import get_logger
from .observability.metrics import SUSPICIOUS_ACTIVITY_FLAGS

logger = get_logger(__name__)

REASON_HIGH_RATE = 'Unusually high request rate'
REASON_FAILED_LOGINS = 'Multiple failed login attempts'
REASON_BULK_OPERATIONS = 'Multiple bulk operations'
REASON_EXPORTS = 'Multiple data exports'


@dataclass(frozen=True)
class SuspicionResult:
    """Verdict for one detection call. ``reasons`` is empty when not suspicious."""
    suspicious: bool
    reasons: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {'suspicious': self.suspicious, 'reasons': list(self.reasons)}


class AnomalyDetector:
    """Applies heuristic thresholds to an actor's recent events."""

    def __init__(
        self,
        store: EventStore,
        thresholds: AnomalyThresholds | None = None,
    ) -> None:
        self._store = store
        self._thresholds = thresholds or AnomalyThresholds()

    @property
    def thresholds(self) -> AnomalyThresholds:
        return self._thresholds

    def detect(
        self,
        actor_id: str | int,
        activity_label: str,
        *,
        now: datetime | None = None,
    ) -> SuspicionResult:
        """Check the actor's events in the trailing window.

        Each heuristic fires when its count is strictly greater than the
        threshold. A suspicious verdict is itself recorded as a
        ``SUSPICIOUS_ACTIVITY`` event for the actor.

        Args:
            actor_id: Principal to inspect.
            activity_label: Caller's name for the activity being checked.
            now: Reference instant; defaults to the store's clock.

        Returns:
            SuspicionResult with the reasons that fired, in a fixed order.
        """
        if actor_id is None or str(actor_id) == '':
            raise ValidationError('actor_id', 'must be non-empty')
        limits = self._thresholds
        now = now if now is not None else self._store.now()
        cutoff = now - timedelta(seconds=limits.window_seconds)

        # The window is open at its far edge.
        recent = [
            e for e in self._store.events_for_actor(actor_id, since=cutoff)
            if e.timestamp > cutoff
        ]

        failed_logins = bulk_ops = exports = 0
        for event in recent:
            if event.event_type is AuditEventType.LOGIN_FAILURE:
                failed_logins += 1
            elif event.event_type in BULK_EVENT_TYPES:
                bulk_ops += 1
            elif event.event_type is AuditEventType.EXPORT_DATA:
                exports += 1

        reasons: list[str] = []
        if len(recent) > limits.max_events:
            reasons.append(REASON_HIGH_RATE)
        if failed_logins > limits.max_failed_logins:
            reasons.append(REASON_FAILED_LOGINS)
        if bulk_ops > limits.max_bulk_operations:
            reasons.append(REASON_BULK_OPERATIONS)
        if exports > limits.max_exports:
            reasons.append(REASON_EXPORTS)

        if not reasons:
            return SuspicionResult(suspicious=False)

        SUSPICIOUS_ACTIVITY_FLAGS.inc()
        logger.warning(
            'suspicious_activity_detected',
            actor_id=str(actor_id),
            activity=activity_label,
            reasons=reasons,
        )
        self._store.record(
            AuditEventType.SUSPICIOUS_ACTIVITY,
            actor_id=actor_id,
            details={'reasons': list(reasons), 'activity': activity_label},
        )
        return SuspicionResult(suspicious=True, reasons=reasons)
