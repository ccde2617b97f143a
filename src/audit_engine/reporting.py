"""Read-only aggregation over the in-memory audit buffer.

Every query reads a point-in-time snapshot of the event store, so results
never include events that have already been evicted from the ring buffer.
Long-retention trails must be served from the durable sink instead.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List

from .errors import ValidationError
from .event_store import EventStore
from .events import SECURITY_EVENT_TYPES, AuditEvent
from .sinks import RESOURCE_ID_KEYS

RECENT_EVENTS_LIMIT = 20
TOP_N = 10
DEFAULT_LIMIT = 100


@dataclass(frozen=True)
class UserActivity:
    """Per-actor activity summary over a lookback window."""

    actor_id: str
    hours: float
    total_events: int
    events_by_type: Dict[str, int] = field(default_factory=dict)
    recent_events: List[AuditEvent] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "actor_id": self.actor_id,
            "hours": self.hours,
            "total_events": self.total_events,
            "events_by_type": dict(self.events_by_type),
            "recent_events": [e.to_dict() for e in self.recent_events],
        }


@dataclass(frozen=True)
class SecurityReport:
    """Buffer-wide aggregate of event volume and top offenders."""

    total_events: int
    security_events: int
    top_users: List[Dict[str, Any]] = field(default_factory=list)
    top_ips: List[Dict[str, Any]] = field(default_factory=list)
    event_distribution: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_events": self.total_events,
            "security_events": self.security_events,
            "top_users": [dict(u) for u in self.top_users],
            "top_ips": [dict(i) for i in self.top_ips],
            "event_distribution": dict(self.event_distribution),
        }


def _check_limit(limit: int) -> None:
    if limit < 0:
        raise ValidationError("limit", "must be >= 0")


def _references(event: AuditEvent, keys: tuple[str, ...], resource_id: str) -> bool:
    details = event.details
    for key in keys:
        value = details.get(key)
        if value is not None and str(value) == resource_id:
            return True
    return False


class AuditReporter:
    """Trail, feed and summary queries backed by an :class:`EventStore`."""

    def __init__(self, store: EventStore) -> None:
        self._store = store

    def get_audit_trail(
        self,
        resource_type: str,
        resource_id: str | int,
        limit: int = DEFAULT_LIMIT,
    ) -> List[AuditEvent]:
        """Events whose details reference the resource, newest first.

        Matches ``details`` keys ``id``, ``case_id``, ``caseId``,
        ``resource_id`` and ``<resource_type>_id``. Ids compare as strings,
        so ``42`` and ``"42"`` refer to the same resource.
        """
        _check_limit(limit)
        if resource_id is None or str(resource_id) == "":
            raise ValidationError("resource_id", "must be non-empty")
        wanted = str(resource_id)
        keys = RESOURCE_ID_KEYS
        if resource_type:
            typed_key = f"{resource_type}_id"
            if typed_key not in keys:
                keys = keys + (typed_key,)

        trail: List[AuditEvent] = []
        for event in reversed(self._store.snapshot()):
            if len(trail) >= limit:
                break
            if _references(event, keys, wanted):
                trail.append(event)
        return trail

    def get_security_events(self, limit: int = DEFAULT_LIMIT) -> List[AuditEvent]:
        """Security-violation events, newest first."""
        _check_limit(limit)
        feed: List[AuditEvent] = []
        for event in reversed(self._store.snapshot()):
            if len(feed) >= limit:
                break
            if event.event_type in SECURITY_EVENT_TYPES:
                feed.append(event)
        return feed

    def get_user_activity(self, actor_id: str | int, hours: float = 24) -> UserActivity:
        """Summarise one actor's events over the last ``hours``."""
        if hours <= 0:
            raise ValidationError("hours", "must be > 0")
        if actor_id is None or str(actor_id) == "":
            raise ValidationError("actor_id", "must be non-empty")
        cutoff = self._store.now() - timedelta(hours=hours)
        events = [
            e for e in self._store.events_for_actor(actor_id, since=cutoff)
            if e.timestamp > cutoff
        ]
        by_type = Counter(e.event_type.value for e in events)
        return UserActivity(
            actor_id=str(actor_id),
            hours=hours,
            total_events=len(events),
            events_by_type=dict(by_type),
            recent_events=list(reversed(events[-RECENT_EVENTS_LIMIT:])),
        )

    def generate_security_report(self) -> SecurityReport:
        """Aggregate the whole buffer into a :class:`SecurityReport`."""
        events = self._store.snapshot()
        users: Counter[str] = Counter()
        ips: Counter[str] = Counter()
        distribution: Counter[str] = Counter()
        security = 0
        for event in events:
            if event.actor_id:
                users[event.actor_id] += 1
            if event.ip_address:
                ips[event.ip_address] += 1
            distribution[event.event_type.value] += 1
            if event.event_type in SECURITY_EVENT_TYPES:
                security += 1

        # most_common keeps first-seen order among equal counts.
        return SecurityReport(
            total_events=len(events),
            security_events=security,
            top_users=[
                {"actor_id": actor, "event_count": count}
                for actor, count in users.most_common(TOP_N)
            ],
            top_ips=[
                {"ip_address": ip, "event_count": count}
                for ip, count in ips.most_common(TOP_N)
            ],
            event_distribution=dict(distribution),
        )
