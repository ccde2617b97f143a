"""Bounded in-memory store of signed audit events.

Events are signed at creation, appended to a fixed-capacity ring buffer
(oldest evicted first), logged, and handed to an optional persistence
dispatcher for a best-effort durable write.

The buffer is a cache for recent-activity queries. Once an event is
evicted it is only available from the durable sink, if one is configured.
"""

from __future__ import annotations

import copy
import threading
import uuid
from collections import deque
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Mapping

from .errors import ValidationError
from .events import AuditEvent, AuditEventType, RequestContext
from .observability.logging import get_logger
from .observability.metrics import (
    AUDIT_BUFFER_EVENTS,
    AUDIT_EVENTS_RECORDED,
    AUDIT_TAMPER_DETECTIONS,
)
from .persistence import PersistenceDispatcher
from .signer import EventSigner, SignatureMismatch

logger = get_logger(__name__)

DEFAULT_CAPACITY = 10_000


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _coerce_event_type(event_type: AuditEventType | str) -> AuditEventType:
    if isinstance(event_type, AuditEventType):
        return event_type
    try:
        return AuditEventType(event_type)
    except ValueError:
        raise ValidationError('event_type', f'unknown event type {event_type!r}') from None


def _coerce_context(
    context: RequestContext | Mapping[str, Any] | None,
) -> RequestContext:
    if context is None:
        return RequestContext()
    if isinstance(context, RequestContext):
        return context
    return RequestContext(
        ip_address=context.get('ip_address') or context.get('ip'),
        user_agent=context.get('user_agent'),
        resource=context.get('resource'),
        action=context.get('action'),
    )


def _normalise_details(value: Any) -> Any:
    """Deep copy of ``value`` with every mapping key coerced to ``str``.

    Canonical JSON sorts keys, which fails on mixed key types, and would
    otherwise sign ``{1: x}`` and ``{'1': x}`` identically.
    """
    if isinstance(value, Mapping):
        return {str(k): _normalise_details(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalise_details(v) for v in value]
    return copy.deepcopy(value)


class EventStore:
    """Thread-safe ring buffer of signed audit events."""

    def __init__(
        self,
        signer: EventSigner,
        *,
        capacity: int = DEFAULT_CAPACITY,
        dispatcher: PersistenceDispatcher | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        if capacity < 1:
            raise ValidationError('capacity', 'must be >= 1')
        self._signer = signer
        self._events: deque[AuditEvent] = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self._dispatcher = dispatcher
        self._clock = clock

    @property
    def capacity(self) -> int:
        return self._events.maxlen or 0

    @property
    def signer(self) -> EventSigner:
        return self._signer

    @property
    def dispatcher(self) -> PersistenceDispatcher | None:
        return self._dispatcher

    def now(self) -> datetime:
        return self._clock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def record(
        self,
        event_type: AuditEventType | str,
        actor_id: str | int | None = None,
        details: Mapping[str, Any] | None = None,
        context: RequestContext | Mapping[str, Any] | None = None,
    ) -> AuditEvent:
        """Create, sign, and store an audit event.

        Durable persistence is scheduled in the background; its failure
        is logged and never raised here.
        """
        etype = _coerce_event_type(event_type)
        ctx = _coerce_context(context)

        unsigned = AuditEvent(
            id=str(uuid.uuid4()),
            timestamp=self._clock(),
            event_type=etype,
            actor_id=str(actor_id) if actor_id is not None else None,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            resource=ctx.resource,
            action=ctx.action,
            details=_normalise_details(details) if details else {},
        )
        event = replace(unsigned, signature=self._signer.sign(unsigned))

        with self._lock:
            self._events.append(event)
            size = len(self._events)

        AUDIT_EVENTS_RECORDED.labels(event_type=etype.value).inc()
        AUDIT_BUFFER_EVENTS.set(size)
        logger.info(
            'audit_event_recorded',
            event_type=etype.value,
            actor_id=event.actor_id or 'N/A',
            ip_address=event.ip_address or 'N/A',
        )

        if self._dispatcher is not None:
            self._dispatcher.submit(event)
        return event

    def snapshot(self) -> list[AuditEvent]:
        """Point-in-time copy of the buffer, oldest first."""
        with self._lock:
            return list(self._events)

    def events_for_actor(
        self, actor_id: str | int, *, since: datetime | None = None,
    ) -> list[AuditEvent]:
        actor = str(actor_id)
        return [
            e for e in self.snapshot()
            if e.actor_id == actor and (since is None or e.timestamp >= since)
        ]

    def verify(self, event: AuditEvent) -> bool:
        return self._signer.verify(event)

    def find_tampered(
        self, events: Iterable[AuditEvent] | None = None,
    ) -> list[SignatureMismatch]:
        """Return a mismatch result for every event that fails verification."""
        candidates = self.snapshot() if events is None else events
        mismatches = [
            m for m in (self._signer.check(e) for e in candidates) if m is not None
        ]
        if mismatches:
            AUDIT_TAMPER_DETECTIONS.inc(len(mismatches))
            logger.warning(
                'audit_tamper_detected',
                count=len(mismatches),
                event_ids=[m.event_id for m in mismatches[:20]],
            )
        return mismatches

    def purge_older_than(self, days: float = 90) -> int:
        """Drop buffered events older than ``days``. Returns the number removed."""
        if days < 0:
            raise ValidationError('days', 'must be >= 0')
        cutoff = self._clock() - timedelta(days=days)
        with self._lock:
            before = len(self._events)
            kept = [e for e in self._events if e.timestamp > cutoff]
            self._events.clear()
            self._events.extend(kept)
            removed = before - len(kept)
            size = len(self._events)
        AUDIT_BUFFER_EVENTS.set(size)
        logger.info('audit_buffer_purged', removed=removed, days_kept=days)
        return removed
