"""Audit engine error hierarchy.

Only conditions the caller must handle synchronously are exceptions.
Security decisions (rate-limit rejection, signature mismatch) are returned
as typed results instead.
"""

from __future__ import annotations


class AuditEngineError(Exception):
    """Base class for audit engine errors."""


class ValidationError(AuditEngineError, ValueError):
    """Raised for malformed call arguments (negative limits, empty ids)."""

    def __init__(self, field: str, reason: str) -> None:
        self.field = field
        self.reason = reason
        super().__init__(f'{field}: {reason}')


class PersistenceFailure(AuditEngineError):
    """Raised by a durable sink when a write could not be completed.

    The persistence dispatcher catches it; it never reaches the code
    that recorded the event.
    """

    def __init__(self, event_id: str, reason: str) -> None:
        self.event_id = event_id
        self.reason = reason
        super().__init__(f'Failed to persist audit event {event_id}: {reason}')
