"""Audit event data models.

Defines the closed set of audit event types and the immutable event record.
Kept free of signing and storage logic so every other module can import it
without cycles.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class AuditEventType(str, Enum):
    """Types of events to audit."""
    # Authentication
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILURE = "LOGIN_FAILURE"
    LOGOUT = "LOGOUT"

    # Case lifecycle
    CASE_CREATED = "CASE_CREATED"
    CASE_UPDATED = "CASE_UPDATED"
    CASE_DELETED = "CASE_DELETED"
    CASE_VIEWED = "CASE_VIEWED"

    # Sensitive operations
    BULK_DELETE = "BULK_DELETE"
    BULK_UPDATE = "BULK_UPDATE"
    EXPORT_DATA = "EXPORT_DATA"

    # Security violations
    UNAUTHORIZED_ACCESS = "UNAUTHORIZED_ACCESS"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"
    SQL_INJECTION_ATTEMPT = "SQL_INJECTION_ATTEMPT"
    XSS_ATTEMPT = "XSS_ATTEMPT"

    # System
    SYSTEM_ERROR = "SYSTEM_ERROR"
    CONFIGURATION_CHANGE = "CONFIGURATION_CHANGE"


SECURITY_EVENT_TYPES: frozenset[AuditEventType] = frozenset({
    AuditEventType.LOGIN_FAILURE,
    AuditEventType.UNAUTHORIZED_ACCESS,
    AuditEventType.RATE_LIMIT_EXCEEDED,
    AuditEventType.SUSPICIOUS_ACTIVITY,
    AuditEventType.SQL_INJECTION_ATTEMPT,
    AuditEventType.XSS_ATTEMPT,
})

BULK_EVENT_TYPES: frozenset[AuditEventType] = frozenset({
    AuditEventType.BULK_DELETE,
    AuditEventType.BULK_UPDATE,
})


@dataclass(frozen=True, slots=True)
class RequestContext:
    """Network and target context supplied by the calling request."""

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    resource: Optional[str] = None
    action: Optional[str] = None


@dataclass(frozen=True)
class AuditEvent:
    """Signed, append-only audit record.

    ``signature`` is computed by :class:`audit_engine.signer.EventSigner`
    over every other field. Any later change to a field (including the
    contents of ``details``) makes verification fail.
    """

    id: str
    timestamp: datetime
    event_type: AuditEventType
    actor_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    resource: Optional[str] = None
    action: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    signature: str = ""

    @property
    def is_security_event(self) -> bool:
        return self.event_type in SECURITY_EVENT_TYPES

    def signed_fields(self) -> Dict[str, Any]:
        """Fields covered by the signature, in JSON-safe form."""
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "actor_id": self.actor_id,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "resource": self.resource,
            "action": self.action,
            "details": self.details,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {**self.signed_fields(), "signature": self.signature}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditEvent":
        """Reconstruct an event written by :meth:`to_dict`."""
        return cls(
            id=data["id"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            event_type=AuditEventType(data["event_type"]),
            actor_id=data.get("actor_id"),
            ip_address=data.get("ip_address"),
            user_agent=data.get("user_agent"),
            resource=data.get("resource"),
            action=data.get("action"),
            details=data.get("details") or {},
            signature=data.get("signature", ""),
        )
