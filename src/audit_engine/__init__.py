"""Security & audit engine.

Tamper-evident audit events, fixed-window rate limiting, input
sanitization, suspicious-activity heuristics, CSRF tokens and audit
reporting behind a single injectable service.
"""

from .anomaly import AnomalyDetector, SuspicionResult
from .config import AnomalyThresholds, AuditSettings, SecretValidationError
from .csrf import CSRFTokenService
from .errors import AuditEngineError, PersistenceFailure, ValidationError
from .event_store import EventStore
from .events import SECURITY_EVENT_TYPES, AuditEvent, AuditEventType, RequestContext
from .input_guard import InputGuard
from .rate_limiter import FixedWindowRateLimiter, RateLimitConfig, RateLimitDecision
from .reporting import AuditReporter, SecurityReport, UserActivity
from .service import SecurityAuditService, create_audit_service
from .signer import EventSigner, SignatureMismatch

__version__ = "0.1.0"

__all__ = [
    "AnomalyDetector",
    "AnomalyThresholds",
    "AuditEngineError",
    "AuditEvent",
    "AuditEventType",
    "AuditReporter",
    "AuditSettings",
    "CSRFTokenService",
    "EventSigner",
    "EventStore",
    "FixedWindowRateLimiter",
    "InputGuard",
    "PersistenceFailure",
    "RateLimitConfig",
    "RateLimitDecision",
    "RequestContext",
    "SECURITY_EVENT_TYPES",
    "SecurityAuditService",
    "SecurityReport",
    "SignatureMismatch",
    "SuspicionResult",
    "UserActivity",
    "ValidationError",
    "create_audit_service",
]
