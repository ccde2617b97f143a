"""Security & audit service facade.

``SecurityAuditService`` wires the signer, event store, rate limiter,
input guard, anomaly detector, CSRF token service and reporter around a
single process secret. The host application builds one instance at
startup with :func:`create_audit_service` and injects it where needed;
there are no module-level singletons.

Usage::

    from audit_engine import AuditEventType, create_audit_service

    audit = create_audit_service()          # reads AUDIT_* env vars
    audit.record(AuditEventType.CASE_CREATED, actor_id=7, details={"id": 42})
    decision = audit.check_rate_limit("user:7")
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Mapping

from .anomaly import AnomalyDetector, SuspicionResult
from .config.settings import AuditSettings, SecretValidationError
from .csrf import CSRFTokenService
from .db.supabase_client import SupabaseClient
from .event_store import EventStore
from .events import AuditEvent, AuditEventType, RequestContext
from .input_guard import InputGuard
from .observability.logging import get_logger
from .persistence import PersistenceDispatcher
from .rate_limiter import (
    DEFAULT_RATE_LIMIT,
    FixedWindowRateLimiter,
    RateLimitConfig,
    RateLimitDecision,
)
from .reporting import DEFAULT_LIMIT, AuditReporter, SecurityReport, UserActivity
from .signer import EventSigner, SignatureMismatch
from .sinks import ActivitySink, JsonlActivitySink, SupabaseActivitySink

logger = get_logger(__name__)

ContextLike = RequestContext | Mapping[str, Any] | None


def build_sink(settings: AuditSettings) -> ActivitySink | None:
    """Construct the durable sink selected by ``settings.persistence``."""
    if settings.persistence == "file":
        return JsonlActivitySink(settings.persistence_path)
    if settings.persistence == "supabase":
        client = SupabaseClient(
            supabase_url=settings.supabase_url,
            service_role_key=settings.supabase_service_role_key,
            timeout_seconds=settings.persist_timeout_seconds,
        )
        return SupabaseActivitySink(client, table=settings.supabase_table)
    return None


class SecurityAuditService:
    """Single entry point for recording, guarding and reporting."""

    def __init__(
        self,
        settings: AuditSettings,
        *,
        store: EventStore,
        rate_limiter: FixedWindowRateLimiter,
        guard: InputGuard,
        detector: AnomalyDetector,
        csrf: CSRFTokenService,
        reporter: AuditReporter,
    ) -> None:
        self.settings = settings
        self.store = store
        self.rate_limiter = rate_limiter
        self.guard = guard
        self.detector = detector
        self.csrf = csrf
        self.reporter = reporter

    def __repr__(self) -> str:
        return (
            f"SecurityAuditService(environment={self.settings.environment!r}, "
            f"persistence={self.settings.persistence!r}, buffered={len(self.store)})"
        )

    # ── Recording ──────────────────────────────────────────────────

    def record(
        self,
        event_type: AuditEventType | str,
        actor_id: str | int | None = None,
        details: Mapping[str, Any] | None = None,
        context: ContextLike = None,
    ) -> AuditEvent:
        return self.store.record(
            event_type, actor_id=actor_id, details=details, context=context,
        )

    # ── Guards ─────────────────────────────────────────────────────

    def check_rate_limit(
        self,
        identifier: str,
        config: RateLimitConfig = DEFAULT_RATE_LIMIT,
        *,
        context: ContextLike = None,
    ) -> RateLimitDecision:
        return self.rate_limiter.check(identifier, config, context=context)

    def sanitize_input(
        self, text: Any, *, actor_id: str | int | None = None, context: ContextLike = None,
    ) -> str:
        return self.guard.sanitize_input(text, actor_id=actor_id, context=context)

    def sanitize_html(
        self, markup: Any, *, actor_id: str | int | None = None, context: ContextLike = None,
    ) -> str:
        return self.guard.sanitize_html(markup, actor_id=actor_id, context=context)

    def detect_suspicious_activity(
        self, actor_id: str | int, activity_label: str, *, now: datetime | None = None,
    ) -> SuspicionResult:
        return self.detector.detect(actor_id, activity_label, now=now)

    # ── CSRF ───────────────────────────────────────────────────────

    def generate_csrf_token(self, session_token: str) -> str:
        return self.csrf.generate_token(session_token)

    def validate_csrf_token(self, token: str | None, session_token: str | None) -> bool:
        return self.csrf.validate_token(token, session_token)

    # ── Reporting ──────────────────────────────────────────────────

    def get_audit_trail(
        self, resource_type: str, resource_id: str | int, limit: int = DEFAULT_LIMIT,
    ) -> List[AuditEvent]:
        return self.reporter.get_audit_trail(resource_type, resource_id, limit)

    def get_security_events(self, limit: int = DEFAULT_LIMIT) -> List[AuditEvent]:
        return self.reporter.get_security_events(limit)

    def get_user_activity(self, actor_id: str | int, hours: float = 24) -> UserActivity:
        return self.reporter.get_user_activity(actor_id, hours)

    def generate_security_report(self) -> SecurityReport:
        return self.reporter.generate_security_report()

    # ── Integrity and retention ────────────────────────────────────

    def verify_event(self, event: AuditEvent) -> bool:
        return self.store.verify(event)

    def find_tampered_events(self) -> List[SignatureMismatch]:
        return self.store.find_tampered()

    def purge_older_than(self, days: float = 90) -> int:
        return self.store.purge_older_than(days)

    # ── Lifecycle ──────────────────────────────────────────────────

    def flush(self, timeout: float | None = None) -> bool:
        """Wait for in-flight durable writes. True when none are left."""
        dispatcher = self.store.dispatcher
        if dispatcher is None:
            return True
        return dispatcher.flush(timeout)

    def close(self, timeout: float = 5.0) -> None:
        dispatcher = self.store.dispatcher
        if dispatcher is not None:
            dispatcher.close(timeout)
        logger.info("audit_service_closed", buffered_events=len(self.store))


def create_audit_service(
    settings: AuditSettings | None = None,
    *,
    sink: ActivitySink | None = None,
) -> SecurityAuditService:
    """Build a fully wired service.

    Args:
        settings: Engine settings. Defaults to ``AuditSettings.from_env()``.
        sink: Durable sink override. When None, the sink is chosen by
            ``settings.persistence``.

    Returns:
        A ready-to-use SecurityAuditService.

    Raises:
        SecretValidationError: If the signing secret is missing or too short.
        ValueError: If any other setting is invalid.
    """
    if settings is None:
        settings = AuditSettings.from_env()

    errors = settings.validate()
    if errors:
        secret_errors = [e for e in errors if e.startswith("AUDIT_SECRET_KEY")]
        if secret_errors:
            raise SecretValidationError(
                missing=["AUDIT_SECRET_KEY"] if not settings.secret_key.strip() else [],
                invalid=[] if not settings.secret_key.strip() else secret_errors,
            )
        raise ValueError(
            "Audit settings validation failed:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )

    signer = EventSigner(settings.secret_key)
    if sink is None:
        sink = build_sink(settings)
    dispatcher = (
        PersistenceDispatcher(sink, timeout_seconds=settings.persist_timeout_seconds)
        if sink is not None
        else None
    )
    store = EventStore(
        signer, capacity=settings.buffer_capacity, dispatcher=dispatcher,
    )

    service = SecurityAuditService(
        settings,
        store=store,
        rate_limiter=FixedWindowRateLimiter(store),
        guard=InputGuard(store),
        detector=AnomalyDetector(store, settings.anomaly),
        csrf=CSRFTokenService(signer),
        reporter=AuditReporter(store),
    )
    logger.info(
        "audit_service_created",
        environment=settings.environment,
        persistence=settings.persistence if sink is not None else "none",
        buffer_capacity=settings.buffer_capacity,
    )
    return service
