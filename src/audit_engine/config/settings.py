"""Audit engine configuration settings.

AuditSettings is the single configuration object accepted by
create_audit_service(). It is intentionally a plain dataclass (not
env-coupled) so tests can inject config without touching os.environ.

Security invariants:
  - The signing secret is never included in ``str()`` or ``repr()`` output.
  - There is no default secret. A missing or short ``AUDIT_SECRET_KEY``
    fails validation, and the service refuses to start.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

PersistenceBackend = Literal['none', 'file', 'supabase']

MIN_SECRET_LENGTH = 32
DEFAULT_BUFFER_CAPACITY = 10_000
_PERSISTENCE_BACKENDS = ('none', 'file', 'supabase')


class SecretValidationError(ValueError):
    """Raised when required secrets are missing or invalid."""

    def __init__(self, missing: list[str], invalid: list[str] | None = None) -> None:
        self.missing = missing
        self.invalid = invalid or []
        parts = []
        if missing:
            parts.append(f'missing: {", ".join(missing)}')
        if self.invalid:
            parts.append(f'invalid: {", ".join(self.invalid)}')
        super().__init__(f'Secret validation failed: {"; ".join(parts)}')


@dataclass(frozen=True, slots=True)
class AnomalyThresholds:
    """Heuristic limits for suspicious-activity detection.

    A heuristic fires when the observed count is strictly greater than
    its threshold within ``window_seconds``.
    """

    window_seconds: float = 60.0
    max_events: int = 50
    max_failed_logins: int = 5
    max_bulk_operations: int = 3
    max_exports: int = 2


@dataclass(frozen=True, slots=True)
class AuditSettings:
    """Configuration for the security & audit engine."""

    # ── Signing ────────────────────────────────────────────────────
    secret_key: str = ''
    """Process secret for event signatures and CSRF tokens. Never log this."""

    # ── Environment ────────────────────────────────────────────────
    environment: str = 'local'
    """One of: local, dev, staging, production."""

    # ── Event buffer ───────────────────────────────────────────────
    buffer_capacity: int = DEFAULT_BUFFER_CAPACITY

    # ── Durable persistence ────────────────────────────────────────
    persistence: PersistenceBackend = 'none'
    persistence_path: Path = field(
        default_factory=lambda: Path('.audit') / 'events.jsonl',
    )
    supabase_url: str = ''
    supabase_service_role_key: str = ''
    """Service-role key for PostgREST writes. Never log this."""
    supabase_table: str = 'public.audit_events'
    persist_timeout_seconds: float = 2.0

    # ── Anomaly detection ──────────────────────────────────────────
    anomaly: AnomalyThresholds = field(default_factory=AnomalyThresholds)

    def __repr__(self) -> str:
        return (
            'AuditSettings('
            f'environment={self.environment!r}, '
            f'buffer_capacity={self.buffer_capacity!r}, '
            f'persistence={self.persistence!r}, '
            f'persistence_path={str(self.persistence_path)!r}, '
            f'supabase_url={self.supabase_url!r}, '
            f'supabase_table={self.supabase_table!r}, '
            'secret_key=<redacted>, '
            'supabase_service_role_key=<redacted>)'
        )

    def __str__(self) -> str:
        return self.__repr__()

    def validate(self) -> list[str]:
        """Return a list of configuration errors. Empty means valid."""
        errors: list[str] = []
        secret = self.secret_key.strip()
        if not secret:
            errors.append('AUDIT_SECRET_KEY is required')
        elif len(secret) < MIN_SECRET_LENGTH:
            errors.append(
                f'AUDIT_SECRET_KEY must be >= {MIN_SECRET_LENGTH} characters'
            )
        if self.buffer_capacity < 1:
            errors.append('buffer_capacity must be >= 1')
        if self.persistence not in _PERSISTENCE_BACKENDS:
            errors.append(
                f'persistence must be one of {", ".join(_PERSISTENCE_BACKENDS)}'
            )
        if self.persistence == 'supabase':
            if not self.supabase_url:
                errors.append('supabase persistence requires SUPABASE_URL')
            if not self.supabase_service_role_key:
                errors.append(
                    'supabase persistence requires SUPABASE_SERVICE_ROLE_KEY'
                )
        if self.persist_timeout_seconds <= 0:
            errors.append('persist_timeout_seconds must be > 0')
        if self.anomaly.window_seconds <= 0:
            errors.append('anomaly window_seconds must be > 0')
        return errors

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> AuditSettings:
        """Build settings from environment variables.

        This is a convenience factory for production use. Tests should
        construct AuditSettings directly.
        """
        if env is None:
            env = dict(os.environ)

        defaults = AnomalyThresholds()
        anomaly = AnomalyThresholds(
            window_seconds=float(
                env.get('AUDIT_ANOMALY_WINDOW_SECONDS', defaults.window_seconds)
            ),
            max_events=int(
                env.get('AUDIT_ANOMALY_MAX_EVENTS', defaults.max_events)
            ),
            max_failed_logins=int(
                env.get('AUDIT_ANOMALY_MAX_FAILED_LOGINS', defaults.max_failed_logins)
            ),
            max_bulk_operations=int(
                env.get('AUDIT_ANOMALY_MAX_BULK_OPERATIONS', defaults.max_bulk_operations)
            ),
            max_exports=int(
                env.get('AUDIT_ANOMALY_MAX_EXPORTS', defaults.max_exports)
            ),
        )

        path_raw = env.get('AUDIT_LOG_PATH', '').strip()

        return cls(
            secret_key=env.get('AUDIT_SECRET_KEY', '').strip(),
            environment=env.get('ENVIRONMENT', 'local'),
            buffer_capacity=int(
                env.get('AUDIT_BUFFER_CAPACITY', DEFAULT_BUFFER_CAPACITY)
            ),
            persistence=env.get('AUDIT_PERSISTENCE', 'none').strip().lower(),  # type: ignore[arg-type]
            persistence_path=Path(path_raw) if path_raw else Path('.audit') / 'events.jsonl',
            supabase_url=env.get('SUPABASE_URL', ''),
            supabase_service_role_key=env.get('SUPABASE_SERVICE_ROLE_KEY', ''),
            supabase_table=env.get('AUDIT_SUPABASE_TABLE', 'public.audit_events'),
            persist_timeout_seconds=float(
                env.get('AUDIT_PERSIST_TIMEOUT_SECONDS', 2.0)
            ),
            anomaly=anomaly,
        )
