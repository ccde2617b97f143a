"""Fixed-window rate limiting per actor or network address.

Each identifier gets a counter that resets when its window elapses. The
read-increment-compare step runs under a single lock, so concurrent
requests can never both observe ``count = max - 1`` and both pass.

Fixed windows allow a burst of up to ``2 * max_requests`` across a window
boundary. That is acceptable for abuse deterrence; swap in a sliding
window behind the same ``RateLimitDecision`` contract if strict fairness
is needed.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Mapping

from .errors import ValidationError
from .event_store import EventStore
from .events import AuditEventType, RequestContext
from .observability.logging import get_logger
from .observability.metrics import RATE_LIMIT_REJECTIONS

logger = get_logger(__name__)

# Expired records are swept once the map grows past this many identifiers,
# at most once per SWEEP_INTERVAL seconds.
SWEEP_THRESHOLD = 10_000
SWEEP_INTERVAL = 60.0


@dataclass(frozen=True)
class RateLimitConfig:
    """Configuration for a single rate limit."""
    window_ms: int = 60_000
    max_requests: int = 100
    description: str = ''

    def __post_init__(self) -> None:
        if self.window_ms <= 0:
            raise ValidationError('window_ms', 'must be > 0')
        if self.max_requests < 1:
            raise ValidationError('max_requests', 'must be >= 1')

    @property
    def window_seconds(self) -> float:
        return self.window_ms / 1000.0


DEFAULT_RATE_LIMIT = RateLimitConfig()


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of a rate-limit check.

    ``reset_time`` is an epoch timestamp in seconds.
    """
    allowed: bool
    remaining: int
    reset_time: float

    def retry_after(self, now: float | None = None) -> float:
        now = now if now is not None else time.time()
        return max(self.reset_time - now, 0.0)


@dataclass
class _WindowRecord:
    count: int
    reset_time: float


class FixedWindowRateLimiter:
    """Thread-safe fixed-window rate limiter.

    Rejections are recorded as ``RATE_LIMIT_EXCEEDED`` audit events after
    the lock is released.
    """

    def __init__(
        self,
        store: EventStore,
        *,
        clock: Callable[[], float] = time.time,
        sweep_threshold: int = SWEEP_THRESHOLD,
        sweep_interval: float = SWEEP_INTERVAL,
    ):
        self._store = store
        self._clock = clock
        self._sweep_threshold = sweep_threshold
        self._sweep_interval = sweep_interval
        self._last_sweep = float('-inf')
        self._records: dict[str, _WindowRecord] = {}
        self._lock = Lock()

    def check(
        self,
        identifier: str,
        config: RateLimitConfig = DEFAULT_RATE_LIMIT,
        *,
        now: float | None = None,
        context: RequestContext | Mapping[str, Any] | None = None,
    ) -> RateLimitDecision:
        """Count one request for ``identifier`` and decide whether it may proceed."""
        if not identifier:
            raise ValidationError('identifier', 'must be non-empty')
        now = now if now is not None else self._clock()

        with self._lock:
            record = self._records.get(identifier)
            # A request at exactly reset_time belongs to the new window.
            if record is None or now >= record.reset_time:
                record = _WindowRecord(count=0, reset_time=now + config.window_seconds)
                self._records[identifier] = record

            if record.count >= config.max_requests:
                decision = RateLimitDecision(
                    allowed=False, remaining=0, reset_time=record.reset_time,
                )
                observed = record.count
            else:
                record.count += 1
                decision = RateLimitDecision(
                    allowed=True,
                    remaining=config.max_requests - record.count,
                    reset_time=record.reset_time,
                )
                observed = record.count

            if (
                len(self._records) > self._sweep_threshold
                and now - self._last_sweep >= self._sweep_interval
            ):
                self._last_sweep = now
                self._sweep_locked(now)

        if not decision.allowed:
            RATE_LIMIT_REJECTIONS.inc()
            logger.warning(
                'rate_limit_exceeded',
                identifier=identifier,
                count=observed,
                max_requests=config.max_requests,
            )
            self._store.record(
                AuditEventType.RATE_LIMIT_EXCEEDED,
                details={
                    'identifier': identifier,
                    'count': observed,
                    'max_requests': config.max_requests,
                    'window_ms': config.window_ms,
                },
                context=context,
            )
        return decision

    def current_count(self, identifier: str, now: float | None = None) -> int:
        """Requests counted in the identifier's live window (0 if expired)."""
        now = now if now is not None else self._clock()
        with self._lock:
            record = self._records.get(identifier)
            if record is None or now >= record.reset_time:
                return 0
            return record.count

    def reset(self, identifier: str) -> None:
        """Clear rate limit state for an identifier."""
        with self._lock:
            self._records.pop(identifier, None)

    def purge_expired(self, now: float | None = None) -> int:
        """Drop records whose window has elapsed. Returns the number removed."""
        now = now if now is not None else self._clock()
        with self._lock:
            return self._sweep_locked(now)

    def _sweep_locked(self, now: float) -> int:
        expired = [k for k, r in self._records.items() if now >= r.reset_time]
        for key in expired:
            del self._records[key]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
