"""Keyed signatures for tamper-evident audit events.

Security invariants:
  - A signer cannot be built without a configured secret of at least
    ``MIN_SECRET_LENGTH`` characters. There is no fallback key.
  - Verification uses ``hmac.compare_digest`` for constant-time comparison.
  - The secret never appears in ``str()`` or ``repr()`` output.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from dataclasses import dataclass
from typing import Any

from .config.settings import MIN_SECRET_LENGTH, SecretValidationError
from .events import AuditEvent


def canonical_bytes(fields: dict[str, Any]) -> bytes:
    """Deterministic UTF-8 JSON encoding used as the HMAC message."""
    return json.dumps(
        fields,
        sort_keys=True,
        separators=(',', ':'),
        ensure_ascii=False,
        default=str,
    ).encode('utf-8')


@dataclass(frozen=True, slots=True)
class SignatureMismatch:
    """Tamper signal for a stored event whose signature no longer verifies."""

    event_id: str
    event_type: str
    stored_signature: str


class EventSigner:
    """HMAC-SHA256 signer shared by the event store and CSRF service."""

    __slots__ = ('_key',)

    def __init__(self, secret_key: str) -> None:
        secret_key = (secret_key or '').strip()
        if not secret_key:
            raise SecretValidationError(missing=['AUDIT_SECRET_KEY'])
        if len(secret_key) < MIN_SECRET_LENGTH:
            raise SecretValidationError(
                missing=[],
                invalid=[
                    f'AUDIT_SECRET_KEY (min {MIN_SECRET_LENGTH} chars, '
                    f'got {len(secret_key)})'
                ],
            )
        self._key = secret_key.encode('utf-8')

    def __repr__(self) -> str:
        return 'EventSigner(secret_key=<redacted>)'

    def digest(self, message: str) -> str:
        """Hex HMAC-SHA256 of an arbitrary string."""
        return hmac.new(self._key, message.encode('utf-8'), hashlib.sha256).hexdigest()

    def sign(self, event: AuditEvent) -> str:
        """Signature over every field of ``event`` except ``signature``."""
        return hmac.new(
            self._key, canonical_bytes(event.signed_fields()), hashlib.sha256,
        ).hexdigest()

    def verify(self, event: AuditEvent) -> bool:
        """True if the stored signature matches a fresh recomputation."""
        if not event.signature:
            return False
        return hmac.compare_digest(self.sign(event), event.signature)

    def check(self, event: AuditEvent) -> SignatureMismatch | None:
        """Return a mismatch result for a tampered event, else None."""
        if self.verify(event):
            return None
        return SignatureMismatch(
            event_id=event.id,
            event_type=event.event_type.value,
            stored_signature=event.signature,
        )
