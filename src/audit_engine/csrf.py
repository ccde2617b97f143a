"""CSRF tokens derived from the session identifier.

Tokens are stateless: ``token = HMAC(secret, session_token)``. A token is
valid for exactly the session it was derived from, and nothing needs to be
stored server-side.

Design decisions:
  - Derivation reuses the event signer's keyed digest, so one process
    secret covers both audit signatures and CSRF tokens.
  - Validation uses ``hmac.compare_digest`` for constant-time comparison.
  - Any session string, including ``''``, round-trips. A missing token or
    session (``None``) and an empty token never validate and never raise.
    Requiring a non-empty session cookie is the HTTP layer's job.
"""

from __future__ import annotations

import hmac

from .errors import ValidationError
from .signer import EventSigner

# ── Constants ─────────────────────────────────────────────────────────

CSRF_TOKEN_HEADER = 'X-CSRF-Token'
SESSION_COOKIE = 'session'


class CSRFTokenService:
    """Derive and validate session-bound CSRF tokens."""

    def __init__(self, signer: EventSigner) -> None:
        self._signer = signer

    def generate_token(self, session_token: str) -> str:
        """Return the hex token for ``session_token``.

        Raises:
            ValidationError: If the session token is not a string.
        """
        if not isinstance(session_token, str):
            raise ValidationError('session_token', 'must be a string')
        return self._signer.digest(session_token)

    def validate_token(self, token: str | None, session_token: str | None) -> bool:
        """True only if ``token`` was derived from ``session_token``."""
        if not token or session_token is None:
            return False
        expected = self._signer.digest(session_token)
        return hmac.compare_digest(
            expected.encode('utf-8'), token.encode('utf-8'),
        )
