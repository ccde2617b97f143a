"""Errors raised by the PostgREST client behind the durable audit sink.

They carry the HTTP status and the PostgREST error body, never the
request headers, so the service role key cannot end up in a log line.
The persistence dispatcher logs and counts them; they never reach the
code that recorded the event.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class SupabaseError(Exception):
    """A rejected audit-row insert."""

    status_code: int
    message: str
    table: str | None = None
    code: str | None = None
    details: str | None = None

    @property
    def retryable(self) -> bool:
        """True for throttling and server-side failures."""
        return self.status_code == 429 or self.status_code >= 500

    def __str__(self) -> str:
        bits: list[str] = [f"SupabaseError(status={self.status_code})", self.message]
        if self.table:
            bits.append(f"table={self.table}")
        if self.code:
            bits.append(f"code={self.code}")
        if self.details:
            bits.append(f"details={self.details}")
        return " ".join(bits)


class SupabaseAuthError(SupabaseError):
    """401/403: bad service role key or a row-level security denial."""


class SupabaseNotFoundError(SupabaseError):
    """404: the audit table or schema does not exist."""


class SupabaseConflictError(SupabaseError):
    """409: an event with the same id was already written."""
