"""Durable write targets for audit events.

Provides:
- ``ActivitySink`` protocol implemented by every backend
- ``InMemoryActivitySink`` for tests
- ``JsonlActivitySink`` append-only JSON-lines file
- ``SupabaseActivitySink`` append-only table via PostgREST

Sinks may raise; the persistence dispatcher catches and logs every
failure so nothing propagates to the business operation that recorded
the event.
"""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Protocol

from .db.supabase_client import SupabaseClient
from .errors import PersistenceFailure
from .events import AuditEvent

# Keys in ``details`` that name the affected resource, in lookup order.
RESOURCE_ID_KEYS: tuple[str, ...] = ("case_id", "caseId", "resource_id", "id")


def resource_id_from_details(details: Dict[str, Any]) -> Optional[str]:
    """Best-effort resource id for the durable row's nullable column."""
    for key in RESOURCE_ID_KEYS:
        value = details.get(key)
        if value is not None and value != "":
            return str(value)
    return None


def event_to_row(event: AuditEvent) -> Dict[str, Any]:
    """Map an event onto the append-only table schema."""
    return {
        "id": event.id,
        "resource_id": resource_id_from_details(event.details),
        "actor_id": event.actor_id,
        "event_type": event.event_type.value,
        "details": json.dumps(event.details, default=str, sort_keys=True),
        "signature": event.signature,
        "created_at": event.timestamp.isoformat(),
    }


class ActivitySink(Protocol):
    """Abstract durable audit write target."""

    async def write(self, event: AuditEvent) -> None: ...


class InMemoryActivitySink:
    """Simple in-memory sink for testing."""

    def __init__(self) -> None:
        self._rows: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    async def write(self, event: AuditEvent) -> None:
        with self._lock:
            self._rows.append(event_to_row(event))

    @property
    def rows(self) -> List[Dict[str, Any]]:
        """Access all rows (for testing assertions)."""
        with self._lock:
            return list(self._rows)


class JsonlActivitySink:
    """File-based audit sink (JSONL format).

    One JSON object per line, append-only. Lines carry the full event
    including its signature so the file can be verified offline.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    async def write(self, event: AuditEvent) -> None:
        """Append event to JSONL file."""
        line = json.dumps(event.to_dict(), default=str)
        try:
            with self._lock:
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
        except OSError as exc:
            raise PersistenceFailure(event.id, str(exc)) from exc

    def read_events(self) -> Iterator[AuditEvent]:
        """Yield persisted events in write order, skipping malformed lines."""
        if not self.path.exists():
            return
        with self._lock:
            with open(self.path, "r", encoding="utf-8") as f:
                lines = f.readlines()
        for line in lines:
            if not line.strip():
                continue
            try:
                yield AuditEvent.from_dict(json.loads(line))
            except (json.JSONDecodeError, KeyError, ValueError):
                continue


class SupabaseActivitySink:
    """Audit sink backed by an append-only table via PostgREST."""

    def __init__(self, client: SupabaseClient, table: str = "public.audit_events") -> None:
        self._client = client
        self._table = table

    async def write(self, event: AuditEvent) -> None:
        await self._client.insert(self._table, event_to_row(event))

    async def aclose(self) -> None:
        await self._client.aclose()
