"""Fire-and-forget dispatch of audit events to a durable sink.

The dispatcher owns a private event loop running on a daemon thread.
``submit()`` schedules the write on that loop and returns immediately, so
synchronous request handlers and event-loop workers alike never wait on
durable I/O. Each write carries its own timeout. Failures are logged and
counted but never raised.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import threading

from .events import AuditEvent
from .observability.logging import get_logger
from .observability.metrics import AUDIT_PERSIST_FAILURES
from .sinks import ActivitySink

logger = get_logger(__name__)

DEFAULT_PERSIST_TIMEOUT_SECONDS = 2.0


class PersistenceDispatcher:
    """Background writer for an :class:`ActivitySink`."""

    def __init__(
        self,
        sink: ActivitySink,
        *,
        timeout_seconds: float = DEFAULT_PERSIST_TIMEOUT_SECONDS,
        thread_name: str = "audit-persistence",
    ) -> None:
        self._sink = sink
        self._timeout = timeout_seconds
        self._thread_name = thread_name
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._pending: set[concurrent.futures.Future] = set()
        self._closed = False

    @property
    def sink(self) -> ActivitySink:
        return self._sink

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        # Caller holds self._lock.
        if self._loop is None:
            loop = asyncio.new_event_loop()
            thread = threading.Thread(
                target=loop.run_forever, name=self._thread_name, daemon=True,
            )
            thread.start()
            self._loop, self._thread = loop, thread
        return self._loop

    def submit(self, event: AuditEvent) -> None:
        """Schedule a durable write. Never blocks, never raises."""
        with self._lock:
            if self._closed:
                logger.warning(
                    "audit_persist_skipped", event_id=event.id, reason="dispatcher_closed",
                )
                return
            loop = self._ensure_loop()
            future = asyncio.run_coroutine_threadsafe(self._write(event), loop)
            self._pending.add(future)
        future.add_done_callback(self._discard)

    def _discard(self, future: concurrent.futures.Future) -> None:
        with self._lock:
            self._pending.discard(future)

    async def _write(self, event: AuditEvent) -> None:
        try:
            await asyncio.wait_for(self._sink.write(event), timeout=self._timeout)
        except Exception as exc:
            AUDIT_PERSIST_FAILURES.inc()
            logger.warning(
                "audit_persist_failed",
                event_id=event.id,
                event_type=event.event_type.value,
                error_type=type(exc).__name__,
                error=str(exc),
            )
        else:
            logger.debug("audit_event_persisted", event_id=event.id)

    def flush(self, timeout: float | None = None) -> bool:
        """Wait for in-flight writes. Returns False if some did not finish."""
        with self._lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = concurrent.futures.wait(pending, timeout=timeout)
        return not not_done

    def close(self, timeout: float = 5.0) -> None:
        """Drain pending writes, release the sink, and stop the loop thread."""
        self.flush(timeout)
        with self._lock:
            self._closed = True
            loop, thread = self._loop, self._thread
            self._loop = self._thread = None
        if loop is None:
            return

        aclose = getattr(self._sink, "aclose", None)
        if aclose is not None:
            try:
                asyncio.run_coroutine_threadsafe(aclose(), loop).result(timeout)
            except Exception:
                logger.exception("audit_sink_close_failed")

        loop.call_soon_threadsafe(loop.stop)
        if thread is not None:
            thread.join(timeout)
            if thread.is_alive():
                logger.warning("audit_persistence_thread_still_running")
                return
        loop.close()
