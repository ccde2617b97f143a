"""Input sanitizers for SQL-injection and markup payloads.

Both sanitizers neutralise rather than reject: callers always get a safe
string back, and a single audit event is recorded per call when anything
was stripped. Substitution repeats until the text is stable so nested
payloads such as ``SELSELECTECT`` cannot reassemble a keyword.

These are coarse filters for free-text fields. Parameterised queries and
output encoding remain the primary defences.
"""

from __future__ import annotations

import re
from typing import Any, Mapping

from .event_store import EventStore
from .events import AuditEventType, RequestContext
from .observability.logging import get_logger
from .observability.metrics import SANITIZER_VIOLATIONS

logger = get_logger(__name__)

SAMPLE_LENGTH = 100

# Order matters: EXECUTE before EXEC so the longer keyword is removed whole.
SQL_TOKENS: tuple[str, ...] = (
    'SELECT',
    'INSERT',
    'UPDATE',
    'DELETE',
    'DROP',
    'CREATE',
    'ALTER',
    'EXECUTE',
    'EXEC',
    '--',
    ';',
    '/*',
    '*/',
    'xp_',
    'sp_',
)

_Rule = tuple[str, re.Pattern[str], str]

_SQL_PATTERNS: tuple[_Rule, ...] = tuple(
    (token, re.compile(re.escape(token), re.IGNORECASE), '') for token in SQL_TOKENS
)

_HTML_PATTERNS: tuple[_Rule, ...] = (
    (
        'script_block',
        re.compile(
            r'<script\b[^<]*(?:(?!</script\s*>)<[^<]*)*</script\s*>',
            re.IGNORECASE,
        ),
        '',
    ),
    (
        'event_handler',
        # Only attributes inside a tag; the tag prefix is kept. Quoted values
        # in the prefix may contain '>', and a closing quote may abut the
        # handler name.
        re.compile(
            r'''(<(?:[^>"']|"[^"]*"|'[^']*')*?)'''
            r'''(?:[\s/]|(?<=["']))on\w+\s*=\s*(?:"[^"]*"|'[^']*'|[^\s>]+)''',
            re.IGNORECASE,
        ),
        r'\1',
    ),
    ('javascript_uri', re.compile(r'javascript\s*:', re.IGNORECASE), ''),
    ('data_html_uri', re.compile(r'data\s*:\s*text/html', re.IGNORECASE), ''),
)

# Bound on stabilisation passes; each pass strictly shrinks the text.
_MAX_PASSES = 32


def _coerce_text(value: Any) -> str:
    if value is None:
        return ''
    if isinstance(value, str):
        return value
    return str(value)


def _strip_until_stable(
    text: str, patterns: tuple[_Rule, ...],
) -> tuple[str, list[str]]:
    matched: list[str] = []
    for _ in range(_MAX_PASSES):
        changed = False
        for name, pattern, replacement in patterns:
            text, count = pattern.subn(replacement, text)
            if count:
                changed = True
                if name not in matched:
                    matched.append(name)
        if not changed:
            break
    return text, matched


class InputGuard:
    """Synchronous sanitizers that report violations to the event store."""

    def __init__(self, store: EventStore) -> None:
        self._store = store

    def sanitize_input(
        self,
        text: Any,
        *,
        actor_id: str | int | None = None,
        context: RequestContext | Mapping[str, Any] | None = None,
    ) -> str:
        """Strip SQL keywords and comment/terminator sequences."""
        original = _coerce_text(text)
        if not original:
            return ''
        sanitized, matched = _strip_until_stable(original, _SQL_PATTERNS)
        if matched:
            self._report(
                AuditEventType.SQL_INJECTION_ATTEMPT, 'sql',
                original, matched, actor_id, context,
            )
        return sanitized.strip()

    def sanitize_html(
        self,
        markup: Any,
        *,
        actor_id: str | int | None = None,
        context: RequestContext | Mapping[str, Any] | None = None,
    ) -> str:
        """Strip script blocks, inline handlers, and script-capable URIs."""
        original = _coerce_text(markup)
        if not original:
            return ''
        sanitized, matched = _strip_until_stable(original, _HTML_PATTERNS)
        if matched:
            self._report(
                AuditEventType.XSS_ATTEMPT, 'html',
                original, matched, actor_id, context,
            )
        return sanitized

    def _report(
        self,
        event_type: AuditEventType,
        kind: str,
        original: str,
        matched: list[str],
        actor_id: str | int | None,
        context: RequestContext | Mapping[str, Any] | None,
    ) -> None:
        SANITIZER_VIOLATIONS.labels(kind=kind).inc()
        logger.warning('input_neutralised', kind=kind, matched=matched)
        self._store.record(
            event_type,
            actor_id=actor_id,
            details={'input': original[:SAMPLE_LENGTH], 'matched': matched},
            context=context,
        )
