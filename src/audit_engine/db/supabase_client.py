"""Async PostgREST client used as the durable audit write target.

Only inserts are needed: the durable table is append-only and the engine
treats it purely as a write sink.
"""

from __future__ import annotations

from typing import Any, Mapping, Sequence

import httpx

from .errors import (
    SupabaseAuthError,
    SupabaseConflictError,
    SupabaseError,
    SupabaseNotFoundError,
)


def _split_schema_table(table: str, default_schema: str) -> tuple[str, str]:
    # Accept "audit.events" as well as "events". Supabase accesses non-public
    # schemas via Accept-Profile/Content-Profile headers.
    if "." in table:
        schema, name = table.split(".", 1)
        return schema.strip(), name.strip()
    return default_schema, table.strip()


class SupabaseClient:
    """Minimal async PostgREST client (service role)."""

    def __init__(
        self,
        *,
        supabase_url: str,
        service_role_key: str,
        default_schema: str = "public",
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 2.0,
    ) -> None:
        if not supabase_url:
            raise ValueError("supabase_url is required")
        if not service_role_key:
            raise ValueError("service_role_key is required")

        self._supabase_url = supabase_url.rstrip("/")
        self._service_role_key = service_role_key
        self._default_schema = default_schema or "public"
        self._timeout_seconds = float(timeout_seconds)
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient()

    def __repr__(self) -> str:
        return f"SupabaseClient(url={self._supabase_url!r}, service_role_key=<redacted>)"

    @property
    def base_rest_url(self) -> str:
        return f"{self._supabase_url}/rest/v1"

    def _auth_headers(self) -> dict[str, str]:
        # Never log these headers.
        return {
            "apikey": self._service_role_key,
            "Authorization": f"Bearer {self._service_role_key}",
        }

    def _schema_headers(self, schema: str, method: str) -> dict[str, str]:
        headers: dict[str, str] = {}
        if schema:
            headers["Accept-Profile"] = schema
            if method.upper() in ("POST", "PATCH", "PUT", "DELETE"):
                headers["Content-Profile"] = schema
        return headers

    def _raise_for_error(self, resp: httpx.Response, table: str | None = None) -> None:
        if resp.status_code < 400:
            return

        message = resp.text
        code = details = None

        try:
            payload = resp.json()
            if isinstance(payload, dict):
                message = payload.get("message") or message
                code = payload.get("code")
                details = payload.get("details")
        except ValueError:
            pass

        err_cls: type[SupabaseError]
        if resp.status_code in (401, 403):
            err_cls = SupabaseAuthError
        elif resp.status_code == 404:
            err_cls = SupabaseNotFoundError
        elif resp.status_code == 409:
            err_cls = SupabaseConflictError
        else:
            err_cls = SupabaseError

        # Avoid including secrets in the exception string.
        raise err_cls(
            status_code=resp.status_code,
            message=message,
            table=table,
            code=code,
            details=details,
        )

    async def insert(
        self,
        table: str,
        data: Mapping[str, Any] | Sequence[Mapping[str, Any]],
    ) -> None:
        schema, table_name = _split_schema_table(table, self._default_schema)
        url = f"{self.base_rest_url}/{table_name}"
        headers = {
            **self._auth_headers(),
            **self._schema_headers(schema, "POST"),
            "Prefer": "return=minimal",
        }

        resp = await self._client.request(
            "POST",
            url,
            json=data,
            headers=headers,
            timeout=self._timeout_seconds,
        )
        self._raise_for_error(resp, table=table_name)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
