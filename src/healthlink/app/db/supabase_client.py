"""Async PostgREST client wrapper for Supabase.

The single point of Supabase HTTP interaction for the link and audit
repositories. Writes that must be atomic go through ``rpc`` to SQL functions
in the ``health_links`` schema; plain reads use ``select``.
"""

from __future__ import annotations

from typing import Any, Mapping

import httpx

from .errors import SupabaseError, SupabasePayloadError

# Module-level shared client for connection pooling in app runtimes.
_shared_async_client: httpx.AsyncClient | None = None


def _get_shared_async_client() -> httpx.AsyncClient:
    global _shared_async_client
    if _shared_async_client is None:
        _shared_async_client = httpx.AsyncClient()
    return _shared_async_client


def _split_schema_table(table: str, default_schema: str) -> tuple[str, str]:
    # "health_links.links" selects the schema via Accept-Profile/Content-Profile.
    if "." in table:
        schema, name = table.split(".", 1)
        return schema.strip(), name.strip()
    return default_schema, table.strip()


def _encode_filter_value(op: str, value: Any) -> str:
    if op == "is":
        if value is None:
            return "null"
        return "true" if value is True else "false" if value is False else str(value)
    if value is None:
        raise ValueError(f"{op} does not support None; use op='is' with value=None")
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _filters_to_params(
    filters: Mapping[str, tuple[str, Any] | Any] | None,
) -> dict[str, str]:
    params: dict[str, str] = {}
    for column, condition in (filters or {}).items():
        if isinstance(condition, tuple) and len(condition) == 2:
            op, value = condition
        else:
            op, value = "eq", condition
        params[str(column)] = f"{op}.{_encode_filter_value(str(op), value)}"
    return params


class SupabaseClient:
    """Minimal async PostgREST client (service role) with typed results."""

    def __init__(
        self,
        *,
        supabase_url: str,
        service_role_key: str,
        default_schema: str = "health_links",
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        if not supabase_url:
            raise ValueError("supabase_url is required")
        if not service_role_key:
            raise ValueError("service_role_key is required")

        self._supabase_url = supabase_url.rstrip("/")
        self._service_role_key = service_role_key
        self._default_schema = default_schema
        self._timeout_seconds = float(timeout_seconds)
        self._client = http_client or _get_shared_async_client()

    @property
    def base_rest_url(self) -> str:
        return f"{self._supabase_url}/rest/v1"

    def _headers(self, schema: str, method: str) -> dict[str, str]:
        # Never log these headers.
        headers = {
            "apikey": self._service_role_key,
            "Authorization": f"Bearer {self._service_role_key}",
        }
        if schema:
            headers["Accept-Profile"] = schema
            if method in ("POST", "PATCH", "DELETE"):
                headers["Content-Profile"] = schema
        return headers

    def _raise_for_error(self, resp: httpx.Response) -> None:
        if resp.status_code < 400:
            return

        message = resp.text
        code = details = hint = None
        try:
            payload = resp.json()
            if isinstance(payload, dict):
                message = payload.get("message") or message
                code = payload.get("code")
                details = payload.get("details")
                hint = payload.get("hint")
        except ValueError:
            pass

        raise SupabaseError.class_for_status(resp.status_code)(
            status_code=resp.status_code,
            message=message,
            code=code,
            details=details,
            hint=hint,
        )

    async def select(
        self,
        table: str,
        filters: Mapping[str, tuple[str, Any] | Any] | None = None,
        *,
        columns: str = "*",
        limit: int | None = None,
        order: str | None = None,
    ) -> list[dict[str, Any]]:
        schema, table_name = _split_schema_table(table, self._default_schema)
        params = _filters_to_params(filters)
        params["select"] = columns
        if limit is not None:
            params["limit"] = str(int(limit))
        if order:
            params["order"] = order

        resp = await self._client.request(
            "GET",
            f"{self.base_rest_url}/{table_name}",
            params=params,
            headers=self._headers(schema, "GET"),
            timeout=self._timeout_seconds,
        )
        self._raise_for_error(resp)
        return _json_list(resp, "select")

    async def insert(
        self,
        table: str,
        data: Mapping[str, Any],
    ) -> list[dict[str, Any]]:
        schema, table_name = _split_schema_table(table, self._default_schema)
        headers = {
            **self._headers(schema, "POST"),
            "Prefer": "return=representation",
        }
        resp = await self._client.request(
            "POST",
            f"{self.base_rest_url}/{table_name}",
            json=dict(data),
            headers=headers,
            timeout=self._timeout_seconds,
        )
        self._raise_for_error(resp)
        return _json_list(resp, "insert")

    async def rpc(
        self,
        function_name: str,
        params: Mapping[str, Any] | None = None,
        *,
        schema: str | None = None,
    ) -> Any:
        schema_name = schema or self._default_schema
        resp = await self._client.request(
            "POST",
            f"{self.base_rest_url}/rpc/{function_name}",
            json=dict(params or {}),
            headers=self._headers(schema_name, "POST"),
            timeout=self._timeout_seconds,
        )
        self._raise_for_error(resp)
        return _json(resp)


def _json(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError as exc:
        raise SupabasePayloadError(
            status_code=resp.status_code, message="response body is not JSON",
        ) from exc


def _json_list(resp: httpx.Response, operation: str) -> list[dict[str, Any]]:
    payload = _json(resp)
    if not isinstance(payload, list):
        raise SupabasePayloadError(
            status_code=resp.status_code,
            message=f"expected list response from {operation}",
        )
    return payload
