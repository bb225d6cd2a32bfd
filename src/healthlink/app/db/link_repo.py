"""Supabase-backed LinkRegistry implementation.

Persists links in ``health_links.links`` via PostgREST. Every state change
is an RPC to a SQL function that updates the link and inserts its access
event in one transaction (see ``migrations/001_health_links.sql``); the
functions report the outcome instead of raising so that a lazy expiry
commits even though the access is refused.

Security invariants:
  - The link encryption key is not a column and is never sent here.
  - Supabase errors never propagate raw: they become ``CollaboratorError``.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

import httpx

from ..errors import AlreadyRevokedError, CollaboratorError, GoneError, NotFoundError
from ..links.model import (
    AccessEvent,
    Link,
    LinkStatus,
    parse_datetime,
    parse_optional_datetime,
)
from .errors import SupabaseError
from .supabase_client import SupabaseClient

logger = logging.getLogger(__name__)


def link_to_row(link: Link) -> dict[str, Any]:
    return {
        "id": link.id,
        "patient_id": link.patient_id,
        "patient_name": link.patient_name,
        "patient_phone": link.patient_phone,
        "patient_email": link.patient_email,
        "provider_id": link.provider_id,
        "provider_name": link.provider_name,
        "bundle_storage_key": link.bundle_storage_key,
        "document_storage_keys": list(link.document_storage_keys),
        "status": LinkStatus(link.status).value,
        "access_count": link.access_count,
        "last_accessed_at": _iso(link.last_accessed_at),
        "revoked_at": _iso(link.revoked_at),
        "revoked_by": link.revoked_by,
        "session_id": link.session_id,
        "created_at": link.created_at.isoformat(),
        "expires_at": link.expires_at.isoformat(),
    }


def row_to_link(row: dict[str, Any]) -> Link:
    return Link(
        id=row["id"],
        patient_id=row["patient_id"],
        patient_name=row["patient_name"],
        patient_phone=row.get("patient_phone"),
        patient_email=row.get("patient_email"),
        provider_id=row["provider_id"],
        provider_name=row["provider_name"],
        bundle_storage_key=row["bundle_storage_key"],
        document_storage_keys=tuple(row.get("document_storage_keys") or ()),
        status=LinkStatus(row.get("status", "active")),
        access_count=int(row.get("access_count") or 0),
        last_accessed_at=parse_optional_datetime(row.get("last_accessed_at")),
        revoked_at=parse_optional_datetime(row.get("revoked_at")),
        revoked_by=row.get("revoked_by"),
        session_id=row.get("session_id"),
        created_at=parse_datetime(row["created_at"]),
        expires_at=parse_datetime(row["expires_at"]),
    )


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


class SupabaseLinkRegistry:
    """LinkRegistry backed by health_links.links via PostgREST."""

    TABLE = "health_links.links"

    def __init__(self, client: SupabaseClient) -> None:
        self._client = client

    async def _rpc(self, function_name: str, params: dict[str, Any]) -> dict[str, Any]:
        try:
            result = await self._client.rpc(function_name, params)
        except (SupabaseError, httpx.HTTPError) as exc:
            logger.error("Link registry rpc %s failed: %s", function_name, exc)
            raise CollaboratorError("registry") from exc
        if not isinstance(result, dict) or "outcome" not in result:
            logger.error("Link registry rpc %s returned unexpected payload", function_name)
            raise CollaboratorError("registry")
        return result

    async def _select(self, filters: dict[str, Any], **kwargs: Any) -> list[dict[str, Any]]:
        try:
            return await self._client.select(self.TABLE, filters, **kwargs)
        except (SupabaseError, httpx.HTTPError) as exc:
            logger.error("Link registry select failed: %s", exc)
            raise CollaboratorError("registry") from exc

    async def create(self, link: Link, event: AccessEvent) -> Link:
        result = await self._rpc(
            "create_link",
            {"p_link": link_to_row(link), "p_event": event.to_dict()},
        )
        return row_to_link(result["link"])

    async def get(self, link_id: str) -> Link | None:
        rows = await self._select({"id": ("eq", link_id)}, limit=1)
        return row_to_link(rows[0]) if rows else None

    async def list_for_patient(self, patient_id: str) -> list[Link]:
        rows = await self._select(
            {"patient_id": ("eq", patient_id)}, order="created_at.desc",
        )
        return [row_to_link(r) for r in rows]

    async def record_access(
        self, link_id: str, event: AccessEvent, now: datetime,
    ) -> Link:
        result = await self._rpc(
            "record_link_access",
            {"p_link_id": link_id, "p_now": now.isoformat(), "p_event": event.to_dict()},
        )
        outcome = result["outcome"]
        if outcome == "not_found":
            raise NotFoundError()
        link = row_to_link(result["link"])
        if outcome == "revoked":
            raise GoneError("revoked", link.revoked_at)
        if outcome == "expired":
            raise GoneError("expired", link.expires_at)
        return link

    async def mark_expired(self, link_id: str, now: datetime) -> Link:
        result = await self._rpc(
            "mark_link_expired", {"p_link_id": link_id, "p_now": now.isoformat()},
        )
        if result["outcome"] == "not_found":
            raise NotFoundError()
        return row_to_link(result["link"])

    async def revoke(
        self,
        link_id: str,
        *,
        revoked_by: str,
        event: AccessEvent,
        now: datetime,
    ) -> Link:
        result = await self._rpc(
            "revoke_link",
            {
                "p_link_id": link_id,
                "p_revoked_by": revoked_by,
                "p_now": now.isoformat(),
                "p_event": event.to_dict(),
            },
        )
        outcome = result["outcome"]
        if outcome == "not_found":
            raise NotFoundError()
        if outcome == "already_revoked":
            raise AlreadyRevokedError()
        return row_to_link(result["link"])
