"""Supabase-backed AuditTrail implementation.

Reads and appends rows in ``health_links.access_events`` via PostgREST.
Events that accompany state changes are written by the registry's SQL
functions; ``append`` covers the rest (delivery outcomes).

Details are sanitised by ``AccessEvent`` before they reach this module.
"""

from __future__ import annotations

import logging

import httpx

from ..errors import CollaboratorError
from ..links.model import AccessEvent, EventType
from .errors import SupabaseError
from .supabase_client import SupabaseClient

logger = logging.getLogger(__name__)


class SupabaseAuditTrail:
    """AuditTrail backed by health_links.access_events."""

    TABLE = "health_links.access_events"

    def __init__(self, client: SupabaseClient) -> None:
        self._client = client

    async def append(self, event: AccessEvent) -> AccessEvent:
        try:
            rows = await self._client.insert(self.TABLE, event.to_dict())
        except (SupabaseError, httpx.HTTPError) as exc:
            logger.error(
                "Audit append failed for event_type=%s: %s",
                event.event_type.value, exc,
            )
            raise CollaboratorError("audit") from exc
        return AccessEvent.from_dict(rows[0]) if rows else event

    async def list_for_link(
        self, link_id: str, *, event_type: EventType | None = None,
    ) -> list[AccessEvent]:
        filters: dict[str, tuple[str, str]] = {"link_id": ("eq", link_id)}
        if event_type is not None:
            filters["event_type"] = ("eq", EventType(event_type).value)
        try:
            rows = await self._client.select(
                self.TABLE, filters, order="timestamp.asc",
            )
        except (SupabaseError, httpx.HTTPError) as exc:
            logger.error("Audit read failed: %s", exc)
            raise CollaboratorError("audit") from exc
        return [AccessEvent.from_dict(r) for r in rows]
