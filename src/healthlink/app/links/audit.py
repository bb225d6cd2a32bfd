"""Append-only audit trail for link lifecycle events.

Records creation, delivery, access, expiry and revocation of links. The
registry appends the events that accompany state changes (in the same
critical section as the change); the issuer appends delivery outcomes
directly.

Security invariant:
  Event details pass through ``sanitize_details``; link keys, viewer URLs
  and bearer tokens never reach the trail.

This module provides:
  1. ``AuditTrail`` -- protocol for event sinks.
  2. ``InMemoryAuditTrail`` -- in-process implementation for local/testing.
  3. ``access_log_entry`` -- the provider-facing rendering of an access.
"""

from __future__ import annotations

from typing import Any, Protocol

from .model import AccessEvent, EventType


class AuditTrail(Protocol):
    """Abstract audit event store."""

    async def append(self, event: AccessEvent) -> AccessEvent: ...

    async def list_for_link(
        self, link_id: str, *, event_type: EventType | None = None,
    ) -> list[AccessEvent]:
        """Events for a link, oldest first."""
        ...


class InMemoryAuditTrail:
    """Simple in-memory audit store."""

    def __init__(self) -> None:
        self._events: list[AccessEvent] = []

    def append_nowait(self, event: AccessEvent) -> AccessEvent:
        """Synchronous append used inside registry critical sections."""
        self._events.append(event)
        return event

    async def append(self, event: AccessEvent) -> AccessEvent:
        return self.append_nowait(event)

    async def list_for_link(
        self, link_id: str, *, event_type: EventType | None = None,
    ) -> list[AccessEvent]:
        matching = [
            e for e in self._events
            if e.link_id == link_id
            and (event_type is None or e.event_type == event_type)
        ]
        return sorted(matching, key=lambda e: e.timestamp)

    def find(
        self,
        event_type: EventType | str | None = None,
        link_id: str | None = None,
    ) -> list[AccessEvent]:
        """Filter events by type and/or link (for test assertions)."""
        result = self._events
        if event_type:
            result = [e for e in result if e.event_type == EventType(event_type)]
        if link_id:
            result = [e for e in result if e.link_id == link_id]
        return list(result)

    @property
    def events(self) -> list[AccessEvent]:
        return list(self._events)


def access_log_entry(event: AccessEvent) -> dict[str, Any]:
    """Render an ``accessed`` event for the provider's access log."""
    return {
        'timestamp': event.timestamp.isoformat(),
        'recipient': event.accessor_recipient or 'Unknown',
        'location': event.accessor_location,
        'device': event.accessor_user_agent,
    }
