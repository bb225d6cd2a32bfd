"""Durable record of issued links and their lifecycle state.

Every state-changing operation takes the event that documents it and
commits both together: a reader never sees a new state without its event,
and never sees an event for a change that did not happen.

Lifecycle rules enforced here (not by callers):

  - ``create`` inserts an ``active`` link together with its ``created``
    event. It is the single point at which a link becomes visible.
  - ``record_access`` re-checks status and expiry inside the critical
    section, then increments ``access_count`` by exactly one. A revoke or
    expiry that lands first wins.
  - ``mark_expired`` moves ``active`` to ``expired`` once; later calls (and
    calls on revoked links) change nothing.
  - ``revoke`` is terminal; revoking twice raises ``AlreadyRevokedError``.

This module provides:
  1. ``LinkRegistry`` -- storage protocol.
  2. ``InMemoryLinkRegistry`` -- per-link ``asyncio.Lock`` implementation.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Protocol

from ..errors import AlreadyRevokedError, GoneError, NotFoundError
from .audit import InMemoryAuditTrail
from .model import AccessEvent, EventType, Link, LinkStatus


class LinkRegistry(Protocol):
    """Abstract link storage.

    Implementations: InMemoryLinkRegistry (local/testing),
    SupabaseLinkRegistry (production).
    """

    async def create(self, link: Link, event: AccessEvent) -> Link: ...

    async def get(self, link_id: str) -> Link | None: ...

    async def list_for_patient(self, patient_id: str) -> list[Link]:
        """Links for a patient, newest first."""
        ...

    async def record_access(
        self, link_id: str, event: AccessEvent, now: datetime,
    ) -> Link:
        """Atomically count one access and append its event.

        Raises:
            NotFoundError: No such link.
            GoneError: Link is revoked or expired at ``now``.
        """
        ...

    async def mark_expired(self, link_id: str, now: datetime) -> Link:
        """Persist lazy expiry. Idempotent; never touches revoked links."""
        ...

    async def revoke(
        self,
        link_id: str,
        *,
        revoked_by: str,
        event: AccessEvent,
        now: datetime,
    ) -> Link:
        """Terminal revocation.

        Raises:
            NotFoundError: No such link.
            AlreadyRevokedError: Link was already revoked.
        """
        ...


class InMemoryLinkRegistry:
    """In-memory registry sharing its event log with an ``InMemoryAuditTrail``.

    Each link has its own lock; different links never contend.
    """

    def __init__(self, audit: InMemoryAuditTrail | None = None) -> None:
        self.audit = audit or InMemoryAuditTrail()
        self._links: dict[str, Link] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, link_id: str) -> asyncio.Lock:
        lock = self._locks.get(link_id)
        if lock is None:
            lock = self._locks.setdefault(link_id, asyncio.Lock())
        return lock

    def _require(self, link_id: str) -> Link:
        link = self._links.get(link_id)
        if link is None:
            raise NotFoundError()
        return link

    async def create(self, link: Link, event: AccessEvent) -> Link:
        if event.link_id != link.id or event.event_type != EventType.CREATED:
            raise ValueError('create requires a created event for the same link')
        async with self._lock_for(link.id):
            if link.id in self._links:
                raise ValueError('duplicate link id')
            stored = link.copy(status=LinkStatus.ACTIVE, access_count=0)
            self._links[link.id] = stored
            self.audit.append_nowait(event)
            return stored.copy()

    async def get(self, link_id: str) -> Link | None:
        link = self._links.get(link_id)
        return link.copy() if link is not None else None

    async def list_for_patient(self, patient_id: str) -> list[Link]:
        links = [
            l.copy() for l in self._links.values()
            if l.patient_id == patient_id
        ]
        return sorted(links, key=lambda l: l.created_at, reverse=True)

    async def record_access(
        self, link_id: str, event: AccessEvent, now: datetime,
    ) -> Link:
        async with self._lock_for(link_id):
            link = self._require(link_id)
            if link.is_revoked:
                raise GoneError('revoked', link.revoked_at)
            if link.is_expired_at(now):
                self._expire_locked(link, now)
                raise GoneError('expired', link.expires_at)
            link.access_count += 1
            link.last_accessed_at = now
            self.audit.append_nowait(event)
            return link.copy()

    async def mark_expired(self, link_id: str, now: datetime) -> Link:
        async with self._lock_for(link_id):
            link = self._require(link_id)
            self._expire_locked(link, now)
            return link.copy()

    def _expire_locked(self, link: Link, now: datetime) -> None:
        if link.status != LinkStatus.ACTIVE:
            return
        link.status = LinkStatus.EXPIRED
        self.audit.append_nowait(AccessEvent(
            link_id=link.id,
            event_type=EventType.EXPIRED,
            timestamp=now,
            details={'expires_at': link.expires_at.isoformat()},
        ))

    async def revoke(
        self,
        link_id: str,
        *,
        revoked_by: str,
        event: AccessEvent,
        now: datetime,
    ) -> Link:
        async with self._lock_for(link_id):
            link = self._require(link_id)
            if link.is_revoked:
                raise AlreadyRevokedError()
            link.status = LinkStatus.REVOKED
            link.revoked_at = now
            link.revoked_by = revoked_by
            self.audit.append_nowait(event)
            return link.copy()

    def __len__(self) -> int:
        return len(self._links)
