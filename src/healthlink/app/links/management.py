"""Provider-side link management: listing, details and revocation.

Operations are keyed by the session's patient: a link owned by another
patient is reported exactly like a link that does not exist.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable

from ...observability import get_logger, redact_id
from ..clinical.session import ClinicalSession
from ..errors import AlreadyRevokedError, NotFoundError
from .audit import AuditTrail, access_log_entry
from .model import AccessEvent, EventType, Link, utcnow
from .registry import LinkRegistry

logger = get_logger(__name__)

MANAGED_LINK_NOT_FOUND = 'Health link not found'


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def link_summary(link: Link, now: datetime) -> dict[str, Any]:
    return {
        'id': link.id,
        'patientName': link.patient_name,
        'status': link.effective_status(now).value,
        'expiresAt': link.expires_at.isoformat(),
        'createdAt': link.created_at.isoformat(),
        'accessCount': link.access_count,
        'documentCount': link.document_count,
    }


class LinkManager:
    def __init__(
        self,
        *,
        registry: LinkRegistry,
        audit: AuditTrail,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._registry = registry
        self._audit = audit
        self._clock = clock

    async def _owned(self, link_id: str, session: ClinicalSession) -> Link:
        link = await self._registry.get(link_id)
        if link is None or link.patient_id != session.patient_id:
            raise NotFoundError(MANAGED_LINK_NOT_FOUND)
        return link

    async def list_links(self, session: ClinicalSession) -> list[dict[str, Any]]:
        """Links for the session patient, newest first."""
        now = self._clock()
        links = await self._registry.list_for_patient(session.patient_id)
        return [link_summary(link, now) for link in links]

    async def details(self, link_id: str, session: ClinicalSession) -> dict[str, Any]:
        link = await self._owned(link_id, session)
        accessed = await self._audit.list_for_link(link.id, event_type=EventType.ACCESSED)
        return {
            **link_summary(link, self._clock()),
            'createdBy': link.provider_name,
            'lastAccessedAt': _iso(link.last_accessed_at),
            'revokedAt': _iso(link.revoked_at),
            'accessLog': [access_log_entry(e) for e in reversed(accessed)],
        }

    async def revoke(self, link_id: str, session: ClinicalSession) -> Link:
        """Revoke a link. Terminal; a second revoke raises ``AlreadyRevokedError``."""
        link = await self._owned(link_id, session)
        if link.is_revoked:
            raise AlreadyRevokedError()

        now = self._clock()
        event = AccessEvent(
            link_id=link.id,
            event_type=EventType.REVOKED,
            timestamp=now,
            provider_id=session.provider_id,
            provider_name=session.provider_name,
            details={'previous_status': link.effective_status(now).value},
        )
        revoked = await self._registry.revoke(
            link.id, revoked_by=session.provider_id, event=event, now=now,
        )
        logger.info('link_revoked', link=redact_id(link.id))
        return revoked
