"""Manifest serving: the public read path.

``POST /shl/{link_id}/manifest`` is unauthenticated; holding the link id is
the capability. For each request ``ManifestService.serve``:

  1. Rejects malformed and unknown ids identically (404).
  2. Rejects revoked links (410 revoked). Persists lazy expiry, once, and
     rejects expired links (410 expired).
  3. Captures the accessor context (IP, user agent, recipient, location).
  4. Counts the access and appends its event in one registry call. The
     registry re-checks the state under its lock, so a revoke or expiry
     that lands between steps 2 and 4 wins.
  5. Schedules the patient's access notification in the background.
  6. Signs a fresh URL for the bundle. No URL is cached or persisted.

The service never sees the decryption key. Link ids reach logs as
redacted prefixes only.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from ...observability import get_logger, redact_id
from ...observability.metrics import MANIFEST_REQUESTS_TOTAL
from ..crypto.secrets import is_well_formed_link_id
from ..errors import CollaboratorError, GoneError, HealthLinkError, NotFoundError
from ..notifications.dispatcher import NotificationDispatcher
from ..notifications.geo import GeoLocator, NullGeoLocator
from ..notifications.messages import AccessNotice, format_location
from ..storage.artifacts import ArtifactStore
from .bundle import BUNDLE_CONTENT_TYPE
from .model import AccessEvent, EventType, LinkStatus, utcnow
from .registry import LinkRegistry

logger = get_logger(__name__)

ANONYMOUS_RECIPIENT = 'Anonymous'


@dataclass(frozen=True, slots=True)
class RequestContext:
    client_ip: str | None = None
    user_agent: str | None = None
    recipient: str | None = None

    @property
    def recipient_label(self) -> str:
        return (self.recipient or '').strip() or ANONYMOUS_RECIPIENT


class ManifestService:
    def __init__(
        self,
        *,
        registry: LinkRegistry,
        artifacts: ArtifactStore,
        dispatcher: NotificationDispatcher,
        geo: GeoLocator | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._registry = registry
        self._artifacts = artifacts
        self._dispatcher = dispatcher
        self._geo = geo or NullGeoLocator()
        self._clock = clock

    async def serve(self, link_id: str, context: RequestContext) -> dict[str, Any]:
        try:
            response = await self._serve(link_id, context)
        except GoneError as exc:
            MANIFEST_REQUESTS_TOTAL.labels(outcome=exc.reason).inc()
            logger.info('manifest_refused', link=redact_id(link_id), reason=exc.reason)
            raise
        except NotFoundError:
            MANIFEST_REQUESTS_TOTAL.labels(outcome='not_found').inc()
            raise
        except HealthLinkError:
            MANIFEST_REQUESTS_TOTAL.labels(outcome='error').inc()
            raise
        MANIFEST_REQUESTS_TOTAL.labels(outcome='served').inc()
        return response

    async def _serve(self, link_id: str, context: RequestContext) -> dict[str, Any]:
        if not is_well_formed_link_id(link_id):
            raise NotFoundError()
        link = await self._registry.get(link_id)
        if link is None:
            raise NotFoundError()

        now = self._clock()
        if link.status == LinkStatus.REVOKED:
            raise GoneError('revoked', link.revoked_at)
        if link.is_expired_at(now):
            await self._registry.mark_expired(link_id, now)
            raise GoneError('expired', link.expires_at)

        location = await self._geo.locate(context.client_ip)
        recipient = context.recipient_label
        event = AccessEvent(
            link_id=link_id,
            event_type=EventType.ACCESSED,
            timestamp=now,
            accessor_ip=context.client_ip,
            accessor_user_agent=context.user_agent,
            accessor_recipient=recipient,
            accessor_location=location,
        )
        link = await self._registry.record_access(link_id, event, now)

        self._dispatcher.notify_access(AccessNotice(
            link_id=link.id,
            patient_name=link.patient_name,
            phone=link.patient_phone,
            email=link.patient_email,
            recipient=recipient,
            location=format_location(location),
            accessed_at=now,
        ))

        try:
            location_url = await self._artifacts.signed_url(link.bundle_storage_key)
        except CollaboratorError:
            logger.error('manifest_signing_failed', link=redact_id(link_id))
            raise

        logger.info('manifest_served', link=redact_id(link_id), access_count=link.access_count)
        return {
            'files': [
                {'contentType': BUNDLE_CONTENT_TYPE, 'location': location_url},
            ],
        }
