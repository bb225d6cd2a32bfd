"""Link issuance: the write path.

One call to ``LinkIssuer.issue`` turns a provider's selection of documents
into a link:

  1. Validate the request (documents, contact channel, retention window).
  2. Generate the link key and the link id.
  3. Fetch, seal and store every document, minting a signed URL for each.
  4. Fetch the patient and assemble the FHIR bundle.
  5. Seal and store the bundle under the same key.
  6. Persist the link and its ``created`` event in one registry call.
  7. Build the link payload and the viewer URL.
  8. Notify the patient and audit each delivery outcome.

The link only becomes visible at step 6, after every artifact is stored.
If any of steps 3-6 fails, every artifact uploaded so far is deleted
(best effort) and the caller gets ``CollaboratorError``. Notification
failures never fail issuance.

Key handling:
  The key exists only in this call's locals and in the returned payload.
  It is never persisted, logged, or put in an event.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Sequence, TypeVar

from ...observability import get_logger, redact_id
from ...observability.metrics import LINK_ISSUANCE_FAILURES_TOTAL, LINKS_ISSUED_TOTAL
from ..clinical.session import ClinicalSession
from ..clinical.source import ClinicalDataError, ClinicalDataSource
from ..crypto.envelope import ContentCipher
from ..crypto.secrets import SecretGenerator
from ..errors import CollaboratorError, ValidationError
from ..notifications.dispatcher import (
    FAILED,
    SENT,
    DeliveryResult,
    NotificationDispatcher,
)
from ..notifications.messages import DeliveryNotice
from ..storage.artifacts import ArtifactStore, artifact_role
from .audit import AuditTrail
from .bundle import BUNDLE_CONTENT_TYPE, DocumentRecord, assemble_bundle, patient_display_name
from .model import AccessEvent, EventType, Link, utcnow
from .payload import build_payload, manifest_url, shlink_uri, viewer_url
from .registry import LinkRegistry

logger = get_logger(__name__)

T = TypeVar('T')

NO_DOCUMENTS_MESSAGE = 'At least one document must be selected'
NO_CONTACT_MESSAGE = 'At least one contact method (phone or email) is required'


@dataclass(frozen=True)
class IssueRequest:
    document_ids: Sequence[str]
    phone: str | None = None
    email: str | None = None
    expiration_days: int | None = None


@dataclass(frozen=True)
class IssuedLink:
    """Result of issuance. ``shlink`` and ``viewer_url`` carry the key."""

    link: Link
    shlink: str = field(repr=False)
    viewer_url: str = field(repr=False)
    delivery: DeliveryResult = field(default_factory=DeliveryResult)

    @property
    def id(self) -> str:
        return self.link.id

    @property
    def expires_at(self) -> datetime:
        return self.link.expires_at

    @property
    def document_count(self) -> int:
        return self.link.document_count


def _clean(value: str | None) -> str | None:
    value = (value or '').strip()
    return value or None


class LinkIssuer:
    def __init__(
        self,
        *,
        registry: LinkRegistry,
        audit: AuditTrail,
        artifacts: ArtifactStore,
        clinical: ClinicalDataSource,
        dispatcher: NotificationDispatcher,
        api_url: str,
        viewer_base_url: str,
        secrets: SecretGenerator | None = None,
        cipher: ContentCipher | None = None,
        expiration_days_default: int = 90,
        expiration_days_max: int = 365,
        clinical_timeout_seconds: float = 15.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._registry = registry
        self._audit = audit
        self._artifacts = artifacts
        self._clinical = clinical
        self._dispatcher = dispatcher
        self._api_url = api_url
        self._viewer_base_url = viewer_base_url
        self._secrets = secrets or SecretGenerator()
        self._cipher = cipher or ContentCipher()
        self._expiration_days_default = expiration_days_default
        self._expiration_days_max = expiration_days_max
        self._clinical_timeout = clinical_timeout_seconds
        self._clock = clock

    def clamp_expiration_days(self, requested: int | None) -> int:
        days = requested or self._expiration_days_default
        return min(max(1, days), self._expiration_days_max)

    def _validate(self, request: IssueRequest) -> tuple[list[str], str | None, str | None]:
        document_ids = [d.strip() for d in request.document_ids if d and d.strip()]
        if not document_ids:
            raise ValidationError(NO_DOCUMENTS_MESSAGE)
        phone, email = _clean(request.phone), _clean(request.email)
        if not phone and not email:
            raise ValidationError(NO_CONTACT_MESSAGE)
        return document_ids, phone, email

    async def _clinical_call(self, call: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self._clinical_timeout)
        except asyncio.TimeoutError as exc:
            raise CollaboratorError('clinical data', 'clinical data timed out') from exc
        except ClinicalDataError as exc:
            raise CollaboratorError('clinical data') from exc

    async def issue(self, session: ClinicalSession, request: IssueRequest) -> IssuedLink:
        document_ids, phone, email = self._validate(request)
        days = self.clamp_expiration_days(request.expiration_days)

        key = self._secrets.new_key()
        link_id = self._secrets.new_link_id()
        now = self._clock()
        expires_at = now + timedelta(days=days)

        uploaded: list[str] = []
        try:
            link = await self._store_and_register(
                session, link_id, key, document_ids, uploaded,
                phone=phone, email=email, now=now, expires_at=expires_at, days=days,
            )
        except Exception as exc:
            LINK_ISSUANCE_FAILURES_TOTAL.inc()
            cleaned = await self._artifacts.delete_quietly(uploaded)
            logger.warning(
                'link_issuance_failed',
                link=redact_id(link_id),
                error=type(exc).__name__,
                uploaded=len(uploaded),
                cleaned=cleaned,
            )
            raise

        payload = build_payload(
            manifest_url=manifest_url(self._api_url, link.id),
            key=key,
            expires_at=expires_at,
            patient_name=link.patient_name,
        )
        shlink = shlink_uri(payload)
        link_url = viewer_url(self._viewer_base_url, payload)
        LINKS_ISSUED_TOTAL.inc()
        logger.info(
            'link_issued',
            link=redact_id(link.id),
            documents=link.document_count,
            expiration_days=days,
        )

        delivery = await self._dispatcher.deliver(DeliveryNotice(
            link_id=link.id,
            patient_name=link.patient_name,
            phone=phone,
            email=email,
            viewer_url=link_url,
            expires_at=expires_at,
            document_count=link.document_count,
        ))
        await self._audit_delivery(session, link, delivery)
        return IssuedLink(link=link, shlink=shlink, viewer_url=link_url, delivery=delivery)

    async def _store_and_register(
        self,
        session: ClinicalSession,
        link_id: str,
        key: bytes,
        document_ids: list[str],
        uploaded: list[str],
        *,
        phone: str | None,
        email: str | None,
        now: datetime,
        expires_at: datetime,
        days: int,
    ) -> Link:
        records: list[DocumentRecord] = []
        for document_id in document_ids:
            meta = await self._clinical_call(
                self._clinical.get_document_metadata(session, document_id),
            )
            content, content_type = await self._clinical_call(
                self._clinical.get_document_content(session, document_id),
            )
            media_type = meta.media_type or content_type
            envelope = self._cipher.seal(content, key, media_type)
            storage_key = await self._artifacts.put(
                link_id, artifact_role(document_id), envelope,
            )
            uploaded.append(storage_key)
            records.append(DocumentRecord(
                id=document_id,
                name=meta.name,
                category=meta.category,
                date=meta.date,
                media_type=media_type,
                size=meta.size or len(content),
                url=await self._artifacts.signed_url(storage_key),
            ))

        patient = await self._clinical_call(self._clinical.get_patient(session))
        bundle = assemble_bundle(patient, records, now=now)
        bundle_key = await self._artifacts.put(
            link_id,
            artifact_role(),
            self._cipher.seal_json(bundle, key, BUNDLE_CONTENT_TYPE),
        )
        uploaded.append(bundle_key)

        link = Link(
            id=link_id,
            patient_id=session.patient_id,
            patient_name=patient_display_name(patient),
            patient_phone=phone,
            patient_email=email,
            provider_id=session.provider_id,
            provider_name=session.provider_name,
            bundle_storage_key=bundle_key,
            document_storage_keys=tuple(uploaded[:-1]),
            expires_at=expires_at,
            session_id=session.session_id,
            created_at=now,
        )
        created = AccessEvent(
            link_id=link_id,
            event_type=EventType.CREATED,
            timestamp=now,
            provider_id=session.provider_id,
            provider_name=session.provider_name,
            details={
                'document_count': len(records),
                'expiration_days': days,
                'expires_at': expires_at.isoformat(),
            },
        )
        return await self._registry.create(link, created)

    async def _audit_delivery(
        self, session: ClinicalSession, link: Link, delivery: DeliveryResult,
    ) -> None:
        outcomes = (
            ('sms', delivery.sms, EventType.DELIVERED_SMS),
            ('email', delivery.email, EventType.DELIVERED_EMAIL),
        )
        for channel, status, sent_type in outcomes:
            if status not in (SENT, FAILED):
                continue
            event = AccessEvent(
                link_id=link.id,
                event_type=sent_type if status == SENT else EventType.DELIVERY_FAILED,
                timestamp=self._clock(),
                provider_id=session.provider_id,
                provider_name=session.provider_name,
                details={'channel': channel},
            )
            try:
                await self._audit.append(event)
            except CollaboratorError:
                logger.warning(
                    'delivery_audit_failed', link=redact_id(link.id), channel=channel,
                )
