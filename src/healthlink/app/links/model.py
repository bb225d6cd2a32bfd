"""Link and access-event domain model.

Implements the link record persisted by the registry:

  - The link id is public and unguessable (256 bits, base64url).
  - The encryption key is NOT part of this model: it is generated at
    issuance, handed to the caller inside the link payload, and never
    stored by any repository.
  - Status is ``active``, ``revoked`` or ``expired``. Revocation is an
    explicit terminal write; expiry is computed from ``expires_at`` and
    persisted lazily the first time an access attempt observes it.

This module provides:
  1. ``Link`` -- domain object matching the ``health_links.links`` table.
  2. ``AccessEvent`` -- immutable audit record for ``health_links.access_events``.
  3. ``LinkStatus`` / ``EventType`` -- string enums for persisted values.
  4. ``sanitize_details`` -- strips secret-looking keys from event payloads.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LinkStatus(str, Enum):
    ACTIVE = 'active'
    REVOKED = 'revoked'
    EXPIRED = 'expired'


class EventType(str, Enum):
    CREATED = 'created'
    DELIVERED_SMS = 'delivered-sms'
    DELIVERED_EMAIL = 'delivered-email'
    DELIVERY_FAILED = 'delivery-failed'
    ACCESSED = 'accessed'
    REVOKED = 'revoked'
    EXPIRED = 'expired'


# Keys that must never appear in event details.
_SENSITIVE_KEYS = frozenset({
    'key',
    'encryption_key',
    'shlink',
    'viewer_url',
    'access_token',
    'authorization',
    'bearer_token',
    'token',
    'secret',
    'password',
})


def sanitize_details(details: dict[str, Any] | None) -> dict[str, Any]:
    """Copy ``details`` with sensitive keys replaced by ``[REDACTED]``."""
    sanitized: dict[str, Any] = {}
    for name, value in (details or {}).items():
        if name.lower() in _SENSITIVE_KEYS:
            sanitized[name] = '[REDACTED]'
        elif isinstance(value, dict):
            sanitized[name] = sanitize_details(value)
        else:
            sanitized[name] = value
    return sanitized


# ── Link ──────────────────────────────────────────────────────────────


@dataclass
class Link:
    """Issued link record.

    Attributes:
        id: Public link id (manifest path segment).
        patient_id: Owning clinical subject.
        patient_name: Denormalised display name (survives session expiry).
        patient_phone / patient_email: Contact channels for notifications.
        provider_id / provider_name: Issuing actor.
        bundle_storage_key: Storage key of the encrypted bundle.
        document_storage_keys: Storage keys of each encrypted document.
        expires_at: End of the retention window.
        status: Persisted status; see ``effective_status`` for display.
        access_count / last_accessed_at: Manifest access accounting.
        revoked_at / revoked_by: Stamped by revocation.
        session_id: Clinical session that issued the link, if any.
    """

    id: str
    patient_id: str
    patient_name: str
    provider_id: str
    provider_name: str
    bundle_storage_key: str
    expires_at: datetime
    document_storage_keys: tuple[str, ...] = ()
    patient_phone: str | None = None
    patient_email: str | None = None
    status: LinkStatus = LinkStatus.ACTIVE
    access_count: int = 0
    last_accessed_at: datetime | None = None
    revoked_at: datetime | None = None
    revoked_by: str | None = None
    session_id: str | None = None
    created_at: datetime = field(default_factory=utcnow)

    @property
    def is_revoked(self) -> bool:
        return self.status == LinkStatus.REVOKED

    def is_expired_at(self, now: datetime) -> bool:
        return self.status == LinkStatus.EXPIRED or now > self.expires_at

    def effective_status(self, now: datetime) -> LinkStatus:
        """Status a listing view should show, independent of lazy writes."""
        if self.status == LinkStatus.ACTIVE and now > self.expires_at:
            return LinkStatus.EXPIRED
        return self.status

    @property
    def document_count(self) -> int:
        return len(self.document_storage_keys)

    @property
    def storage_keys(self) -> tuple[str, ...]:
        return (self.bundle_storage_key, *self.document_storage_keys)

    def copy(self, **changes: Any) -> Link:
        return replace(self, **changes)


# ── Access events ─────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class AccessEvent:
    """Immutable audit record of one lifecycle occurrence on a link."""

    link_id: str
    event_type: EventType
    timestamp: datetime = field(default_factory=utcnow)
    accessor_ip: str | None = None
    accessor_user_agent: str | None = None
    accessor_recipient: str | None = None
    accessor_location: dict[str, str] | None = None
    provider_id: str | None = None
    provider_name: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self) -> None:
        object.__setattr__(self, 'event_type', EventType(self.event_type))
        object.__setattr__(self, 'details', sanitize_details(self.details))

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dict safe for JSON logging and persistence."""
        return {
            'id': self.id,
            'link_id': self.link_id,
            'event_type': self.event_type.value,
            'timestamp': self.timestamp.isoformat(),
            'accessor_ip': self.accessor_ip,
            'accessor_user_agent': self.accessor_user_agent,
            'accessor_recipient': self.accessor_recipient,
            'accessor_location': self.accessor_location,
            'provider_id': self.provider_id,
            'provider_name': self.provider_name,
            'details': self.details,
        }

    @classmethod
    def from_dict(cls, row: dict[str, Any]) -> AccessEvent:
        return cls(
            id=str(row['id']),
            link_id=row['link_id'],
            event_type=EventType(row['event_type']),
            timestamp=_parse_datetime(row['timestamp']),
            accessor_ip=row.get('accessor_ip'),
            accessor_user_agent=row.get('accessor_user_agent'),
            accessor_recipient=row.get('accessor_recipient'),
            accessor_location=row.get('accessor_location'),
            provider_id=row.get('provider_id'),
            provider_name=row.get('provider_name'),
            details=row.get('details') or {},
        )


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_optional_datetime(value: Any) -> datetime | None:
    if value is None or value == '':
        return None
    return _parse_datetime(value)


def parse_datetime(value: Any) -> datetime:
    return _parse_datetime(value)
