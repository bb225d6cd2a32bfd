"""Patient-facing notification texts."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

UNKNOWN_LOCATION = 'Unknown location'


@dataclass(frozen=True, slots=True)
class DeliveryNotice:
    """A new link was issued. ``viewer_url`` carries the key: never log it."""

    link_id: str
    patient_name: str
    phone: str | None
    email: str | None
    viewer_url: str
    expires_at: datetime
    document_count: int


@dataclass(frozen=True, slots=True)
class AccessNotice:
    """Someone fetched the manifest of a link."""

    link_id: str
    patient_name: str
    phone: str | None
    email: str | None
    recipient: str
    location: str | None
    accessed_at: datetime


def format_expiration(value: datetime) -> str:
    return f'{value:%A, %B} {value.day}, {value:%Y}'


def format_access_time(value: datetime) -> str:
    return f'{value:%b} {value.day}, {value:%Y}, {value:%H:%M} UTC'


def format_location(location: dict[str, str] | None) -> str | None:
    if not location:
        return None
    return ', '.join(
        location.get(part) or 'Unknown' for part in ('city', 'region', 'country')
    )


def delivery_sms(notice: DeliveryNotice) -> str:
    return (
        f'Your healthcare provider has shared {notice.document_count} document(s) '
        f'with you. View them securely at: {notice.viewer_url} '
        f'(expires {format_expiration(notice.expires_at)})'
    )


def delivery_email(notice: DeliveryNotice) -> tuple[str, str]:
    subject = f'Your healthcare documents from {notice.patient_name}'
    body = (
        'Hello,\n\n'
        f'Your healthcare provider has shared {notice.document_count} document(s) with you.\n\n'
        'Click the link below to view your documents securely:\n'
        f'{notice.viewer_url}\n\n'
        f'This link will expire on {format_expiration(notice.expires_at)}.\n\n'
        'For your security, you may be asked to provide your name before '
        'viewing the documents.\n\n'
        'If you did not expect to receive this message, please contact your '
        'healthcare provider.'
    )
    return subject, body


def access_sms(notice: AccessNotice) -> str:
    return (
        f'Your health documents were viewed by "{notice.recipient}" from '
        f'{notice.location or UNKNOWN_LOCATION} at {format_access_time(notice.accessed_at)}. '
        "If this wasn't you or someone you authorized, contact your healthcare provider."
    )


def access_email(notice: AccessNotice) -> tuple[str, str]:
    subject = 'Your health documents were accessed'
    body = (
        'Hello,\n\n'
        'Your health documents were accessed:\n\n'
        f'- Viewed by: {notice.recipient}\n'
        f'- Location: {notice.location or UNKNOWN_LOCATION}\n'
        f'- Time: {format_access_time(notice.accessed_at)}\n\n'
        'If this was you or someone you authorized, no action is needed.\n\n'
        'If you did not authorize this access, please contact your healthcare '
        'provider immediately.'
    )
    return subject, body
