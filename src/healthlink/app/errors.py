"""Error taxonomy for link issuance, manifest serving, and revocation.

Each error carries the HTTP status and machine-readable code that the
routes surface. Messages are safe to return to callers: they never include
keys, bearer tokens, or collaborator response bodies.
"""

from __future__ import annotations

from datetime import datetime


class HealthLinkError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500
    code: str = 'internal_error'

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_body(self) -> dict:
        return {'error': self.message, 'code': self.code}


class ValidationError(HealthLinkError):
    """Issuance request is missing documents, contact, or is out of range."""

    status_code = 400
    code = 'invalid_request'


class NotFoundError(HealthLinkError):
    """Unknown or malformed link id. Identical either way."""

    status_code = 404
    code = 'link_not_found'

    def __init__(self, message: str = 'Link not found') -> None:
        super().__init__(message)


class GoneError(HealthLinkError):
    """Link was revoked or has expired."""

    status_code = 410

    _MESSAGES = {
        'revoked': 'This link has been revoked',
        'expired': 'This link has expired',
    }

    def __init__(self, reason: str, at: datetime | None = None) -> None:
        if reason not in self._MESSAGES:
            raise ValueError(f'unknown gone reason: {reason!r}')
        self.reason = reason
        self.at = at
        self.code = f'link_{reason}'
        super().__init__(self._MESSAGES[reason])

    def to_body(self) -> dict:
        return {'error': self.message, 'code': self.code, 'reason': self.reason}


class AlreadyRevokedError(HealthLinkError):
    """Revocation requested for a link that is already revoked."""

    status_code = 400
    code = 'already_revoked'

    def __init__(self, message: str = 'Health link is already revoked') -> None:
        super().__init__(message)


class CollaboratorError(HealthLinkError):
    """A document source, storage, or registry call failed or timed out."""

    status_code = 502
    code = 'collaborator_unavailable'

    def __init__(self, collaborator: str, message: str | None = None) -> None:
        self.collaborator = collaborator
        super().__init__(message or f'{collaborator} unavailable')


class DecryptionError(Exception):
    """Envelope could not be opened. Deliberately carries no detail."""

    def __init__(self) -> None:
        super().__init__('Unable to decrypt content')


class SecretGenerationError(RuntimeError):
    """The platform random source is unavailable or misbehaving."""
