"""PostgREST failures raised by ``SupabaseClient``.

The link and audit repositories catch ``SupabaseError`` and surface
``CollaboratorError`` to callers.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class SupabaseError(Exception):
    status_code: int
    message: str
    code: str | None = None
    details: str | None = None
    hint: str | None = None

    def __str__(self) -> str:
        text = f"{type(self).__name__}(status={self.status_code}) {self.message}"
        if self.code:
            text += f" code={self.code}"
        return text

    @staticmethod
    def class_for_status(status_code: int) -> type[SupabaseError]:
        if status_code in (401, 403):
            return SupabaseAuthError
        if status_code == 404:
            return SupabaseNotFoundError
        if status_code == 409:
            return SupabaseConflictError
        return SupabaseError


class SupabaseAuthError(SupabaseError):
    """Service role key rejected."""


class SupabaseNotFoundError(SupabaseError):
    """Table or registry function missing; usually an unapplied migration."""


class SupabaseConflictError(SupabaseError):
    """Link id collision on insert."""


class SupabasePayloadError(SupabaseError):
    """A 2xx response whose body is not the JSON shape the call expects."""
