"""Supabase persistence adapters for links and access events."""

from .audit_repo import SupabaseAuditTrail
from .errors import (
    SupabaseAuthError,
    SupabaseConflictError,
    SupabaseError,
    SupabaseNotFoundError,
    SupabasePayloadError,
)
from .link_repo import SupabaseLinkRegistry
from .supabase_client import SupabaseClient

__all__ = [
    "SupabaseAuditTrail",
    "SupabaseAuthError",
    "SupabaseClient",
    "SupabaseConflictError",
    "SupabaseError",
    "SupabaseLinkRegistry",
    "SupabaseNotFoundError",
    "SupabasePayloadError",
]
