"""Health link lifecycle: records, registry and audit trail."""

from .audit import AuditTrail, InMemoryAuditTrail
from .model import AccessEvent, EventType, Link, LinkStatus
from .registry import InMemoryLinkRegistry, LinkRegistry

__all__ = [
    'AccessEvent',
    'AuditTrail',
    'EventType',
    'InMemoryAuditTrail',
    'InMemoryLinkRegistry',
    'Link',
    'LinkRegistry',
    'LinkStatus',
]
