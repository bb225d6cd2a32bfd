"""Encrypted artifact storage for links.

Artifacts are JWE compact envelopes stored under a well-known layout::

    {namespace}/
        {link_id}/
            bundle.jwe
            doc-{document_id}.jwe

Artifacts are immutable after creation. Signed URLs are minted fresh on
every call and never cached or persisted.

This module provides:
  1. ``ArtifactStorage`` -- protocol for blob backends.
  2. ``ArtifactStore`` -- layout, timeouts and error mapping over a backend.
  3. ``InMemoryArtifactStorage`` -- local/testing backend with fault injection.
"""

from __future__ import annotations

import asyncio
from typing import Iterable, Protocol

from ...observability import get_logger, redact_id
from ..crypto.envelope import ENVELOPE_MEDIA_TYPE
from ..errors import CollaboratorError

logger = get_logger(__name__)

BUNDLE_ROLE = 'bundle'


def artifact_role(document_id: str | None = None) -> str:
    """Role segment for a bundle (no id) or a document."""
    return BUNDLE_ROLE if document_id is None else f'doc-{document_id}'


def artifact_kind(role: str) -> str:
    return 'bundle' if role == BUNDLE_ROLE else 'document'


class ArtifactStorage(Protocol):
    """Blob backend used by ``ArtifactStore``."""

    async def put(
        self, key: str, data: bytes, *, content_type: str, metadata: dict[str, str],
    ) -> None: ...

    async def signed_url(self, key: str, ttl_seconds: int) -> str: ...

    async def delete(self, key: str) -> None: ...


class ArtifactStore:
    """Link artifact layout over an ``ArtifactStorage`` backend.

    Every backend call is bounded by ``timeout_seconds``; failures and
    timeouts surface as ``CollaboratorError('storage')``.
    """

    def __init__(
        self,
        storage: ArtifactStorage,
        *,
        namespace: str = 'shls',
        signed_url_ttl: int = 3600,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._storage = storage
        self._namespace = namespace.strip('/')
        self._signed_url_ttl = signed_url_ttl
        self._timeout = timeout_seconds

    def key_for(self, link_id: str, role: str) -> str:
        return f'{self._namespace}/{link_id}/{role}.jwe'

    async def _call(self, operation: str, coro):
        try:
            return await asyncio.wait_for(coro, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            logger.warning('storage_timeout', operation=operation)
            raise CollaboratorError('storage', 'storage timed out') from exc
        except CollaboratorError:
            raise
        except Exception as exc:
            logger.warning(
                'storage_failed', operation=operation, error=type(exc).__name__,
            )
            raise CollaboratorError('storage') from exc

    async def put(self, link_id: str, role: str, ciphertext: str | bytes) -> str:
        """Store one envelope and return its storage key."""
        key = self.key_for(link_id, role)
        data = ciphertext.encode('ascii') if isinstance(ciphertext, str) else ciphertext
        await self._call('put', self._storage.put(
            key,
            data,
            content_type=ENVELOPE_MEDIA_TYPE,
            metadata={'x-shl-type': artifact_kind(role)},
        ))
        logger.debug('artifact_stored', link=redact_id(link_id), role=artifact_kind(role))
        return key

    async def signed_url(self, storage_key: str, ttl: int | None = None) -> str:
        return await self._call(
            'signed_url',
            self._storage.signed_url(storage_key, ttl or self._signed_url_ttl),
        )

    async def delete(self, storage_key: str) -> None:
        await self._call('delete', self._storage.delete(storage_key))

    async def delete_quietly(self, storage_keys: Iterable[str]) -> int:
        """Best-effort cleanup. Failures are logged, never raised or retried.

        Returns the number of keys deleted.
        """
        deleted = 0
        for key in storage_keys:
            try:
                await self.delete(key)
                deleted += 1
            except CollaboratorError:
                logger.warning('artifact_cleanup_failed', role=key.rsplit('/', 1)[-1])
        return deleted


class InMemoryArtifactStorage:
    """Dict-backed storage for local development and tests.

    ``fail_puts_after`` makes the n-th and later ``put`` calls fail;
    ``fail_signing`` and ``fail_deletes`` fail those operations outright.
    """

    def __init__(
        self,
        *,
        base_url: str = 'memory://artifacts',
        fail_puts_after: int | None = None,
        fail_signing: bool = False,
        fail_deletes: bool = False,
    ) -> None:
        self.base_url = base_url.rstrip('/')
        self.objects: dict[str, bytes] = {}
        self.content_types: dict[str, str] = {}
        self.metadata: dict[str, dict[str, str]] = {}
        self.fail_puts_after = fail_puts_after
        self.fail_signing = fail_signing
        self.fail_deletes = fail_deletes
        self.put_calls = 0
        self._url_counter = 0

    async def put(
        self, key: str, data: bytes, *, content_type: str, metadata: dict[str, str],
    ) -> None:
        self.put_calls += 1
        if self.fail_puts_after is not None and self.put_calls >= self.fail_puts_after:
            raise OSError('simulated storage outage')
        self.objects[key] = bytes(data)
        self.content_types[key] = content_type
        self.metadata[key] = dict(metadata)

    async def signed_url(self, key: str, ttl_seconds: int) -> str:
        if self.fail_signing:
            raise OSError('simulated signing outage')
        if key not in self.objects:
            raise KeyError(key)
        self._url_counter += 1
        return f'{self.base_url}/{key}?ttl={ttl_seconds}&sig={self._url_counter}'

    async def delete(self, key: str) -> None:
        if self.fail_deletes:
            raise OSError('simulated delete outage')
        self.objects.pop(key, None)
        self.content_types.pop(key, None)
        self.metadata.pop(key, None)

    def get(self, key: str) -> bytes:
        return self.objects[key]

    def key_from_url(self, url: str) -> str:
        """Storage key addressed by a URL from ``signed_url``."""
        return url[len(self.base_url) + 1:].split('?', 1)[0]
