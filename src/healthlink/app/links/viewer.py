"""Recipient-side client for opening a link.

Takes a ``shlink:/`` URI (or a viewer URL carrying one), asks the manifest
endpoint for the bundle location, downloads the envelope and decrypts it
with the key from the payload. Document attachments referenced by the
bundle are opened with the same key.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

from ..crypto.envelope import ContentCipher, OpenedContent
from .payload import LinkPayload, decode_shlink


class ViewerError(Exception):
    """The manifest endpoint refused the link or returned something unusable."""

    def __init__(self, message: str, status_code: int | None = None, reason: str | None = None) -> None:
        self.status_code = status_code
        self.reason = reason
        super().__init__(message)


@dataclass(frozen=True)
class ViewedBundle:
    payload: LinkPayload
    bundle: dict[str, Any]

    @property
    def attachments(self) -> list[dict[str, Any]]:
        result = []
        for entry in self.bundle.get('entry', []):
            resource = entry.get('resource', {})
            if resource.get('resourceType') != 'DocumentReference':
                continue
            for content in resource.get('content', []):
                result.append(content['attachment'])
        return result


class ViewerClient:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        cipher: ContentCipher | None = None,
    ) -> None:
        self._client = http_client
        self._cipher = cipher or ContentCipher()

    async def open_link(self, link: str, recipient: str) -> ViewedBundle:
        """Fetch the manifest and decrypt the bundle.

        Raises:
            ValueError: The link is not a well-formed payload.
            ViewerError: The manifest endpoint refused the request.
            DecryptionError: The bundle did not decrypt with the link key.
        """
        payload = decode_shlink(link)
        resp = await self._client.post(payload.url, json={'recipient': recipient})
        if resp.status_code != 200:
            body = _json_or_empty(resp)
            raise ViewerError(
                body.get('error') or f'manifest returned {resp.status_code}',
                status_code=resp.status_code,
                reason=body.get('reason'),
            )
        files = _json_or_empty(resp).get('files') or []
        if not files:
            raise ViewerError('manifest lists no files', status_code=resp.status_code)

        envelope = await self._download(files[0]['location'])
        bundle, _ = self._cipher.open_json(envelope, payload.key_bytes)
        return ViewedBundle(payload=payload, bundle=bundle)

    async def open_attachment(self, viewed: ViewedBundle, attachment: dict[str, Any]) -> OpenedContent:
        envelope = await self._download(attachment['url'])
        return self._cipher.open(envelope, viewed.payload.key_bytes)

    async def _download(self, url: str) -> bytes:
        resp = await self._client.get(url)
        if resp.status_code != 200:
            raise ViewerError(f'download returned {resp.status_code}', status_code=resp.status_code)
        return resp.content


def _json_or_empty(resp: httpx.Response) -> dict[str, Any]:
    try:
        body = resp.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}
