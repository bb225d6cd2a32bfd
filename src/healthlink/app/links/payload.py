"""Link payload encoding.

The recipient receives a compact JSON object::

    {"url": <manifest URL>, "key": <base64url 32-byte key>,
     "exp": <epoch seconds>, "label": <display string, <= 80 chars>}

encoded as base64url and wrapped as ``shlink:/<encoded>``. Viewer URLs carry
it in the fragment (``<viewer>/#shlink:/<encoded>``) so it is never sent to
any server.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import datetime

from ..crypto.secrets import b64url_decode, b64url_encode, decode_key

SHLINK_PREFIX = 'shlink:/'
LABEL_MAX_LENGTH = 80


@dataclass(frozen=True, slots=True)
class LinkPayload:
    url: str
    key: str
    exp: int
    label: str

    @property
    def key_bytes(self) -> bytes:
        return decode_key(self.key)


def manifest_url(api_url: str, link_id: str) -> str:
    return f'{api_url.rstrip("/")}/shl/{link_id}/manifest'


def build_payload(
    *, manifest_url: str, key: bytes, expires_at: datetime, patient_name: str,
) -> LinkPayload:
    return LinkPayload(
        url=manifest_url,
        key=b64url_encode(key),
        exp=int(expires_at.timestamp()),
        label=f'Documents for {patient_name}'[:LABEL_MAX_LENGTH],
    )


def encode_payload(payload: LinkPayload) -> str:
    """Base64url of the compact JSON payload (no ``shlink:/`` prefix)."""
    data = json.dumps(asdict(payload), separators=(',', ':'))
    return b64url_encode(data.encode('utf-8'))


def shlink_uri(payload: LinkPayload) -> str:
    return f'{SHLINK_PREFIX}{encode_payload(payload)}'


def viewer_url(viewer_base: str, payload: LinkPayload) -> str:
    return f'{viewer_base.rstrip("/")}/#{shlink_uri(payload)}'


def decode_shlink(value: str) -> LinkPayload:
    """Parse a ``shlink:/`` URI or a viewer URL carrying one in its fragment.

    Raises:
        ValueError: If the value is not a well-formed link payload.
    """
    if '#' in value:
        value = value.split('#', 1)[1]
    if not value.startswith(SHLINK_PREFIX):
        raise ValueError('not a shlink URI')
    try:
        data = json.loads(b64url_decode(value[len(SHLINK_PREFIX):]))
        payload = LinkPayload(
            url=str(data['url']),
            key=str(data['key']),
            exp=int(data['exp']),
            label=str(data.get('label', '')),
        )
    except (KeyError, TypeError) as exc:
        raise ValueError('malformed shlink payload') from exc
    decode_key(payload.key)
    return payload
