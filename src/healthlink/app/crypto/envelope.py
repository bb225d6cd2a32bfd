"""Authenticated content envelope (JWE compact serialization).

Every artifact a link points at is sealed into a five-segment JWE::

    BASE64URL(header) . "" . BASE64URL(iv) . BASE64URL(ciphertext) . BASE64URL(tag)

Header fields:
  - ``alg``: ``dir`` -- the link key encrypts content directly, so the
    encrypted-key segment is always empty.
  - ``enc``: ``A256GCM`` -- AES-256-GCM with a 96-bit random IV and a
    128-bit tag. The encoded header segment is the additional
    authenticated data, so the header cannot be altered either.
  - ``cty``: the plaintext media type.
  - ``zip``: optional ``DEF``. ``seal`` never compresses; ``open`` inflates
    raw DEFLATE when an envelope produced elsewhere sets it.

Failure policy:
  Wrong key, tampering anywhere, non-canonical base64url, or a malformed
  header all raise the same ``DecryptionError``. No partial plaintext is
  ever returned.
"""

from __future__ import annotations

import json
import secrets
import zlib
from dataclasses import dataclass
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..errors import DecryptionError
from .secrets import SECRET_BYTES, b64url_decode, b64url_encode

JWE_ALGORITHM = 'dir'
JWE_ENCRYPTION = 'A256GCM'
JWE_COMPRESSION = 'DEF'

IV_BYTES = 12
TAG_BYTES = 16

ENVELOPE_MEDIA_TYPE = 'application/jose'


@dataclass(frozen=True, slots=True)
class OpenedContent:
    """Plaintext and declared media type recovered from an envelope."""

    plaintext: bytes
    content_type: str


def _check_key(key: bytes) -> None:
    if not isinstance(key, (bytes, bytearray)) or len(key) != SECRET_BYTES:
        size = len(key) if isinstance(key, (bytes, bytearray)) else 'non-bytes'
        raise ValueError(
            f'Invalid key size: expected {SECRET_BYTES} bytes, got {size}',
        )


def _encode_header(header: dict[str, Any]) -> str:
    return b64url_encode(
        json.dumps(header, separators=(',', ':')).encode('utf-8'),
    )


class ContentCipher:
    """Seal and open JWE envelopes under a 256-bit link key."""

    def seal(self, plaintext: bytes, key: bytes, content_type: str) -> str:
        """Encrypt ``plaintext`` and return the compact envelope text."""
        _check_key(key)
        if not content_type:
            raise ValueError('content_type is required')

        header_segment = _encode_header({
            'alg': JWE_ALGORITHM,
            'enc': JWE_ENCRYPTION,
            'cty': content_type,
        })
        iv = secrets.token_bytes(IV_BYTES)
        sealed = AESGCM(bytes(key)).encrypt(
            iv, bytes(plaintext), header_segment.encode('ascii'),
        )
        ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
        return '.'.join((
            header_segment,
            '',
            b64url_encode(iv),
            b64url_encode(ciphertext),
            b64url_encode(tag),
        ))

    def open(self, envelope: str | bytes, key: bytes) -> OpenedContent:
        """Authenticate and decrypt an envelope.

        Raises:
            ValueError: If ``key`` is not 32 bytes.
            DecryptionError: For any integrity or format failure.
        """
        _check_key(key)
        try:
            return self._open(envelope, bytes(key))
        except DecryptionError:
            raise
        except (ValueError, TypeError, KeyError, InvalidTag, zlib.error):
            raise DecryptionError() from None

    def _open(self, envelope: str | bytes, key: bytes) -> OpenedContent:
        if isinstance(envelope, (bytes, bytearray)):
            envelope = bytes(envelope).decode('ascii')

        segments = envelope.split('.')
        if len(segments) != 5:
            raise DecryptionError()
        header_segment, encrypted_key, iv_segment, ct_segment, tag_segment = segments

        if encrypted_key != '':
            raise DecryptionError()

        header = json.loads(b64url_decode(header_segment))
        if not isinstance(header, dict):
            raise DecryptionError()
        if header.get('alg') != JWE_ALGORITHM or header.get('enc') != JWE_ENCRYPTION:
            raise DecryptionError()
        content_type = header.get('cty')
        if not isinstance(content_type, str) or not content_type:
            raise DecryptionError()
        compression = header.get('zip')
        if compression not in (None, JWE_COMPRESSION):
            raise DecryptionError()

        iv = b64url_decode(iv_segment)
        ciphertext = b64url_decode(ct_segment)
        tag = b64url_decode(tag_segment)
        if len(iv) != IV_BYTES or len(tag) != TAG_BYTES:
            raise DecryptionError()

        plaintext = AESGCM(key).decrypt(
            iv, ciphertext + tag, header_segment.encode('ascii'),
        )
        if compression == JWE_COMPRESSION:
            plaintext = zlib.decompress(plaintext, wbits=-zlib.MAX_WBITS)

        return OpenedContent(plaintext=plaintext, content_type=content_type)

    # ── JSON helpers ─────────────────────────────────────────────────

    def seal_json(
        self, document: Any, key: bytes, content_type: str = 'application/json',
    ) -> str:
        payload = json.dumps(document, separators=(',', ':')).encode('utf-8')
        return self.seal(payload, key, content_type)

    def open_json(self, envelope: str | bytes, key: bytes) -> tuple[Any, str]:
        opened = self.open(envelope, key)
        try:
            document = json.loads(opened.plaintext)
        except ValueError:
            raise DecryptionError() from None
        return document, opened.content_type
