"""High-entropy secret generation for link keys and link ids.

Both values are 32 bytes drawn from the operating system CSPRNG via
``secrets.token_bytes``. The encryption key is returned to the issuer once
and never persisted; the link id is public but unguessable and becomes the
manifest path segment.

Encoding is unpadded base64url (43 characters for 32 bytes). Decoding is
strict: input must be the canonical encoding of its bytes, so two different
strings never map to the same key or id.
"""

from __future__ import annotations

import base64
import binascii
import re
import secrets
from typing import Callable

from ..errors import SecretGenerationError

SECRET_BYTES = 32  # 256 bits.
ENCODED_SECRET_LENGTH = 43

_B64URL_ALPHABET = re.compile(r'^[A-Za-z0-9_-]*$')
_LINK_ID_PATTERN = re.compile(r'^[A-Za-z0-9_-]{43}$')


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b'=').decode('ascii')


def b64url_decode(text: str) -> bytes:
    """Decode unpadded base64url, rejecting non-canonical input.

    Raises:
        ValueError: On characters outside the alphabet, impossible lengths,
            or trailing bits that a canonical encoder would have zeroed.
    """
    if not isinstance(text, str) or not _B64URL_ALPHABET.match(text):
        raise ValueError('invalid base64url text')
    if len(text) % 4 == 1:
        raise ValueError('invalid base64url length')
    padded = text + '=' * (-len(text) % 4)
    try:
        data = base64.urlsafe_b64decode(padded)
    except binascii.Error as exc:
        raise ValueError('invalid base64url text') from exc
    if b64url_encode(data) != text:
        raise ValueError('non-canonical base64url text')
    return data


class SecretGenerator:
    """Source of link keys and link ids.

    ``randbytes`` is injectable so tests can simulate an unavailable or
    short-reading random source; production always uses
    ``secrets.token_bytes``.
    """

    def __init__(
        self, randbytes: Callable[[int], bytes] = secrets.token_bytes,
    ) -> None:
        self._randbytes = randbytes

    def _draw(self) -> bytes:
        try:
            value = self._randbytes(SECRET_BYTES)
        except (NotImplementedError, OSError) as exc:
            raise SecretGenerationError(
                'secure random source unavailable',
            ) from exc
        if not isinstance(value, bytes):
            raise SecretGenerationError(
                f'random source returned {type(value).__name__}, expected bytes',
            )
        if len(value) != SECRET_BYTES:
            raise SecretGenerationError(
                f'random source returned {len(value)} bytes, expected {SECRET_BYTES}',
            )
        return value

    def new_key(self) -> bytes:
        """Return a fresh 256-bit content encryption key."""
        return self._draw()

    def new_id(self) -> bytes:
        """Return 256 bits of entropy for a link id."""
        return self._draw()

    def new_link_id(self) -> str:
        """Return a fresh link id in its public (base64url) form."""
        return b64url_encode(self.new_id())


def is_well_formed_link_id(value: str) -> bool:
    """True if ``value`` could have been produced by ``new_link_id``."""
    if not isinstance(value, str) or not _LINK_ID_PATTERN.match(value):
        return False
    try:
        b64url_decode(value)
    except ValueError:
        return False
    return True


def decode_key(encoded: str) -> bytes:
    """Decode a base64url key from a link payload.

    Raises:
        ValueError: If the text is not a canonical 32-byte key.
    """
    key = b64url_decode(encoded)
    if len(key) != SECRET_BYTES:
        raise ValueError(
            f'Invalid key size: expected {SECRET_BYTES} bytes, got {len(key)}',
        )
    return key
