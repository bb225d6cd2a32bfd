"""Link key generation and content envelope encryption."""

from .envelope import (
    ENVELOPE_MEDIA_TYPE,
    ContentCipher,
    OpenedContent,
)
from .secrets import (
    SECRET_BYTES,
    SecretGenerator,
    b64url_decode,
    b64url_encode,
    decode_key,
    is_well_formed_link_id,
)

__all__ = [
    'ENVELOPE_MEDIA_TYPE',
    'SECRET_BYTES',
    'ContentCipher',
    'OpenedContent',
    'SecretGenerator',
    'b64url_decode',
    'b64url_encode',
    'decode_key',
    'is_well_formed_link_id',
]
