"""Tests for link secrets and the JWE content envelope.

Validates:
  - Keys and link ids are 256-bit, unique across 10,000 draws, roughly
    uniform per byte, and canonically encoded.
  - An unavailable random source fails loudly.
  - seal/open round-trips bytes and JSON under the same key.
  - Wrong keys, a flip of any bit in any segment, and header edits all
    raise DecryptionError.
  - Envelopes compressed with zip=DEF are inflated on open.
"""

from __future__ import annotations

import json
import secrets
import zlib
from collections import Counter

import pytest
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from healthlink.app.crypto.envelope import ENVELOPE_MEDIA_TYPE, ContentCipher
from healthlink.app.crypto.secrets import (
    SECRET_BYTES,
    SecretGenerator,
    b64url_decode,
    b64url_encode,
    decode_key,
    is_well_formed_link_id,
)
from healthlink.app.errors import DecryptionError, SecretGenerationError


@pytest.fixture
def cipher():
    return ContentCipher()


@pytest.fixture
def key():
    return SecretGenerator().new_key()


def _flip_char(segment: str, index: int) -> str:
    replacement = 'A' if segment[index] != 'A' else 'B'
    return segment[:index] + replacement + segment[index + 1:]


# =====================================================================
# Secrets
# =====================================================================


class TestSecretGenerator:

    def test_key_is_32_bytes(self):
        assert len(SecretGenerator().new_key()) == SECRET_BYTES

    def test_link_id_is_43_char_base64url(self):
        link_id = SecretGenerator().new_link_id()
        assert len(link_id) == 43
        assert is_well_formed_link_id(link_id)
        assert len(b64url_decode(link_id)) == SECRET_BYTES

    def test_ten_thousand_values_are_unique(self):
        gen = SecretGenerator()
        ids = {gen.new_link_id() for _ in range(10_000)}
        keys = {gen.new_key() for _ in range(10_000)}
        assert len(ids) == 10_000
        assert len(keys) == 10_000
        assert ids.isdisjoint(b64url_encode(k) for k in keys)

    def test_key_bytes_look_uniform(self):
        gen = SecretGenerator()
        counts = Counter()
        for _ in range(10_000):
            counts.update(gen.new_key())
        expected = 10_000 * SECRET_BYTES / 256
        assert len(counts) == 256
        chi_square = sum((counts[b] - expected) ** 2 / expected for b in range(256))
        # 255 degrees of freedom: mean 255, standard deviation about 22.6.
        assert chi_square < 400
        assert all(0.8 * expected < counts[b] < 1.2 * expected for b in range(256))

    @pytest.mark.parametrize('error', [NotImplementedError('no entropy'), OSError('urandom failed')])
    def test_unavailable_random_source_raises(self, error):
        def broken(_n):
            raise error

        with pytest.raises(SecretGenerationError, match='unavailable'):
            SecretGenerator(randbytes=broken).new_key()

    @pytest.mark.parametrize('value, reported', [
        (None, 'NoneType'),
        ('x' * 32, 'str'),
        (bytearray(32), 'bytearray'),
    ])
    def test_non_bytes_random_value_raises(self, value, reported):
        with pytest.raises(SecretGenerationError, match=reported):
            SecretGenerator(randbytes=lambda n: value).new_key()

    def test_short_random_read_raises(self):
        with pytest.raises(SecretGenerationError):
            SecretGenerator(randbytes=lambda n: b'\x00' * (n - 1)).new_link_id()


class TestBase64Url:

    def test_encode_has_no_padding(self):
        assert b64url_encode(b'\xff\xfe') == '__4'

    def test_rejects_padding_and_foreign_alphabet(self):
        with pytest.raises(ValueError):
            b64url_decode('__4=')
        with pytest.raises(ValueError):
            b64url_decode('ab+/')

    def test_rejects_non_canonical_trailing_bits(self):
        # '__5' decodes to the same bytes as '__4' if trailing bits are ignored.
        with pytest.raises(ValueError):
            b64url_decode('__5')

    def test_decode_key_requires_32_bytes(self):
        with pytest.raises(ValueError, match='Invalid key size'):
            decode_key(b64url_encode(b'\x01' * 16))


class TestIsWellFormedLinkId:

    @pytest.mark.parametrize('value', ['', 'short', 'x' * 44, '!' * 43, None])
    def test_malformed(self, value):
        assert is_well_formed_link_id(value) is False


# =====================================================================
# Envelope
# =====================================================================


class TestSealOpen:

    def test_round_trip(self, cipher, key):
        envelope = cipher.seal(b'hello records', key, 'text/plain')
        opened = cipher.open(envelope, key)
        assert opened.plaintext == b'hello records'
        assert opened.content_type == 'text/plain'

    def test_compact_form_has_empty_key_segment(self, cipher, key):
        segments = cipher.seal(b'x', key, 'text/plain').split('.')
        assert len(segments) == 5
        assert segments[1] == ''
        header = json.loads(b64url_decode(segments[0]))
        assert header == {'alg': 'dir', 'enc': 'A256GCM', 'cty': 'text/plain'}

    def test_fresh_iv_per_seal(self, cipher, key):
        a = cipher.seal(b'same', key, 'text/plain')
        b = cipher.seal(b'same', key, 'text/plain')
        assert a != b

    def test_accepts_bytes_envelope(self, cipher, key):
        envelope = cipher.seal(b'bytes in', key, 'application/pdf').encode('ascii')
        assert cipher.open(envelope, key).plaintext == b'bytes in'

    def test_json_round_trip(self, cipher, key):
        doc = {'resourceType': 'Bundle', 'entry': []}
        envelope = cipher.seal_json(doc, key, 'application/fhir+json')
        assert cipher.open_json(envelope, key) == (doc, 'application/fhir+json')

    def test_rejects_wrong_key_size(self, cipher):
        with pytest.raises(ValueError):
            cipher.seal(b'x', b'short', 'text/plain')

    def test_media_type_constant(self):
        assert ENVELOPE_MEDIA_TYPE == 'application/jose'


class TestOpenFailures:

    def test_wrong_key(self, cipher, key):
        envelope = cipher.seal(b'secret', key, 'text/plain')
        with pytest.raises(DecryptionError):
            cipher.open(envelope, SecretGenerator().new_key())

    def test_ciphertext_bit_flip(self, cipher, key):
        segments = cipher.seal(b'a longer plaintext body', key, 'text/plain').split('.')
        segments[3] = _flip_char(segments[3], 2)
        with pytest.raises(DecryptionError):
            cipher.open('.'.join(segments), key)

    def test_iv_bit_flip(self, cipher, key):
        segments = cipher.seal(b'payload', key, 'text/plain').split('.')
        iv = bytearray(b64url_decode(segments[2]))
        iv[0] ^= 0x01
        segments[2] = b64url_encode(bytes(iv))
        with pytest.raises(DecryptionError):
            cipher.open('.'.join(segments), key)

    @pytest.mark.parametrize('segment', [0, 2, 3, 4], ids=['header', 'iv', 'ciphertext', 'tag'])
    def test_every_bit_flip_is_detected(self, cipher, key, segment):
        envelope = cipher.seal(b'tiny', key, 'text/plain')
        segments = envelope.split('.')
        raw = b64url_decode(segments[segment])
        for bit in range(len(raw) * 8):
            flipped = bytearray(raw)
            flipped[bit // 8] ^= 1 << (bit % 8)
            tampered = list(segments)
            tampered[segment] = b64url_encode(bytes(flipped))
            with pytest.raises(DecryptionError):
                cipher.open('.'.join(tampered), key)
        assert cipher.open(envelope, key).plaintext == b'tiny'

    def test_tag_bit_flip(self, cipher, key):
        segments = cipher.seal(b'payload', key, 'text/plain').split('.')
        segments[4] = _flip_char(segments[4], 0)
        with pytest.raises(DecryptionError):
            cipher.open('.'.join(segments), key)

    def test_header_edit_breaks_authentication(self, cipher, key):
        segments = cipher.seal(b'payload', key, 'text/plain').split('.')
        segments[0] = b64url_encode(json.dumps(
            {'alg': 'dir', 'enc': 'A256GCM', 'cty': 'text/html'},
            separators=(',', ':'),
        ).encode())
        with pytest.raises(DecryptionError):
            cipher.open('.'.join(segments), key)

    def test_non_empty_key_segment(self, cipher, key):
        segments = cipher.seal(b'payload', key, 'text/plain').split('.')
        segments[1] = 'AAAA'
        with pytest.raises(DecryptionError):
            cipher.open('.'.join(segments), key)

    @pytest.mark.parametrize('envelope', ['', 'a.b.c', 'not-an-envelope', '....'])
    def test_garbage(self, cipher, key, envelope):
        with pytest.raises(DecryptionError):
            cipher.open(envelope, key)

    def test_open_json_on_non_json_plaintext(self, cipher, key):
        envelope = cipher.seal(b'not json', key, 'text/plain')
        with pytest.raises(DecryptionError):
            cipher.open_json(envelope, key)

    def test_error_carries_no_detail(self, cipher, key):
        envelope = cipher.seal(b'secret', key, 'text/plain')
        with pytest.raises(DecryptionError) as exc_info:
            cipher.open(envelope, SecretGenerator().new_key())
        assert str(exc_info.value) == 'Unable to decrypt content'


class TestCompressedEnvelope:

    def _seal_deflated(self, plaintext: bytes, key: bytes) -> str:
        header = b64url_encode(json.dumps(
            {'alg': 'dir', 'enc': 'A256GCM', 'cty': 'application/json', 'zip': 'DEF'},
            separators=(',', ':'),
        ).encode())
        compressor = zlib.compressobj(wbits=-zlib.MAX_WBITS)
        deflated = compressor.compress(plaintext) + compressor.flush()
        iv = secrets.token_bytes(12)
        sealed = AESGCM(key).encrypt(iv, deflated, header.encode('ascii'))
        return '.'.join((
            header, '', b64url_encode(iv),
            b64url_encode(sealed[:-16]), b64url_encode(sealed[-16:]),
        ))

    def test_deflate_is_inflated(self, cipher, key):
        plaintext = json.dumps({'note': 'x' * 500}).encode()
        opened = cipher.open(self._seal_deflated(plaintext, key), key)
        assert opened.plaintext == plaintext
        assert opened.content_type == 'application/json'

    def test_unknown_compression_rejected(self, cipher, key):
        header = b64url_encode(json.dumps(
            {'alg': 'dir', 'enc': 'A256GCM', 'cty': 'text/plain', 'zip': 'GZ'},
        ).encode())
        iv = secrets.token_bytes(12)
        sealed = AESGCM(key).encrypt(iv, b'data', header.encode('ascii'))
        envelope = '.'.join((
            header, '', b64url_encode(iv),
            b64url_encode(sealed[:-16]), b64url_encode(sealed[-16:]),
        ))
        with pytest.raises(DecryptionError):
            cipher.open(envelope, key)
