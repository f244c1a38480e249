"""
Tests for the ContentInfo codec and the embedded envelope layout.
"""

import hashlib
import struct

import pytest

from sealcrypt import BulkAlgorithm, EnvelopeFormatError, KeyPairType, PrimitiveError
from sealcrypt.envelope import (
    ContentInfo,
    PasswordRecipientWrap,
    RecipientKeyWrap,
    embed,
    split,
)


def make_content_info(**overrides) -> ContentInfo:
    fields = dict(
        bulk_algorithm=BulkAlgorithm.AES_256_GCM,
        nonce=b"n" * 12,
        key_wraps=(
            RecipientKeyWrap(
                recipient_identifier=b"alice-id",
                key_type=KeyPairType.ED25519,
                ephemeral_public_key=b"e" * 44,
                wrapped_bulk_key=b"w" * 32
            ),
            RecipientKeyWrap(
                recipient_identifier=b"b" * 32,
                key_type=KeyPairType.SECP384R1,
                ephemeral_public_key=b"f" * 120,
                wrapped_bulk_key=b"x" * 32
            ),
        ),
        custom_params={"sealcrypt.signer-id": b"signer", "zeta": b"", "alpha": b"\x00\x01"}
    )
    fields.update(overrides)
    return ContentInfo(**fields)


def test_content_info_round_trip():
    info = make_content_info(
        password_wrap=PasswordRecipientWrap(salt=b"s" * 16, iterations=210000, wrapped_bulk_key=b"p" * 32)
    )

    assert ContentInfo.from_bytes(info.to_bytes()) == info


def test_content_info_is_self_describing():
    data = make_content_info().to_bytes()

    assert data.startswith(b"SCI1")
    body, checksum = data[:-32], data[-32:]
    assert hashlib.sha256(body).digest() == checksum


def test_custom_params_serialize_in_name_order():
    first = make_content_info(custom_params={"b": b"2", "a": b"1"})
    second = make_content_info(custom_params={"a": b"1", "b": b"2"})

    assert first.to_bytes() == second.to_bytes()


def test_find_recipient():
    info = make_content_info()

    assert info.find_recipient(b"alice-id").key_type == KeyPairType.ED25519
    assert info.find_recipient(b"b" * 32).key_type == KeyPairType.SECP384R1
    assert info.find_recipient(b"alice-i") is None
    assert info.find_recipient(b"nobody") is None


def test_checksum_rejects_any_bit_flip():
    data = make_content_info().to_bytes()

    for position in range(len(data)):
        tampered = bytearray(data)
        tampered[position] ^= 1 << (position % 8)
        with pytest.raises(EnvelopeFormatError):
            ContentInfo.from_bytes(bytes(tampered))


def _with_checksum(body: bytes) -> bytes:
    return body + hashlib.sha256(body).digest()


def test_rejects_wrong_magic_and_version():
    body = make_content_info().to_bytes()[:-32]

    with pytest.raises(EnvelopeFormatError, match="magic"):
        ContentInfo.from_bytes(_with_checksum(b"XXXX" + body[4:]))
    with pytest.raises(EnvelopeFormatError, match="version"):
        ContentInfo.from_bytes(_with_checksum(body[:4] + b"\x09" + body[5:]))


def test_rejects_unknown_bulk_algorithm():
    body = make_content_info().to_bytes()[:-32]

    with pytest.raises(EnvelopeFormatError):
        ContentInfo.from_bytes(_with_checksum(body[:5] + b"\x7f" + body[6:]))


def test_rejects_truncated_and_trailing_data():
    body = make_content_info().to_bytes()[:-32]

    with pytest.raises(EnvelopeFormatError, match="truncated"):
        ContentInfo.from_bytes(_with_checksum(body[:-3]))
    with pytest.raises(EnvelopeFormatError, match="Trailing"):
        ContentInfo.from_bytes(_with_checksum(body + b"\x00"))
    with pytest.raises(EnvelopeFormatError):
        ContentInfo.from_bytes(b"SCI")


def test_envelope_format_error_is_a_primitive_error():
    with pytest.raises(PrimitiveError):
        ContentInfo.from_bytes(b"garbage" * 10)


def test_embed_and_split():
    content_info = make_content_info().to_bytes()
    ciphertext = b"c" * 50

    embedded = embed(content_info, ciphertext)

    assert embedded[:4] == struct.pack(">I", len(content_info))
    assert split(embedded) == (content_info, ciphertext)
    assert split(embed(content_info, b"")) == (content_info, b"")


def test_split_rejects_bad_prefix():
    with pytest.raises(EnvelopeFormatError):
        split(b"\x00\x00")
    with pytest.raises(EnvelopeFormatError):
        split(struct.pack(">I", 100) + b"short")


def test_oversized_field_is_rejected():
    wrap = RecipientKeyWrap(
        recipient_identifier=b"i" * 0x10000,
        key_type=KeyPairType.ED25519,
        ephemeral_public_key=b"e" * 44,
        wrapped_bulk_key=b"w" * 32
    )

    with pytest.raises(EnvelopeFormatError, match="does not fit"):
        make_content_info(key_wraps=(wrap,)).to_bytes()
