#!/usr/bin/env python3
"""
Tests for the primitives adapter, key model and engine configuration.
"""

import base64
import hashlib
import sys

import pytest
from cryptography.hazmat.primitives import serialization
from pydantic import ValidationError

from sealcrypt import (
    BulkAlgorithm,
    CryptoOptions,
    HashAlgorithm,
    IdentifierScheme,
    IntegrityCheckFailedError,
    InvalidArgumentError,
    KeyPairType,
    PrimitiveError,
    SealCrypto,
    VerificationPolicy,
)
from sealcrypt.keys import compute_identifier
from sealcrypt.primitives import (
    _CURVE_ORDERS,
    aead_decrypt,
    aead_encrypt,
    derive_key,
    derive_password_key,
    generate_keypair,
    key_agreement,
    unwrap_key,
    wrap_key,
)
from sealcrypt import secure_memory
from sealcrypt.secure_memory import SecretScope, secure_zero


ALL_KEY_TYPES = list(KeyPairType)
SIGNING_KEY_TYPES = [t for t in KeyPairType if t != KeyPairType.CURVE25519]


@pytest.fixture
def crypto():
    return SealCrypto()


@pytest.mark.parametrize("key_type", [
    KeyPairType.ED25519, KeyPairType.CURVE25519, KeyPairType.SECP256R1, KeyPairType.SECP521R1
])
def test_key_agreement(key_type):
    """Test Diffie-Hellman key agreement"""
    alice_private, alice_public = generate_keypair(key_type)
    bob_private, bob_public = generate_keypair(key_type)

    alice_shared = key_agreement(alice_private, bob_public)
    bob_shared = key_agreement(bob_private, alice_public)

    assert alice_shared == bob_shared, "DH exchange failed"


def test_key_agreement_ed25519_with_x25519_ephemeral():
    """Ed25519 keys agree through their X25519 form"""
    ed_private, ed_public = generate_keypair(KeyPairType.ED25519)
    eph_private, eph_public = generate_keypair(KeyPairType.CURVE25519)

    assert key_agreement(eph_private, ed_public) == key_agreement(ed_private, eph_public)


def test_key_agreement_curve_mismatch():
    p256_private, _ = generate_keypair(KeyPairType.SECP256R1)
    _, p384_public = generate_keypair(KeyPairType.SECP384R1)
    _, x_public = generate_keypair(KeyPairType.CURVE25519)

    with pytest.raises(PrimitiveError):
        key_agreement(p256_private, p384_public)
    with pytest.raises(PrimitiveError):
        key_agreement(p256_private, x_public)


@pytest.mark.parametrize("algorithm", list(BulkAlgorithm))
def test_aead(algorithm):
    """Test bulk encryption and its authentication"""
    key = b"0" * 32
    nonce = b"n" * 12
    plaintext = b"Hello, World!"

    ciphertext = aead_encrypt(algorithm, key, nonce, plaintext, b"header")
    assert ciphertext != plaintext, "Ciphertext equals plaintext"
    assert aead_decrypt(algorithm, key, nonce, ciphertext, b"header") == plaintext

    with pytest.raises(IntegrityCheckFailedError):
        aead_decrypt(algorithm, b"1" * 32, nonce, ciphertext, b"header")
    with pytest.raises(IntegrityCheckFailedError):
        aead_decrypt(algorithm, key, nonce, ciphertext, b"other header")
    with pytest.raises(PrimitiveError):
        aead_encrypt(algorithm, b"short", nonce, plaintext)


def test_key_wrap():
    kek, iv, key = b"k" * 32, b"i" * 16, bytes(range(32))

    wrapped = wrap_key(kek, iv, key)
    assert len(wrapped) == 32
    assert wrapped != key
    assert wrap_key(kek, iv, key) == wrapped, "Key wrap must be deterministic"
    assert unwrap_key(kek, iv, wrapped) == key

    with pytest.raises(PrimitiveError):
        wrap_key(kek, iv, b"x" * 20)
    with pytest.raises(PrimitiveError):
        unwrap_key(kek, iv, b"x" * 31)


def test_kdf():
    """Test key derivation functions"""
    secret = b"shared secret from key agreement"

    first = derive_key(secret, b"context-a")
    assert len(first) == 48
    assert derive_key(secret, b"context-a") == first
    assert derive_key(secret, b"context-b") != first

    password_key = derive_password_key(b"hunter2", b"s" * 16, 1000)
    assert len(password_key) == 48
    assert derive_password_key(b"hunter2", b"t" * 16, 1000) != password_key


def test_calculate_hash(crypto):
    data = b"some data"
    assert crypto.calculate_hash(data) == hashlib.sha256(data).digest()
    assert crypto.calculate_hash(data, HashAlgorithm.SHA512) == hashlib.sha512(data).digest()
    assert crypto.calculate_hash(data, "sha384") == hashlib.sha384(data).digest()
    assert crypto.calculate_hash("some data", "MD5") == hashlib.md5(data).digest()

    with pytest.raises(InvalidArgumentError):
        crypto.calculate_hash(data, "WHIRLPOOL")


def test_get_random_bytes(crypto):
    assert crypto.get_random_bytes(0) == b""
    assert len(crypto.get_random_bytes(32)) == 32
    assert crypto.get_random_bytes(32) != crypto.get_random_bytes(32)

    with pytest.raises(InvalidArgumentError):
        crypto.get_random_bytes(-1)


@pytest.mark.parametrize("key_type", SIGNING_KEY_TYPES)
def test_signature(crypto, key_type):
    keys = crypto.generate_keys(key_type)
    data = b"message to sign" * 100

    signature = crypto.calculate_signature(data, keys.private_key)

    assert crypto.verify_signature(data, signature, keys.public_key)
    assert not crypto.verify_signature(data + b"!", signature, keys.public_key)
    assert not crypto.verify_signature(data, signature, crypto.generate_keys(key_type).public_key)


def test_curve25519_cannot_sign(crypto):
    keys = crypto.generate_keys(KeyPairType.CURVE25519)

    with pytest.raises(PrimitiveError):
        crypto.calculate_signature(b"data", keys.private_key)


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("key_type", ALL_KEY_TYPES)
def test_generate_keys(crypto, key_type):
    keys = crypto.generate_keys(key_type)

    assert keys.private_key.key_type == key_type
    assert keys.public_key.key_type == key_type
    assert keys.private_key.identifier == keys.public_key.identifier
    assert len(keys.public_key.identifier) == 8
    assert crypto.extract_public_key(keys.private_key) == keys.public_key


def test_default_key_pair_type():
    assert SealCrypto().generate_keys().public_key.key_type == KeyPairType.ED25519

    crypto = SealCrypto(CryptoOptions(default_key_pair_type=KeyPairType.SECP384R1))
    assert crypto.generate_keys().public_key.key_type == KeyPairType.SECP384R1


def test_identifier_schemes():
    current = SealCrypto()
    legacy = SealCrypto(CryptoOptions(use_sha256_identifiers=True))
    keys = current.generate_keys()
    der = current.export_public_key(keys.public_key)

    legacy_public = legacy.import_public_key(der)

    assert keys.public_key.identifier == hashlib.sha512(der).digest()[:8]
    assert legacy_public.identifier == hashlib.sha256(der).digest()
    assert legacy_public.identifier != keys.public_key.identifier
    assert compute_identifier(der, IdentifierScheme.SHA256) == legacy_public.identifier


@pytest.mark.parametrize("key_type", ALL_KEY_TYPES)
def test_generate_keys_from_key_material(crypto, key_type):
    material = b"k" * 32

    first = crypto.generate_keys_from_key_material(material, key_type)
    second = crypto.generate_keys_from_key_material(material, key_type)
    other = crypto.generate_keys_from_key_material(b"m" * 32, key_type)

    assert first.public_key == second.public_key
    assert first.public_key.identifier != other.public_key.identifier


def test_p521_key_material_stays_below_group_order(crypto):
    order = _CURVE_ORDERS[KeyPairType.SECP521R1]
    assert order.bit_length() == 521

    for i in range(64):
        keys = crypto.generate_keys_from_key_material(bytes([i]) * 32, KeyPairType.SECP521R1)
        native = serialization.load_der_private_key(crypto.export_private_key(keys.private_key), password=None)
        assert 1 <= native.private_numbers().private_value < order


def test_generate_keys_from_short_key_material(crypto):
    with pytest.raises(InvalidArgumentError):
        crypto.generate_keys_from_key_material(b"too short")


def test_private_key_export_import(crypto):
    keys = crypto.generate_keys()

    der = crypto.export_private_key(keys.private_key)
    imported = crypto.import_private_key(der)
    assert imported.identifier == keys.private_key.identifier

    # PEM text and base64 DER strings are accepted too
    native = serialization.load_der_private_key(der, password=None)
    pem = native.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption()
    )
    assert crypto.import_private_key(pem.decode()).identifier == keys.private_key.identifier
    assert crypto.import_private_key(base64.b64encode(der).decode()).identifier == keys.private_key.identifier


def test_private_key_export_with_password(crypto):
    keys = crypto.generate_keys(KeyPairType.SECP256R1)

    protected = crypto.export_private_key(keys.private_key, "correct horse")
    assert protected != crypto.export_private_key(keys.private_key)

    imported = crypto.import_private_key(protected, "correct horse")
    assert imported.identifier == keys.private_key.identifier

    with pytest.raises(PrimitiveError):
        crypto.import_private_key(protected, "wrong password")
    with pytest.raises(PrimitiveError):
        crypto.import_private_key(protected)


def test_public_key_import(crypto):
    keys = crypto.generate_keys()
    native = serialization.load_der_public_key(keys.public_key.key)
    pem = native.public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo
    )

    assert crypto.import_public_key(pem) == keys.public_key

    with pytest.raises(PrimitiveError):
        crypto.import_public_key(b"not a key")
    with pytest.raises(InvalidArgumentError):
        crypto.import_public_key("not base64 !")


def test_invalid_key_arguments(crypto):
    with pytest.raises(InvalidArgumentError):
        crypto.generate_keys("RSA_8192")
    with pytest.raises(InvalidArgumentError):
        crypto.extract_public_key(b"raw bytes")
    with pytest.raises(InvalidArgumentError):
        crypto.import_private_key(12345)


# ---------------------------------------------------------------------------
# Options and scoped secrets
# ---------------------------------------------------------------------------

def test_options_from_env():
    options = CryptoOptions.from_env({
        "SEALCRYPT_USE_SHA256_IDENTIFIERS": "true",
        "SEALCRYPT_DEFAULT_KEY_PAIR_TYPE": "secp256r1",
        "SEALCRYPT_BULK_ALGORITHM": "chacha20_poly1305",
        "SEALCRYPT_VERIFICATION_POLICY": "SIGNER_IDENTIFIER",
        "SEALCRYPT_PASSWORD_ITERATIONS": "5000",
        "UNRELATED": "ignored",
    })

    assert options.use_sha256_identifiers is True
    assert options.default_key_pair_type == KeyPairType.SECP256R1
    assert options.bulk_algorithm == BulkAlgorithm.CHACHA20_POLY1305
    assert options.verification_policy == VerificationPolicy.SIGNER_IDENTIFIER
    assert options.password_iterations == 5000

    assert CryptoOptions.from_env({}) == CryptoOptions()


def test_options_are_frozen():
    options = CryptoOptions()

    with pytest.raises(ValidationError):
        options.use_sha256_identifiers = True
    with pytest.raises(ValidationError):
        CryptoOptions(password_iterations=10)


def test_secret_scope_wipes_on_exit():
    with SecretScope() as scope:
        secret = scope.track(b"super secret key")
        adopted = scope.track(bytearray(b"another"))
    assert secret == bytearray(len(b"super secret key"))
    assert adopted == bytearray(7)


def test_secure_zero_uses_libsodium(monkeypatch):
    calls = []

    class RecordingLib:
        def sodium_memzero(self, pointer, length):
            calls.append(length)
            secure_memory._ffi.memmove(pointer, bytes(length), length)

    monkeypatch.setattr(secure_memory, "_lib", RecordingLib())
    buf = bytearray(b"secret")

    secure_zero(buf)
    secure_zero(bytearray())

    assert calls == [6]
    assert buf == bytearray(6)


def test_secret_scope_wipes_on_error():
    with pytest.raises(RuntimeError):
        with SecretScope() as scope:
            secret = scope.track(b"super secret key")
            raise RuntimeError("boom")
    assert not any(secret)


if __name__ == "__main__":
    sys.exit(pytest.main([__file__, "-v"]))
