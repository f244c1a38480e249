"""
Cryptographic Primitives

This module is the only place that talks to the underlying crypto libraries.
It provides AEAD bulk encryption, key agreement, key derivation, key
wrapping, signatures and hashing, dispatched on algorithm tags. Every
library exception is re-raised as one of the types in ``errors``.
"""

import os
import hmac
import hashlib
import logging
from enum import Enum, IntEnum
from typing import Optional, Tuple, Union

from cryptography.exceptions import InvalidSignature, InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, utils as asym_utils
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from nacl import bindings as nacl_bindings
from nacl.exceptions import CryptoError as NaClCryptoError

from .errors import (
    InvalidArgumentError,
    IntegrityCheckFailedError,
    IntegrityFailure,
    PrimitiveError,
)
from .secure_memory import SecretScope


logger = logging.getLogger(__name__)

Bytes = Union[bytes, bytearray, memoryview]
PrivateKey = Union[Ed25519PrivateKey, X25519PrivateKey, ec.EllipticCurvePrivateKey]
PublicKey = Union[Ed25519PublicKey, X25519PublicKey, ec.EllipticCurvePublicKey]

BULK_KEY_SIZE = 32
NONCE_SIZE = 12
WRAP_IV_SIZE = 16
# AES-256 key followed by the CBC IV used to wrap the bulk key
WRAP_MATERIAL_SIZE = 32 + WRAP_IV_SIZE


class KeyPairType(str, Enum):
    """Supported asymmetric key types"""
    ED25519 = "ED25519"
    CURVE25519 = "CURVE25519"
    SECP256R1 = "SECP256R1"
    SECP384R1 = "SECP384R1"
    SECP521R1 = "SECP521R1"


class HashAlgorithm(str, Enum):
    """Hash functions selectable by name"""
    MD5 = "MD5"
    SHA1 = "SHA1"
    SHA224 = "SHA224"
    SHA256 = "SHA256"
    SHA384 = "SHA384"
    SHA512 = "SHA512"


class BulkAlgorithm(IntEnum):
    """AEAD ciphers for the payload; values are the on-wire ids"""
    AES_256_GCM = 1
    CHACHA20_POLY1305 = 2


_CURVES = {
    KeyPairType.SECP256R1: ec.SECP256R1,
    KeyPairType.SECP384R1: ec.SECP384R1,
    KeyPairType.SECP521R1: ec.SECP521R1,
}

_CURVE_ORDERS = {
    KeyPairType.SECP256R1: int(
        "FFFFFFFF00000000FFFFFFFFFFFFFFFFBCE6FAADA7179E84F3B9CAC2FC632551", 16),
    KeyPairType.SECP384R1: int(
        "FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFC7634D81F4372DDF"
        "581A0DB248B0A77AECEC196ACCC52973", 16),
    KeyPairType.SECP521R1: int(
        "01FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFF"
        "FA51868783BF2F966B7FCC0148F709A5D03BB5C9B8899C47AEBB6FB71E91386409", 16),
}

_HASHES = {
    HashAlgorithm.MD5: hashes.MD5,
    HashAlgorithm.SHA1: hashes.SHA1,
    HashAlgorithm.SHA224: hashes.SHA224,
    HashAlgorithm.SHA256: hashes.SHA256,
    HashAlgorithm.SHA384: hashes.SHA384,
    HashAlgorithm.SHA512: hashes.SHA512,
}

_AEADS = {
    BulkAlgorithm.AES_256_GCM: AESGCM,
    BulkAlgorithm.CHACHA20_POLY1305: ChaCha20Poly1305,
}


# ---------------------------------------------------------------------------
# Randomness and hashing
# ---------------------------------------------------------------------------

def random_bytes(length: int) -> bytes:
    """
    Return cryptographically secure random bytes from the OS CSPRNG.

    Args:
        length: Number of bytes, zero or more

    Returns:
        ``length`` random bytes
    """
    if not isinstance(length, int) or isinstance(length, bool) or length < 0:
        raise InvalidArgumentError(f"Random byte count must be a non-negative integer, got {length!r}")
    if length == 0:
        return b""
    return os.urandom(length)


def hash_data(data: Bytes, algorithm: HashAlgorithm = HashAlgorithm.SHA256) -> bytes:
    """
    Hash data with the named algorithm.

    Args:
        data: Bytes to hash
        algorithm: One of ``HashAlgorithm``; default SHA256

    Returns:
        Digest bytes
    """
    try:
        hash_cls = _HASHES[HashAlgorithm(algorithm)]
    except (KeyError, ValueError):
        raise InvalidArgumentError(f"Unsupported hash algorithm: {algorithm!r}")
    digest = hashes.Hash(hash_cls())
    digest.update(bytes(data))
    return digest.finalize()


def constant_time_compare(a: Bytes, b: Bytes) -> bool:
    """Constant-time comparison to prevent timing attacks."""
    return hmac.compare_digest(bytes(a), bytes(b))


# ---------------------------------------------------------------------------
# Key generation and (de)serialization
# ---------------------------------------------------------------------------

def generate_keypair(key_type: KeyPairType) -> Tuple[PrivateKey, PublicKey]:
    """
    Generate a fresh keypair of the given type.

    Returns:
        Tuple of (private_key, public_key)
    """
    if key_type == KeyPairType.ED25519:
        private_key = Ed25519PrivateKey.generate()
    elif key_type == KeyPairType.CURVE25519:
        private_key = X25519PrivateKey.generate()
    elif key_type in _CURVES:
        private_key = ec.generate_private_key(_CURVES[key_type]())
    else:
        raise InvalidArgumentError(f"Unsupported key pair type: {key_type!r}")
    return private_key, private_key.public_key()


def generate_keypair_from_seed(seed: Bytes, key_type: KeyPairType) -> Tuple[PrivateKey, PublicKey]:
    """
    Deterministically derive a keypair from high-entropy key material.

    The seed is expanded with HKDF-SHA512 bound to the key type, so the same
    material yields unrelated keys for different types.

    Args:
        seed: At least 32 bytes of key material
        key_type: Type of keypair to derive

    Returns:
        Tuple of (private_key, public_key)
    """
    if len(seed) < 32:
        raise InvalidArgumentError("Key material must be at least 32 bytes long")

    if key_type not in _CURVES and key_type not in (KeyPairType.ED25519, KeyPairType.CURVE25519):
        raise InvalidArgumentError(f"Unsupported key pair type: {key_type!r}")

    info = b"sealcrypt key material " + key_type.value.encode("ascii")
    try:
        if key_type in (KeyPairType.ED25519, KeyPairType.CURVE25519):
            with SecretScope() as scope:
                scalar = scope.track(derive_key(seed, info, 32))
                if key_type == KeyPairType.ED25519:
                    private_key = Ed25519PrivateKey.from_private_bytes(scalar)
                else:
                    private_key = X25519PrivateKey.from_private_bytes(scalar)
        else:
            order = _CURVE_ORDERS[key_type]
            # Extra 16 bytes keep the modular bias negligible
            length = (order.bit_length() + 7) // 8 + 16
            value = int.from_bytes(derive_key(seed, info, length), "big") % (order - 1) + 1
            private_key = ec.derive_private_key(value, _CURVES[key_type]())
    except ValueError as e:
        raise PrimitiveError(f"Cannot derive a {key_type.value} key from the key material: {e}") from e
    return private_key, private_key.public_key()


def key_type_of(key: Union[PrivateKey, PublicKey]) -> KeyPairType:
    """Return the algorithm tag of a native key object."""
    if isinstance(key, (Ed25519PrivateKey, Ed25519PublicKey)):
        return KeyPairType.ED25519
    if isinstance(key, (X25519PrivateKey, X25519PublicKey)):
        return KeyPairType.CURVE25519
    if isinstance(key, (ec.EllipticCurvePrivateKey, ec.EllipticCurvePublicKey)):
        for key_type, curve in _CURVES.items():
            if isinstance(key.curve, curve):
                return key_type
    raise PrimitiveError(f"Unsupported key algorithm: {type(key).__name__}")


def serialize_public_key(public_key: PublicKey) -> bytes:
    """Serialize a public key to DER SubjectPublicKeyInfo"""
    return public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    )


def deserialize_public_key(key_bytes: Bytes) -> PublicKey:
    """Load a public key from DER or PEM SubjectPublicKeyInfo"""
    key_bytes = bytes(key_bytes)
    try:
        if key_bytes.lstrip().startswith(b"-----BEGIN"):
            public_key = serialization.load_pem_public_key(key_bytes)
        else:
            public_key = serialization.load_der_public_key(key_bytes)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise PrimitiveError(f"Invalid public key: {e}") from e
    key_type_of(public_key)
    return public_key


def serialize_private_key(private_key: PrivateKey, password: Optional[Bytes] = None) -> bytes:
    """Serialize a private key to DER PKCS#8, encrypted when a password is given"""
    if password:
        encryption = serialization.BestAvailableEncryption(bytes(password))
    else:
        encryption = serialization.NoEncryption()
    return private_key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=encryption
    )


def deserialize_private_key(key_bytes: Bytes, password: Optional[Bytes] = None) -> PrivateKey:
    """
    Load a private key from DER or PEM PKCS#8.

    Args:
        key_bytes: Key material, optionally password protected
        password: Password the material is encrypted with

    Returns:
        Native private key

    Raises:
        PrimitiveError: If the material is corrupt, the password is wrong,
            or the key type is not supported
    """
    key_bytes = bytes(key_bytes)
    password = bytes(password) if password else None
    try:
        if key_bytes.lstrip().startswith(b"-----BEGIN"):
            private_key = serialization.load_pem_private_key(key_bytes, password=password)
        else:
            private_key = serialization.load_der_private_key(key_bytes, password=password)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise PrimitiveError(f"Invalid private key: {e}") from e
    key_type_of(private_key)
    return private_key


# ---------------------------------------------------------------------------
# Key agreement and derivation
# ---------------------------------------------------------------------------

def agreement_key_type(key_type: KeyPairType) -> KeyPairType:
    """Key type of the ephemeral keys used to agree with ``key_type`` keys."""
    if key_type in (KeyPairType.ED25519, KeyPairType.CURVE25519):
        return KeyPairType.CURVE25519
    return key_type


def _to_agreement_private(private_key: PrivateKey) -> Union[X25519PrivateKey, ec.EllipticCurvePrivateKey]:
    """Convert an Ed25519 private key to its X25519 form; other keys pass through."""
    if not isinstance(private_key, Ed25519PrivateKey):
        return private_key
    with SecretScope() as scope:
        sk = scope.track(private_key.private_bytes_raw())
        sk += private_key.public_key().public_bytes_raw()
        # PyNaCl only accepts bytes, so this one copy of the seed is not wiped
        x_scalar = scope.track(nacl_bindings.crypto_sign_ed25519_sk_to_curve25519(bytes(sk)))
        return X25519PrivateKey.from_private_bytes(x_scalar)


def _to_agreement_public(public_key: PublicKey) -> Union[X25519PublicKey, ec.EllipticCurvePublicKey]:
    """Convert an Ed25519 public key to its X25519 form; other keys pass through."""
    if not isinstance(public_key, Ed25519PublicKey):
        return public_key
    try:
        x_public = nacl_bindings.crypto_sign_ed25519_pk_to_curve25519(public_key.public_bytes_raw())
    except NaClCryptoError as e:
        raise PrimitiveError(f"Ed25519 public key has no X25519 form: {e}") from e
    return X25519PublicKey.from_public_bytes(x_public)


def key_agreement(private_key: PrivateKey, public_key: PublicKey) -> bytes:
    """
    Compute a Diffie-Hellman shared secret.

    Ed25519 keys take part through their X25519 equivalents; NIST curve keys
    use ECDH. Both keys must resolve to the same curve.

    Args:
        private_key: Our private key
        public_key: Their public key

    Returns:
        Shared secret bytes

    Raises:
        PrimitiveError: On curve mismatch, signing-only keys, or degenerate
            peer keys
    """
    private_key = _to_agreement_private(private_key)
    public_key = _to_agreement_public(public_key)
    try:
        if isinstance(private_key, X25519PrivateKey) and isinstance(public_key, X25519PublicKey):
            return private_key.exchange(public_key)
        if isinstance(private_key, ec.EllipticCurvePrivateKey) and isinstance(public_key, ec.EllipticCurvePublicKey):
            if private_key.curve.name != public_key.curve.name:
                raise PrimitiveError(
                    f"Curve mismatch: {private_key.curve.name} vs {public_key.curve.name}"
                )
            return private_key.exchange(ec.ECDH(), public_key)
    except ValueError as e:
        logger.debug("Key agreement rejected peer key: %s", e)
        raise PrimitiveError(f"Key agreement failed: {e}") from e
    raise PrimitiveError(
        f"Key agreement not possible between {type(private_key).__name__} "
        f"and {type(public_key).__name__}"
    )


def derive_key(key_material: Bytes, info: bytes, length: int = WRAP_MATERIAL_SIZE) -> bytes:
    """
    HKDF-SHA512 key derivation.

    Args:
        key_material: Input key material (e.g. a shared secret)
        info: Context binding the output to its use
        length: Output length in bytes

    Returns:
        Derived key bytes
    """
    hkdf = HKDF(
        algorithm=hashes.SHA512(),
        length=length,
        salt=None,
        info=info
    )
    return hkdf.derive(bytes(key_material))


def derive_password_key(password: Bytes, salt: bytes, iterations: int,
                        length: int = WRAP_MATERIAL_SIZE) -> bytes:
    """
    Derive key material from a password using PBKDF2-HMAC-SHA512.

    Args:
        password: Password bytes
        salt: Random salt stored alongside the result's use
        iterations: PBKDF2 iteration count

    Returns:
        Derived key bytes
    """
    if iterations < 1:
        raise PrimitiveError(f"Invalid PBKDF2 iteration count: {iterations}")
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA512(),
        length=length,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(bytes(password))


# ---------------------------------------------------------------------------
# Symmetric ciphers
# ---------------------------------------------------------------------------

def wrap_key(kek: Bytes, iv: Bytes, key: Bytes) -> bytes:
    """
    Encrypt a fixed-length key with AES-256-CBC, no padding.

    Args:
        kek: 32-byte key-encryption key
        iv: 16-byte IV
        key: Key to wrap; length must be a multiple of 16

    Returns:
        Wrapped key, same length as ``key``
    """
    if len(key) % 16:
        raise PrimitiveError(f"Key to wrap must be a multiple of 16 bytes, got {len(key)}")
    try:
        encryptor = Cipher(algorithms.AES(kek), modes.CBC(iv)).encryptor()
    except ValueError as e:
        raise PrimitiveError(f"Invalid key-wrap parameters: {e}") from e
    return encryptor.update(bytes(key)) + encryptor.finalize()


def unwrap_key(kek: Bytes, iv: Bytes, wrapped: Bytes) -> bytes:
    """Reverse ``wrap_key``."""
    if len(wrapped) == 0 or len(wrapped) % 16:
        raise PrimitiveError(f"Wrapped key has invalid length {len(wrapped)}")
    try:
        decryptor = Cipher(algorithms.AES(kek), modes.CBC(iv)).decryptor()
    except ValueError as e:
        raise PrimitiveError(f"Invalid key-wrap parameters: {e}") from e
    return decryptor.update(bytes(wrapped)) + decryptor.finalize()


def aead_encrypt(algorithm: BulkAlgorithm, key: Bytes, nonce: bytes,
                 plaintext: Bytes, associated_data: bytes = b"") -> bytes:
    """
    Encrypt with an AEAD cipher.

    Args:
        algorithm: Bulk cipher id
        key: 32-byte key
        nonce: 12-byte nonce, never reused with the same key
        plaintext: Message to encrypt
        associated_data: Additional authenticated data

    Returns:
        ciphertext + tag (16 bytes)
    """
    try:
        aead = _AEADS[BulkAlgorithm(algorithm)](key)
        return aead.encrypt(nonce, bytes(plaintext), associated_data)
    except (KeyError, ValueError) as e:
        raise PrimitiveError(f"Bulk encryption failed: {e}") from e


def aead_decrypt(algorithm: BulkAlgorithm, key: Bytes, nonce: bytes,
                 ciphertext: Bytes, associated_data: bytes = b"") -> bytes:
    """
    Decrypt and authenticate an AEAD ciphertext.

    Raises:
        IntegrityCheckFailedError: If authentication fails
        PrimitiveError: If the parameters are invalid
    """
    if len(ciphertext) < 16:
        raise IntegrityCheckFailedError(IntegrityFailure.DECRYPTION_FAILED, "Ciphertext too short")
    try:
        aead = _AEADS[BulkAlgorithm(algorithm)](key)
    except (KeyError, ValueError) as e:
        raise PrimitiveError(f"Bulk decryption failed: {e}") from e
    try:
        return aead.decrypt(nonce, bytes(ciphertext), associated_data)
    except InvalidTag as e:
        raise IntegrityCheckFailedError(IntegrityFailure.DECRYPTION_FAILED) from e
    except ValueError as e:
        raise PrimitiveError(f"Bulk decryption failed: {e}") from e


# ---------------------------------------------------------------------------
# Signatures
# ---------------------------------------------------------------------------

def sign(private_key: PrivateKey, digest: bytes) -> bytes:
    """
    Sign a SHA-512 digest.

    Ed25519 keys sign the digest bytes with EdDSA; NIST curve keys produce a
    DER-encoded ECDSA signature over the prehashed digest.

    Raises:
        PrimitiveError: If the key type cannot sign
    """
    if isinstance(private_key, Ed25519PrivateKey):
        return private_key.sign(digest)
    if isinstance(private_key, ec.EllipticCurvePrivateKey):
        return private_key.sign(digest, ec.ECDSA(asym_utils.Prehashed(hashes.SHA512())))
    raise PrimitiveError(f"{key_type_of(private_key).value} keys cannot produce signatures")


def verify(public_key: PublicKey, digest: bytes, signature: Bytes) -> bool:
    """
    Verify a signature over a SHA-512 digest.

    Returns:
        True if the signature is valid, False otherwise

    Raises:
        PrimitiveError: If the key type cannot verify signatures
    """
    try:
        if isinstance(public_key, Ed25519PublicKey):
            public_key.verify(bytes(signature), digest)
            return True
        if isinstance(public_key, ec.EllipticCurvePublicKey):
            public_key.verify(bytes(signature), digest, ec.ECDSA(asym_utils.Prehashed(hashes.SHA512())))
            return True
    except InvalidSignature:
        return False
    raise PrimitiveError(f"{key_type_of(public_key).value} keys cannot verify signatures")


def sha512(data: Bytes) -> bytes:
    """SHA-512 digest, the input of every signature"""
    return hashlib.sha512(bytes(data)).digest()
