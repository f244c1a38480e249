"""
Key Model

Private and public key handles are a tagged union: an algorithm tag plus
DER-encoded key bytes. Native key objects are only materialised inside the
primitives calls of a single operation.

Key identifiers are derived from the DER SubjectPublicKeyInfo of the public
key, so a private key and its public key always share an identifier.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Optional, Sequence, Union

from .errors import InvalidArgumentError
from .primitives import (
    HashAlgorithm,
    KeyPairType,
    PrivateKey,
    PublicKey,
    deserialize_private_key,
    deserialize_public_key,
    generate_keypair,
    generate_keypair_from_seed,
    hash_data,
    key_type_of,
    serialize_private_key,
    serialize_public_key,
)


logger = logging.getLogger(__name__)


class IdentifierScheme(str, Enum):
    """Algorithm that turns a public key into its identifier"""
    # First 8 bytes of SHA-512 over the DER public key
    SHA512_TRUNCATED = "sha512_truncated"
    # Full SHA-256 over the DER public key, for data from older releases
    SHA256 = "sha256"


def compute_identifier(public_key_der: bytes, scheme: IdentifierScheme) -> bytes:
    """
    Derive a key identifier.

    Args:
        public_key_der: Public key in DER SubjectPublicKeyInfo format
        scheme: Identifier scheme of the engine

    Returns:
        8-byte (current) or 32-byte (legacy) identifier
    """
    if scheme == IdentifierScheme.SHA256:
        return hash_data(public_key_der, HashAlgorithm.SHA256)
    return hash_data(public_key_der, HashAlgorithm.SHA512)[:8]


@dataclass(frozen=True)
class PublicKeyHandle:
    """
    Public key of a recipient or signer.

    Attributes:
        key_type: Algorithm tag
        identifier: Identifier derived from ``key``
        key: DER SubjectPublicKeyInfo bytes
    """
    key_type: KeyPairType
    identifier: bytes
    key: bytes

    def load(self) -> PublicKey:
        """Materialise the native public key"""
        return deserialize_public_key(self.key)


@dataclass(frozen=True)
class PrivateKeyHandle:
    """
    Private key owned by the caller.

    Attributes:
        key_type: Algorithm tag
        identifier: Identifier of the matching public key
        material: Unencrypted DER PKCS#8 bytes
    """
    key_type: KeyPairType
    identifier: bytes
    material: bytes = field(repr=False)


@dataclass(frozen=True)
class KeyPair:
    private_key: PrivateKeyHandle
    public_key: PublicKeyHandle


@contextmanager
def open_private_key(handle: PrivateKeyHandle) -> Iterator[PrivateKey]:
    """
    Materialise a native private key for the duration of a ``with`` block.

    The native object is dropped on every exit path so it does not outlive
    the operation that needed it.
    """
    if not isinstance(handle, PrivateKeyHandle):
        raise InvalidArgumentError(
            f"Expected a PrivateKeyHandle, got {type(handle).__name__}"
        )
    native = deserialize_private_key(handle.material)
    try:
        yield native
    finally:
        del native


class KeyFactory:
    """
    Creates key handles whose identifiers follow one fixed scheme.
    """

    def __init__(self, scheme: IdentifierScheme = IdentifierScheme.SHA512_TRUNCATED):
        self.scheme = scheme

    def public_handle(self, public_key: PublicKey) -> PublicKeyHandle:
        """Wrap a native public key"""
        der = serialize_public_key(public_key)
        return PublicKeyHandle(
            key_type=key_type_of(public_key),
            identifier=compute_identifier(der, self.scheme),
            key=der
        )

    def private_handle(self, private_key: PrivateKey) -> PrivateKeyHandle:
        """Wrap a native private key"""
        public_der = serialize_public_key(private_key.public_key())
        return PrivateKeyHandle(
            key_type=key_type_of(private_key),
            identifier=compute_identifier(public_der, self.scheme),
            material=serialize_private_key(private_key)
        )

    def generate_keys(self, key_type: KeyPairType = KeyPairType.ED25519) -> KeyPair:
        """
        Generate a new key pair.

        Args:
            key_type: Type of the key pair

        Returns:
            KeyPair with matching identifiers
        """
        private_key, public_key = generate_keypair(KeyPairType(key_type))
        pair = KeyPair(self.private_handle(private_key), self.public_handle(public_key))
        logger.debug("Generated %s key pair %s", pair.public_key.key_type.value,
                     pair.public_key.identifier.hex())
        return pair

    def generate_keys_from_key_material(self, key_material: bytes,
                                        key_type: KeyPairType = KeyPairType.ED25519) -> KeyPair:
        """
        Deterministically derive a key pair from at least 32 bytes of
        high-entropy key material.
        """
        private_key, public_key = generate_keypair_from_seed(key_material, KeyPairType(key_type))
        return KeyPair(self.private_handle(private_key), self.public_handle(public_key))

    def import_private_key(self, raw_private_key: bytes, password: Optional[bytes] = None) -> PrivateKeyHandle:
        """
        Import private key material in PEM or DER format.

        Args:
            raw_private_key: PKCS#8 key bytes
            password: Password the material is encrypted with, if any
        """
        return self.private_handle(deserialize_private_key(raw_private_key, password))

    def export_private_key(self, private_key: PrivateKeyHandle, password: Optional[bytes] = None) -> bytes:
        """
        Export private key material as DER PKCS#8.

        When ``password`` is given the material is encrypted with it.
        """
        if not password:
            return private_key.material
        with open_private_key(private_key) as native:
            return serialize_private_key(native, password)

    def import_public_key(self, raw_public_key: bytes) -> PublicKeyHandle:
        """Import public key material in PEM or DER format"""
        return self.public_handle(deserialize_public_key(raw_public_key))

    def export_public_key(self, public_key: PublicKeyHandle) -> bytes:
        """Export a public key as DER SubjectPublicKeyInfo"""
        return public_key.key

    def extract_public_key(self, private_key: PrivateKeyHandle) -> PublicKeyHandle:
        """Return the public key matching a private key"""
        with open_private_key(private_key) as native:
            return self.public_handle(native.public_key())


def as_public_key_list(
        public_keys: Union[PublicKeyHandle, Sequence[PublicKeyHandle]],
        what: str = "public key") -> list:
    """
    Normalise a single public key or a sequence of them to a non-empty list.

    Raises:
        InvalidArgumentError: On an empty list or wrongly typed entries
    """
    if isinstance(public_keys, PublicKeyHandle):
        return [public_keys]
    if isinstance(public_keys, (str, bytes, bytearray)) or not isinstance(public_keys, Sequence):
        raise InvalidArgumentError(
            f"Unexpected type of {what} argument: expected a PublicKeyHandle or a list of them"
        )
    keys = list(public_keys)
    if not keys:
        raise InvalidArgumentError(f"At least one {what} is required")
    for key in keys:
        if not isinstance(key, PublicKeyHandle):
            raise InvalidArgumentError(
                f"Unexpected {what} entry of type {type(key).__name__}"
            )
    return keys
