"""
High-level crypto engine.

``SealCrypto`` ties the key model, hybrid cipher and sign/verify composer
together behind one object configured once with ``CryptoOptions``. Inputs
may be bytes or strings (see ``sealcrypt.data``); outputs are bytes.
"""

import logging
from typing import Optional, Sequence, Tuple, Union

from .cipher import HybridCipher
from .config import CryptoOptions
from .data import BASE64, UTF8, Data, optional_password, to_bytes
from .errors import InvalidArgumentError
from .keys import (
    IdentifierScheme,
    KeyFactory,
    KeyPair,
    PrivateKeyHandle,
    PublicKeyHandle,
)
from .primitives import HashAlgorithm, KeyPairType, hash_data, random_bytes
from .signer import SignComposer, calculate_signature, verify_signature


logger = logging.getLogger(__name__)

PublicKeys = Union[PublicKeyHandle, Sequence[PublicKeyHandle]]


class SealCrypto:
    """
    Hybrid encryption, signatures and key management.

    Options are fixed at construction. In particular the key identifier
    scheme never changes for an instance, so instances with different
    schemes can coexist in one process.
    """

    def __init__(self, options: Optional[CryptoOptions] = None):
        self.options = options or CryptoOptions()
        scheme = (IdentifierScheme.SHA256 if self.options.use_sha256_identifiers
                  else IdentifierScheme.SHA512_TRUNCATED)
        self.keys = KeyFactory(scheme)
        self.cipher = HybridCipher(
            bulk_algorithm=self.options.bulk_algorithm,
            password_iterations=self.options.password_iterations
        )
        self.composer = SignComposer(self.cipher, self.options.verification_policy)
        logger.debug("SealCrypto ready (identifiers=%s, bulk=%s, policy=%s)",
                     scheme.value, self.cipher.bulk_algorithm.name,
                     self.composer.policy.value)

    @property
    def use_sha256_identifiers(self) -> bool:
        return self.options.use_sha256_identifiers

    @property
    def default_key_pair_type(self) -> KeyPairType:
        return self.options.default_key_pair_type

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def generate_keys(self, key_type: Optional[KeyPairType] = None) -> KeyPair:
        """Generate a new key pair, of the default type unless given"""
        return self.keys.generate_keys(self._key_type(key_type))

    def generate_keys_from_key_material(self, key_material: Data,
                                        key_type: Optional[KeyPairType] = None) -> KeyPair:
        """
        Derive a key pair from key material with at least 32 bytes of
        entropy. Strings are taken as base64.
        """
        material = to_bytes(key_material, BASE64, "key_material")
        return self.keys.generate_keys_from_key_material(material, self._key_type(key_type))

    def import_private_key(self, raw_private_key: Data,
                           password: Optional[Data] = None) -> PrivateKeyHandle:
        """Import a PEM or DER private key, decrypting it with ``password`` if given"""
        raw = self._key_bytes(raw_private_key, "raw_private_key")
        return self.keys.import_private_key(raw, optional_password(password))

    def export_private_key(self, private_key: PrivateKeyHandle,
                           password: Optional[Data] = None) -> bytes:
        """Export a private key as DER, encrypted with ``password`` if given"""
        self._check_private_key(private_key)
        return self.keys.export_private_key(private_key, optional_password(password))

    def import_public_key(self, raw_public_key: Data) -> PublicKeyHandle:
        """Import a PEM or DER public key"""
        return self.keys.import_public_key(self._key_bytes(raw_public_key, "raw_public_key"))

    def export_public_key(self, public_key: PublicKeyHandle) -> bytes:
        """Export a public key as DER"""
        self._check_public_key(public_key)
        return self.keys.export_public_key(public_key)

    def extract_public_key(self, private_key: PrivateKeyHandle) -> PublicKeyHandle:
        """Public key matching ``private_key``"""
        self._check_private_key(private_key)
        return self.keys.extract_public_key(private_key)

    # ------------------------------------------------------------------
    # Encryption
    # ------------------------------------------------------------------

    def encrypt(self, data: Data, public_keys: PublicKeys) -> bytes:
        """Encrypt data for one or more recipients"""
        return self.cipher.encrypt(to_bytes(data, UTF8), public_keys)

    def decrypt(self, encrypted_data: Data, private_key: PrivateKeyHandle) -> bytes:
        """Decrypt data encrypted with ``encrypt``"""
        self._check_private_key(private_key)
        return self.cipher.decrypt(to_bytes(encrypted_data, BASE64, "encrypted_data"), private_key)

    def encrypt_detached(self, data: Data, public_keys: PublicKeys) -> Tuple[bytes, bytes]:
        """
        Encrypt data, returning the metadata separately.

        Returns:
            Tuple of (encrypted_data, metadata)
        """
        return self.cipher.encrypt_detached(to_bytes(data, UTF8), public_keys)

    def decrypt_detached(self, encrypted_data: Data, metadata: Data,
                         private_key: PrivateKeyHandle) -> bytes:
        """Decrypt data encrypted with ``encrypt_detached``"""
        self._check_private_key(private_key)
        return self.cipher.decrypt_detached(
            to_bytes(encrypted_data, BASE64, "encrypted_data"),
            to_bytes(metadata, BASE64, "metadata"),
            private_key
        )

    def encrypt_with_password(self, data: Data, password: Data,
                              embed: bool = True) -> Union[bytes, Tuple[bytes, bytes]]:
        """
        Encrypt data with a password instead of public keys.

        Returns:
            Encrypted data with embedded metadata, or (encrypted_data,
            metadata) when ``embed`` is False
        """
        return self.cipher.encrypt_with_password(
            to_bytes(data, UTF8), optional_password(password), embed
        )

    def decrypt_with_password(self, encrypted_data: Data, password: Data,
                              metadata: Optional[Data] = None) -> bytes:
        """Decrypt data encrypted with ``encrypt_with_password``"""
        return self.cipher.decrypt_with_password(
            to_bytes(encrypted_data, BASE64, "encrypted_data"),
            optional_password(password),
            None if metadata is None else to_bytes(metadata, BASE64, "metadata")
        )

    # ------------------------------------------------------------------
    # Hashing, signatures, randomness
    # ------------------------------------------------------------------

    def calculate_hash(self, data: Data,
                       algorithm: Union[HashAlgorithm, str] = HashAlgorithm.SHA256) -> bytes:
        """Hash data with the named algorithm (default SHA256)"""
        if isinstance(algorithm, str):
            algorithm = algorithm.upper()
        return hash_data(to_bytes(data, UTF8), algorithm)

    def calculate_signature(self, data: Data, private_key: PrivateKeyHandle) -> bytes:
        """Signature over data; data is hashed with SHA-512 first"""
        self._check_private_key(private_key)
        return calculate_signature(to_bytes(data, UTF8), private_key)

    def verify_signature(self, data: Data, signature: Data, public_key: PublicKeyHandle) -> bool:
        """True if ``signature`` is valid for data and public key"""
        self._check_public_key(public_key)
        return verify_signature(
            to_bytes(data, UTF8), to_bytes(signature, BASE64, "signature"), public_key
        )

    def sign_then_encrypt(self, data: Data, private_key: PrivateKeyHandle,
                          public_keys: PublicKeys) -> bytes:
        """Sign data with ``private_key``, then encrypt data and signature"""
        self._check_private_key(private_key)
        return self.composer.sign_then_encrypt(to_bytes(data, UTF8), private_key, public_keys)

    def decrypt_then_verify(self, encrypted_data: Data, private_key: PrivateKeyHandle,
                            public_keys: PublicKeys) -> bytes:
        """Decrypt, then verify the signature against the candidate key(s)"""
        self._check_private_key(private_key)
        return self.composer.decrypt_then_verify(
            to_bytes(encrypted_data, BASE64, "encrypted_data"), private_key, public_keys
        )

    def sign_then_encrypt_detached(self, data: Data, private_key: PrivateKeyHandle,
                                   public_keys: PublicKeys) -> Tuple[bytes, bytes]:
        """
        Like ``sign_then_encrypt`` with the metadata returned separately.

        Returns:
            Tuple of (encrypted_data, metadata)
        """
        self._check_private_key(private_key)
        return self.composer.sign_then_encrypt_detached(
            to_bytes(data, UTF8), private_key, public_keys
        )

    def decrypt_then_verify_detached(self, encrypted_data: Data, metadata: Data,
                                     private_key: PrivateKeyHandle,
                                     public_keys: PublicKeys) -> bytes:
        """Like ``decrypt_then_verify`` with the metadata passed separately"""
        self._check_private_key(private_key)
        return self.composer.decrypt_then_verify_detached(
            to_bytes(encrypted_data, BASE64, "encrypted_data"),
            to_bytes(metadata, BASE64, "metadata"),
            private_key,
            public_keys
        )

    def get_random_bytes(self, length: int) -> bytes:
        """``length`` bytes from the OS CSPRNG"""
        return random_bytes(length)

    # ------------------------------------------------------------------
    # Argument checks
    # ------------------------------------------------------------------

    def _key_type(self, key_type: Optional[KeyPairType]) -> KeyPairType:
        if key_type is None:
            return self.options.default_key_pair_type
        try:
            return KeyPairType(key_type.upper() if isinstance(key_type, str) else key_type)
        except ValueError:
            raise InvalidArgumentError(f"Unsupported key pair type: {key_type!r}")

    @staticmethod
    def _key_bytes(raw: Data, name: str) -> bytes:
        # PEM text is passed through; any other string is base64 DER
        if isinstance(raw, str) and raw.lstrip().startswith("-----BEGIN"):
            return raw.encode(UTF8)
        return to_bytes(raw, BASE64, name)

    @staticmethod
    def _check_private_key(private_key) -> None:
        if not isinstance(private_key, PrivateKeyHandle):
            raise InvalidArgumentError(
                f"Expected a PrivateKeyHandle, got {type(private_key).__name__}"
            )

    @staticmethod
    def _check_public_key(public_key) -> None:
        if not isinstance(public_key, PublicKeyHandle):
            raise InvalidArgumentError(
                f"Expected a PublicKeyHandle, got {type(public_key).__name__}"
            )
