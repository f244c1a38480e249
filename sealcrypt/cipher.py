"""
Hybrid Cipher Engine

Encrypts data once under a random bulk key (K1) with an AEAD cipher and
wraps K1 for every recipient:

1. Generates a random 256-bit bulk key K1 and a nonce
2. For each recipient public key, generates an ephemeral key pair of the
   matching curve and computes a Diffie-Hellman shared secret with it
3. Derives a wrap key K2 and IV from the shared secret with HKDF, bound to
   the recipient's identifier
4. Encrypts K1 with K2 using AES-256-CBC
5. Serializes the ContentInfo and encrypts the data with K1, using the
   serialized ContentInfo as associated data

Decryption finds the key wrap addressed to the private key's identifier
and runs the same steps in reverse.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple, Union

from .config import DEFAULT_PASSWORD_ITERATIONS
from .envelope import (
    MAX_RECIPIENTS,
    ContentInfo,
    PasswordRecipientWrap,
    RecipientKeyWrap,
    embed,
    split,
)
from .errors import (
    EnvelopeFormatError,
    IntegrityCheckFailedError,
    IntegrityFailure,
    InvalidArgumentError,
    RecipientNotFoundError,
)
from .keys import PrivateKeyHandle, PublicKeyHandle, as_public_key_list, open_private_key
from .primitives import (
    BULK_KEY_SIZE,
    NONCE_SIZE,
    BulkAlgorithm,
    aead_decrypt,
    aead_encrypt,
    agreement_key_type,
    derive_key,
    derive_password_key,
    deserialize_public_key,
    generate_keypair,
    key_agreement,
    random_bytes,
    serialize_public_key,
    unwrap_key,
    wrap_key,
)
from .secure_memory import SecretScope


logger = logging.getLogger(__name__)

WRAP_KEY_INFO = b"sealcrypt/key-wrap/v1:"
PASSWORD_SALT_SIZE = 16


@dataclass(frozen=True)
class SealedData:
    """
    Output of one encryption.

    Attributes:
        content_info: Serialized ContentInfo (the metadata)
        ciphertext: Bulk AEAD ciphertext with tag
    """
    content_info: bytes
    ciphertext: bytes

    def embedded(self) -> bytes:
        """ContentInfo prefixed to the ciphertext"""
        return embed(self.content_info, self.ciphertext)


class HybridCipher:
    """
    Multi-recipient hybrid encryption.

    The engine keeps no state between calls besides its fixed parameters,
    so one instance can be shared between threads.
    """

    def __init__(self, bulk_algorithm: BulkAlgorithm = BulkAlgorithm.AES_256_GCM,
                 password_iterations: int = DEFAULT_PASSWORD_ITERATIONS):
        self.bulk_algorithm = BulkAlgorithm(bulk_algorithm)
        self.password_iterations = password_iterations

    # ------------------------------------------------------------------
    # Public-key recipients
    # ------------------------------------------------------------------

    def encrypt(self, data: bytes,
                recipients: Union[PublicKeyHandle, Sequence[PublicKeyHandle]]) -> bytes:
        """
        Encrypt data for one or more recipients with the ContentInfo
        embedded in the output.

        Args:
            data: Plaintext
            recipients: Public key or list of public keys

        Returns:
            Embedded envelope bytes
        """
        return self.seal(data, recipients).embedded()

    def encrypt_detached(self, data: bytes,
                         recipients: Union[PublicKeyHandle, Sequence[PublicKeyHandle]]
                         ) -> Tuple[bytes, bytes]:
        """
        Encrypt data, returning the ContentInfo separately.

        Returns:
            Tuple of (encrypted_data, metadata)
        """
        sealed = self.seal(data, recipients)
        return sealed.ciphertext, sealed.content_info

    def decrypt(self, encrypted_data: bytes, private_key: PrivateKeyHandle) -> bytes:
        """
        Decrypt an embedded envelope.

        Raises:
            RecipientNotFoundError: If no entry is addressed to ``private_key``
            IntegrityCheckFailedError: If the envelope or ciphertext was altered
        """
        content_info, ciphertext = self.split_envelope(encrypted_data)
        plaintext, _ = self.unseal(content_info, ciphertext, private_key)
        return plaintext

    def decrypt_detached(self, encrypted_data: bytes, metadata: bytes,
                         private_key: PrivateKeyHandle) -> bytes:
        """Decrypt a ciphertext whose ContentInfo is supplied separately"""
        plaintext, _ = self.unseal(metadata, encrypted_data, private_key)
        return plaintext

    def seal(self, data: bytes,
             recipients: Union[PublicKeyHandle, Sequence[PublicKeyHandle]],
             custom_params: Optional[Dict[str, bytes]] = None) -> SealedData:
        """
        Encrypt data and build its ContentInfo.

        Every call draws a fresh bulk key, nonce, and ephemeral key pair per
        recipient.

        Args:
            data: Plaintext
            recipients: Public key or list of public keys
            custom_params: Extra named values stored in the ContentInfo

        Returns:
            SealedData with serialized ContentInfo and ciphertext
        """
        recipients = as_public_key_list(recipients, "recipient public key")
        if len(recipients) > MAX_RECIPIENTS:
            raise InvalidArgumentError(
                f"At most {MAX_RECIPIENTS} recipients are supported, got {len(recipients)}"
            )
        logger.debug("Encrypting %d bytes for %d recipient(s)", len(data), len(recipients))

        with SecretScope() as scope:
            bulk_key = scope.track(random_bytes(BULK_KEY_SIZE))
            nonce = random_bytes(NONCE_SIZE)
            key_wraps = tuple(
                self._wrap_for_recipient(bulk_key, recipient, scope)
                for recipient in recipients
            )
            info = ContentInfo(
                bulk_algorithm=self.bulk_algorithm,
                nonce=nonce,
                key_wraps=key_wraps,
                custom_params=dict(custom_params or {})
            )
            return self._encrypt_payload(info, bulk_key, data)

    def unseal(self, content_info: bytes, ciphertext: bytes,
               private_key: PrivateKeyHandle) -> Tuple[bytes, ContentInfo]:
        """
        Recover the plaintext and the parsed ContentInfo.

        Args:
            content_info: Serialized ContentInfo
            ciphertext: Bulk ciphertext
            private_key: Recipient private key

        Returns:
            Tuple of (plaintext, content_info)
        """
        if not isinstance(private_key, PrivateKeyHandle):
            raise InvalidArgumentError(
                f"Expected a PrivateKeyHandle, got {type(private_key).__name__}"
            )
        info = self._parse(content_info)
        wrap = info.find_recipient(private_key.identifier)
        if wrap is None:
            logger.debug("Key %s is not among %d recipient(s)",
                         private_key.identifier.hex(), len(info.key_wraps))
            raise RecipientNotFoundError(private_key.identifier)

        with SecretScope() as scope:
            bulk_key = self._unwrap_for_recipient(wrap, private_key, scope)
            return self._decrypt_payload(info, content_info, bulk_key, ciphertext), info

    def _wrap_for_recipient(self, bulk_key: bytearray, recipient: PublicKeyHandle,
                            scope: SecretScope) -> RecipientKeyWrap:
        recipient_key = recipient.load()
        ephemeral_private, ephemeral_public = generate_keypair(agreement_key_type(recipient.key_type))
        try:
            shared_secret = scope.track(key_agreement(ephemeral_private, recipient_key))
        finally:
            del ephemeral_private
        material = scope.track(derive_key(shared_secret, WRAP_KEY_INFO + recipient.identifier))
        kek, iv = scope.track(material[:32]), scope.track(material[32:])
        return RecipientKeyWrap(
            recipient_identifier=recipient.identifier,
            key_type=recipient.key_type,
            ephemeral_public_key=serialize_public_key(ephemeral_public),
            wrapped_bulk_key=wrap_key(kek, iv, bulk_key)
        )

    def _unwrap_for_recipient(self, wrap: RecipientKeyWrap, private_key: PrivateKeyHandle,
                              scope: SecretScope) -> bytearray:
        ephemeral_public = deserialize_public_key(wrap.ephemeral_public_key)
        with open_private_key(private_key) as native:
            shared_secret = scope.track(key_agreement(native, ephemeral_public))
        material = scope.track(derive_key(shared_secret, WRAP_KEY_INFO + wrap.recipient_identifier))
        kek, iv = scope.track(material[:32]), scope.track(material[32:])
        return scope.track(unwrap_key(kek, iv, wrap.wrapped_bulk_key))

    # ------------------------------------------------------------------
    # Password recipient
    # ------------------------------------------------------------------

    def encrypt_with_password(self, data: bytes, password: bytes,
                              embed: bool = True) -> Union[bytes, Tuple[bytes, bytes]]:
        """
        Encrypt data for a single password recipient.

        K2 and its IV come from PBKDF2 over the password with a random salt;
        no key agreement takes place.

        Args:
            data: Plaintext
            password: Password bytes
            embed: Embed the ContentInfo (True) or return it separately

        Returns:
            Embedded envelope, or tuple of (encrypted_data, metadata)
        """
        if not password:
            raise InvalidArgumentError("Password must not be empty")

        with SecretScope() as scope:
            bulk_key = scope.track(random_bytes(BULK_KEY_SIZE))
            salt = random_bytes(PASSWORD_SALT_SIZE)
            material = scope.track(derive_password_key(password, salt, self.password_iterations))
            kek, iv = scope.track(material[:32]), scope.track(material[32:])
            info = ContentInfo(
                bulk_algorithm=self.bulk_algorithm,
                nonce=random_bytes(NONCE_SIZE),
                password_wrap=PasswordRecipientWrap(
                    salt=salt,
                    iterations=self.password_iterations,
                    wrapped_bulk_key=wrap_key(kek, iv, bulk_key)
                )
            )
            sealed = self._encrypt_payload(info, bulk_key, data)

        if embed:
            return sealed.embedded()
        return sealed.ciphertext, sealed.content_info

    def decrypt_with_password(self, encrypted_data: bytes, password: bytes,
                              metadata: Optional[bytes] = None) -> bytes:
        """
        Decrypt password-encrypted data.

        A wrong password yields a wrong bulk key, which fails authentication.

        Raises:
            RecipientNotFoundError: If the envelope has no password recipient
            IntegrityCheckFailedError: On a wrong password or altered data
        """
        if not password:
            raise InvalidArgumentError("Password must not be empty")
        if metadata is None:
            content_info, ciphertext = self.split_envelope(encrypted_data)
        else:
            content_info, ciphertext = bytes(metadata), bytes(encrypted_data)

        info = self._parse(content_info)
        wrap = info.password_wrap
        if wrap is None:
            raise RecipientNotFoundError(b"", "Data was not encrypted for a password recipient")

        with SecretScope() as scope:
            material = scope.track(derive_password_key(password, wrap.salt, wrap.iterations))
            kek, iv = scope.track(material[:32]), scope.track(material[32:])
            bulk_key = scope.track(unwrap_key(kek, iv, wrap.wrapped_bulk_key))
            return self._decrypt_payload(info, content_info, bulk_key, ciphertext)

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    def _encrypt_payload(self, info: ContentInfo, bulk_key: bytearray, data: bytes) -> SealedData:
        content_info = info.to_bytes()
        ciphertext = aead_encrypt(info.bulk_algorithm, bulk_key, info.nonce, data, content_info)
        return SealedData(content_info=content_info, ciphertext=ciphertext)

    def _decrypt_payload(self, info: ContentInfo, content_info: bytes,
                         bulk_key: bytearray, ciphertext: bytes) -> bytes:
        if len(bulk_key) != BULK_KEY_SIZE:
            raise IntegrityCheckFailedError(
                IntegrityFailure.DECRYPTION_FAILED, "Unwrapped bulk key has wrong length"
            )
        try:
            return aead_decrypt(info.bulk_algorithm, bulk_key, info.nonce,
                                ciphertext, bytes(content_info))
        except IntegrityCheckFailedError:
            logger.warning("Bulk ciphertext failed authentication")
            raise

    def split_envelope(self, encrypted_data: bytes) -> Tuple[bytes, bytes]:
        try:
            return split(encrypted_data)
        except EnvelopeFormatError as e:
            logger.warning("Rejected malformed envelope: %s", e)
            raise IntegrityCheckFailedError(IntegrityFailure.MALFORMED_ENVELOPE, str(e)) from e

    def _parse(self, content_info: bytes) -> ContentInfo:
        try:
            return ContentInfo.from_bytes(content_info)
        except EnvelopeFormatError as e:
            logger.warning("Rejected malformed ContentInfo: %s", e)
            raise IntegrityCheckFailedError(IntegrityFailure.MALFORMED_ENVELOPE, str(e)) from e
