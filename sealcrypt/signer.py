"""
Sign/Verify Composer

Sign-then-encrypt: the plaintext is signed, then data and signature are
encrypted together as one payload:

    data || u32 signature length || signature

The signer's key identifier and the signature length are stored as custom
parameters of the ContentInfo, where the AEAD associated data binds them to
the ciphertext.

Decrypt-then-verify reverses this and checks the signature against the
candidate public keys supplied by the caller.
"""

import logging
import struct
from typing import List, Optional, Sequence, Tuple, Union

from .cipher import HybridCipher, SealedData
from .config import VerificationPolicy
from .envelope import ContentInfo
from .errors import IntegrityCheckFailedError, IntegrityFailure, PrimitiveError
from .keys import PrivateKeyHandle, PublicKeyHandle, as_public_key_list, open_private_key
from .primitives import constant_time_compare, sha512, sign, verify


logger = logging.getLogger(__name__)

SIGNER_ID_PARAM = "sealcrypt.signer-id"
SIGNATURE_LENGTH_PARAM = "sealcrypt.signature-length"

PublicKeys = Union[PublicKeyHandle, Sequence[PublicKeyHandle]]


def calculate_signature(data: bytes, private_key: PrivateKeyHandle) -> bytes:
    """
    Sign data with a private key.

    The data is hashed with SHA-512 before signing whatever the key type,
    so raw data of any length can be passed.

    Returns:
        Signature bytes (the data is not included)

    Raises:
        PrimitiveError: If the key type cannot sign
    """
    with open_private_key(private_key) as native:
        return sign(native, sha512(data))


def verify_signature(data: bytes, signature: bytes, public_key: PublicKeyHandle) -> bool:
    """
    Check a signature produced by ``calculate_signature``.

    Returns:
        True if the signature is valid for data and key
    """
    return verify(public_key.load(), sha512(data), signature)


def build_signed_payload(data: bytes, signature: bytes) -> bytes:
    """Concatenate data, encoded signature length and signature"""
    return bytes(data) + struct.pack(">I", len(signature)) + bytes(signature)


def split_signed_payload(payload: bytes, signature_length: int) -> Tuple[bytes, bytes]:
    """
    Split a signed payload into (data, signature).

    Raises:
        IntegrityCheckFailedError: If the payload does not end with a
            signature of the stored length
    """
    trailer = 4 + signature_length
    if signature_length <= 0 or len(payload) < trailer:
        raise IntegrityCheckFailedError(
            IntegrityFailure.MALFORMED_PAYLOAD, "Signed payload too short"
        )
    boundary = len(payload) - trailer
    (encoded_length,) = struct.unpack(">I", payload[boundary:boundary + 4])
    if encoded_length != signature_length:
        raise IntegrityCheckFailedError(
            IntegrityFailure.MALFORMED_PAYLOAD, "Signature length mismatch"
        )
    return payload[:boundary], payload[boundary + 4:]


class SignComposer:
    """
    Combines signatures with hybrid encryption.

    Args:
        cipher: Engine used for the encryption layer
        policy: How candidate public keys are chosen for verification
    """

    def __init__(self, cipher: HybridCipher,
                 policy: VerificationPolicy = VerificationPolicy.ANY_CANDIDATE):
        self.cipher = cipher
        self.policy = VerificationPolicy(policy)

    def sign_then_encrypt(self, data: bytes, private_key: PrivateKeyHandle,
                          recipients: PublicKeys) -> bytes:
        """
        Sign data, then encrypt data and signature for the recipients.

        Returns:
            Embedded envelope bytes
        """
        return self._seal_signed(data, private_key, recipients).embedded()

    def sign_then_encrypt_detached(self, data: bytes, private_key: PrivateKeyHandle,
                                   recipients: PublicKeys) -> Tuple[bytes, bytes]:
        """
        Same as ``sign_then_encrypt`` but the ContentInfo is returned
        separately.

        Returns:
            Tuple of (encrypted_data, metadata)
        """
        sealed = self._seal_signed(data, private_key, recipients)
        return sealed.ciphertext, sealed.content_info

    def decrypt_then_verify(self, encrypted_data: bytes, private_key: PrivateKeyHandle,
                            public_keys: PublicKeys) -> bytes:
        """
        Decrypt an embedded envelope and verify the enclosed signature.

        Args:
            encrypted_data: Output of ``sign_then_encrypt``
            private_key: Recipient private key
            public_keys: Candidate signer key or keys

        Returns:
            The data, only if verification succeeds

        Raises:
            RecipientNotFoundError: If the data was not encrypted for ``private_key``
            IntegrityCheckFailedError: If decryption or verification fails
        """
        candidates = as_public_key_list(public_keys, "signer public key")
        content_info, ciphertext = self.cipher.split_envelope(encrypted_data)
        return self._open_verified(content_info, ciphertext, private_key, candidates)

    def decrypt_then_verify_detached(self, encrypted_data: bytes, metadata: bytes,
                                     private_key: PrivateKeyHandle,
                                     public_keys: PublicKeys) -> bytes:
        """Same as ``decrypt_then_verify`` with the ContentInfo passed separately"""
        candidates = as_public_key_list(public_keys, "signer public key")
        return self._open_verified(bytes(metadata), bytes(encrypted_data), private_key, candidates)

    def _seal_signed(self, data: bytes, private_key: PrivateKeyHandle,
                     recipients: PublicKeys) -> SealedData:
        recipients = as_public_key_list(recipients, "recipient public key")
        signature = calculate_signature(data, private_key)
        payload = build_signed_payload(data, signature)
        return self.cipher.seal(payload, recipients, custom_params={
            SIGNER_ID_PARAM: private_key.identifier,
            SIGNATURE_LENGTH_PARAM: struct.pack(">I", len(signature)),
        })

    def _open_verified(self, content_info: bytes, ciphertext: bytes,
                       private_key: PrivateKeyHandle,
                       candidates: List[PublicKeyHandle]) -> bytes:
        payload, info = self.cipher.unseal(content_info, ciphertext, private_key)
        data, signature = split_signed_payload(payload, self._signature_length(info))

        for candidate in self._select_candidates(info, candidates):
            try:
                if verify_signature(data, signature, candidate):
                    logger.debug("Signature verified with key %s", candidate.identifier.hex())
                    return data
            except PrimitiveError as e:
                logger.debug("Skipping candidate %s: %s", candidate.identifier.hex(), e)

        logger.warning("Signature did not verify against %d candidate key(s)", len(candidates))
        raise IntegrityCheckFailedError(IntegrityFailure.SIGNATURE_MISMATCH)

    def _signature_length(self, info: ContentInfo) -> int:
        encoded = info.custom_params.get(SIGNATURE_LENGTH_PARAM)
        if encoded is None or len(encoded) != 4:
            raise IntegrityCheckFailedError(
                IntegrityFailure.MALFORMED_PAYLOAD, "Envelope carries no signature"
            )
        return struct.unpack(">I", encoded)[0]

    def _select_candidates(self, info: ContentInfo,
                           candidates: List[PublicKeyHandle]) -> List[PublicKeyHandle]:
        if self.policy == VerificationPolicy.ANY_CANDIDATE:
            return candidates

        signer_id: Optional[bytes] = info.custom_params.get(SIGNER_ID_PARAM)
        matching = [
            candidate for candidate in candidates
            if signer_id is not None and constant_time_compare(candidate.identifier, signer_id)
        ]
        if not matching:
            logger.warning("Signer %s is not among the candidate keys",
                           signer_id.hex() if signer_id else "<missing>")
            raise IntegrityCheckFailedError(IntegrityFailure.SIGNER_NOT_FOUND)
        return matching
