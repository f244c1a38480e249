"""
Exception hierarchy for sealcrypt.

Every failure surfaced to callers is one of these types; exceptions raised
by the underlying crypto libraries are wrapped at the primitives boundary.
"""

from enum import Enum


class CryptoError(Exception):
    """Base exception for cryptographic errors"""
    pass


class InvalidArgumentError(CryptoError, ValueError):
    """Malformed or mistyped input, rejected before any primitive runs"""
    pass


class PrimitiveError(CryptoError):
    """The underlying cryptographic operation rejected its input"""
    pass


class EnvelopeFormatError(PrimitiveError):
    """ContentInfo or embedded envelope bytes could not be parsed"""
    pass


class RecipientNotFoundError(CryptoError):
    """No key wrap in the envelope matches the decrypting key's identifier"""

    def __init__(self, identifier: bytes, message: str = ""):
        super().__init__(message or f"No recipient entry for key identifier {identifier.hex()}")
        self.identifier = identifier


class IntegrityFailure(str, Enum):
    """Internal cause of an IntegrityCheckFailedError."""
    DECRYPTION_FAILED = "decryption_failed"
    MALFORMED_ENVELOPE = "malformed_envelope"
    MALFORMED_PAYLOAD = "malformed_payload"
    SIGNER_NOT_FOUND = "signer_not_found"
    SIGNATURE_MISMATCH = "signature_mismatch"


class IntegrityCheckFailedError(CryptoError):
    """
    Authentication of decrypted data failed.

    Callers see a single error kind; ``reason`` tells apart a bulk
    decryption failure from a signature that no candidate key verifies.
    """

    def __init__(self, reason: IntegrityFailure, message: str = ""):
        super().__init__(message or f"Integrity check failed: {reason.value}")
        self.reason = reason
