"""
Hybrid public-key encryption for secure messaging.

Implements multi-recipient envelope encryption with:
- Per-recipient ephemeral key agreement (X25519 / ECDH) and key wrapping
- AEAD bulk encryption with self-describing ContentInfo metadata
- Sign-then-encrypt and decrypt-then-verify, embedded or detached
"""

from .config import CryptoOptions, VerificationPolicy
from .crypto import SealCrypto
from .errors import (
    CryptoError,
    InvalidArgumentError,
    PrimitiveError,
    EnvelopeFormatError,
    RecipientNotFoundError,
    IntegrityCheckFailedError,
    IntegrityFailure,
)
from .keys import IdentifierScheme, KeyPair, PrivateKeyHandle, PublicKeyHandle
from .primitives import BulkAlgorithm, HashAlgorithm, KeyPairType

__all__ = [
    'SealCrypto',
    'CryptoOptions',
    'VerificationPolicy',
    'KeyPairType',
    'HashAlgorithm',
    'BulkAlgorithm',
    'IdentifierScheme',
    'KeyPair',
    'PrivateKeyHandle',
    'PublicKeyHandle',
    'CryptoError',
    'InvalidArgumentError',
    'PrimitiveError',
    'EnvelopeFormatError',
    'RecipientNotFoundError',
    'IntegrityCheckFailedError',
    'IntegrityFailure',
]

__version__ = '1.0.0'
