"""
Engine configuration.

A ``SealCrypto`` instance takes its options once at construction; they are
frozen afterwards so the identifier scheme cannot change under a running
engine.
"""

import os
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .primitives import BulkAlgorithm, KeyPairType


ENV_PREFIX = "SEALCRYPT_"

# PBKDF2-HMAC-SHA512 rounds for password recipients
DEFAULT_PASSWORD_ITERATIONS = 210000


class VerificationPolicy(str, Enum):
    """How decrypt-then-verify picks the key that must verify the signature."""
    # First candidate whose signature check succeeds
    ANY_CANDIDATE = "any_candidate"
    # Only the candidate whose identifier matches the signer id in the envelope
    SIGNER_IDENTIFIER = "signer_identifier"


class CryptoOptions(BaseModel):
    """Options fixed for the lifetime of one crypto engine."""
    model_config = ConfigDict(frozen=True)

    use_sha256_identifiers: bool = Field(
        default=False,
        description="Use the legacy SHA-256 key identifiers instead of truncated SHA-512"
    )
    default_key_pair_type: KeyPairType = Field(
        default=KeyPairType.ED25519,
        description="Key type generated when none is requested"
    )
    bulk_algorithm: BulkAlgorithm = Field(
        default=BulkAlgorithm.AES_256_GCM,
        description="AEAD cipher used for payloads"
    )
    verification_policy: VerificationPolicy = Field(
        default=VerificationPolicy.ANY_CANDIDATE,
        description="Signer selection in decrypt-then-verify"
    )
    password_iterations: int = Field(
        default=DEFAULT_PASSWORD_ITERATIONS,
        description="PBKDF2 iterations for password-encrypted data"
    )

    @field_validator('password_iterations')
    @classmethod
    def validate_iterations(cls, v: int) -> int:
        if v < 1000:
            raise ValueError(f"password_iterations must be at least 1000. Got: {v}")
        return v

    @field_validator('default_key_pair_type', mode='before')
    @classmethod
    def parse_key_pair_type(cls, v):
        """Accept key type names in any case (e.g. from environment variables)."""
        if isinstance(v, str):
            return v.upper()
        return v

    @field_validator('bulk_algorithm', mode='before')
    @classmethod
    def parse_bulk_algorithm(cls, v):
        """Accept algorithm names as well as wire ids."""
        if isinstance(v, str):
            if v.isdigit():
                return int(v)
            try:
                return BulkAlgorithm[v.upper()]
            except KeyError:
                raise ValueError(f"Unknown bulk algorithm: {v}")
        return v

    @field_validator('verification_policy', mode='before')
    @classmethod
    def parse_verification_policy(cls, v):
        if isinstance(v, str):
            return v.lower()
        return v

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> 'CryptoOptions':
        """
        Build options from ``SEALCRYPT_*`` environment variables.

        Recognised variables: SEALCRYPT_USE_SHA256_IDENTIFIERS,
        SEALCRYPT_DEFAULT_KEY_PAIR_TYPE, SEALCRYPT_BULK_ALGORITHM,
        SEALCRYPT_VERIFICATION_POLICY, SEALCRYPT_PASSWORD_ITERATIONS.
        Unset variables keep their defaults.
        """
        environ = os.environ if environ is None else environ
        values = {}
        for name in cls.model_fields:
            raw = environ.get(ENV_PREFIX + name.upper())
            if raw is not None:
                values[name] = raw
        return cls(**values)
