"""
Scoped lifetime for key material.

Secrets produced during an operation (bulk keys, wrap keys, IVs, shared
secrets, raw private key bytes) are copied into ``bytearray`` buffers that a
``SecretScope`` owns. Leaving the scope, by return or by exception, wipes
every tracked buffer in place with libsodium.
"""

from typing import List, Union

from nacl._sodium import ffi as _ffi, lib as _lib


def secure_zero(buf: Union[bytearray, memoryview]) -> None:
    """Overwrite a mutable buffer with zeros using libsodium's sodium_memzero."""
    n = len(buf)
    if n:
        _lib.sodium_memzero(_ffi.from_buffer(buf), n)


class SecretScope:
    """
    Context manager owning secret buffers for the duration of one call.

    Usage:
        with SecretScope() as scope:
            key = scope.track(random_bytes(32))
            ...
    """

    def __init__(self):
        self._buffers: List[bytearray] = []

    def track(self, secret: Union[bytes, bytearray]) -> bytearray:
        """
        Take ownership of a secret.

        Args:
            secret: Secret bytes; a bytearray is adopted as is, anything
                else is copied into a new bytearray

        Returns:
            The tracked mutable buffer
        """
        buf = secret if isinstance(secret, bytearray) else bytearray(secret)
        self._buffers.append(buf)
        return buf

    def wipe(self) -> None:
        """Zero and release every tracked buffer."""
        for buf in self._buffers:
            secure_zero(buf)
        self._buffers.clear()

    def __enter__(self) -> "SecretScope":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.wipe()
