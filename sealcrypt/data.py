"""
Conversion of ``Data`` arguments to bytes.

Byte-like values are used as is. Strings are decoded according to what the
argument carries: UTF-8 for plaintext and data being signed or hashed,
base64 for ciphertext, metadata, signatures and key material.
"""

import base64
import binascii
from typing import Union

from .errors import InvalidArgumentError


Data = Union[str, bytes, bytearray, memoryview]

UTF8 = "utf-8"
BASE64 = "base64"


def to_bytes(data: Data, encoding: str = UTF8, name: str = "data") -> bytes:
    """
    Convert a ``Data`` argument to bytes.

    Args:
        data: Value passed by the caller
        encoding: How to decode strings, ``UTF8`` or ``BASE64``
        name: Argument name used in error messages

    Returns:
        Bytes value

    Raises:
        InvalidArgumentError: On unsupported types or invalid base64
    """
    if isinstance(data, bytes):
        return data
    if isinstance(data, (bytearray, memoryview)):
        return bytes(data)
    if isinstance(data, str):
        if encoding == BASE64:
            try:
                return base64.b64decode(data, validate=True)
            except (binascii.Error, ValueError) as e:
                raise InvalidArgumentError(f'"{name}" is not valid base64: {e}') from e
        return data.encode(UTF8)
    raise InvalidArgumentError(
        f'Unexpected type of "{name}" argument: expected str or bytes, got {type(data).__name__}'
    )


def optional_password(password: Union[Data, None]) -> Union[bytes, None]:
    """Convert an optional password; strings are taken as UTF-8 text"""
    if password is None:
        return None
    return to_bytes(password, UTF8, "password")
