"""
Envelope Codec

Binary (de)serialization of ContentInfo, the self-describing metadata that
lets a recipient recover the bulk key, and of the embedded envelope layout
that prefixes it to the bulk ciphertext.

All integers are big-endian. A ContentInfo is:

    "SCI1" | u8 version | u8 bulk algorithm | u8 nonce length | nonce
    | u16 key wrap count | key wrap ...
    | u8 password flag | [password wrap]
    | u16 custom param count | (u16 name length | name | u32 length | value) ...
    | SHA-256 checksum of everything above

    key wrap      := u8 key type | u16 id length | id
                     | u16 ephemeral key length | ephemeral key (DER)
                     | u16 wrapped key length | wrapped key
    password wrap := u8 salt length | salt | u32 iterations
                     | u16 wrapped key length | wrapped key

An embedded envelope is ``u32 ContentInfo length | ContentInfo | ciphertext``.
"""

import hashlib
import struct
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .errors import EnvelopeFormatError
from .primitives import BulkAlgorithm, KeyPairType, constant_time_compare


MAGIC = b"SCI1"
MAX_RECIPIENTS = 0xFFFF
VERSION = 1
CHECKSUM_SIZE = 32

_KEY_TYPE_CODES = {
    KeyPairType.ED25519: 1,
    KeyPairType.CURVE25519: 2,
    KeyPairType.SECP256R1: 3,
    KeyPairType.SECP384R1: 4,
    KeyPairType.SECP521R1: 5,
}
_KEY_TYPES_BY_CODE = {code: key_type for key_type, code in _KEY_TYPE_CODES.items()}


@dataclass(frozen=True)
class RecipientKeyWrap:
    """
    Bulk key wrapped for one recipient public key.

    Attributes:
        recipient_identifier: Identifier of the recipient's public key
        key_type: Key type of the recipient key
        ephemeral_public_key: DER public key of the per-recipient ephemeral pair
        wrapped_bulk_key: Bulk key encrypted under the derived wrap key
    """
    recipient_identifier: bytes
    key_type: KeyPairType
    ephemeral_public_key: bytes
    wrapped_bulk_key: bytes


@dataclass(frozen=True)
class PasswordRecipientWrap:
    """Bulk key wrapped under a password-derived key; carries no identifier"""
    salt: bytes
    iterations: int
    wrapped_bulk_key: bytes


@dataclass(frozen=True)
class ContentInfo:
    """
    Envelope metadata: bulk cipher parameters and per-recipient key wraps.

    Attributes:
        bulk_algorithm: AEAD cipher of the payload
        nonce: Bulk cipher nonce
        key_wraps: Ordered public-key recipient entries
        password_wrap: Password recipient entry, if any
        custom_params: Named values bound to the envelope (signer id etc.)
    """
    bulk_algorithm: BulkAlgorithm
    nonce: bytes
    key_wraps: Tuple[RecipientKeyWrap, ...] = ()
    password_wrap: Optional[PasswordRecipientWrap] = None
    custom_params: Dict[str, bytes] = field(default_factory=dict)

    def find_recipient(self, identifier: bytes) -> Optional[RecipientKeyWrap]:
        """Return the key wrap addressed to ``identifier``, if present"""
        for wrap in self.key_wraps:
            if wrap.recipient_identifier == identifier:
                return wrap
        return None

    def to_bytes(self) -> bytes:
        """Serialize to the binary ContentInfo format"""
        writer = _Writer()
        writer.raw(MAGIC)
        writer.u8(VERSION)
        writer.u8(int(self.bulk_algorithm))
        writer.blob8(self.nonce)

        writer.u16(len(self.key_wraps))
        for wrap in self.key_wraps:
            writer.u8(_KEY_TYPE_CODES[wrap.key_type])
            writer.blob16(wrap.recipient_identifier)
            writer.blob16(wrap.ephemeral_public_key)
            writer.blob16(wrap.wrapped_bulk_key)

        if self.password_wrap is None:
            writer.u8(0)
        else:
            writer.u8(1)
            writer.blob8(self.password_wrap.salt)
            writer.u32(self.password_wrap.iterations)
            writer.blob16(self.password_wrap.wrapped_bulk_key)

        writer.u16(len(self.custom_params))
        for name in sorted(self.custom_params):
            writer.blob16(name.encode("utf-8"))
            writer.blob32(self.custom_params[name])

        body = writer.getvalue()
        return body + hashlib.sha256(body).digest()

    @classmethod
    def from_bytes(cls, data: bytes) -> 'ContentInfo':
        """
        Parse a serialized ContentInfo.

        Raises:
            EnvelopeFormatError: If the data is truncated, has trailing
                bytes, fails its checksum, or uses unknown algorithm ids
        """
        data = bytes(data)
        if len(data) < len(MAGIC) + CHECKSUM_SIZE:
            raise EnvelopeFormatError("ContentInfo too short")
        body, checksum = data[:-CHECKSUM_SIZE], data[-CHECKSUM_SIZE:]
        if not constant_time_compare(hashlib.sha256(body).digest(), checksum):
            raise EnvelopeFormatError("ContentInfo checksum mismatch")

        reader = _Reader(body)
        if reader.raw(len(MAGIC)) != MAGIC:
            raise EnvelopeFormatError("Not a ContentInfo (bad magic)")
        version = reader.u8()
        if version != VERSION:
            raise EnvelopeFormatError(f"Unsupported ContentInfo version {version}")
        try:
            bulk_algorithm = BulkAlgorithm(reader.u8())
        except ValueError as e:
            raise EnvelopeFormatError(f"Unknown bulk algorithm: {e}") from e
        nonce = reader.blob8()

        key_wraps: List[RecipientKeyWrap] = []
        for _ in range(reader.u16()):
            code = reader.u8()
            if code not in _KEY_TYPES_BY_CODE:
                raise EnvelopeFormatError(f"Unknown key type code {code}")
            key_wraps.append(RecipientKeyWrap(
                key_type=_KEY_TYPES_BY_CODE[code],
                recipient_identifier=reader.blob16(),
                ephemeral_public_key=reader.blob16(),
                wrapped_bulk_key=reader.blob16()
            ))

        password_wrap = None
        flag = reader.u8()
        if flag == 1:
            password_wrap = PasswordRecipientWrap(
                salt=reader.blob8(),
                iterations=reader.u32(),
                wrapped_bulk_key=reader.blob16()
            )
        elif flag != 0:
            raise EnvelopeFormatError(f"Invalid password recipient flag {flag}")

        custom_params: Dict[str, bytes] = {}
        for _ in range(reader.u16()):
            try:
                name = reader.blob16().decode("utf-8")
            except UnicodeDecodeError as e:
                raise EnvelopeFormatError("Custom parameter name is not UTF-8") from e
            custom_params[name] = reader.blob32()

        if not reader.at_end():
            raise EnvelopeFormatError("Trailing bytes after ContentInfo")

        return cls(
            bulk_algorithm=bulk_algorithm,
            nonce=nonce,
            key_wraps=tuple(key_wraps),
            password_wrap=password_wrap,
            custom_params=custom_params
        )


def embed(content_info: bytes, ciphertext: bytes) -> bytes:
    """Prefix serialized ContentInfo to a bulk ciphertext"""
    return struct.pack(">I", len(content_info)) + content_info + ciphertext


def split(embedded: bytes) -> Tuple[bytes, bytes]:
    """
    Separate an embedded envelope into serialized ContentInfo and bulk
    ciphertext.

    Raises:
        EnvelopeFormatError: If the length prefix does not fit the data
    """
    embedded = bytes(embedded)
    if len(embedded) < 4:
        raise EnvelopeFormatError("Encrypted data too short for a ContentInfo prefix")
    (length,) = struct.unpack(">I", embedded[:4])
    if length > len(embedded) - 4:
        raise EnvelopeFormatError(
            f"ContentInfo length {length} exceeds encrypted data size {len(embedded) - 4}"
        )
    return embedded[4:4 + length], embedded[4 + length:]


class _Writer:
    """Accumulates big-endian fields"""

    def __init__(self):
        self._parts: List[bytes] = []

    def raw(self, data: bytes) -> None:
        self._parts.append(bytes(data))

    def _pack(self, fmt: str, value: int) -> None:
        try:
            self._parts.append(struct.pack(fmt, value))
        except struct.error as e:
            raise EnvelopeFormatError(f"Field value {value} does not fit the ContentInfo format") from e

    def u8(self, value: int) -> None:
        self._pack(">B", value)

    def u16(self, value: int) -> None:
        self._pack(">H", value)

    def u32(self, value: int) -> None:
        self._pack(">I", value)

    def blob8(self, data: bytes) -> None:
        self.u8(len(data))
        self.raw(data)

    def blob16(self, data: bytes) -> None:
        self.u16(len(data))
        self.raw(data)

    def blob32(self, data: bytes) -> None:
        self.u32(len(data))
        self.raw(data)

    def getvalue(self) -> bytes:
        return b"".join(self._parts)


class _Reader:
    """Consumes big-endian fields, raising EnvelopeFormatError on truncation"""

    def __init__(self, data: bytes):
        self._data = data
        self._offset = 0

    def raw(self, length: int) -> bytes:
        end = self._offset + length
        if end > len(self._data):
            raise EnvelopeFormatError("ContentInfo truncated")
        chunk = self._data[self._offset:end]
        self._offset = end
        return chunk

    def _unpack(self, fmt: str, size: int) -> int:
        return struct.unpack(fmt, self.raw(size))[0]

    def u8(self) -> int:
        return self._unpack(">B", 1)

    def u16(self) -> int:
        return self._unpack(">H", 2)

    def u32(self) -> int:
        return self._unpack(">I", 4)

    def blob8(self) -> bytes:
        return self.raw(self.u8())

    def blob16(self) -> bytes:
        return self.raw(self.u16())

    def blob32(self) -> bytes:
        return self.raw(self.u32())

    def at_end(self) -> bool:
        return self._offset == len(self._data)
