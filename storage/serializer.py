"""
Versioned binary serialization of credential state.

Layout
------
header
  magic     2 bytes   b"OT"
  version   uint8

fields (big-endian, order given by the version's schema)
  digits                       uint8
  algorithm                    uint8    1=SHA1 2=SHA256 3=SHA512
  step_size                    uint32
  secret_key                   uint16 length + raw bytes
  account                      uint16 length + UTF-8
  total_verification_failures  uint8
  last_verification_time       int64    Unix seconds
  client_offset                int32
  last_used_otp                uint16 length + ASCII     (v2+)

The issuer is not stored; it is supplied by the caller when decoding.
Fields missing from an older schema decode to their default value.
"""

import base64
import binascii
import logging
import struct
from dataclasses import dataclass
from typing import Any, Callable, Dict, Tuple

from core.errors import MalformedBlob, UnsupportedBlobVersion
from core.totp import Algorithm, resolve_algorithm
from core.utils import MAX_DIGITS, MIN_DIGITS

logger = logging.getLogger(__name__)

MAGIC = b"OT"
CURRENT_VERSION = 2

_HEADER = struct.Struct(">2sB")
_LENGTH = struct.Struct(">H")

_ALGORITHM_IDS: Dict[Algorithm, int] = {
    Algorithm.SHA1: 1,
    Algorithm.SHA256: 2,
    Algorithm.SHA512: 3,
}
_ALGORITHMS_BY_ID = {v: k for k, v in _ALGORITHM_IDS.items()}


# ── Reader ────────────────────────────────────────────────────────────────────

class _Reader:
    """Cursor over a blob that raises :class:`MalformedBlob` on truncation."""

    def __init__(self, data: bytes) -> None:
        self._data = data
        self._pos = 0

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    def take(self, size: int) -> bytes:
        if size > self.remaining:
            raise MalformedBlob("Credential blob is truncated.")
        chunk = self._data[self._pos : self._pos + size]
        self._pos += size
        return chunk

    def unpack(self, fmt: struct.Struct) -> Tuple[Any, ...]:
        return fmt.unpack(self.take(fmt.size))


# ── Field codecs ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Field:
    """One schema entry: attribute name, codec pair and default."""

    name: str
    write: Callable[[Any], bytes]
    read: Callable[[_Reader], Any]
    default: Any


def _scalar(name: str, fmt: str, default: int = 0) -> Field:
    packer = struct.Struct(fmt)
    return Field(
        name,
        write=lambda value: packer.pack(value),
        read=lambda reader: reader.unpack(packer)[0],
        default=default,
    )


def _write_sized(raw: bytes) -> bytes:
    if len(raw) > 0xFFFF:
        raise ValueError("Field exceeds 65535 bytes.")
    return _LENGTH.pack(len(raw)) + raw


def _read_sized(reader: _Reader) -> bytes:
    (size,) = reader.unpack(_LENGTH)
    return reader.take(size)


def _decode_text(raw: bytes, encoding: str) -> str:
    try:
        return raw.decode(encoding)
    except UnicodeDecodeError as exc:
        raise MalformedBlob(f"Invalid {encoding} text in credential blob.") from exc


def _bytes_field(name: str) -> Field:
    return Field(name, write=_write_sized, read=_read_sized, default=b"")


def _text_field(name: str, encoding: str = "utf-8") -> Field:
    return Field(
        name,
        write=lambda value: _write_sized(value.encode(encoding)),
        read=lambda reader: _decode_text(_read_sized(reader), encoding),
        default="",
    )


def _read_algorithm(reader: _Reader) -> Algorithm:
    (alg_id,) = reader.unpack(struct.Struct(">B"))
    try:
        return _ALGORITHMS_BY_ID[alg_id]
    except KeyError:
        raise MalformedBlob(f"Unknown algorithm id {alg_id}.") from None


_ALGORITHM_FIELD = Field(
    "algorithm",
    write=lambda value: struct.pack(">B", _ALGORITHM_IDS[resolve_algorithm(value)]),
    read=_read_algorithm,
    default=Algorithm.SHA1,
)


# ── Schemas ───────────────────────────────────────────────────────────────────

V1_FIELDS: Tuple[Field, ...] = (
    _scalar("digits", ">B", 6),
    _ALGORITHM_FIELD,
    _scalar("step_size", ">I", 30),
    _bytes_field("secret_key"),
    _text_field("account"),
    _scalar("total_verification_failures", ">B"),
    _scalar("last_verification_time", ">q"),
    _scalar("client_offset", ">i"),
)

V2_FIELDS: Tuple[Field, ...] = V1_FIELDS + (_text_field("last_used_otp", "ascii"),)

SCHEMAS: Dict[int, Tuple[Field, ...]] = {
    1: V1_FIELDS,
    2: V2_FIELDS,
}

_ALL_FIELDS = {f.name: f for schema in SCHEMAS.values() for f in schema}


# ── Public API ────────────────────────────────────────────────────────────────

def encode(credential, version: int = CURRENT_VERSION) -> bytes:
    """
    Serialize ``credential`` using the schema of ``version``.

    Older versions are written for consumers that predate newer fields;
    those fields are simply omitted.

    Raises:
        UnsupportedBlobVersion: If ``version`` has no schema.
        ValueError:             If a field value does not fit its encoding.
    """
    schema = SCHEMAS.get(version)
    if schema is None:
        raise UnsupportedBlobVersion(f"Unsupported credential format version {version}.")

    parts = [_HEADER.pack(MAGIC, version)]
    for field in schema:
        try:
            parts.append(field.write(getattr(credential, field.name)))
        except struct.error as exc:
            raise ValueError(f"Cannot serialize field '{field.name}': {exc}") from exc
    return b"".join(parts)


def decode(data: bytes) -> Dict[str, Any]:
    """
    Parse a blob produced by :func:`encode`.

    Returns:
        Mapping of credential attribute names to values, suitable as keyword
        arguments for ``Credential``.

    Raises:
        MalformedBlob:          Bad magic, truncation, trailing bytes or
                                invalid field values.
        UnsupportedBlobVersion: Unknown version marker.
    """
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise MalformedBlob("Credential blob must be bytes.")

    reader = _Reader(bytes(data))
    magic, version = reader.unpack(_HEADER)
    if magic != MAGIC:
        raise MalformedBlob("Not a credential blob.")

    schema = SCHEMAS.get(version)
    if schema is None:
        raise UnsupportedBlobVersion(f"Unsupported credential format version {version}.")
    if version != CURRENT_VERSION:
        logger.debug("Decoding credential blob in legacy format v%d", version)

    values = {name: field.default for name, field in _ALL_FIELDS.items()}
    for field in schema:
        values[field.name] = field.read(reader)

    if reader.remaining:
        raise MalformedBlob(f"{reader.remaining} unexpected trailing bytes in credential blob.")

    _check(values)
    return values


def _check(values: Dict[str, Any]) -> None:
    if not values["secret_key"]:
        raise MalformedBlob("Credential blob has an empty secret key.")
    if not MIN_DIGITS <= values["digits"] <= MAX_DIGITS:
        raise MalformedBlob(f"Invalid digit count {values['digits']}.")
    if values["step_size"] < 1:
        raise MalformedBlob("Step size must be positive.")


# ── Text wrapping ─────────────────────────────────────────────────────────────

def to_base64(data: bytes) -> str:
    """Wrap a blob as URL-safe base64 text for storage or transport."""
    return base64.urlsafe_b64encode(data).decode("ascii")


def from_base64(text: str) -> bytes:
    """
    Unwrap text produced by :func:`to_base64`.

    Raises:
        MalformedBlob: If ``text`` is not valid base64.
    """
    try:
        return base64.urlsafe_b64decode(text.strip().encode("ascii"))
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise MalformedBlob(f"Invalid base64 credential blob: {exc}") from exc
