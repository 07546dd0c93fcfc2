"""Word-aligned binary codec used on the wire to the HSM module.

Integers are little-endian. Byte strings carry a 4-byte length prefix and are
zero-padded to the next word boundary; the padding is not part of the declared
length. Text is a byte string holding UTF-8 followed by a single NUL.

The set of encodable values is closed: ``ByteString``, ``Int32``, ``Int64``
and ``Text``. ``encode_all`` rejects anything else, including bare Python
``int``/``bytes``/``str`` objects, so that every field's wire width is stated
explicitly at the call site.
"""
from __future__ import annotations

import io
import struct
from dataclasses import dataclass
from typing import Any, BinaryIO, Type, Union

from .errors import MalformedText, TruncatedInput, UnsupportedType, ValueOutOfRange

WORD_SIZE = 4

_INT32 = struct.Struct("<i")
_INT64 = struct.Struct("<q")


def padding_for_length(length: int) -> int:
    return (WORD_SIZE - (length % WORD_SIZE)) % WORD_SIZE


def _read_exact(stream: BinaryIO, size: int, *, what: str) -> bytes:
    data = stream.read(size)
    if data is None or len(data) != size:
        found = 0 if data is None else len(data)
        raise TruncatedInput(f"tried to read {size} bytes for {what}, found {found}")
    return data


def encode_int32(value: int) -> bytes:
    try:
        return _INT32.pack(value)
    except struct.error as exc:
        raise ValueOutOfRange(f"{value!r} does not fit in a signed 32-bit integer") from exc


def decode_int32(stream: BinaryIO) -> int:
    (value,) = _INT32.unpack(_read_exact(stream, _INT32.size, what="int32"))
    return value


def encode_int64(value: int) -> bytes:
    try:
        return _INT64.pack(value)
    except struct.error as exc:
        raise ValueOutOfRange(f"{value!r} does not fit in a signed 64-bit integer") from exc


def decode_int64(stream: BinaryIO) -> int:
    (value,) = _INT64.unpack(_read_exact(stream, _INT64.size, what="int64"))
    return value


def encode_bytes(data: bytes) -> bytes:
    raw = bytes(data)
    return encode_int32(len(raw)) + raw + b"\x00" * padding_for_length(len(raw))


def decode_bytes(stream: BinaryIO) -> bytes:
    length = decode_int32(stream)
    if length < 0:
        raise TruncatedInput(f"negative byte string length {length}")
    result = _read_exact(stream, length, what="byte string")
    _read_exact(stream, padding_for_length(length), what="byte string padding")
    return result


def encode_text(text: str) -> bytes:
    return encode_bytes(text.encode("utf-8") + b"\x00")


def decode_text(stream: BinaryIO) -> str:
    raw = decode_bytes(stream)
    if not raw:
        raise MalformedText("text is missing its NUL terminator")
    try:
        return raw[:-1].decode("utf-8")
    except UnicodeDecodeError as exc:
        raise MalformedText("text is not valid UTF-8") from exc


@dataclass(frozen=True)
class ByteString:
    value: bytes

    def encode(self) -> bytes:
        return encode_bytes(self.value)

    @staticmethod
    def decode(stream: BinaryIO) -> bytes:
        return decode_bytes(stream)


@dataclass(frozen=True)
class Int32:
    value: int

    def encode(self) -> bytes:
        return encode_int32(self.value)

    @staticmethod
    def decode(stream: BinaryIO) -> int:
        return decode_int32(stream)


@dataclass(frozen=True)
class Int64:
    value: int

    def encode(self) -> bytes:
        return encode_int64(self.value)

    @staticmethod
    def decode(stream: BinaryIO) -> int:
        return decode_int64(stream)


@dataclass(frozen=True)
class Text:
    value: str

    def encode(self) -> bytes:
        return encode_text(self.value)

    @staticmethod
    def decode(stream: BinaryIO) -> str:
        return decode_text(stream)


Value = Union[ByteString, Int32, Int64, Text]
Shape = Type[Value]

_VALUE_TYPES = (ByteString, Int32, Int64, Text)


def encode_all(*values: Value) -> bytes:
    """Encode ``values`` in order and return the concatenated bytes."""
    buffer = io.BytesIO()
    for value in values:
        if not isinstance(value, _VALUE_TYPES):
            raise UnsupportedType(f"unsupported value type: {type(value).__name__}")
        buffer.write(value.encode())
    return buffer.getvalue()


def decode_all(stream: Union[BinaryIO, bytes], *shapes: Shape) -> tuple[Any, ...]:
    """Decode one value per entry in ``shapes`` and return them as a tuple.

    ``shapes`` are the value classes themselves, e.g.
    ``decode_all(stream, ByteString, Int32, Text)``. Decoding stops at the
    first failure and the error propagates; no partial result is returned.
    """
    if isinstance(stream, (bytes, bytearray)):
        stream = io.BytesIO(stream)
    results: list[Any] = []
    for shape in shapes:
        if shape not in _VALUE_TYPES:
            raise UnsupportedType(f"unsupported value shape: {getattr(shape, '__name__', shape)!r}")
        results.append(shape.decode(stream))
    return tuple(results)
