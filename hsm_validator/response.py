"""Classification of raw HSM module responses."""
from __future__ import annotations

import io
from dataclasses import dataclass
from typing import Optional, Union

from .codec import decode_bytes, decode_int32, decode_text
from .errors import CodecError, HsmError, ProtocolError

RESPONSE_OK = 0
RESPONSE_ERROR = 1
RESPONSE_PROCESSING_ERROR = 2

_LENGTH_PREFIX_SIZE = 4


@dataclass(frozen=True)
class Success:
    payload: bytes


@dataclass(frozen=True)
class ModuleError:
    message: str


@dataclass(frozen=True)
class ProcessingError:
    message: str
    code: int


ModuleResponse = Union[Success, ModuleError, ProcessingError]


def decode_response(raw: bytes) -> ModuleResponse:
    stream = io.BytesIO(raw)
    # The leading length field repeats what the transport already delimited.
    if len(stream.read(_LENGTH_PREFIX_SIZE)) != _LENGTH_PREFIX_SIZE:
        raise ProtocolError(f"response too short: {len(raw)} bytes")

    try:
        code = decode_int32(stream)
    except CodecError as exc:
        raise ProtocolError(f"failed to read response code: {exc}") from exc

    try:
        if code == RESPONSE_OK:
            return Success(decode_bytes(stream))
        if code == RESPONSE_ERROR:
            return ModuleError(decode_text(stream))
        if code == RESPONSE_PROCESSING_ERROR:
            message = decode_text(stream)
            return ProcessingError(message, decode_int32(stream))
    except CodecError as exc:
        raise ProtocolError(f"failed to unmarshal response body (code={code}): {exc}") from exc

    raise ProtocolError(f"unknown response code: {code}")


def expect_success(response: ModuleResponse, *, job: Optional[str] = None) -> bytes:
    """Return the payload of a ``Success`` or raise ``HsmError`` for the error shapes."""
    if isinstance(response, Success):
        return response.payload
    if isinstance(response, ProcessingError):
        raise HsmError(response.message, code=response.code, job=job)
    if isinstance(response, ModuleError):
        raise HsmError(response.message, job=job)
    raise ProtocolError(f"unexpected response object: {response!r}")
