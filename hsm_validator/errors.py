"""Error taxonomy shared by the codec, transport and signing layers."""
from __future__ import annotations

from typing import Optional


class HsmValidatorError(RuntimeError):
    pass


class CodecError(HsmValidatorError):
    pass


class TruncatedInput(CodecError):
    pass


class MalformedText(CodecError):
    pass


class UnsupportedType(CodecError):
    pass


class ValueOutOfRange(CodecError):
    pass


class TransportError(HsmValidatorError):
    reason = "transport"


class ConnectFailed(TransportError):
    reason = "connect"


class WriteFailed(TransportError):
    reason = "write"


class ReadFailed(TransportError):
    reason = "read"


class TransportTimeout(TransportError):
    reason = "timeout"


class ProtocolError(HsmValidatorError):
    """The module response did not have a recognisable shape."""


class HsmError(HsmValidatorError):
    """The module rejected a job (Error or ProcessingError response)."""

    def __init__(self, message: str, *, code: Optional[int] = None, job: Optional[str] = None) -> None:
        self.message = message
        self.code = code
        self.job = job
        prefix = f"{job}: " if job else ""
        if code is None:
            text = f"{prefix}error from module: {message}"
        else:
            text = f"{prefix}error from module (code={code}): {message}"
        super().__init__(text)


class ValidationError(HsmValidatorError):
    pass


class BadKeySize(ValidationError):
    def __init__(self, kind: str, *, expected: int, actual: int) -> None:
        self.kind = kind
        self.expected = expected
        self.actual = actual
        super().__init__(f"bad {kind} size: got {actual}, expected {expected}")


class BadSignatureSize(ValidationError):
    def __init__(self, *, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"expected {expected} byte signature, found {actual} bytes")


class RecordIOError(HsmValidatorError):
    pass


class RecordDecodeError(HsmValidatorError):
    pass
