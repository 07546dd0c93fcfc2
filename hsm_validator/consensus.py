"""Consensus messages that the validator is asked to sign."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .errors import BadSignatureSize

ED25519_SIGNATURE_LENGTH = 64

VOTE_TYPE_PREVOTE = 0x01
VOTE_TYPE_PRECOMMIT = 0x02


@dataclass(frozen=True)
class Signature:
    """An Ed25519 signature produced by the HSM. Always exactly 64 bytes."""

    data: bytes

    def __post_init__(self) -> None:
        if len(self.data) != ED25519_SIGNATURE_LENGTH:
            raise BadSignatureSize(expected=ED25519_SIGNATURE_LENGTH, actual=len(self.data))

    def hex(self) -> str:
        return self.data.hex()


def make_signature(raw: bytes) -> Signature:
    return Signature(bytes(raw))


def canonical_time(value: datetime) -> str:
    """Render ``value`` the way the module expects: UTC with millisecond precision."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def _epoch() -> datetime:
    return datetime(1970, 1, 1, tzinfo=timezone.utc)


class _Message(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, validate_assignment=True)


class PartSetHeader(_Message):
    total: int = 0
    hash: bytes = b""


class BlockID(_Message):
    hash: bytes = b""
    parts_header: PartSetHeader = Field(default_factory=PartSetHeader)


class Vote(_Message):
    validator_address: bytes = b""
    validator_index: int = 0
    height: int = 0
    round: int = 0
    timestamp: datetime = Field(default_factory=_epoch)
    type: int = Field(default=VOTE_TYPE_PREVOTE, ge=0, le=255)
    block_id: BlockID = Field(default_factory=BlockID)
    signature: Optional[Signature] = None


class Proposal(_Message):
    height: int = 0
    round: int = 0
    timestamp: datetime = Field(default_factory=_epoch)
    block_parts_header: PartSetHeader = Field(default_factory=PartSetHeader)
    # -1 means there is no proof-of-lock round.
    pol_round: int = -1
    pol_block_id: BlockID = Field(default_factory=BlockID)
    signature: Optional[Signature] = None


class Heartbeat(_Message):
    validator_address: bytes = b""
    validator_index: int = 0
    height: int = 0
    round: int = 0
    sequence: int = 0
    signature: Optional[Signature] = None
