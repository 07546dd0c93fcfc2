"""Network client for the signing machine running inside an nShield HSM.

The module listens on a TCP port and answers one framed job per connection.
Each method below builds the job payload, dispatches it and unpacks the
job-specific result.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from .codec import ByteString, Int32, Int64, Text, decode_all, encode_all
from .consensus import Heartbeat, Proposal, Vote, canonical_time
from .dispatch import Job, ModuleEndpoint, send_job
from .errors import BadKeySize, CodecError, ProtocolError
from .hsm import ED25519_PUBLIC_KEY_LENGTH, WRAPPED_PRIVATE_KEY_LENGTH, Ed25519KeyPair
from .response import decode_response, expect_success

if TYPE_CHECKING:
    from .config import HsmValidatorSettings

logger = logging.getLogger(__name__)


def vote_payload(chain_id: str, vote: Vote) -> bytes:
    return encode_all(
        Text(chain_id),
        ByteString(vote.block_id.hash),
        ByteString(vote.block_id.parts_header.hash),
        Int32(vote.block_id.parts_header.total),
        Int64(vote.height),
        Int32(vote.round),
        Text(canonical_time(vote.timestamp)),
        Int32(vote.type),
    )


def proposal_payload(chain_id: str, proposal: Proposal) -> bytes:
    # Without a proof-of-lock round the POL block id is meaningless; the
    # module expects empty hashes and a zero total in its place.
    if proposal.pol_round == -1:
        pol_block_hash = b""
        pol_parts_hash = b""
        pol_parts_total = 0
    else:
        pol_block_hash = proposal.pol_block_id.hash
        pol_parts_hash = proposal.pol_block_id.parts_header.hash
        pol_parts_total = proposal.pol_block_id.parts_header.total

    return encode_all(
        Text(chain_id),
        ByteString(proposal.block_parts_header.hash),
        Int32(proposal.block_parts_header.total),
        Int64(proposal.height),
        ByteString(pol_block_hash),
        ByteString(pol_parts_hash),
        Int32(pol_parts_total),
        Int32(proposal.pol_round),
        Int32(proposal.round),
        Text(canonical_time(proposal.timestamp)),
    )


def heartbeat_payload(chain_id: str, heartbeat: Heartbeat) -> bytes:
    return encode_all(
        Text(chain_id),
        Int64(heartbeat.height),
        Int32(heartbeat.round),
        Int32(heartbeat.sequence),
        ByteString(heartbeat.validator_address),
        Int32(heartbeat.validator_index),
    )


@dataclass
class ThalesHsm:
    """Implements ``Hsm`` by talking to the module over its wire protocol."""

    host: str = "127.0.0.1"
    port: int = 49999
    timeout_seconds: Optional[float] = None

    @classmethod
    def from_settings(cls, settings: "HsmValidatorSettings") -> "ThalesHsm":
        return cls(
            host=settings.hsm_host,
            port=settings.hsm_port,
            timeout_seconds=settings.hsm_timeout_seconds,
        )

    @property
    def endpoint(self) -> ModuleEndpoint:
        return ModuleEndpoint(self.host, self.port)

    def _run(self, job: Job, payload: bytes) -> bytes:
        raw = send_job(job, payload, self.endpoint, timeout_seconds=self.timeout_seconds)
        return expect_success(decode_response(raw), job=job.name)

    def _unpack(self, job: Job, result: bytes, *shapes) -> tuple:
        try:
            return decode_all(result, *shapes)
        except CodecError as exc:
            raise ProtocolError(f"{job.name}: failed to unmarshal result: {exc}") from exc

    def _sign(self, job: Job, payload: bytes) -> bytes:
        result = self._run(job, payload)
        (signature,) = self._unpack(job, result, ByteString)
        return signature

    def load_keys(self, wrapped_private_key: bytes) -> None:
        self._run(Job.LOAD_KEY, encode_all(ByteString(wrapped_private_key)))

    def generate_key(self) -> Ed25519KeyPair:
        result = self._run(Job.GENERATE_KEY, b"")
        public_key, wrapped_private_key = self._unpack(Job.GENERATE_KEY, result, ByteString, ByteString)

        if len(public_key) != ED25519_PUBLIC_KEY_LENGTH:
            raise BadKeySize("public key", expected=ED25519_PUBLIC_KEY_LENGTH, actual=len(public_key))
        if len(wrapped_private_key) != WRAPPED_PRIVATE_KEY_LENGTH:
            raise BadKeySize(
                "private key",
                expected=WRAPPED_PRIVATE_KEY_LENGTH,
                actual=len(wrapped_private_key),
            )

        logger.debug("Module generated key pair public_key=%s", public_key.hex())
        return Ed25519KeyPair(public_key=public_key, wrapped_private_key=wrapped_private_key)

    def sign_vote(self, chain_id: str, vote: Vote) -> bytes:
        return self._sign(Job.SIGN_VOTE, vote_payload(chain_id, vote))

    def sign_proposal(self, chain_id: str, proposal: Proposal) -> bytes:
        return self._sign(Job.SIGN_PROPOSAL, proposal_payload(chain_id, proposal))

    def sign_heartbeat(self, chain_id: str, heartbeat: Heartbeat) -> bytes:
        return self._sign(Job.SIGN_HEARTBEAT, heartbeat_payload(chain_id, heartbeat))
