"""The HSM capability the signing guard depends on."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from .consensus import Heartbeat, Proposal, Vote

ED25519_PUBLIC_KEY_LENGTH = 32
WRAPPED_PRIVATE_KEY_LENGTH = 64


@dataclass(frozen=True)
class Ed25519KeyPair:
    """A public key plus the private key wrapped under the module's key."""

    public_key: bytes
    wrapped_private_key: bytes


class Hsm(Protocol):
    def load_keys(self, wrapped_private_key: bytes) -> None:
        """Load the wrapped private key into the module."""
        ...

    def generate_key(self) -> Ed25519KeyPair:
        """Create a new key pair inside the module; the key is not loaded afterwards."""
        ...

    # The sign operations return raw signature bytes. Regressions in height,
    # round or step are rejected by the module itself.
    def sign_vote(self, chain_id: str, vote: Vote) -> bytes: ...

    def sign_proposal(self, chain_id: str, proposal: Proposal) -> bytes: ...

    def sign_heartbeat(self, chain_id: str, heartbeat: Heartbeat) -> bytes: ...
