"""Private validator whose key lives in an HSM.

``HsmPrivValidator`` keeps the wrapped private key and the public key, makes
sure the key has been loaded into the module before the first signature of
the process, and turns the module's raw signature bytes into a ``Signature``.
The loaded flag is process-local and never written to disk: each new process
loads the key again before it signs anything.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Callable

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from .consensus import Heartbeat, Proposal, Signature, Vote, make_signature
from .errors import BadSignatureSize, RecordDecodeError, RecordIOError
from .hsm import Hsm

logger = logging.getLogger(__name__)

ADDRESS_LENGTH = 20

AddressFn = Callable[[bytes], bytes]


def tendermint_address(public_key: bytes) -> bytes:
    return hashlib.sha256(public_key).digest()[:ADDRESS_LENGTH]


class PrivValidatorRecord(BaseModel):
    """On-disk form of the validator: base64 key material under the legacy field names."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    encrypted_priv_key: bytes = Field(alias="EncryptedPrivKey")
    public_key: bytes = Field(alias="PublicKey")

    @field_validator("encrypted_priv_key", "public_key", mode="before")
    @classmethod
    def decode_base64(cls, value: Any) -> Any:
        if isinstance(value, str):
            try:
                return base64.b64decode(value, validate=True)
            except binascii.Error as exc:
                raise ValueError("must be base64") from exc
        return value

    @field_serializer("encrypted_priv_key", "public_key")
    def encode_base64(self, value: bytes) -> str:
        return base64.b64encode(value).decode("ascii")

    def to_json(self) -> str:
        return json.dumps(self.model_dump(by_alias=True), indent=2)


class HsmPrivValidator:
    def __init__(
        self,
        hsm: Hsm,
        *,
        encrypted_priv_key: bytes,
        public_key: bytes,
        address_fn: AddressFn = tendermint_address,
    ) -> None:
        self.hsm = hsm
        self.encrypted_priv_key = bytes(encrypted_priv_key)
        self.public_key = bytes(public_key)
        self._address_fn = address_fn
        self._lock = threading.RLock()
        self._keys_loaded = False

    @classmethod
    def generate(cls, hsm: Hsm, *, address_fn: AddressFn = tendermint_address) -> "HsmPrivValidator":
        """Create a new key pair in the HSM. The key is not loaded afterwards."""
        pair = hsm.generate_key()
        validator = cls(
            hsm,
            encrypted_priv_key=pair.wrapped_private_key,
            public_key=pair.public_key,
            address_fn=address_fn,
        )
        logger.info("Generated validator key pair address=%s", validator.address.hex())
        return validator

    @classmethod
    def restore(
        cls,
        record: PrivValidatorRecord,
        hsm: Hsm,
        *,
        address_fn: AddressFn = tendermint_address,
    ) -> "HsmPrivValidator":
        """Build a validator from a persisted record and load its key into the HSM.

        Any load failure propagates: a validator must not start believing it
        can sign when the module says otherwise.
        """
        validator = cls(
            hsm,
            encrypted_priv_key=record.encrypted_priv_key,
            public_key=record.public_key,
            address_fn=address_fn,
        )
        validator.ensure_loaded()
        return validator

    @classmethod
    def load_from_file(
        cls,
        path: Path,
        hsm: Hsm,
        *,
        address_fn: AddressFn = tendermint_address,
    ) -> "HsmPrivValidator":
        return cls.restore(read_record(path), hsm, address_fn=address_fn)

    def to_record(self) -> PrivValidatorRecord:
        return PrivValidatorRecord(encrypted_priv_key=self.encrypted_priv_key, public_key=self.public_key)

    def save_to_file(self, path: Path) -> None:
        write_record(path, self.to_record())

    @property
    def keys_loaded(self) -> bool:
        with self._lock:
            return self._keys_loaded

    @property
    def address(self) -> bytes:
        return self._address_fn(self.public_key)

    def ensure_loaded(self) -> None:
        with self._lock:
            if self._keys_loaded:
                return
            try:
                self.hsm.load_keys(self.encrypted_priv_key)
            except Exception as exc:
                logger.warning("Failed to load keys into HSM: %s", exc)
                raise
            self._keys_loaded = True
            logger.info("Loaded validator key into HSM address=%s", self.address.hex())

    def _to_signature(self, raw: bytes, operation: str) -> Signature:
        try:
            return make_signature(raw)
        except BadSignatureSize as exc:
            logger.warning("%s returned an invalid signature: %s", operation, exc)
            raise

    def sign_vote(self, chain_id: str, vote: Vote) -> Signature:
        with self._lock:
            self.ensure_loaded()
            signature = self._to_signature(self.hsm.sign_vote(chain_id, vote), "sign_vote")
        vote.signature = signature
        return signature

    def sign_proposal(self, chain_id: str, proposal: Proposal) -> Signature:
        with self._lock:
            self.ensure_loaded()
            signature = self._to_signature(self.hsm.sign_proposal(chain_id, proposal), "sign_proposal")
        proposal.signature = signature
        return signature

    def sign_heartbeat(self, chain_id: str, heartbeat: Heartbeat) -> Signature:
        with self._lock:
            self.ensure_loaded()
            signature = self._to_signature(self.hsm.sign_heartbeat(chain_id, heartbeat), "sign_heartbeat")
        heartbeat.signature = signature
        return signature


def read_record(path: Path) -> PrivValidatorRecord:
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as handle:
            raw = handle.read()
    except OSError as exc:
        raise RecordIOError(f"unable to read private validator file {path}: {exc}") from exc
    try:
        return PrivValidatorRecord.model_validate_json(raw)
    except pydantic.ValidationError as exc:
        raise RecordDecodeError(f"invalid private validator file {path}: {exc}") from exc


def write_record(path: Path, record: PrivValidatorRecord, *, mode: int = 0o600) -> None:
    path = Path(path)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(record.to_json())
        tmp_path.replace(path)
    except OSError as exc:
        raise RecordIOError(f"unable to write private validator file {path}: {exc}") from exc
