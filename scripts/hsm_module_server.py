#!/usr/bin/env python3
"""Development stand-in for the signing machine that runs inside the HSM.

Speaks the same framed job protocol as the real module so the validator can be
exercised end to end without hardware. Private keys are Ed25519 seeds wrapped
with AES-GCM under a wrapping key taken from HSM_MODULE_WRAPPING_KEY (64 hex
chars). Votes and proposals are refused if their height/round/step goes
backwards for a chain.
"""
from __future__ import annotations

import argparse
import io
import json
import os
import secrets
import socket
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import urlparse

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from hsm_validator.codec import (
    ByteString,
    Int32,
    Int64,
    Text,
    decode_all,
    decode_int32,
    encode_all,
    encode_bytes,
    encode_int32,
    encode_text,
)
from hsm_validator.consensus import VOTE_TYPE_PRECOMMIT, VOTE_TYPE_PREVOTE
from hsm_validator.dispatch import Job

WRAP_NONCE_LENGTH = 16
WRAP_ASSOCIATED_DATA = b"hsm-validator-key"

STEP_PROPOSE = 1
STEP_PREVOTE = 2
STEP_PRECOMMIT = 3

ERROR_CODE_REGRESSION = 3


def ok(result: bytes) -> bytes:
    body = encode_int32(0) + encode_bytes(result)
    return encode_int32(len(body)) + body


def error(message: str) -> bytes:
    body = encode_int32(1) + encode_text(message)
    return encode_int32(len(body)) + body


def processing_error(message: str, code: int) -> bytes:
    body = encode_int32(2) + encode_text(message) + encode_int32(code)
    return encode_int32(len(body)) + body


def recv_exact(sock: socket.socket, size: int) -> bytes:
    chunks: list[bytes] = []
    remaining = size
    while remaining > 0:
        part = sock.recv(remaining)
        if not part:
            raise ConnectionError("peer closed")
        chunks.append(part)
        remaining -= len(part)
    return b"".join(chunks)


def read_job(sock: socket.socket) -> tuple[int, bytes]:
    length = decode_int32(io.BytesIO(recv_exact(sock, 4)))
    if length < 4:
        raise ValueError(f"frame too short: {length}")
    body = recv_exact(sock, length)
    return decode_int32(io.BytesIO(body[:4])), body[4:]


@dataclass
class ModuleState:
    wrapping_key: bytes
    signing_key: Optional[Ed25519PrivateKey] = None
    last_step: dict[str, tuple[int, int, int]] = field(default_factory=dict)

    def wrap(self, seed: bytes) -> bytes:
        nonce = secrets.token_bytes(WRAP_NONCE_LENGTH)
        return nonce + AESGCM(self.wrapping_key).encrypt(nonce, seed, WRAP_ASSOCIATED_DATA)

    def unwrap(self, wrapped: bytes) -> bytes:
        nonce, ciphertext = wrapped[:WRAP_NONCE_LENGTH], wrapped[WRAP_NONCE_LENGTH:]
        return AESGCM(self.wrapping_key).decrypt(nonce, ciphertext, WRAP_ASSOCIATED_DATA)

    def check_step(self, chain_id: str, height: int, round_: int, step: int) -> bool:
        current = (height, round_, step)
        previous = self.last_step.get(chain_id)
        if previous is not None and current < previous:
            return False
        self.last_step[chain_id] = current
        return True


def _hex(value: bytes) -> str:
    return value.hex().upper()


def sign_bytes(chain_id: str, kind: str, body: dict[str, Any]) -> bytes:
    return json.dumps({"chain_id": chain_id, kind: body}, separators=(",", ":"), sort_keys=True).encode("utf-8")


def _raw_public_key(key: Ed25519PrivateKey) -> bytes:
    return key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


def _raw_seed(key: Ed25519PrivateKey) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )


def _signed(state: ModuleState, message: bytes) -> bytes:
    assert state.signing_key is not None
    return ok(encode_all(ByteString(state.signing_key.sign(message))))


def handle_job(job: int, payload: bytes, *, state: ModuleState) -> bytes:
    if job == Job.GENERATE_KEY:
        key = Ed25519PrivateKey.generate()
        return ok(encode_all(ByteString(_raw_public_key(key)), ByteString(state.wrap(_raw_seed(key)))))

    if job == Job.LOAD_KEY:
        (wrapped,) = decode_all(payload, ByteString)
        try:
            seed = state.unwrap(wrapped)
        except (InvalidTag, ValueError):
            return error("failed to unwrap private key")
        state.signing_key = Ed25519PrivateKey.from_private_bytes(seed)
        return ok(b"")

    if job not in (Job.SIGN_VOTE, Job.SIGN_PROPOSAL, Job.SIGN_HEARTBEAT):
        return error(f"unknown job: {job}")

    if state.signing_key is None:
        return error("keys not loaded")

    if job == Job.SIGN_VOTE:
        (chain_id, block_hash, parts_hash, parts_total, height, round_, timestamp, vote_type) = decode_all(
            payload, Text, ByteString, ByteString, Int32, Int64, Int32, Text, Int32
        )
        if vote_type == VOTE_TYPE_PREVOTE:
            step = STEP_PREVOTE
        elif vote_type == VOTE_TYPE_PRECOMMIT:
            step = STEP_PRECOMMIT
        else:
            return error(f"unknown vote type: {vote_type}")
        if not state.check_step(chain_id, height, round_, step):
            return processing_error("height/round/step regression", ERROR_CODE_REGRESSION)
        body = {
            "block_id": {"hash": _hex(block_hash), "parts": {"hash": _hex(parts_hash), "total": parts_total}},
            "height": height,
            "round": round_,
            "timestamp": timestamp,
            "type": vote_type,
        }
        return _signed(state, sign_bytes(chain_id, "vote", body))

    if job == Job.SIGN_PROPOSAL:
        (
            chain_id,
            parts_hash,
            parts_total,
            height,
            pol_block_hash,
            pol_parts_hash,
            pol_parts_total,
            pol_round,
            round_,
            timestamp,
        ) = decode_all(payload, Text, ByteString, Int32, Int64, ByteString, ByteString, Int32, Int32, Int32, Text)
        if not state.check_step(chain_id, height, round_, STEP_PROPOSE):
            return processing_error("height/round/step regression", ERROR_CODE_REGRESSION)
        body = {
            "block_parts_header": {"hash": _hex(parts_hash), "total": parts_total},
            "height": height,
            "pol_block_id": {"hash": _hex(pol_block_hash), "parts": {"hash": _hex(pol_parts_hash), "total": pol_parts_total}},
            "pol_round": pol_round,
            "round": round_,
            "timestamp": timestamp,
        }
        return _signed(state, sign_bytes(chain_id, "proposal", body))

    (chain_id, height, round_, sequence, validator_address, validator_index) = decode_all(
        payload, Text, Int64, Int32, Int32, ByteString, Int32
    )
    body = {
        "height": height,
        "round": round_,
        "sequence": sequence,
        "validator_address": _hex(validator_address),
        "validator_index": validator_index,
    }
    return _signed(state, sign_bytes(chain_id, "heartbeat", body))


def load_wrapping_key() -> Optional[bytes]:
    raw = os.environ.get("HSM_MODULE_WRAPPING_KEY", "").strip()
    if not raw:
        return None
    key = bytes.fromhex(raw[2:] if raw.startswith("0x") else raw)
    if len(key) != 32:
        raise RuntimeError("HSM_MODULE_WRAPPING_KEY must be 32 bytes of hex")
    return key


def bind_listener(endpoint: str) -> socket.socket:
    parsed = urlparse(endpoint)
    if parsed.hostname is None or parsed.port is None:
        raise RuntimeError("listen endpoint must include host and port")
    if parsed.scheme != "tcp":
        raise RuntimeError("listen scheme must be tcp://")
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    sock.bind((parsed.hostname, parsed.port))
    sock.listen(128)
    return sock


def serve_one(conn: socket.socket, state: ModuleState) -> None:
    with conn:
        try:
            job, payload = read_job(conn)
            response = handle_job(job, payload, state=state)
        except Exception as exc:
            response = error(str(exc))
        conn.sendall(response)


def main() -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("--listen", default="tcp://127.0.0.1:49999", help="tcp://host:port")
    args = ap.parse_args()

    wrapping_key = load_wrapping_key()
    if wrapping_key is None:
        wrapping_key = secrets.token_bytes(32)
        print("[hsm-module] HSM_MODULE_WRAPPING_KEY not set; wrapped keys will not survive a restart")
    state = ModuleState(wrapping_key=wrapping_key)
    server = bind_listener(args.listen)
    print(f"[hsm-module] listening on {args.listen}")

    while True:
        conn, _ = server.accept()
        serve_one(conn, state)


if __name__ == "__main__":
    raise SystemExit(main())
