from datetime import datetime, timezone

import pytest

from hsm_validator import hsm_client
from hsm_validator.codec import ByteString, Int32, Int64, Text, decode_all, encode_all, encode_bytes, encode_int32, encode_text
from hsm_validator.consensus import (
    VOTE_TYPE_PRECOMMIT,
    BlockID,
    Heartbeat,
    PartSetHeader,
    Proposal,
    Vote,
    canonical_time,
)
from hsm_validator.dispatch import Job, ModuleEndpoint
from hsm_validator.errors import BadKeySize, HsmError, ProtocolError
from hsm_validator.hsm_client import ThalesHsm

TIMESTAMP = datetime(2018, 1, 2, 3, 4, 5, 678901, tzinfo=timezone.utc)


def ok(result: bytes) -> bytes:
    body = encode_int32(0) + encode_bytes(result)
    return encode_int32(len(body)) + body


class FakeTransport:
    def __init__(self, *responses: bytes):
        self.responses = list(responses)
        self.calls = []

    def __call__(self, job, payload, endpoint, *, timeout_seconds=None):
        self.calls.append((job, payload, endpoint, timeout_seconds))
        return self.responses.pop(0)


@pytest.fixture
def transport(monkeypatch):
    fake = FakeTransport()
    monkeypatch.setattr(hsm_client, "send_job", fake)
    return fake


def test_load_keys_payload(transport):
    transport.responses.append(ok(b""))
    hsm = ThalesHsm(host="10.0.0.5", port=1234, timeout_seconds=3.0)

    hsm.load_keys(b"\xaa" * 64)

    job, payload, endpoint, timeout = transport.calls[0]
    assert job == Job.LOAD_KEY
    assert payload == encode_all(ByteString(b"\xaa" * 64))
    assert endpoint == ModuleEndpoint("10.0.0.5", 1234)
    assert timeout == 3.0


def test_load_keys_module_error(transport):
    body = encode_int32(1) + encode_text("bad key blob")
    transport.responses.append(encode_int32(len(body)) + body)

    with pytest.raises(HsmError, match="bad key blob"):
        ThalesHsm().load_keys(b"junk")


def test_generate_key(transport):
    public_key = bytes(range(32))
    wrapped = bytes(range(64))
    transport.responses.append(ok(encode_all(ByteString(public_key), ByteString(wrapped))))

    pair = ThalesHsm().generate_key()

    job, payload, _endpoint, _timeout = transport.calls[0]
    assert job == Job.GENERATE_KEY
    assert payload == b""
    assert pair.public_key == public_key
    assert pair.wrapped_private_key == wrapped


def test_generate_key_bad_public_key_size(transport):
    transport.responses.append(ok(encode_all(ByteString(b"\x01" * 31), ByteString(b"\x02" * 64))))

    with pytest.raises(BadKeySize) as exc:
        ThalesHsm().generate_key()
    assert exc.value.kind == "public key"
    assert (exc.value.expected, exc.value.actual) == (32, 31)


def test_generate_key_bad_private_key_size(transport):
    transport.responses.append(ok(encode_all(ByteString(b"\x01" * 32), ByteString(b"\x02" * 65))))

    with pytest.raises(BadKeySize, match="got 65, expected 64"):
        ThalesHsm().generate_key()


def test_generate_key_truncated_result(transport):
    transport.responses.append(ok(encode_all(ByteString(b"\x01" * 32))))

    with pytest.raises(ProtocolError):
        ThalesHsm().generate_key()


def test_sign_vote_payload_order(transport):
    signature = b"\x07" * 64
    transport.responses.append(ok(encode_all(ByteString(signature))))
    vote = Vote(
        height=10,
        round=2,
        timestamp=TIMESTAMP,
        type=VOTE_TYPE_PRECOMMIT,
        block_id=BlockID(hash=b"\x11" * 20, parts_header=PartSetHeader(total=3, hash=b"\x22" * 20)),
    )

    result = ThalesHsm().sign_vote("chain-a", vote)

    assert result == signature
    job, payload, _endpoint, _timeout = transport.calls[0]
    assert job == Job.SIGN_VOTE
    assert decode_all(payload, Text, ByteString, ByteString, Int32, Int64, Int32, Text, Int32) == (
        "chain-a",
        b"\x11" * 20,
        b"\x22" * 20,
        3,
        10,
        2,
        "2018-01-02T03:04:05.678Z",
        VOTE_TYPE_PRECOMMIT,
    )


def test_sign_proposal_without_pol(transport):
    transport.responses.append(ok(encode_all(ByteString(b"\x01" * 64))))
    proposal = Proposal(
        height=5,
        round=1,
        timestamp=TIMESTAMP,
        block_parts_header=PartSetHeader(total=4, hash=b"\x33" * 20),
        pol_round=-1,
        pol_block_id=BlockID(hash=b"\x44" * 20, parts_header=PartSetHeader(total=9, hash=b"\x55" * 20)),
    )

    ThalesHsm().sign_proposal("chain-a", proposal)

    job, payload, _endpoint, _timeout = transport.calls[0]
    assert job == Job.SIGN_PROPOSAL
    decoded = decode_all(payload, Text, ByteString, Int32, Int64, ByteString, ByteString, Int32, Int32, Int32, Text)
    assert decoded == (
        "chain-a",
        b"\x33" * 20,
        4,
        5,
        b"",
        b"",
        0,
        -1,
        1,
        canonical_time(TIMESTAMP),
    )


def test_sign_proposal_with_pol(transport):
    transport.responses.append(ok(encode_all(ByteString(b"\x01" * 64))))
    proposal = Proposal(
        height=5,
        round=3,
        timestamp=TIMESTAMP,
        block_parts_header=PartSetHeader(total=4, hash=b"\x33" * 20),
        pol_round=2,
        pol_block_id=BlockID(hash=b"\x44" * 20, parts_header=PartSetHeader(total=9, hash=b"\x55" * 20)),
    )

    ThalesHsm().sign_proposal("chain-a", proposal)

    _job, payload, _endpoint, _timeout = transport.calls[0]
    decoded = decode_all(payload, Text, ByteString, Int32, Int64, ByteString, ByteString, Int32, Int32, Int32, Text)
    assert decoded[4:9] == (b"\x44" * 20, b"\x55" * 20, 9, 2, 3)


def test_sign_heartbeat_payload_order(transport):
    transport.responses.append(ok(encode_all(ByteString(b"\x01" * 64))))
    heartbeat = Heartbeat(
        validator_address=b"\x66" * 20,
        validator_index=7,
        height=100,
        round=0,
        sequence=12,
    )

    ThalesHsm().sign_heartbeat("chain-a", heartbeat)

    job, payload, _endpoint, _timeout = transport.calls[0]
    assert job == Job.SIGN_HEARTBEAT
    assert decode_all(payload, Text, Int64, Int32, Int32, ByteString, Int32) == (
        "chain-a",
        100,
        0,
        12,
        b"\x66" * 20,
        7,
    )


def test_sign_returns_module_signature_unvalidated(transport):
    transport.responses.append(ok(encode_all(ByteString(b"\x01" * 10))))
    assert ThalesHsm().sign_heartbeat("chain-a", Heartbeat()) == b"\x01" * 10


def test_sign_processing_error(transport):
    body = encode_int32(2) + encode_text("height/round/step regression") + encode_int32(3)
    transport.responses.append(encode_int32(len(body)) + body)

    with pytest.raises(HsmError) as exc:
        ThalesHsm().sign_vote("chain-a", Vote())
    assert exc.value.code == 3
    assert exc.value.job == "SIGN_VOTE"


def test_from_settings():
    settings = type("Settings", (), {"hsm_host": "hsm.local", "hsm_port": 4000, "hsm_timeout_seconds": None})()
    hsm = ThalesHsm.from_settings(settings)
    assert hsm.endpoint == ModuleEndpoint("hsm.local", 4000)
    assert hsm.timeout_seconds is None
