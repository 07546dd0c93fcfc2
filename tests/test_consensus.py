from datetime import datetime, timedelta, timezone

import pytest

from hsm_validator.consensus import Signature, Vote, canonical_time, make_signature
from hsm_validator.errors import BadSignatureSize


def test_canonical_time_uses_utc_milliseconds():
    value = datetime(2018, 1, 2, 5, 4, 5, 123999, tzinfo=timezone(timedelta(hours=2)))
    assert canonical_time(value) == "2018-01-02T03:04:05.123Z"


def test_canonical_time_treats_naive_as_utc():
    assert canonical_time(datetime(2018, 1, 2, 3, 4, 5)) == "2018-01-02T03:04:05.000Z"


def test_make_signature():
    signature = make_signature(bytearray(b"\x09" * 64))
    assert signature == Signature(b"\x09" * 64)
    assert signature.hex() == "09" * 64


@pytest.mark.parametrize("size", [0, 32, 63, 65])
def test_signature_must_be_64_bytes(size):
    with pytest.raises(BadSignatureSize):
        make_signature(b"\x00" * size)


def test_vote_type_is_a_byte():
    with pytest.raises(ValueError):
        Vote(type=256)
