from __future__ import annotations

import pytest

from hours_ledger.core.exceptions import ChecksumMismatch, DecodeError, InvalidFormat
from hours_ledger.identity import codec


def test_encode_embeds_both_ids_and_checksum():
    token = codec.encode("S-100", "E-7")
    student_id, event_id, check = token.split("|")

    assert (student_id, event_id) == ("S-100", "E-7")
    assert 1 <= len(check) <= 6
    assert check == codec.checksum("S-100", "E-7")


def test_checksum_is_rolling_hash_in_base36():
    # h = 97 * 31 + 98 = 3105 = 2*36^2 + 14*36 + 9
    assert codec.checksum("a", "b") == "2e9"


def test_decode_returns_ids():
    assert codec.decode(codec.encode("S1", "E1")) == ("S1", "E1")


def test_decode_ignores_surrounding_whitespace():
    token = codec.encode("S1", "E1")
    assert codec.decode(f"  {token}\n") == ("S1", "E1")


@pytest.mark.parametrize(
    "token",
    [
        "",
        "S1",
        "S1|E1",
        "S1|E1|abc|extra",
        "|E1|abc",
        "S1||abc",
        "S1|E1|",
        "S1|E1|ABC",
        "S1|E1|abc-1",
        "S1|E1|abcdefg",
    ],
)
def test_decode_rejects_malformed_tokens(token):
    with pytest.raises(InvalidFormat):
        codec.decode(token)


def test_decode_rejects_non_string():
    with pytest.raises(InvalidFormat):
        codec.decode(None)


def test_decode_detects_corrupted_checksum():
    student_id, event_id, check = codec.encode("S1", "E1").split("|")
    flipped = ("1" if check[0] == "0" else "0") + check[1:]

    with pytest.raises(ChecksumMismatch):
        codec.decode(f"{student_id}|{event_id}|{flipped}")


def test_decode_detects_foreign_ids_with_valid_looking_checksum():
    check = codec.checksum("S1", "E1")
    with pytest.raises(DecodeError):
        codec.decode(f"S1|E2|{check}")


@pytest.mark.parametrize("student_id,event_id", [("", "E1"), ("S1", "  "), ("S|1", "E1"), ("S1", "E|1")])
def test_encode_rejects_unusable_ids(student_id, event_id):
    with pytest.raises(InvalidFormat):
        codec.encode(student_id, event_id)
