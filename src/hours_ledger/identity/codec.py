"""QR identity token codec.

A token binds a student to an event: ``studentId|eventId|checksum``. The
checksum lets the scanner reject foreign or partially read codes before any
database lookup.
"""

from __future__ import annotations

import re

from ..core.constants import CHECKSUM_LENGTH, TOKEN_SEPARATOR
from ..core.exceptions import ChecksumMismatch, InvalidFormat

_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"
_CHECKSUM_RE = re.compile(rf"^[0-9a-z]{{1,{CHECKSUM_LENGTH}}}$")


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36_DIGITS[rem])
    return "".join(reversed(digits))


def checksum(student_id: str, event_id: str) -> str:
    """Rolling 32-bit string hash of both ids, base36, first 6 chars."""
    h = 0
    for ch in f"{student_id}{event_id}":
        h = _to_int32(h * 31 + ord(ch))
    return _base36(abs(h))[:CHECKSUM_LENGTH]


def _check_id(value: str, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidFormat(f"{field_name} must be a non-empty string")
    if TOKEN_SEPARATOR in value:
        raise InvalidFormat(f"{field_name} may not contain {TOKEN_SEPARATOR!r}")
    return value


def encode(student_id: str, event_id: str) -> str:
    student_id = _check_id(student_id, "student_id")
    event_id = _check_id(event_id, "event_id")
    return TOKEN_SEPARATOR.join((student_id, event_id, checksum(student_id, event_id)))


def decode(token: str) -> tuple[str, str]:
    """Return ``(student_id, event_id)`` or raise a DecodeError subclass."""
    if not isinstance(token, str):
        raise InvalidFormat("Token must be a string")

    parts = token.strip().split(TOKEN_SEPARATOR)
    if len(parts) != 3 or not all(p.strip() for p in parts):
        raise InvalidFormat("Invalid QR code format")

    student_id, event_id, check = parts
    if not _CHECKSUM_RE.match(check):
        raise InvalidFormat("Invalid QR code checksum format")
    if checksum(student_id, event_id) != check:
        raise ChecksumMismatch("QR code checksum does not match")
    return student_id, event_id
