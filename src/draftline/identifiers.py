"""Draft and message identifier helpers.

Identifiers are 16 raw bytes. On the wire they travel as a list of small
integers; locally they are handled in their base64 text form.
"""

from __future__ import annotations

import base64
import binascii
import uuid
from typing import Any, List

IDENTIFIER_LENGTH = 16


class IdentifierError(ValueError):
    """Raised when an identifier cannot be decoded or validated."""


def new_identifier() -> bytes:
    return uuid.uuid4().bytes


def encode(raw: bytes) -> str:
    if not isinstance(raw, (bytes, bytearray)) or len(raw) != IDENTIFIER_LENGTH:
        raise IdentifierError(f"identifier must be {IDENTIFIER_LENGTH} bytes")
    return base64.b64encode(bytes(raw)).decode("ascii")


def decode(text: str) -> bytes:
    if not isinstance(text, str):
        raise IdentifierError("identifier text must be a string")
    try:
        raw = base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise IdentifierError("identifier text must be valid base64") from exc
    if len(raw) != IDENTIFIER_LENGTH:
        raise IdentifierError(f"identifier must decode to {IDENTIFIER_LENGTH} bytes")
    return raw


def from_wire(value: Any) -> str:
    """Validate a wire identifier (list of byte values) and return its text form."""

    if not isinstance(value, list) or len(value) != IDENTIFIER_LENGTH:
        raise IdentifierError(f"identifier must be a list of {IDENTIFIER_LENGTH} integers")
    if any(isinstance(b, bool) or not isinstance(b, int) or not (0 <= b <= 255) for b in value):
        raise IdentifierError("identifier bytes must be integers between 0 and 255")
    return encode(bytes(value))


def to_wire(text: str) -> List[int]:
    return list(decode(text))
