"""
Keyset pagination cursors.

A cursor carries the sort key of the last row a client has seen,
``(ordinal, id)``. The wire form is URL-safe base64 of a compact JSON
object; callers must treat it as opaque. Only this module knows the format.
"""
from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass

# works.ordinal is a 32-bit INTEGER column
MAX_ORDINAL = 2**31 - 1


class InvalidCursorError(ValueError):
    """Raised when a cursor token cannot be decoded."""


@dataclass(frozen=True)
class Cursor:
    last_ordinal: int
    last_id: str


def encode_cursor(cursor: Cursor) -> str:
    payload = json.dumps(
        {"o": cursor.last_ordinal, "i": cursor.last_id}, separators=(",", ":")
    )
    return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii").rstrip("=")


def decode_cursor(token: str) -> Cursor:
    if not token:
        raise InvalidCursorError("Empty cursor")

    padded = token + "=" * (-len(token) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
        data = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError) as e:
        raise InvalidCursorError("Malformed cursor") from e

    if not isinstance(data, dict):
        raise InvalidCursorError("Malformed cursor")

    ordinal = data.get("o")
    last_id = data.get("i")
    # bool is an int subclass; reject it explicitly
    if not isinstance(ordinal, int) or isinstance(ordinal, bool):
        raise InvalidCursorError("Malformed cursor")
    if not 1 <= ordinal <= MAX_ORDINAL:
        raise InvalidCursorError("Malformed cursor")
    if not isinstance(last_id, str) or not last_id:
        raise InvalidCursorError("Malformed cursor")

    return Cursor(last_ordinal=ordinal, last_id=last_id)
