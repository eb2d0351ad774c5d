"""Opaque listing cursors.

A cursor is urlsafe base64 of a row offset. Clients must treat it as an
opaque token so the encoding can change without breaking them.
"""
import base64
import binascii
from typing import Optional

from flagkit.exceptions import ValidationError


def encode_cursor(offset: int) -> str:
    return base64.urlsafe_b64encode(str(offset).encode("ascii")).decode("ascii")


def decode_cursor(cursor: Optional[str]) -> int:
    """Return the offset a cursor points at; no cursor means the first page."""
    if not cursor:
        return 0

    try:
        offset = int(base64.urlsafe_b64decode(cursor.encode("ascii")).decode("ascii"))
    except (binascii.Error, UnicodeError, ValueError):
        raise ValidationError("Invalid cursor")

    if offset < 0:
        raise ValidationError("Invalid cursor")
    return offset
