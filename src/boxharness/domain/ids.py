"""Box identity generation, parsing, and word-level conversion."""

from __future__ import annotations

import secrets
import uuid
from collections.abc import Callable
from typing import Final

from boxharness.constants import MARKER_FILE_SUFFIX
from boxharness.domain.errors import UsageError

BoxId = uuid.UUID

_WORD_BITS: Final[int] = 64
_WORD_MASK: Final[int] = (1 << _WORD_BITS) - 1

_RandBytes = Callable[[int], bytes]

__all__ = [
    "BoxId",
    "box_id_from_words",
    "box_id_to_words",
    "generate_box_id",
    "marker_filename",
    "parse_box_id",
]


def generate_box_id(*, randbytes: _RandBytes | None = None) -> BoxId:
    """Generate a random (version 4) box identity."""
    source = randbytes or secrets.token_bytes
    raw = source(16)
    if len(raw) != 16:
        raise ValueError(f"randbytes must return 16 bytes, got {len(raw)}")
    return uuid.UUID(bytes=raw, version=4)


def parse_box_id(text: str) -> BoxId:
    """Parse the canonical textual form of a box identity."""
    if not isinstance(text, str):
        raise UsageError(f"box id must be a string, got {type(text).__name__}")
    candidate = text.strip()
    try:
        return uuid.UUID(candidate)
    except ValueError as exc:
        raise UsageError(f"invalid box id {text!r}: expected a UUID") from exc


def box_id_from_words(high: int, low: int) -> BoxId:
    """Build an identity from its most and least significant 64-bit halves."""
    for name, word in (("high", high), ("low", low)):
        if not 0 <= word <= _WORD_MASK:
            raise ValueError(f"{name} word out of range: expected 0..2**64-1, got {word}")
    return uuid.UUID(int=(high << _WORD_BITS) | low)


def box_id_to_words(box_id: BoxId) -> tuple[int, int]:
    """Split an identity into its (high, low) 64-bit halves."""
    value = box_id.int
    return value >> _WORD_BITS, value & _WORD_MASK


def marker_filename(box_id: BoxId) -> str:
    return f"{box_id}{MARKER_FILE_SUFFIX}"
