"""
Identity handshake frame codec.

Frame layout (16 bytes, network byte order)::

    high[8] low[8]

``high`` and ``low`` are the most and least significant 64-bit halves of the
box identity. The box sends exactly one frame when it connects; the
controller replies with a short UTF-8 payload and closes.
"""

from __future__ import annotations

import asyncio
import struct
from typing import Final

from boxharness.constants import HANDSHAKE_FRAME_SIZE, HANDSHAKE_WORD_FORMAT
from boxharness.domain.errors import MalformedHandshake
from boxharness.domain.ids import BoxId, box_id_from_words, box_id_to_words

_FRAME: Final[struct.Struct] = struct.Struct(HANDSHAKE_WORD_FORMAT)

__all__ = [
    "FRAME_SIZE",
    "decode_handshake",
    "encode_handshake",
    "read_handshake",
    "write_handshake",
]

FRAME_SIZE: Final[int] = HANDSHAKE_FRAME_SIZE


def encode_handshake(box_id: BoxId) -> bytes:
    """Encode ``box_id`` as a 16-byte big-endian frame."""
    high, low = box_id_to_words(box_id)
    return _FRAME.pack(high, low)


def decode_handshake(frame: bytes | bytearray | memoryview) -> BoxId:
    """Decode a 16-byte frame; any other length is a malformed handshake."""
    size = len(frame)
    if size != FRAME_SIZE:
        raise MalformedHandshake(
            f"handshake frame must be {FRAME_SIZE} bytes, got {size}", received=size
        )
    high, low = _FRAME.unpack(bytes(frame))
    return box_id_from_words(high, low)


async def read_handshake(reader: asyncio.StreamReader) -> BoxId:
    """Read exactly one frame from ``reader``.

    A peer that closes before sending the full frame produces
    :class:`MalformedHandshake` with the number of bytes actually received.
    """
    try:
        frame = await reader.readexactly(FRAME_SIZE)
    except asyncio.IncompleteReadError as exc:
        received = len(exc.partial)
        raise MalformedHandshake(
            f"peer closed after {received} of {FRAME_SIZE} handshake bytes",
            received=received,
        ) from exc
    return decode_handshake(frame)


async def write_handshake(writer: asyncio.StreamWriter, box_id: BoxId) -> None:
    writer.write(encode_handshake(box_id))
    await writer.drain()
