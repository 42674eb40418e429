"""Wire protocol spoken between boxes and the controller."""

from boxharness.protocol.handshake import (
    FRAME_SIZE,
    decode_handshake,
    encode_handshake,
    read_handshake,
    write_handshake,
)

__all__ = [
    "FRAME_SIZE",
    "decode_handshake",
    "encode_handshake",
    "read_handshake",
    "write_handshake",
]
