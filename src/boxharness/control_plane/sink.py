"""Shared output sink that keeps each framed write contiguous."""

from __future__ import annotations

import sys
import threading
from typing import BinaryIO, Protocol, runtime_checkable


@runtime_checkable
class FramedSink(Protocol):
    """Destination for relayed box output.

    One ``write_framed`` call must land as a single contiguous unit: no other
    writer's bytes may appear between its prefix and its suffix.
    """

    def write_framed(self, prefix: bytes, payload: bytes, suffix: bytes) -> None: ...


class StreamSink:
    """``FramedSink`` over a binary stream, serialized by one lock.

    Ordering between different writers is first-come on the lock.
    """

    def __init__(self, stream: BinaryIO | None = None) -> None:
        self._stream = stream if stream is not None else sys.stdout.buffer
        self._lock = threading.Lock()
        self._writes = 0

    @property
    def writes(self) -> int:
        return self._writes

    def write_framed(self, prefix: bytes, payload: bytes, suffix: bytes) -> None:
        with self._lock:
            self._stream.write(prefix)
            self._stream.write(payload)
            self._stream.write(suffix)
            self._stream.flush()
            self._writes += 1


__all__ = ["FramedSink", "StreamSink"]
