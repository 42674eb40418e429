"""Unit tests for the controller listener accept loop and handshake handling."""

from __future__ import annotations

import asyncio
import logging
import random
import uuid

import pytest

from boxharness.control_plane.listener import (
    FIRST_NAMES,
    LAST_NAMES,
    ControllerListener,
    ListenerState,
    random_name_payload,
)
from boxharness.domain.errors import ListenerError
from boxharness.observability.logging import get_correlation_context
from boxharness.protocol.handshake import encode_handshake

_HOST = "127.0.0.1"
_TIMEOUT = 5.0


async def _exchange(port: int, frame: bytes) -> bytes:
    reader, writer = await asyncio.open_connection(_HOST, port)
    try:
        writer.write(frame)
        await writer.drain()
        if len(frame) < 16:
            writer.write_eof()
        return await asyncio.wait_for(reader.read(), _TIMEOUT)
    finally:
        writer.close()
        await writer.wait_closed()


class _WarningCapture(logging.Handler):
    def __init__(self) -> None:
        super().__init__(level=logging.WARNING)
        self.events: list[tuple[str, dict[str, str]]] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.events.append((record.getMessage(), get_correlation_context()))


def test_random_name_payload_is_first_and_last_name() -> None:
    payload = random_name_payload(uuid.uuid4(), rng=random.Random(7)).decode("utf-8")
    first, last = payload.split(" ")
    assert first in FIRST_NAMES
    assert last in LAST_NAMES


async def test_listener_decodes_identity_and_replies_then_closes() -> None:
    accepted: list[uuid.UUID] = []
    listener = ControllerListener(host=_HOST, on_accept=accepted.append)
    await listener.start()
    try:
        assert listener.state is ListenerState.LISTENING
        assert listener.port > 0
        box_id = uuid.UUID("00000000-0000-0000-0000-000000000001")

        reply = await _exchange(listener.port, encode_handshake(box_id))

        first, last = reply.decode("utf-8").split(" ")
        assert first in FIRST_NAMES
        assert last in LAST_NAMES
        assert accepted == [box_id]
        assert listener.stats.accepted == 1
    finally:
        await listener.stop()
    assert listener.state is ListenerState.STOPPED


async def test_custom_payload_factory_receives_identity() -> None:
    listener = ControllerListener(host=_HOST, payload_factory=lambda box_id: str(box_id).encode())
    await listener.start()
    try:
        box_id = uuid.uuid4()
        assert await _exchange(listener.port, encode_handshake(box_id)) == str(box_id).encode()
    finally:
        await listener.stop()


async def test_short_handshake_is_dropped_and_listener_keeps_serving() -> None:
    capture = _WarningCapture()
    listener_logger = logging.getLogger("boxharness.control_plane.listener")
    listener_logger.addHandler(capture)
    previous_level = listener_logger.level
    listener_logger.setLevel(logging.WARNING)
    listener = ControllerListener(host=_HOST, payload_factory=lambda _: b"ok")
    await listener.start()
    try:
        assert await _exchange(listener.port, b"\x00" * 7) == b""
        assert listener.stats.malformed == 1
        assert listener.stats.accepted == 0

        ((message, context),) = capture.events
        assert context["peer"].startswith(f"{_HOST}:")
        assert message.startswith(f"dropping connection from {context['peer']} ")
        assert "7 of 16" in message

        assert await _exchange(listener.port, encode_handshake(uuid.uuid4())) == b"ok"
        assert listener.stats.accepted == 1
    finally:
        await listener.stop()
        listener_logger.removeHandler(capture)
        listener_logger.setLevel(previous_level)


async def test_stalled_client_does_not_block_other_clients() -> None:
    listener = ControllerListener(host=_HOST, payload_factory=lambda _: b"ok")
    await listener.start()
    stalled_reader, stalled_writer = await asyncio.open_connection(_HOST, listener.port)
    try:
        stalled_writer.write(b"\x01\x02\x03")
        await stalled_writer.drain()

        reply = await asyncio.wait_for(
            _exchange(listener.port, encode_handshake(uuid.uuid4())), _TIMEOUT
        )
        assert reply == b"ok"
        assert listener.stats.accepted == 1
    finally:
        await listener.stop()
        assert await asyncio.wait_for(stalled_reader.read(), _TIMEOUT) == b""
        stalled_writer.close()
        await stalled_writer.wait_closed()

    assert listener.stats.malformed == 0


async def test_bind_failure_raises_listener_error() -> None:
    first = ControllerListener(host=_HOST)
    await first.start()
    try:
        second = ControllerListener(host=_HOST, port=first.port)
        with pytest.raises(ListenerError, match="unable to bind"):
            await second.start()
        assert second.state is ListenerState.UNBOUND
    finally:
        await first.stop()


async def test_start_twice_and_stop_twice() -> None:
    listener = ControllerListener(host=_HOST)
    await listener.start()
    with pytest.raises(RuntimeError, match="cannot start"):
        await listener.start()
    await listener.stop()
    await listener.stop()
    assert listener.state is ListenerState.STOPPED
