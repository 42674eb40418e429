"""Unit tests for the controller runtime wiring listener and supervisor."""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from itertools import count
from typing import Any

import pytest

from boxharness.config.schema import default_config, merge_config
from boxharness.control_plane.controller import HarnessController
from boxharness.control_plane.listener import ControllerListener
from boxharness.control_plane.supervisor import LaunchPolicy
from boxharness.domain.errors import ListenerError
from boxharness.protocol.handshake import encode_handshake


@dataclass
class _RecordingSink:
    frames: list[tuple[bytes, bytes, bytes]] = field(default_factory=list)

    def write_framed(self, prefix: bytes, payload: bytes, suffix: bytes) -> None:
        self.frames.append((prefix, payload, suffix))


@dataclass
class _FakeProcess:
    pid: int
    stdout: asyncio.StreamReader | None
    stderr: asyncio.StreamReader | None


class _DialingSpawner:
    """Pretends to spawn a box: dials the controller and echoes the reply to stdout."""

    def __init__(self) -> None:
        self.commands: list[tuple[str, ...]] = []
        self.tasks: list[asyncio.Task[None]] = []

    async def __call__(self, command: Sequence[str]) -> _FakeProcess:
        self.commands.append(tuple(command))
        box_id = uuid.UUID(command[-2])
        port = int(command[-1].removeprefix(":"))
        stdout = asyncio.StreamReader()
        stderr = asyncio.StreamReader()
        stderr.feed_eof()
        self.tasks.append(asyncio.create_task(self._dial(box_id, port, stdout)))
        return _FakeProcess(pid=len(self.commands), stdout=stdout, stderr=stderr)

    async def _dial(self, box_id: uuid.UUID, port: int, stdout: asyncio.StreamReader) -> None:
        reader, writer = await asyncio.open_connection("127.0.0.1", port)
        try:
            writer.write(encode_handshake(box_id))
            await writer.drain()
            stdout.feed_data(await reader.read())
        finally:
            stdout.feed_eof()
            writer.close()
            await writer.wait_closed()


def _ids() -> Any:
    counter = count(1)
    return lambda: uuid.UUID(int=next(counter))


def _controller(spawner: Any, **overrides: Any) -> HarnessController:
    kwargs: dict[str, Any] = {
        "host": "127.0.0.1",
        "port": 0,
        "sink": _RecordingSink(),
        "run_seconds": 0.5,
        "drain_seconds": 2.0,
        "spawner": spawner,
        "id_factory": _ids(),
        "payload_factory": lambda box_id: b"Nina Simone",
    }
    kwargs.update(overrides)
    return HarnessController("box", **kwargs)


async def test_controller_accepts_every_launched_box_and_relays_output() -> None:
    spawner = _DialingSpawner()
    sink = _RecordingSink()
    controller = _controller(spawner, sink=sink)

    summary = await controller.run(2)

    assert summary.port > 0
    assert [launch.box_id for launch in summary.launch_report.launched] == [
        uuid.UUID(int=1),
        uuid.UUID(int=2),
    ]
    assert sorted(summary.accepted_ids) == [uuid.UUID(int=1), uuid.UUID(int=2)]
    assert summary.listener_stats.accepted == 2
    assert summary.cancelled is False
    assert summary.drained is True
    assert all(command[-1] == f":{summary.port}" for command in spawner.commands)
    assert sorted(sink.frames) == [
        (b"00000000-0000-0000-0000-000000000001: ", b"Nina Simone", b"\r\n"),
        (b"00000000-0000-0000-0000-000000000002: ", b"Nina Simone", b"\r\n"),
    ]


async def test_cancellation_ends_an_unbounded_run() -> None:
    spawner = _DialingSpawner()
    controller = _controller(spawner, run_seconds=0)
    asyncio.get_running_loop().call_later(0.2, controller.cancel_token.cancel, "test")

    summary = await asyncio.wait_for(controller.run(1), 5.0)

    assert summary.cancelled is True
    assert summary.accepted_ids == (uuid.UUID(int=1),)


async def test_launch_failures_are_reported_not_raised() -> None:
    async def failing_spawner(command: Sequence[str]) -> _FakeProcess:
        raise FileNotFoundError(command[0])

    controller = _controller(
        failing_spawner, run_seconds=0.05, launch_policy=LaunchPolicy.ABORT_BATCH
    )

    summary = await controller.run(3)

    assert summary.launch_report.launched == ()
    assert len(summary.launch_report.failures) == 1
    assert summary.launch_report.skipped == 2


async def test_bind_failure_propagates_listener_error() -> None:
    occupied = ControllerListener(host="127.0.0.1")
    await occupied.start()
    try:
        controller = _controller(_DialingSpawner(), port=occupied.port)
        with pytest.raises(ListenerError):
            await controller.run(1)
        assert controller.supervisor is None
    finally:
        await occupied.stop()


def test_from_config_reads_controller_and_supervisor_sections() -> None:
    config = merge_config(
        default_config(),
        {
            "controller": {"port": 0, "run_seconds": 1.5},
            "supervisor": {"worker_memory_limit": "8M", "launch_policy": "continue"},
        },
    )

    controller = HarnessController.from_config(config, "box", sink=_RecordingSink())

    assert controller.listener.port == 0
    assert controller.cancel_token.is_cancelled is False


def test_negative_durations_rejected() -> None:
    with pytest.raises(ValueError, match="run_seconds"):
        HarnessController("box", run_seconds=-1, sink=_RecordingSink())
    with pytest.raises(ValueError, match="drain_seconds"):
        HarnessController("box", drain_seconds=-1, sink=_RecordingSink())
