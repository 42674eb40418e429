"""
boxharness: box supervisor.

Purpose
- Launch box worker subprocesses and relay their stdout/stderr into the shared sink.

Behavior
- Every launch gets a fresh identity, passed to the worker on its command line
  together with the worker memory limit and the controller's port-only address.
- Two redirection tasks run per worker (stdout and stderr), concurrently. Each
  wraps every chunk it reads (not every line) with a prefix and a CRLF suffix.
- Batches launch sequentially. Under ``abort_batch`` the first launch failure
  ends the batch; under ``continue`` every launch is attempted.
- Worker processes are never terminated by the supervisor.
"""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

import structlog

from boxharness.constants import (
    DEFAULT_REDIRECT_CHUNK_SIZE,
    DEFAULT_WORKER_MEMORY_LIMIT,
    FRAME_SUFFIX,
    STDERR_PREFIX_TEMPLATE,
    STDOUT_PREFIX_TEMPLATE,
)
from boxharness.control_plane.sink import FramedSink
from boxharness.domain.errors import LaunchError
from boxharness.domain.ids import BoxId, generate_box_id


class LaunchPolicy(str, Enum):
    """What a batch does after one launch fails."""

    ABORT_BATCH = "abort_batch"
    CONTINUE = "continue"


class BoxProcess(Protocol):
    """The slice of ``asyncio.subprocess.Process`` the supervisor relies on."""

    pid: int
    stdout: asyncio.StreamReader | None
    stderr: asyncio.StreamReader | None


Spawner = Callable[[Sequence[str]], Awaitable[BoxProcess]]
IdFactory = Callable[[], BoxId]


async def spawn_box_process(command: Sequence[str]) -> BoxProcess:
    """Start ``command`` with stdin closed and stdout/stderr piped."""
    return await asyncio.create_subprocess_exec(
        *command,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )


@dataclass(frozen=True, slots=True)
class BoxLaunch:
    """A successfully spawned box worker."""

    box_id: BoxId
    pid: int
    command: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class LaunchFailure:
    box_id: BoxId
    error: str


@dataclass(frozen=True, slots=True)
class LaunchReport:
    """Outcome of one :meth:`BoxSupervisor.start_some_boxes` batch."""

    requested: int
    launched: tuple[BoxLaunch, ...]
    failures: tuple[LaunchFailure, ...]
    skipped: int

    @property
    def aborted(self) -> bool:
        return self.skipped > 0


@dataclass(slots=True)
class _Redirection:
    box_id: BoxId
    stream_name: str
    task: asyncio.Task[None]


@dataclass(slots=True)
class BoxSupervisor:
    """Spawns box workers and multiplexes their output into one sink."""

    box_binary: str | Path
    controller_port: int
    sink: FramedSink
    memory_limit: str = DEFAULT_WORKER_MEMORY_LIMIT
    chunk_size: int = DEFAULT_REDIRECT_CHUNK_SIZE
    launch_policy: LaunchPolicy = LaunchPolicy.ABORT_BATCH
    spawner: Spawner = spawn_box_process
    id_factory: IdFactory = generate_box_id
    logger: Any = None
    _redirections: list[_Redirection] = field(init=False, default_factory=list, repr=False)

    def __post_init__(self) -> None:
        if not str(self.box_binary).strip():
            raise ValueError("box_binary must not be empty")
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be > 0")
        self.launch_policy = LaunchPolicy(self.launch_policy)
        if self.logger is None:
            self.logger = structlog.get_logger(__name__)

    @property
    def redirect_tasks(self) -> tuple[asyncio.Task[None], ...]:
        return tuple(item.task for item in self._redirections)

    def build_command(self, box_id: BoxId) -> tuple[str, ...]:
        """Command line for one worker: binary, memory flags, identity, ``:<port>``."""
        binary = str(self.box_binary)
        program: tuple[str, ...] = (binary,)
        if binary.endswith(".py"):
            program = (sys.executable, binary)
        return (
            *program,
            f"--memory-min={self.memory_limit}",
            f"--memory-max={self.memory_limit}",
            str(box_id),
            f":{self.controller_port}",
        )

    async def start_box(self, box_id: BoxId | None = None) -> BoxLaunch:
        """Spawn one worker and schedule its two redirection tasks."""
        resolved_id = box_id if box_id is not None else self.id_factory()
        command = self.build_command(resolved_id)
        self.logger.info("starting box", box_id=str(resolved_id), argv=list(command))
        try:
            process = await self.spawner(command)
        except (OSError, ValueError) as exc:
            raise LaunchError(f"failed to start box {resolved_id}: {exc}") from exc

        self._schedule_redirect(
            resolved_id,
            "stdout",
            process.stdout,
            STDOUT_PREFIX_TEMPLATE.format(box_id=resolved_id).encode("utf-8"),
        )
        self._schedule_redirect(
            resolved_id,
            "stderr",
            process.stderr,
            STDERR_PREFIX_TEMPLATE.format(box_id=resolved_id).encode("utf-8"),
        )
        return BoxLaunch(box_id=resolved_id, pid=int(process.pid), command=command)

    async def start_some_boxes(self, count: int) -> LaunchReport:
        """Launch ``count`` workers one after another under the configured policy."""
        if count < 0:
            raise ValueError("count must be >= 0")

        launched: list[BoxLaunch] = []
        failures: list[LaunchFailure] = []
        skipped = 0
        for index in range(count):
            box_id = self.id_factory()
            try:
                launched.append(await self.start_box(box_id))
            except LaunchError as exc:
                failures.append(LaunchFailure(box_id=box_id, error=str(exc)))
                if self.launch_policy is LaunchPolicy.ABORT_BATCH:
                    skipped = count - index - 1
                    self.logger.error(
                        "failed to start boxes",
                        error=str(exc),
                        launched=len(launched),
                        skipped=skipped,
                    )
                    break
                self.logger.error("failed to start box", box_id=str(box_id), error=str(exc))

        return LaunchReport(
            requested=count,
            launched=tuple(launched),
            failures=tuple(failures),
            skipped=skipped,
        )

    async def wait_for_redirects(self, timeout_seconds: float | None = None) -> bool:
        """Wait for all redirection tasks to reach end-of-stream.

        Returns ``False`` when the timeout expired first; unfinished tasks keep
        running and the workers are left alone.
        """
        tasks = [item.task for item in self._redirections if not item.task.done()]
        if not tasks:
            return True
        _, pending = await asyncio.wait(tasks, timeout=timeout_seconds)
        if pending:
            self.logger.warning("redirections still running", pending=len(pending))
        return not pending

    def _schedule_redirect(
        self,
        box_id: BoxId,
        stream_name: str,
        stream: asyncio.StreamReader | None,
        prefix: bytes,
    ) -> None:
        if stream is None:
            return
        task = asyncio.create_task(
            self._redirect(box_id, stream_name, stream, prefix),
            name=f"redirect-{stream_name}-{box_id}",
        )
        self._redirections.append(_Redirection(box_id=box_id, stream_name=stream_name, task=task))

    async def _redirect(
        self,
        box_id: BoxId,
        stream_name: str,
        stream: asyncio.StreamReader,
        prefix: bytes,
    ) -> None:
        try:
            while True:
                chunk = await stream.read(self.chunk_size)
                if not chunk:
                    return
                self.sink.write_framed(prefix, chunk, FRAME_SUFFIX)
        except (OSError, ValueError) as exc:
            self.logger.error(
                "encountered error while redirecting",
                box_id=str(box_id),
                stream=stream_name,
                error=str(exc),
            )


__all__ = [
    "BoxLaunch",
    "BoxProcess",
    "BoxSupervisor",
    "IdFactory",
    "LaunchFailure",
    "LaunchPolicy",
    "LaunchReport",
    "Spawner",
    "spawn_box_process",
]
