"""Controller runtime: one listener plus one supervisor sharing a port and a sink."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from boxharness.constants import (
    DEFAULT_BOX_COUNT,
    DEFAULT_CONTROLLER_PORT,
    DEFAULT_DRAIN_SECONDS,
    DEFAULT_REDIRECT_CHUNK_SIZE,
    DEFAULT_RUN_SECONDS,
    DEFAULT_WORKER_MEMORY_LIMIT,
)
from boxharness.control_plane.listener import ControllerListener, ListenerStats, PayloadFactory
from boxharness.control_plane.sink import FramedSink, StreamSink
from boxharness.control_plane.supervisor import (
    BoxSupervisor,
    IdFactory,
    LaunchPolicy,
    LaunchReport,
    Spawner,
    spawn_box_process,
)
from boxharness.domain.ids import BoxId, generate_box_id
from boxharness.utils.concurrency import CancellationToken

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ControllerSummary:
    """What one :meth:`HarnessController.run` observed."""

    port: int
    launch_report: LaunchReport
    accepted_ids: tuple[BoxId, ...]
    listener_stats: ListenerStats
    cancelled: bool
    drained: bool


class HarnessController:
    """Listen for boxes, launch a batch of them, linger, then shut the listener down.

    Launched workers are never terminated; after the listener stops the
    controller only waits (bounded by ``drain_seconds``) for their output
    redirections to reach end-of-stream.
    """

    def __init__(
        self,
        box_binary: str | Path,
        *,
        host: str = "",
        port: int = DEFAULT_CONTROLLER_PORT,
        sink: FramedSink | None = None,
        memory_limit: str = DEFAULT_WORKER_MEMORY_LIMIT,
        redirect_chunk_size: int = DEFAULT_REDIRECT_CHUNK_SIZE,
        launch_policy: LaunchPolicy | str = LaunchPolicy.ABORT_BATCH,
        run_seconds: float = DEFAULT_RUN_SECONDS,
        drain_seconds: float = DEFAULT_DRAIN_SECONDS,
        cancel_token: CancellationToken | None = None,
        spawner: Spawner | None = None,
        id_factory: IdFactory | None = None,
        payload_factory: PayloadFactory | None = None,
    ) -> None:
        if run_seconds < 0:
            raise ValueError("run_seconds must be >= 0")
        if drain_seconds < 0:
            raise ValueError("drain_seconds must be >= 0")
        self._box_binary = box_binary
        self._sink = sink if sink is not None else StreamSink()
        self._memory_limit = memory_limit
        self._redirect_chunk_size = redirect_chunk_size
        self._launch_policy = LaunchPolicy(launch_policy)
        self._run_seconds = run_seconds
        self._drain_seconds = drain_seconds
        self._token = cancel_token or CancellationToken()
        self._spawner = spawner or spawn_box_process
        self._id_factory = id_factory or generate_box_id
        self._accepted: list[BoxId] = []
        self.listener = ControllerListener(
            host=host,
            port=port,
            payload_factory=payload_factory,
            on_accept=self._accepted.append,
        )
        self.supervisor: BoxSupervisor | None = None

    @classmethod
    def from_config(
        cls,
        config: Mapping[str, Any],
        box_binary: str | Path,
        **overrides: Any,
    ) -> HarnessController:
        """Build a controller from a validated config mapping."""
        controller_section = config["controller"]
        supervisor_section = config["supervisor"]
        kwargs: dict[str, Any] = {
            "host": controller_section["host"],
            "port": controller_section["port"],
            "run_seconds": controller_section["run_seconds"],
            "drain_seconds": controller_section["drain_seconds"],
            "memory_limit": supervisor_section["worker_memory_limit"],
            "redirect_chunk_size": supervisor_section["redirect_chunk_size"],
            "launch_policy": supervisor_section["launch_policy"],
        }
        kwargs.update(overrides)
        return cls(box_binary, **kwargs)

    @property
    def cancel_token(self) -> CancellationToken:
        return self._token

    async def run(self, box_count: int = DEFAULT_BOX_COUNT) -> ControllerSummary:
        """Serve until ``run_seconds`` elapse (0 = until cancelled), then shut down.

        Raises :class:`ListenerError` when the port cannot be bound; launch
        failures are reported in the summary, never raised.
        """
        await self.listener.start()
        bound_port = self.listener.port
        cancelled = False
        drained = True
        try:
            self.supervisor = BoxSupervisor(
                box_binary=self._box_binary,
                controller_port=bound_port,
                sink=self._sink,
                memory_limit=self._memory_limit,
                chunk_size=self._redirect_chunk_size,
                launch_policy=self._launch_policy,
                spawner=self._spawner,
                id_factory=self._id_factory,
            )
            report = await self.supervisor.start_some_boxes(box_count)
            logger.info(
                "box batch finished",
                extra={
                    "launched": len(report.launched),
                    "failed": len(report.failures),
                    "skipped": report.skipped,
                },
            )
            wait_seconds = self._run_seconds if self._run_seconds > 0 else None
            cancelled = await self._token.wait_for(wait_seconds)
            if cancelled:
                logger.info("controller cancelled: %s", self._token.reason or "requested")
        finally:
            await self.listener.stop()

        if self.supervisor is not None:
            drained = await self.supervisor.wait_for_redirects(self._drain_seconds)

        return ControllerSummary(
            port=bound_port,
            launch_report=report,
            accepted_ids=tuple(self._accepted),
            listener_stats=self.listener.stats,
            cancelled=cancelled,
            drained=drained,
        )


__all__ = ["ControllerSummary", "HarnessController"]
