"""Controller listener: accepts box connections and answers their identity handshake."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass
from enum import Enum
from typing import Final

from boxharness.domain.errors import ListenerError, MalformedHandshake
from boxharness.domain.ids import BoxId
from boxharness.observability.logging import correlation_scope
from boxharness.protocol.handshake import read_handshake

logger = logging.getLogger(__name__)

FIRST_NAMES: Final[tuple[str, ...]] = (
    "Leonard",
    "Lionel",
    "Elton",
    "Nina",
    "Art",
    "Tracy",
    "Freddy",
)
LAST_NAMES: Final[tuple[str, ...]] = (
    "Cohen",
    "Richie",
    "John",
    "Simone",
    "Garfunkel",
    "Chapman",
    "Mercury",
)

PayloadFactory = Callable[[BoxId], bytes]
AcceptCallback = Callable[[BoxId], None]


def random_name_payload(box_id: BoxId, *, rng: random.Random | None = None) -> bytes:
    """Pick a "First Last" demonstration name; ``box_id`` is ignored."""
    chooser = rng or random
    full_name = f"{chooser.choice(FIRST_NAMES)} {chooser.choice(LAST_NAMES)}"
    return full_name.encode("utf-8")


class ListenerState(str, Enum):
    UNBOUND = "unbound"
    LISTENING = "listening"
    STOPPED = "stopped"


@dataclass(slots=True)
class ListenerStats:
    """Per-listener connection counters."""

    accepted: int = 0
    malformed: int = 0
    failed: int = 0


class ControllerListener:
    """TCP accept loop serving one handler task per connection.

    Each handler reads exactly one handshake frame, logs the identity, writes a
    demonstration payload, and closes. Failures stay inside the handler that hit
    them; the accept loop keeps running.
    """

    def __init__(
        self,
        *,
        host: str = "",
        port: int = 0,
        payload_factory: PayloadFactory | None = None,
        on_accept: AcceptCallback | None = None,
    ) -> None:
        self._host = host
        self._port = port
        self._payload_factory = payload_factory or random_name_payload
        self._on_accept = on_accept
        self._server: asyncio.Server | None = None
        self._handlers: set[asyncio.Task[None]] = set()
        self._state = ListenerState.UNBOUND
        self.stats = ListenerStats()

    @property
    def state(self) -> ListenerState:
        return self._state

    @property
    def port(self) -> int:
        """Bound port (the requested one until :meth:`start` resolves port 0)."""
        if self._server is None or not self._server.sockets:
            return self._port
        return int(self._server.sockets[0].getsockname()[1])

    async def start(self) -> None:
        """Bind and start accepting; raises :class:`ListenerError` when binding fails."""
        if self._state is not ListenerState.UNBOUND:
            raise RuntimeError(f"listener cannot start from state {self._state.value}")
        try:
            self._server = await asyncio.start_server(
                self._handle_connection,
                host=self._host or None,
                port=self._port,
            )
        except OSError as exc:
            raise ListenerError(f"unable to bind controller port {self._port}: {exc}") from exc
        self._state = ListenerState.LISTENING
        logger.info("controller listening", extra={"port": self.port})

    async def stop(self) -> None:
        """Stop accepting, cancel in-flight handlers, and release the socket."""
        if self._state is ListenerState.STOPPED:
            return
        self._state = ListenerState.STOPPED
        if self._server is not None:
            self._server.close()
        handlers = list(self._handlers)
        for task in handlers:
            task.cancel()
        if handlers:
            await asyncio.gather(*handlers, return_exceptions=True)
        if self._server is not None:
            await self._server.wait_closed()
        logger.info(
            "controller listener stopped",
            extra={
                "accepted": self.stats.accepted,
                "malformed": self.stats.malformed,
                "failed": self.stats.failed,
            },
        )

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        task = asyncio.current_task()
        if task is not None:
            self._handlers.add(task)
        peer = _format_peer(writer.get_extra_info("peername"))
        with correlation_scope(peer=peer):
            try:
                await self._serve_box(reader, writer)
            except MalformedHandshake as exc:
                self.stats.malformed += 1
                logger.warning(
                    "dropping connection from %s with malformed handshake: %s", peer, exc
                )
            except (ConnectionError, OSError) as exc:
                self.stats.failed += 1
                logger.error("encountered error while serving %s: %s", peer, exc)
            finally:
                writer.close()
                with suppress(ConnectionError, OSError, asyncio.CancelledError):
                    await writer.wait_closed()
                if task is not None:
                    self._handlers.discard(task)

    async def _serve_box(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        box_id = await read_handshake(reader)
        self.stats.accepted += 1
        with correlation_scope(box_id=str(box_id)):
            logger.info("accepted client with id %s", box_id)
            if self._on_accept is not None:
                self._on_accept(box_id)
            writer.write(self._payload_factory(box_id))
            await writer.drain()


def _format_peer(peername: object) -> str:
    if isinstance(peername, tuple) and len(peername) >= 2:
        return f"{peername[0]}:{peername[1]}"
    return str(peername)


__all__ = [
    "AcceptCallback",
    "ControllerListener",
    "FIRST_NAMES",
    "LAST_NAMES",
    "ListenerState",
    "ListenerStats",
    "PayloadFactory",
    "random_name_payload",
]
