"""
boxharness: box worker client.

Purpose
- Announce a box identity to its controller and relay whatever the controller
  sends back to local stdout.

Lifecycle
- ``DISCONNECTED -> CONNECTING -> ADVERTISED -> RELAYING -> CLOSED``.
- The identity marker file is written before any connection attempt.
- The connection is released exactly once, on every exit path.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from contextlib import suppress
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Literal

from boxharness.constants import (
    DEFAULT_CONNECT_TIMEOUT_MS,
    DEFAULT_RELAY_CHUNK_SIZE,
    LOOPBACK_HOST,
)
from boxharness.domain.errors import (
    BoxHarnessError,
    ConnectError,
    ConnectTimeout,
    RelayError,
    UsageError,
)
from boxharness.domain.ids import BoxId, marker_filename
from boxharness.observability.logging import correlation_scope
from boxharness.protocol.handshake import write_handshake
from boxharness.utils.concurrency import CancellationToken, run_with_timeout

logger = logging.getLogger(__name__)

StopReason = Literal["eof", "cancelled"]


class BoxState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    ADVERTISED = "advertised"
    RELAYING = "relaying"
    CLOSED = "closed"


@dataclass(frozen=True, slots=True)
class BoxRunResult:
    """Outcome of one :meth:`BoxClient.run`."""

    box_id: BoxId
    bytes_relayed: int
    stop_reason: StopReason

    @property
    def cancelled(self) -> bool:
        return self.stop_reason == "cancelled"


def parse_address(text: str) -> tuple[str, int]:
    """Split ``host:port`` at the last separator; an empty host means loopback."""
    host, separator, port_text = text.rpartition(":")
    if not separator:
        raise UsageError(f"invalid controller address {text!r}: expected host:port")
    try:
        port = int(port_text)
    except ValueError as exc:
        raise UsageError(f"invalid controller port {port_text!r} in {text!r}") from exc
    if not 0 < port <= 65535:
        raise UsageError(f"controller port out of range: {port}")
    host = host.strip().removeprefix("[").removesuffix("]")
    return host or LOOPBACK_HOST, port


def write_marker_file(box_id: BoxId, directory: str | Path = ".") -> Path:
    """Write ``<identity>.box.txt`` holding the identity text; return its path."""
    target = Path(directory) / marker_filename(box_id)
    try:
        target.write_text(str(box_id), encoding="utf-8")
    except OSError as exc:
        raise BoxHarnessError(f"unable to write identity marker {target}: {exc}") from exc
    return target


class BoxClient:
    """One box run: connect, advertise, relay until EOF or cancellation."""

    def __init__(
        self,
        box_id: BoxId,
        host: str,
        port: int,
        *,
        connect_timeout_ms: int = DEFAULT_CONNECT_TIMEOUT_MS,
        chunk_size: int = DEFAULT_RELAY_CHUNK_SIZE,
        output: BinaryIO | None = None,
        marker_dir: str | Path | None = ".",
        cancel_token: CancellationToken | None = None,
    ) -> None:
        if connect_timeout_ms <= 0:
            raise ValueError("connect_timeout_ms must be > 0")
        if chunk_size <= 0:
            raise ValueError("chunk_size must be > 0")
        self.box_id = box_id
        self._host = host or LOOPBACK_HOST
        self._port = port
        self._connect_timeout = connect_timeout_ms / 1000.0
        self._chunk_size = chunk_size
        self._output = output if output is not None else sys.stdout.buffer
        self._marker_dir = marker_dir
        self._token = cancel_token or CancellationToken()
        self._state = BoxState.DISCONNECTED

    @property
    def state(self) -> BoxState:
        return self._state

    @property
    def cancel_token(self) -> CancellationToken:
        return self._token

    async def run(self) -> BoxRunResult:
        """Run the box to completion.

        Raises :class:`ConnectTimeout`/:class:`ConnectError` when the controller
        is unreachable and :class:`RelayError` when the socket fails afterwards.
        """
        with correlation_scope(box_id=str(self.box_id)):
            if self._marker_dir is not None:
                marker = write_marker_file(self.box_id, self._marker_dir)
                logger.debug("wrote identity marker %s", marker)
            return await self._run_connected()

    async def _run_connected(self) -> BoxRunResult:
        self._state = BoxState.CONNECTING
        try:
            reader, writer = await self._connect()
        except asyncio.CancelledError:
            self._state = BoxState.CLOSED
            if not self._token.is_cancelled:
                raise
            return BoxRunResult(self.box_id, 0, "cancelled")
        except BaseException:
            self._state = BoxState.CLOSED
            raise

        try:
            try:
                await write_handshake(writer, self.box_id)
            except (ConnectionError, OSError) as exc:
                raise RelayError(f"unable to advertise identity: {exc}") from exc
            self._state = BoxState.ADVERTISED
            logger.info("advertised identity to %s:%s", self._host, self._port)
            return await self._relay(reader)
        finally:
            self._state = BoxState.CLOSED
            writer.close()
            with suppress(ConnectionError, OSError):
                await writer.wait_closed()

    async def _connect(self) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        try:
            return await run_with_timeout(
                asyncio.open_connection(self._host, self._port),
                self._connect_timeout,
                self._token,
            )
        except TimeoutError as exc:
            raise ConnectTimeout(
                f"timed out connecting to {self._host}:{self._port} "
                f"after {self._connect_timeout:g}s"
            ) from exc
        except OSError as exc:
            raise ConnectError(f"unable to connect to {self._host}:{self._port}: {exc}") from exc

    async def _relay(self, reader: asyncio.StreamReader) -> BoxRunResult:
        self._state = BoxState.RELAYING
        relayed = 0
        while True:
            try:
                chunk = await run_with_timeout(reader.read(self._chunk_size), None, self._token)
            except asyncio.CancelledError:
                if not self._token.is_cancelled:
                    raise
                logger.info("relay cancelled after %d bytes", relayed)
                return BoxRunResult(self.box_id, relayed, "cancelled")
            except (ConnectionError, OSError) as exc:
                raise RelayError(f"relay from controller failed: {exc}") from exc

            if not chunk:
                if reader.at_eof():
                    logger.info("controller closed connection after %d bytes", relayed)
                    return BoxRunResult(self.box_id, relayed, "eof")
                continue

            try:
                self._output.write(chunk)
                self._output.flush()
            except OSError as exc:
                raise RelayError(f"unable to write relayed bytes: {exc}") from exc
            relayed += len(chunk)


__all__ = [
    "BoxClient",
    "BoxRunResult",
    "BoxState",
    "StopReason",
    "parse_address",
    "write_marker_file",
]
