"""Async cancellation and timeout primitives used by the controller and box loops."""

from __future__ import annotations

import asyncio
import inspect
import signal
from contextlib import suppress
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Iterable

T = TypeVar("T")

_DEFAULT_SIGNALS: tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)


class CancellationToken:
    """Cooperative cancellation token backed by ``asyncio.Event``."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        if not self._event.is_set():
            self._reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    async def wait(self) -> None:
        await self._event.wait()

    async def wait_for(self, timeout_seconds: float | None) -> bool:
        """Wait up to ``timeout_seconds`` (forever when ``None``); return whether cancelled."""
        if timeout_seconds is None:
            await self._event.wait()
            return True
        with suppress(TimeoutError):
            await asyncio.wait_for(self._event.wait(), timeout=max(timeout_seconds, 0.0))
        return self._event.is_set()


def install_signal_handlers(
    token: CancellationToken,
    *,
    loop: asyncio.AbstractEventLoop | None = None,
    signals: Iterable[signal.Signals] = _DEFAULT_SIGNALS,
) -> tuple[signal.Signals, ...]:
    """Cancel ``token`` on the given signals; return the signals actually installed.

    Platforms without ``add_signal_handler`` support (Windows) install nothing.
    """
    target = loop or asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    for sig in signals:
        try:
            target.add_signal_handler(sig, token.cancel, f"signal {sig.name}")
        except (NotImplementedError, RuntimeError):
            continue
        installed.append(sig)
    return tuple(installed)


def remove_signal_handlers(
    signals: Iterable[signal.Signals],
    *,
    loop: asyncio.AbstractEventLoop | None = None,
) -> None:
    target = loop or asyncio.get_running_loop()
    for sig in signals:
        with suppress(NotImplementedError, RuntimeError):
            target.remove_signal_handler(sig)


async def run_with_timeout(
    coroutine: Awaitable[T],
    timeout_seconds: float | None,
    cancel_token: CancellationToken | None = None,
) -> T:
    """Run ``coroutine`` with an optional timeout and cooperative cancellation.

    ``timeout_seconds=None`` waits without a deadline. Token cancellation raises
    ``asyncio.CancelledError``; an expired deadline raises ``TimeoutError``.
    """
    if timeout_seconds is not None and timeout_seconds <= 0:
        _close_unscheduled_coroutine(coroutine)
        raise ValueError("timeout_seconds must be > 0")

    token = cancel_token or CancellationToken()
    if token.is_cancelled:
        _close_unscheduled_coroutine(coroutine)
        raise asyncio.CancelledError("operation cancelled")

    task: asyncio.Task[T] = asyncio.create_task(_await_value(coroutine))
    cancel_wait_task = asyncio.create_task(token.wait())

    try:
        done, _ = await asyncio.wait(
            {task, cancel_wait_task},
            timeout=timeout_seconds,
            return_when=asyncio.FIRST_COMPLETED,
        )

        if task in done:
            return await task

        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

        if cancel_wait_task in done and token.is_cancelled:
            raise asyncio.CancelledError("operation cancelled")
        raise TimeoutError(f"operation timed out after {timeout_seconds} seconds")
    finally:
        cancel_wait_task.cancel()
        with suppress(asyncio.CancelledError):
            await cancel_wait_task
        if not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError, Exception):
                await task


async def _await_value(awaitable: Awaitable[T]) -> T:
    return await awaitable


def _close_unscheduled_coroutine(awaitable: Awaitable[object]) -> None:
    # Raw coroutine objects rejected before scheduling must be closed, otherwise
    # CPython emits "coroutine was never awaited" at GC time.
    if inspect.iscoroutine(awaitable):
        awaitable.close()


__all__ = [
    "CancellationToken",
    "install_signal_handlers",
    "remove_signal_handlers",
    "run_with_timeout",
]
