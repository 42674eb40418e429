"""Utility exports for cancellation and timeout helpers."""

from boxharness.utils.concurrency import (
    CancellationToken,
    install_signal_handlers,
    remove_signal_handlers,
    run_with_timeout,
)

__all__ = [
    "CancellationToken",
    "install_signal_handlers",
    "remove_signal_handlers",
    "run_with_timeout",
]
