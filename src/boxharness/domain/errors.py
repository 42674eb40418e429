"""Error taxonomy shared by the controller and box sides."""

from __future__ import annotations


class BoxHarnessError(RuntimeError):
    """Base error for harness failures."""


class UsageError(BoxHarnessError):
    """Raised for invalid command-line input detected before any work starts."""


class ConnectError(BoxHarnessError):
    """Raised when a box cannot reach its controller."""


class ConnectTimeout(ConnectError):
    """Raised when the controller did not accept within the connect timeout."""


class MalformedHandshake(BoxHarnessError):
    """Raised when a connection does not open with a complete identity frame."""

    def __init__(self, message: str, *, received: int | None = None) -> None:
        super().__init__(message)
        self.received = received


class RelayError(BoxHarnessError):
    """Raised when a byte relay (socket or subprocess stream) fails mid-flight."""


class LaunchError(BoxHarnessError):
    """Raised when a box subprocess cannot be spawned."""


class ListenerError(BoxHarnessError):
    """Raised when the controller listener cannot bind its port."""


__all__ = [
    "BoxHarnessError",
    "ConnectError",
    "ConnectTimeout",
    "LaunchError",
    "ListenerError",
    "MalformedHandshake",
    "RelayError",
    "UsageError",
]
