"""Unit tests for the error taxonomy."""

from __future__ import annotations

import pytest

from boxharness.domain.errors import (
    BoxHarnessError,
    ConnectError,
    ConnectTimeout,
    LaunchError,
    ListenerError,
    MalformedHandshake,
    RelayError,
    UsageError,
)


@pytest.mark.parametrize(
    "error_type",
    [UsageError, ConnectError, ConnectTimeout, LaunchError, ListenerError, RelayError],
)
def test_every_error_derives_from_base(error_type: type[BoxHarnessError]) -> None:
    assert issubclass(error_type, BoxHarnessError)
    assert issubclass(error_type, RuntimeError)


def test_connect_timeout_is_a_connect_error() -> None:
    with pytest.raises(ConnectError):
        raise ConnectTimeout("too slow")


def test_malformed_handshake_keeps_received_count() -> None:
    exc = MalformedHandshake("short frame", received=7)
    assert exc.received == 7
    assert str(exc) == "short frame"
    assert MalformedHandshake("no count").received is None
