"""Unit tests for CLI exit-code routing."""

from __future__ import annotations

import json
import socket
import uuid
from pathlib import Path

import pytest

from boxharness.config.loader import ConfigLoadError
from boxharness.domain.errors import ConnectError, LaunchError, UsageError
from boxharness.main import ExitCode, _route_exception, cli_entrypoint


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as probe:
        probe.bind(("127.0.0.1", 0))
        return int(probe.getsockname()[1])


def _chained(outer: BaseException, cause: BaseException) -> BaseException:
    try:
        try:
            raise cause
        except BaseException as inner:
            raise outer from inner
    except BaseException as exc:
        return exc


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (UsageError("bad uuid"), ExitCode.USAGE_ERROR),
        (ConfigLoadError("bad toml"), ExitCode.USAGE_ERROR),
        (ConnectError("refused"), ExitCode.CONNECT_ERROR),
        (LaunchError("spawn"), ExitCode.RUNTIME_ERROR),
        (OSError("disk"), ExitCode.RUNTIME_ERROR),
        (KeyError("boom"), ExitCode.INTERNAL_ERROR),
    ],
)
def test_route_exception(exc: BaseException, expected: ExitCode) -> None:
    assert _route_exception(exc) is expected


def test_route_exception_follows_cause_chain() -> None:
    wrapped = _chained(RuntimeError("wrapper"), ConnectError("refused"))
    assert _route_exception(wrapped) is ExitCode.CONNECT_ERROR


def test_usage_error_beats_generic_runtime_error_in_chain() -> None:
    wrapped = _chained(LaunchError("outer"), UsageError("inner"))
    assert _route_exception(wrapped) is ExitCode.USAGE_ERROR


def test_invalid_box_id_exits_with_usage_error(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_entrypoint(["box", "not-a-uuid", ":1"]) == ExitCode.USAGE_ERROR
    assert "invalid box id" in capsys.readouterr().err


def test_address_without_separator_exits_with_usage_error(
    capsys: pytest.CaptureFixture[str],
) -> None:
    assert cli_entrypoint(["box", str(uuid.uuid4()), "31337"]) == ExitCode.USAGE_ERROR
    assert "expected host:port" in capsys.readouterr().err


def test_missing_box_binary_exits_with_usage_error(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    missing = tmp_path / "no-such-box"
    assert cli_entrypoint(["controller", str(missing)]) == ExitCode.USAGE_ERROR
    assert "box binary not found" in capsys.readouterr().err


def test_missing_subcommand_is_a_usage_error() -> None:
    assert cli_entrypoint([]) == ExitCode.USAGE_ERROR


def test_unreachable_controller_exits_with_connect_error(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)
    code = cli_entrypoint(
        [
            "box",
            str(uuid.uuid4()),
            f"127.0.0.1:{_free_port()}",
            "--no-marker",
            "--connect-timeout-ms",
            "500",
        ]
    )
    assert code == ExitCode.CONNECT_ERROR
    assert list(tmp_path.glob("*.box.txt")) == []


def test_config_command_prints_effective_config(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("BOXHARNESS_CONTROLLER_BOX_COUNT", "5")

    assert cli_entrypoint(["config", "--log-level", "debug"]) == ExitCode.SUCCESS

    payload = json.loads(capsys.readouterr().out)
    assert payload["controller"]["box_count"] == 5
    assert payload["observability"]["log_level"] == "DEBUG"


def test_missing_config_file_exits_with_usage_error(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code = cli_entrypoint(["config", "--config", str(tmp_path / "absent.toml")])
    assert code == ExitCode.USAGE_ERROR
    assert "config file not found" in capsys.readouterr().err


def test_usage_error_anywhere_in_chain_beats_connect_error() -> None:
    wrapped = _chained(ConnectError("refused"), UsageError("bad address"))
    assert _route_exception(wrapped) is ExitCode.USAGE_ERROR


def test_suppressed_context_is_not_followed() -> None:
    try:
        try:
            raise ConnectError("refused")
        except ConnectError:
            raise KeyError("boom") from None
    except KeyError as exc:
        assert _route_exception(exc) is ExitCode.INTERNAL_ERROR
