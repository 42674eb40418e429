"""Executable CLI entrypoint for ``boxharness``.

Every failure leaving the CLI is mapped to one :class:`ExitCode`. The whole
``__cause__``/``__context__`` chain is searched, and the most specific match
wins: usage and config mistakes first, then connect failures, then any other
harness or OS error. Unrecognized exceptions are internal errors and print a
traceback.
"""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class ExitCode(IntEnum):
    """Deterministic process exit-code contract."""

    SUCCESS = 0
    RUNTIME_ERROR = 1
    USAGE_ERROR = 2
    CONNECT_ERROR = 3
    INTERNAL_ERROR = 4


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Entrypoint used by ``python -m boxharness`` and the console scripts."""

    try:
        from boxharness.ui.cli import run_cli

        code = run_cli(argv)
    except SystemExit as exc:
        code = exc.code
    except BaseException as exc:  # noqa: BLE001 - CLI boundary normalization.
        routed = _route_exception(exc)
        if routed is ExitCode.INTERNAL_ERROR:
            traceback.print_exception(exc, file=sys.stderr)
        else:
            print(f"error: {str(exc).strip() or type(exc).__name__}", file=sys.stderr)
        return int(routed)

    if code is None:
        return int(ExitCode.SUCCESS)
    if isinstance(code, int) and ExitCode.SUCCESS <= code <= ExitCode.INTERNAL_ERROR:
        return code
    if isinstance(code, str) and code.strip():
        print(code.strip(), file=sys.stderr)
    return int(ExitCode.INTERNAL_ERROR)


def cli_entrypoint_exit() -> None:
    """Console-script entrypoint for ``boxharness``."""

    raise SystemExit(cli_entrypoint())


def _route_exception(exc: BaseException) -> ExitCode:
    from boxharness.config.loader import ConfigLoadError
    from boxharness.config.schema import ConfigValidationError
    from boxharness.domain.errors import BoxHarnessError, ConnectError, UsageError

    ranked: tuple[tuple[tuple[type[BaseException], ...], ExitCode], ...] = (
        ((UsageError, ConfigLoadError, ConfigValidationError), ExitCode.USAGE_ERROR),
        ((ConnectError,), ExitCode.CONNECT_ERROR),
        ((BoxHarnessError, OSError), ExitCode.RUNTIME_ERROR),
    )
    chain = list(_exception_chain(exc))
    for types, code in ranked:
        if any(isinstance(item, types) for item in chain):
            return code
    return ExitCode.INTERNAL_ERROR


def _exception_chain(exc: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        if current.__cause__ is not None:
            current = current.__cause__
        elif not current.__suppress_context__:
            current = current.__context__
        else:
            current = None


__all__ = ["ExitCode", "cli_entrypoint", "cli_entrypoint_exit"]
