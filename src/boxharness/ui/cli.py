"""Command-line interface router for boxharness."""

from __future__ import annotations

import argparse
import asyncio
import logging
import shutil
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from boxharness.box.client import BoxClient, BoxRunResult, parse_address
from boxharness.config import (
    LAUNCH_POLICIES,
    ConfigLoadError,
    ConfigValidationError,
    dump_effective_config,
    load_config,
)
from boxharness.control_plane.controller import ControllerSummary, HarnessController
from boxharness.domain.errors import ConnectError, UsageError
from boxharness.domain.ids import parse_box_id
from boxharness.observability.logging import setup_logging, shutdown_logging
from boxharness.utils.concurrency import (
    CancellationToken,
    install_signal_handlers,
    remove_signal_handlers,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for the box and controller roles."""

    parser = argparse.ArgumentParser(
        prog="boxharness",
        description=(
            "boxharness: controller/box worker harness.\n\n"
            "Common workflows:\n"
            "  boxharness controller ./box.py 3     Launch three boxes and relay their output\n"
            "  boxharness box <uuid> :31337         Run one box against a local controller\n"
            "  boxharness config                    Show the effective configuration\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to boxharness TOML config (default: ./boxharness.toml if present).",
    )
    common.add_argument(
        "--log-level",
        default=None,
        help="Diagnostic log level: DEBUG, INFO, WARNING or ERROR.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # box -----------------------------------------------------------------
    box_parser = subparsers.add_parser(
        "box",
        parents=[common],
        help="Run one box worker",
        description=(
            "Connect to a controller, advertise the box identity, and relay the reply "
            "to stdout.\n\n"
            "Examples:\n"
            "  boxharness box 00000000-0000-0000-0000-000000000001 :31337\n"
            "  boxharness box <uuid> 127.0.0.1:31337 --no-marker\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    _add_box_arguments(box_parser)
    box_parser.set_defaults(handler=_cmd_box)

    # controller ----------------------------------------------------------
    controller_parser = subparsers.add_parser(
        "controller",
        parents=[common],
        help="Listen for boxes and launch a batch of them",
        description=(
            "Listen for box connections, launch box subprocesses, and relay their "
            "output with per-box prefixes.\n\n"
            "Examples:\n"
            "  boxharness controller ./box.py\n"
            "  boxharness controller ./box.py 5 --port 0 --run-seconds 2\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    _add_controller_arguments(controller_parser)
    controller_parser.set_defaults(handler=_cmd_controller)

    # config --------------------------------------------------------------
    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Show the effective configuration",
    )
    config_parser.set_defaults(handler=_cmd_config)

    return parser


def _add_box_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("box_id", help="Box identity (canonical UUID text)")
    parser.add_argument("address", help="Controller address as host:port (empty host = loopback)")
    parser.add_argument(
        "--memory-min",
        default=None,
        help="Worker memory minimum (accepted and logged, not enforced)",
    )
    parser.add_argument(
        "--memory-max",
        default=None,
        help="Worker memory maximum (accepted and logged, not enforced)",
    )
    parser.add_argument(
        "--connect-timeout-ms",
        type=int,
        default=None,
        help="Connect timeout in milliseconds (default: 5000)",
    )
    parser.add_argument(
        "--marker-dir",
        default=None,
        help="Directory for the <identity>.box.txt marker (default: working directory)",
    )
    parser.add_argument(
        "--no-marker",
        action="store_true",
        default=False,
        help="Do not write the identity marker file",
    )


def _add_controller_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("box_binary", help="Path (or PATH name) of the box executable")
    parser.add_argument(
        "box_count",
        nargs="?",
        type=int,
        default=None,
        help="Number of boxes to launch (default: 3)",
    )
    parser.add_argument("--port", type=int, default=None, help="Listen port (default: 31337)")
    parser.add_argument(
        "--run-seconds",
        type=float,
        default=None,
        help="Seconds to keep listening after launching (0 = until SIGINT/SIGTERM)",
    )
    parser.add_argument(
        "--drain-seconds",
        type=float,
        default=None,
        help="Seconds to wait for box output after the listener stops",
    )
    parser.add_argument(
        "--memory-limit",
        default=None,
        help="Worker memory limit passed to each box as min and max (default: 2M)",
    )
    parser.add_argument(
        "--launch-policy",
        choices=LAUNCH_POLICIES,
        default=None,
        help="Behavior after a launch failure (default: abort_batch)",
    )


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


def box_entrypoint() -> None:
    """Console-script entrypoint for ``boxharness-box``."""

    from boxharness.main import cli_entrypoint

    raise SystemExit(cli_entrypoint(["box", *sys.argv[1:]]))


def controller_entrypoint() -> None:
    """Console-script entrypoint for ``boxharness-controller``."""

    from boxharness.main import cli_entrypoint

    raise SystemExit(cli_entrypoint(["controller", *sys.argv[1:]]))


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_box(args: argparse.Namespace) -> int:
    box_id = parse_box_id(args.box_id)
    host, port = parse_address(args.address)
    config = _load_effective_config(
        args,
        {
            "box.connect_timeout_ms": args.connect_timeout_ms,
            "box.marker_dir": args.marker_dir,
            "box.write_marker": False if args.no_marker else None,
        },
    )
    box_section = config["box"]

    setup_logging(config["observability"], component="box")
    try:
        if args.memory_min is not None or args.memory_max is not None:
            logger.info(
                "memory limits requested (not enforced)",
                extra={"memory_min": args.memory_min, "memory_max": args.memory_max},
            )
        client = BoxClient(
            box_id,
            host,
            port,
            connect_timeout_ms=box_section["connect_timeout_ms"],
            chunk_size=box_section["relay_chunk_size"],
            marker_dir=box_section["marker_dir"] if box_section["write_marker"] else None,
        )
        try:
            result = asyncio.run(_run_box(client))
        except ConnectError as exc:
            logger.error("failed to connect: %s", exc)
            raise
        logger.info(
            "box finished",
            extra={"bytes_relayed": result.bytes_relayed, "stop_reason": result.stop_reason},
        )
    finally:
        shutdown_logging()
    return 0


def _cmd_controller(args: argparse.Namespace) -> int:
    box_binary = _resolve_box_binary(args.box_binary)
    config = _load_effective_config(
        args,
        {
            "controller.port": args.port,
            "controller.box_count": args.box_count,
            "controller.run_seconds": args.run_seconds,
            "controller.drain_seconds": args.drain_seconds,
            "supervisor.worker_memory_limit": args.memory_limit,
            "supervisor.launch_policy": args.launch_policy,
        },
    )

    setup_logging(config["observability"], component="controller")
    try:
        controller = HarnessController.from_config(config, box_binary)
        summary = asyncio.run(_run_controller(controller, config["controller"]["box_count"]))
        logger.info(
            "controller finished",
            extra={
                "port": summary.port,
                "launched": len(summary.launch_report.launched),
                "launch_failures": len(summary.launch_report.failures),
                "skipped": summary.launch_report.skipped,
                "accepted": summary.listener_stats.accepted,
                "malformed": summary.listener_stats.malformed,
                "drained": summary.drained,
            },
        )
    finally:
        shutdown_logging()
    return 0


def _cmd_config(args: argparse.Namespace) -> int:
    config = _load_effective_config(args, {})
    print(dump_effective_config(config))
    return 0


async def _run_box(client: BoxClient) -> BoxRunResult:
    installed = install_signal_handlers(client.cancel_token)
    try:
        return await client.run()
    finally:
        remove_signal_handlers(installed)


async def _run_controller(controller: HarnessController, box_count: int) -> ControllerSummary:
    token: CancellationToken = controller.cancel_token
    installed = install_signal_handlers(token)
    try:
        return await controller.run(box_count)
    finally:
        remove_signal_handlers(installed)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_effective_config(
    args: argparse.Namespace,
    overrides: Mapping[str, object],
) -> dict[str, Any]:
    config_path = getattr(args, "config_path", None)
    cli_overrides = dict(overrides)
    log_level = getattr(args, "log_level", None)
    if isinstance(log_level, str):
        cli_overrides["observability.log_level"] = log_level.upper()

    try:
        return load_config(config_path, cli_overrides=cli_overrides)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc


def _resolve_box_binary(raw: str) -> str:
    candidate = Path(raw).expanduser()
    if candidate.is_file():
        return str(candidate.resolve())
    found = shutil.which(raw)
    if found is None:
        raise UsageError(f"box binary not found: {raw}")
    return found


__all__ = [
    "CLIError",
    "box_entrypoint",
    "build_parser",
    "controller_entrypoint",
    "run_cli",
]
