"""Command-line surface for boxharness."""

from boxharness.ui.cli import CLIError, build_parser, run_cli

__all__ = ["CLIError", "build_parser", "run_cli"]
