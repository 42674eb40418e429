"""Module entrypoint for ``python -m boxharness``."""

from __future__ import annotations

from boxharness.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
