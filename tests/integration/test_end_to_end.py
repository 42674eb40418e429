"""
boxharness: controller/box end-to-end run

Purpose
- Launch a real controller process that spawns real box processes, and check
  that every box is accepted, relays the controller's reply, and has its output
  framed with its identity prefix on the controller's stdout.
"""

from __future__ import annotations

import json
import os
import re
import subprocess
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[2]
SRC_PATH = PROJECT_ROOT / "src"

_BOX_SHIM = """\
import sys

from boxharness.main import cli_entrypoint

raise SystemExit(cli_entrypoint(["box", *sys.argv[1:]]))
"""

_STDOUT_FRAME = re.compile(rb"(?<!Error in )([0-9a-f-]{36}): ([A-Za-z]+ [A-Za-z]+)\r\n")


def _env() -> dict[str, str]:
    env = os.environ.copy()
    existing_pythonpath = env.get("PYTHONPATH")
    src_pythonpath = str(SRC_PATH)
    env["PYTHONPATH"] = (
        src_pythonpath if not existing_pythonpath else f"{src_pythonpath}:{existing_pythonpath}"
    )
    for key in list(env):
        if key.startswith("BOXHARNESS_"):
            del env[key]
    return env


def test_controller_launches_boxes_and_relays_their_output(tmp_path: Path) -> None:
    shim = tmp_path / "box_shim.py"
    shim.write_text(_BOX_SHIM, encoding="utf-8")

    completed = subprocess.run(
        [
            sys.executable,
            "-m",
            "boxharness",
            "controller",
            str(shim),
            "2",
            "--port",
            "0",
            "--run-seconds",
            "4",
            "--drain-seconds",
            "10",
        ],
        cwd=tmp_path,
        capture_output=True,
        check=False,
        env=_env(),
        timeout=60,
    )

    stderr = completed.stderr.decode("utf-8", errors="replace")
    assert completed.returncode == 0, stderr

    frames = _STDOUT_FRAME.findall(completed.stdout)
    relayed_ids = sorted(box_id.decode() for box_id, _ in frames)
    assert len(relayed_ids) == 2

    markers = sorted(path.name.removesuffix(".box.txt") for path in tmp_path.glob("*.box.txt"))
    assert markers == relayed_ids

    events = [json.loads(line) for line in stderr.splitlines() if line.startswith("{")]
    accepted = sorted(
        event["box_id"]
        for event in events
        if str(event.get("message", "")).startswith("accepted client with id")
    )
    assert accepted == relayed_ids
