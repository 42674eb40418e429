"""
boxharness: controller/worker harness.

Purpose
- Package root. A Controller listens on TCP, spawns Box worker subprocesses,
  accepts each Box's 16-byte identity handshake, and multiplexes the Boxes'
  stdout/stderr onto its own output with identity prefixes.

Import boundary rules
- Must not have side effects at import time (no config loading, no logging init).
- Heavy submodules are imported by the CLI on demand.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
