"""Stable constants shared by the controller and box sides."""

from __future__ import annotations

from typing import Final

# Wire protocol.
HANDSHAKE_FRAME_SIZE: Final[int] = 16
HANDSHAKE_WORD_FORMAT: Final[str] = ">QQ"

# Controller defaults.
DEFAULT_CONTROLLER_PORT: Final[int] = 31337
DEFAULT_BOX_COUNT: Final[int] = 3
DEFAULT_RUN_SECONDS: Final[float] = 10.0
DEFAULT_DRAIN_SECONDS: Final[float] = 5.0

# Box defaults.
DEFAULT_CONNECT_TIMEOUT_MS: Final[int] = 5000
DEFAULT_RELAY_CHUNK_SIZE: Final[int] = 4096
MARKER_FILE_SUFFIX: Final[str] = ".box.txt"
LOOPBACK_HOST: Final[str] = "127.0.0.1"

# Supervisor defaults.
DEFAULT_WORKER_MEMORY_LIMIT: Final[str] = "2M"
DEFAULT_REDIRECT_CHUNK_SIZE: Final[int] = 1024
FRAME_SUFFIX: Final[bytes] = b"\r\n"
STDOUT_PREFIX_TEMPLATE: Final[str] = "{box_id}: "
STDERR_PREFIX_TEMPLATE: Final[str] = "Error in {box_id}: "

# Config schema version.
CONFIG_SCHEMA_VERSION: Final[int] = 1

__all__ = [
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_BOX_COUNT",
    "DEFAULT_CONNECT_TIMEOUT_MS",
    "DEFAULT_CONTROLLER_PORT",
    "DEFAULT_DRAIN_SECONDS",
    "DEFAULT_REDIRECT_CHUNK_SIZE",
    "DEFAULT_RELAY_CHUNK_SIZE",
    "DEFAULT_RUN_SECONDS",
    "DEFAULT_WORKER_MEMORY_LIMIT",
    "FRAME_SUFFIX",
    "HANDSHAKE_FRAME_SIZE",
    "HANDSHAKE_WORD_FORMAT",
    "LOOPBACK_HOST",
    "MARKER_FILE_SUFFIX",
    "STDERR_PREFIX_TEMPLATE",
    "STDOUT_PREFIX_TEMPLATE",
]
