"""Domain primitives: box identities and the harness error taxonomy."""

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
from boxharness.domain.ids import (
    BoxId,
    box_id_from_words,
    box_id_to_words,
    generate_box_id,
    marker_filename,
    parse_box_id,
)

__all__ = [
    "BoxHarnessError",
    "BoxId",
    "ConnectError",
    "ConnectTimeout",
    "LaunchError",
    "ListenerError",
    "MalformedHandshake",
    "RelayError",
    "UsageError",
    "box_id_from_words",
    "box_id_to_words",
    "generate_box_id",
    "marker_filename",
    "parse_box_id",
]
