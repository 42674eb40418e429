"""Box worker side: connect to the controller, advertise, relay."""

from boxharness.box.client import (
    BoxClient,
    BoxRunResult,
    BoxState,
    parse_address,
    write_marker_file,
)

__all__ = ["BoxClient", "BoxRunResult", "BoxState", "parse_address", "write_marker_file"]
