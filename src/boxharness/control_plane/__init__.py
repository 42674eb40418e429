"""Controller-side runtime: listener, supervisor, shared output sink."""

from boxharness.control_plane.controller import ControllerSummary, HarnessController
from boxharness.control_plane.listener import (
    ControllerListener,
    ListenerState,
    ListenerStats,
    random_name_payload,
)
from boxharness.control_plane.sink import FramedSink, StreamSink
from boxharness.control_plane.supervisor import (
    BoxLaunch,
    BoxSupervisor,
    LaunchFailure,
    LaunchPolicy,
    LaunchReport,
    spawn_box_process,
)

__all__ = [
    "BoxLaunch",
    "BoxSupervisor",
    "ControllerListener",
    "ControllerSummary",
    "FramedSink",
    "HarnessController",
    "LaunchFailure",
    "LaunchPolicy",
    "LaunchReport",
    "ListenerState",
    "ListenerStats",
    "StreamSink",
    "random_name_payload",
    "spawn_box_process",
]
