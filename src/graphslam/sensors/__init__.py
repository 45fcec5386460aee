"""Sensor data, stream validation and observation alignment."""

from .alignment import AlignmentResult, ICPAligner
from .data import Observation, StreamRecord
from .simulation import WallWorld, simulate_records, waypoint_trajectory
from .stream import RecordStream

__all__ = [
    "AlignmentResult",
    "ICPAligner",
    "Observation",
    "RecordStream",
    "StreamRecord",
    "WallWorld",
    "simulate_records",
    "waypoint_trajectory",
]
