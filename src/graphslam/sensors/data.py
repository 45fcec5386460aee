"""Stream record representation."""

from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
import numpy.typing as npt

from ..pose_graph.pose import Pose


@dataclass
class Observation:
    """Represents a single range-sensor observation.

    Points are expressed in the robot frame at the time of the observation.
    """

    timestamp: float
    points: npt.NDArray[np.float64]  # (N, 2) for planar scans, (N, 3) for 3D scans

    def __post_init__(self) -> None:
        """Validate observation data."""
        self.points = np.asarray(self.points, dtype=np.float64)
        if self.points.ndim != 2 or self.points.shape[1] not in (2, 3):
            raise ValueError("Observation points must be an (N, 2) or (N, 3) array")
        if not np.all(np.isfinite(self.points)):
            raise ValueError("Observation points must be finite")

    @property
    def dim(self) -> int:
        """Spatial dimension of the points."""
        return int(self.points.shape[1])

    def __len__(self) -> int:
        return int(self.points.shape[0])


@dataclass
class StreamRecord:
    """One time step of the input stream.

    ``motion`` is the odometry increment since the previous record, expressed in the
    robot frame of the previous record; it may be absent when only observations are
    available.
    """

    timestamp: float
    motion: Optional[Pose] = None
    observations: List[Observation] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Validate record data."""
        if not np.isfinite(self.timestamp):
            raise ValueError("Record timestamp must be finite")
        if self.motion is not None and not isinstance(self.motion, Pose):
            raise ValueError("Record motion must be an SE2Pose or SE3Pose")

    @property
    def scan(self) -> Optional[Observation]:
        """First observation of the record, if any."""
        return self.observations[0] if self.observations else None
