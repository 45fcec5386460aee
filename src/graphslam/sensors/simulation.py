"""Simulated planar range sensor and odometry.

Used by the examples and the test suite to generate record streams with known
ground truth.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
import numpy.typing as npt

from ..pose_graph.pose import SE2Pose
from .data import Observation, StreamRecord


@dataclass
class WallWorld:
    """A planar world made of line-segment walls."""

    segments: npt.NDArray[np.float64]  # (M, 2, 2) segment end points

    def __post_init__(self) -> None:
        """Validate wall data."""
        self.segments = np.asarray(self.segments, dtype=np.float64)
        if self.segments.ndim != 3 or self.segments.shape[1:] != (2, 2):
            raise ValueError("Segments must be an (M, 2, 2) array")

    @classmethod
    def box(
        cls,
        width: float,
        height: float,
        origin: Tuple[float, float] = (0.0, 0.0),
        pillars: Sequence[Tuple[float, float, float]] = (),
    ) -> "WallWorld":
        """Create a rectangular room, optionally with square pillars.

        Args:
            width: Room extent along x.
            height: Room extent along y.
            origin: Lower-left corner of the room.
            pillars: Square pillars given as (center x, center y, side length).

        Returns:
            WallWorld instance.
        """
        x0, y0 = origin
        corners = [(x0, y0), (x0 + width, y0), (x0 + width, y0 + height), (x0, y0 + height)]
        segments = [_closed_loop(corners)]
        for cx, cy, side in pillars:
            h = side / 2.0
            square = [(cx - h, cy - h), (cx + h, cy - h), (cx + h, cy + h), (cx - h, cy + h)]
            segments.append(_closed_loop(square))
        return cls(np.concatenate(segments, axis=0))

    def cast(
        self,
        pose: SE2Pose,
        num_beams: int = 180,
        max_range: float = 10.0,
        field_of_view: float = 2.0 * np.pi,
    ) -> npt.NDArray[np.float64]:
        """Ray-cast a range scan from a robot pose.

        Args:
            pose: Robot pose in the world frame.
            num_beams: Number of beams spread over the field of view.
            max_range: Beams without a hit closer than this return nothing.
            field_of_view: Angular span of the scan, centred on the heading.

        Returns:
            (K, 2) array of hit points in the robot frame (K <= num_beams).
        """
        if field_of_view >= 2.0 * np.pi:
            angles = np.linspace(-np.pi, np.pi, num_beams, endpoint=False)
        else:
            angles = np.linspace(-field_of_view / 2.0, field_of_view / 2.0, num_beams)

        origin = pose.translation
        directions = np.column_stack([np.cos(angles + pose.theta), np.sin(angles + pose.theta)])
        starts = self.segments[:, 0, :]
        spans = self.segments[:, 1, :] - starts

        # Ray o + t*d against segment p + u*e, all beams against all walls
        offset = starts[None, :, :] - origin[None, None, :]
        denom = _cross(directions[:, None, :], spans[None, :, :])
        with np.errstate(divide="ignore", invalid="ignore"):
            t = _cross(offset, spans[None, :, :]) / denom
            u = _cross(offset, directions[:, None, :]) / denom
        hit = (np.abs(denom) > 1e-12) & (t > 0.0) & (u >= 0.0) & (u <= 1.0) & (t <= max_range)
        t = np.where(hit, t, np.inf)
        ranges = t.min(axis=1)

        valid = np.isfinite(ranges)
        local = np.column_stack([np.cos(angles), np.sin(angles)]) * ranges[:, None]
        return local[valid]


def _closed_loop(corners: Sequence[Tuple[float, float]]) -> npt.NDArray[np.float64]:
    points = np.asarray(corners, dtype=np.float64)
    return np.stack([points, np.roll(points, -1, axis=0)], axis=1)


def _cross(a: npt.NDArray[np.float64], b: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    return a[..., 0] * b[..., 1] - a[..., 1] * b[..., 0]


def waypoint_trajectory(
    waypoints: Sequence[Tuple[float, float]], step: float = 0.1
) -> List[SE2Pose]:
    """Sample poses along straight lines between waypoints.

    The heading of each pose points towards the next waypoint.

    Args:
        waypoints: Sequence of (x, y) positions.
        step: Distance between consecutive poses.

    Returns:
        List of SE2Pose.
    """
    if len(waypoints) < 2:
        raise ValueError("At least two waypoints are required")
    if step <= 0:
        raise ValueError("Step must be positive")

    poses: List[SE2Pose] = []
    for (x0, y0), (x1, y1) in zip(waypoints[:-1], waypoints[1:]):
        length = float(np.hypot(x1 - x0, y1 - y0))
        heading = float(np.arctan2(y1 - y0, x1 - x0))
        count = max(int(round(length / step)), 1)
        for k in range(count):
            s = k / count
            poses.append(SE2Pose(x0 + s * (x1 - x0), y0 + s * (y1 - y0), heading))
    last = waypoints[-1]
    poses.append(SE2Pose(last[0], last[1], poses[-1].theta))
    return poses


def simulate_records(
    world: WallWorld,
    trajectory: Sequence[SE2Pose],
    odometry_sigmas: Sequence[float] = (0.0, 0.0, 0.0),
    scan_sigma: float = 0.0,
    num_beams: int = 180,
    max_range: float = 10.0,
    dt: float = 0.1,
    rng: Optional[np.random.Generator] = None,
) -> List[StreamRecord]:
    """Generate a record stream for a robot following ``trajectory``.

    The first record carries no motion; every later record carries the noisy
    odometry increment since the previous record and one scan.

    Args:
        world: Environment to scan.
        trajectory: True robot poses, one per record.
        odometry_sigmas: Standard deviations of the [x, y, theta] increment noise.
        scan_sigma: Standard deviation of the range-point noise.
        num_beams: Beams per scan.
        max_range: Maximum sensor range.
        dt: Time between records.
        rng: Random generator (a fresh default generator if omitted).

    Returns:
        List of StreamRecord.
    """
    rng = rng if rng is not None else np.random.default_rng()
    sigmas = np.asarray(odometry_sigmas, dtype=np.float64)
    records: List[StreamRecord] = []

    for k, pose in enumerate(trajectory):
        timestamp = k * dt
        motion = None
        if k > 0:
            increment = trajectory[k - 1].between(pose)
            motion = increment.retract(rng.normal(0.0, 1.0, 3) * sigmas)
        points = world.cast(pose, num_beams=num_beams, max_range=max_range)
        if scan_sigma > 0:
            points = points + rng.normal(0.0, scan_sigma, points.shape)
        records.append(
            StreamRecord(
                timestamp=timestamp,
                motion=motion,
                observations=[Observation(timestamp=timestamp, points=points)],
            )
        )
    return records
