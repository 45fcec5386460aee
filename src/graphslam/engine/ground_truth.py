"""Ground-truth trajectory lookup."""

from typing import Optional, Sequence

import numpy as np
import numpy.typing as npt

from ..pose_graph import PoseNode, SE2Pose, SE3Pose
from ..utils.conversions import planar_projection, pose_to_transform
from .statistics import PoseError


class GroundTruth:
    """Timestamped reference poses matched to nodes by nearest timestamp.

    Poses are reported relative to an origin, by default the first pose, so that
    they share the frame of the graph whose root sits at the identity.
    """

    def __init__(
        self,
        timestamps: npt.ArrayLike,
        poses: Sequence[SE3Pose],
        max_time_difference: float = 0.05,
    ) -> None:
        """Initialize the ground truth.

        Args:
            timestamps: Sorted timestamps, one per pose.
            poses: Reference 6-DoF poses in the world frame.
            max_time_difference: Largest timestamp gap accepted by lookups.
        """
        self.timestamps = np.asarray(timestamps, dtype=np.float64).reshape(-1)
        if self.timestamps.size != len(poses):
            raise ValueError("Ground truth needs one timestamp per pose")
        if self.timestamps.size == 0:
            raise ValueError("Ground truth must contain at least one pose")
        if np.any(np.diff(self.timestamps) < 0):
            raise ValueError("Ground-truth timestamps must be sorted")
        self.poses = list(poses)
        self.max_time_difference = max_time_difference
        self._origin_inverse = self.poses[0].inverse()

    @classmethod
    def from_array(cls, data: npt.ArrayLike, max_time_difference: float = 0.05) -> "GroundTruth":
        """Create from an (N, 8) array of ``timestamp x y z qx qy qz qw`` rows."""
        data = np.asarray(data, dtype=np.float64)
        if data.ndim != 2 or data.shape[1] != 8:
            raise ValueError("Ground-truth rows must be: timestamp x y z qx qy qz qw")
        poses = []
        for row in data:
            quaternion = np.array([row[7], row[4], row[5], row[6]])  # [w, x, y, z]
            poses.append(SE3Pose.from_matrix(pose_to_transform(row[1:4], quaternion)))
        return cls(data[:, 0], poses, max_time_difference)

    @classmethod
    def from_planar(
        cls,
        timestamps: npt.ArrayLike,
        poses: Sequence[SE2Pose],
        max_time_difference: float = 0.05,
    ) -> "GroundTruth":
        """Create from planar poses (embedded at z = 0)."""
        spatial = [SE3Pose.from_xyz_rpy(p.x, p.y, 0.0, 0.0, 0.0, p.theta) for p in poses]
        return cls(timestamps, spatial, max_time_difference)

    def align_to(self, timestamp: float) -> bool:
        """Use the pose closest to ``timestamp`` as the origin.

        Returns:
            True if a pose was found within ``max_time_difference``.
        """
        index = self._nearest(timestamp)
        if index is None:
            return False
        self._origin_inverse = self.poses[index].inverse()
        return True

    def pose_at(self, timestamp: float) -> Optional[SE3Pose]:
        """Reference pose (relative to the origin) closest to ``timestamp``."""
        index = self._nearest(timestamp)
        if index is None:
            return None
        return self._origin_inverse.compose(self.poses[index])

    def error(self, node: PoseNode) -> Optional[PoseError]:
        """Compare a node estimate with the reference pose at its timestamp.

        Planar nodes are compared against the ground-plane projection of the
        reference pose.

        Args:
            node: Node with a timestamp.

        Returns:
            PoseError, or None if no reference pose is close enough in time.
        """
        if node.timestamp is None:
            return None
        reference = self.pose_at(node.timestamp)
        if reference is None:
            return None
        if isinstance(node.pose, SE2Pose):
            reference = SE2Pose.from_vector(planar_projection(reference.matrix()))
        difference = reference.between(node.pose)
        return PoseError(
            node_id=node.id,
            timestamp=node.timestamp,
            translation_error=difference.translation_norm(),
            rotation_error=difference.rotation_angle(),
        )

    def _nearest(self, timestamp: float) -> Optional[int]:
        index = int(np.searchsorted(self.timestamps, timestamp))
        candidates = [i for i in (index - 1, index) if 0 <= i < self.timestamps.size]
        best = min(candidates, key=lambda i: abs(self.timestamps[i] - timestamp))
        if abs(self.timestamps[best] - timestamp) > self.max_time_difference:
            return None
        return best

    def __len__(self) -> int:
        return int(self.timestamps.size)
