"""Pose graph edge representation.

Edges are measurements, not estimates: once created they are never modified.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np
import numpy.typing as npt

from .pose import Pose, relative_error


class EdgeType(Enum):
    """Type of edge constraint."""

    ODOMETRY = "odometry"  # Integrated motion increments
    ALIGNMENT = "alignment"  # Observation-to-observation alignment
    LOOP_CLOSURE = "loop_closure"  # Alignment against a revisited place


@dataclass(frozen=True, eq=False)
class Edge:
    """Represents a relative-pose constraint between two nodes.

    ``relative_pose`` is the measured pose of ``to_node_id`` expressed in the frame
    of ``from_node_id``; ``information_matrix`` weights its tangent residual.
    """

    from_node_id: int
    to_node_id: int
    relative_pose: Pose
    information_matrix: npt.NDArray[np.float64]
    edge_type: EdgeType
    timestamp: Optional[float] = None

    def __post_init__(self) -> None:
        """Validate edge data and freeze the information matrix."""
        if self.from_node_id == self.to_node_id:
            raise ValueError("Edge must connect two different nodes")
        if not isinstance(self.relative_pose, Pose):
            raise ValueError("Relative pose must be an SE2Pose or SE3Pose")

        dof = self.relative_pose.dof
        information = np.array(self.information_matrix, dtype=np.float64)
        if information.shape != (dof, dof):
            raise ValueError(f"Information matrix must be {dof}x{dof}")
        if not np.allclose(information, information.T, atol=1e-8):
            raise ValueError("Information matrix must be symmetric")
        if np.min(np.linalg.eigvalsh(information)) < -1e-9:
            raise ValueError("Information matrix must be positive semi-definite")

        information.setflags(write=False)
        object.__setattr__(self, "information_matrix", information)
        object.__setattr__(self, "relative_pose", self.relative_pose.copy())

    @property
    def covariance(self) -> npt.NDArray[np.float64]:
        """Covariance of the measurement (pseudo-inverse of the information)."""
        return np.linalg.pinv(self.information_matrix)

    def error(self, from_pose: Pose, to_pose: Pose) -> npt.NDArray[np.float64]:
        """Tangent residual of this measurement for the given estimates."""
        return relative_error(from_pose, to_pose, self.relative_pose)

    def weighted_error(self, from_pose: Pose, to_pose: Pose) -> float:
        """Squared Mahalanobis residual ``e^T Omega e``."""
        e = self.error(from_pose, to_pose)
        return float(e @ self.information_matrix @ e)

    def connects(self, node_id: int) -> bool:
        """Check whether the edge touches ``node_id``."""
        return node_id in (self.from_node_id, self.to_node_id)

    def other(self, node_id: int) -> int:
        """Return the node at the opposite end of the edge."""
        if node_id == self.from_node_id:
            return self.to_node_id
        if node_id == self.to_node_id:
            return self.from_node_id
        raise ValueError(f"Node {node_id} is not an endpoint of this edge")
