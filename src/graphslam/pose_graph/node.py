"""Pose graph node representation."""

from dataclasses import dataclass
from typing import Optional

import numpy as np
import numpy.typing as npt

from .pose import Pose


@dataclass
class PoseNode:
    """Represents an estimated robot pose in the graph.

    The pose is an estimate: it is written by the optimizer and read by everyone
    else. Fixed nodes (the root) are never moved by the optimizer.
    """

    id: int
    pose: Pose
    fixed: bool = False
    timestamp: Optional[float] = None

    def __post_init__(self) -> None:
        """Validate node data."""
        if self.id < 0:
            raise ValueError("Node id must be non-negative")
        if not isinstance(self.pose, Pose):
            raise ValueError("Node pose must be an SE2Pose or SE3Pose")

    @property
    def position(self) -> npt.NDArray[np.float64]:
        """Translation of the current estimate."""
        return self.pose.translation

    def copy(self) -> "PoseNode":
        """Return an independent copy of the node."""
        return PoseNode(
            id=self.id, pose=self.pose.copy(), fixed=self.fixed, timestamp=self.timestamp
        )


def information_from_sigmas(sigmas: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """Create a diagonal information matrix from standard deviations.

    Args:
        sigmas: Standard deviation for each degree of freedom.

    Returns:
        Diagonal information matrix.
    """
    sigmas = np.asarray(sigmas, dtype=np.float64)
    if np.any(sigmas <= 0):
        raise ValueError("Standard deviations must be positive")
    return np.diag(1.0 / (sigmas**2))


def information_from_covariance(
    covariance: npt.NDArray[np.float64], eps: float = 1e-9
) -> npt.NDArray[np.float64]:
    """Invert a covariance matrix into an information matrix.

    The covariance is symmetrised and jittered until it is positive definite.

    Args:
        covariance: Square covariance matrix.
        eps: Initial diagonal jitter.

    Returns:
        Symmetric information matrix.
    """
    cov = np.array(covariance, dtype=np.float64)
    cov = 0.5 * (cov + cov.T)
    n = cov.shape[0]
    jitter = eps
    for _ in range(8):
        try:
            np.linalg.cholesky(cov + np.eye(n) * jitter)
            break
        except np.linalg.LinAlgError:
            jitter *= 10.0
    info = np.linalg.inv(cov + np.eye(n) * jitter)
    return 0.5 * (info + info.T)
