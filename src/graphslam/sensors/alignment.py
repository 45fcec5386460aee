"""Observation alignment with point-to-point ICP."""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple, Type

import numpy as np
import numpy.typing as npt
from scipy.spatial import cKDTree

from ..exceptions import AlignmentFailure
from ..pose_graph.pose import Pose, SE2Pose, SE3Pose
from ..utils.config import AlignmentConfig
from ..utils.geometry import skew_symmetric
from .data import Observation

logger = logging.getLogger(__name__)


@dataclass
class AlignmentResult:
    """Outcome of aligning a source observation against a target observation.

    ``transform`` maps points of the source frame into the target frame, i.e. it is
    the pose of the source node expressed in the frame of the target node.
    """

    transform: Pose
    information: npt.NDArray[np.float64]
    quality: float  # fraction of source points with a close correspondence
    mse: float
    iterations: int
    num_correspondences: int

    @property
    def covariance(self) -> npt.NDArray[np.float64]:
        return np.linalg.pinv(self.information)


class ICPAligner:
    """Iterative closest point alignment of range observations.

    Correspondences are found with a KD-tree over the target points; each iteration
    estimates the incremental rigid transform with an SVD (Kabsch) fit.
    """

    def __init__(
        self,
        max_correspondence_distance: float = 0.5,
        max_iterations: int = 50,
        tolerance: float = 1e-6,
        min_correspondences: int = 10,
        mse_floor: float = 1e-4,
    ) -> None:
        """Initialize the aligner.

        Args:
            max_correspondence_distance: Reject point pairs farther apart than this.
            max_iterations: Maximum number of ICP iterations.
            tolerance: Convergence threshold on the incremental transform and on the
                change of the mean squared error.
            min_correspondences: Minimum number of point pairs for a valid fit.
            mse_floor: Lower bound of the residual variance used for the
                information matrix.
        """
        self.max_correspondence_distance = max_correspondence_distance
        self.max_iterations = max_iterations
        self.tolerance = tolerance
        self.min_correspondences = min_correspondences
        self.mse_floor = mse_floor

    @classmethod
    def from_config(cls, config: AlignmentConfig) -> "ICPAligner":
        return cls(
            max_correspondence_distance=config.max_correspondence_distance,
            max_iterations=config.max_iterations,
            tolerance=config.tolerance,
            min_correspondences=config.min_correspondences,
        )

    def align(
        self,
        source: Observation,
        target: Observation,
        initial_guess: Optional[Pose] = None,
    ) -> AlignmentResult:
        """Align ``source`` onto ``target``.

        Args:
            source: Observation of the newer node.
            target: Observation of the older node.
            initial_guess: Initial estimate of the source pose in the target frame.

        Returns:
            AlignmentResult with the refined transform and its information matrix.

        Raises:
            AlignmentFailure: If there are too few correspondences or ICP does not
                converge within ``max_iterations``.
        """
        if source.dim != target.dim:
            raise AlignmentFailure("Source and target observations have different dimensions")
        pose_type: Type[Pose] = SE2Pose if source.dim == 2 else SE3Pose
        if initial_guess is not None and not isinstance(initial_guess, pose_type):
            raise AlignmentFailure(
                f"Initial guess must be a {pose_type.__name__} for {source.dim}D observations"
            )
        if len(source) < self.min_correspondences or len(target) < self.min_correspondences:
            raise AlignmentFailure(
                f"Not enough points to align ({len(source)} source, {len(target)} target)"
            )

        tree = cKDTree(target.points)
        transform = initial_guess.copy() if initial_guess is not None else pose_type.identity()
        prev_mse = np.inf
        converged = False
        iteration = 0

        while iteration < self.max_iterations:
            iteration += 1
            moved = transform.transform_points(source.points)
            src_idx, tgt_idx, distances = self._correspondences(tree, moved)
            if src_idx.size < self.min_correspondences:
                raise AlignmentFailure(
                    f"Only {src_idx.size} correspondences within "
                    f"{self.max_correspondence_distance} m"
                )

            mse = float(np.mean(distances**2))
            increment = self._fit(moved[src_idx], target.points[tgt_idx], pose_type)
            transform = increment.compose(transform)

            small_step = (
                increment.translation_norm() < self.tolerance
                and increment.rotation_angle() < self.tolerance
            )
            if small_step or abs(prev_mse - mse) < self.tolerance:
                converged = True
                break
            prev_mse = mse

        if not converged:
            raise AlignmentFailure(f"ICP did not converge within {self.max_iterations} iterations")

        moved = transform.transform_points(source.points)
        src_idx, _, distances = self._correspondences(tree, moved)
        if src_idx.size < self.min_correspondences:
            raise AlignmentFailure(f"Only {src_idx.size} correspondences after convergence")

        mse = float(np.mean(distances**2))
        quality = src_idx.size / len(source)
        information = self._information(source.points[src_idx], mse, pose_type)
        logger.debug(
            "ICP converged after %d iterations: quality %.3f, mse %.3g", iteration, quality, mse
        )
        return AlignmentResult(
            transform=transform,
            information=information,
            quality=float(quality),
            mse=mse,
            iterations=iteration,
            num_correspondences=int(src_idx.size),
        )

    def _correspondences(
        self, tree: cKDTree, points: npt.NDArray[np.float64]
    ) -> Tuple[npt.NDArray[np.int64], npt.NDArray[np.int64], npt.NDArray[np.float64]]:
        distances, indices = tree.query(
            points, distance_upper_bound=self.max_correspondence_distance
        )
        valid = np.isfinite(distances)
        return np.flatnonzero(valid), indices[valid], distances[valid]

    @staticmethod
    def _fit(
        source: npt.NDArray[np.float64],
        target: npt.NDArray[np.float64],
        pose_type: Type[Pose],
    ) -> Pose:
        """Least-squares rigid transform mapping ``source`` onto ``target``."""
        source_center = source.mean(axis=0)
        target_center = target.mean(axis=0)
        H = (source - source_center).T @ (target - target_center)
        U, _, Vt = np.linalg.svd(H)
        R = Vt.T @ U.T

        # Handle reflection case
        if np.linalg.det(R) < 0:
            Vt[-1, :] *= -1
            R = Vt.T @ U.T

        t = target_center - R @ source_center
        T = np.eye(source.shape[1] + 1)
        T[:-1, :-1] = R
        T[:-1, -1] = t
        return pose_type.from_matrix(T)

    def _information(
        self,
        points: npt.NDArray[np.float64],
        mse: float,
        pose_type: Type[Pose],
    ) -> npt.NDArray[np.float64]:
        """Gauss-Newton information of the fit, scaled by the residual variance."""
        dof = pose_type.dof
        JtJ = np.zeros((dof, dof))
        if pose_type is SE2Pose:
            for px, py in points:
                J = np.array([[1.0, 0.0, -py], [0.0, 1.0, px]])
                JtJ += J.T @ J
        else:
            for p in points:
                J = np.hstack([np.eye(3), -skew_symmetric(p)])
                JtJ += J.T @ J
        information = JtJ / max(mse, self.mse_floor)
        return 0.5 * (information + information.T)
