"""Pose graph optimization using the GTSAM backend solvers."""

import time

import gtsam
import numpy as np
import numpy.typing as npt

from .graph import PoseGraph
from .optimizer import ConvergenceStatus, GraphOptimizer, OptimizationResult
from .pose import Pose, SE2Pose, SE3Pose

# GTSAM orders Pose3 tangent vectors as [rotation, translation]
_POSE3_PERMUTATION = np.array([3, 4, 5, 0, 1, 2])


def to_gtsam_pose(pose: Pose):
    """Convert an SE2Pose/SE3Pose into a GTSAM Pose2/Pose3.

    Args:
        pose: Pose to convert.

    Returns:
        GTSAM pose object.
    """
    if isinstance(pose, SE2Pose):
        return gtsam.Pose2(pose.x, pose.y, pose.theta)
    R = np.ascontiguousarray(pose.rotation, dtype=np.float64)
    t = pose.translation
    return gtsam.Pose3(gtsam.Rot3(R), gtsam.Point3(float(t[0]), float(t[1]), float(t[2])))


def from_gtsam_pose(pose) -> Pose:
    """Convert a GTSAM Pose2/Pose3 back into an SE2Pose/SE3Pose.

    Args:
        pose: GTSAM pose object.

    Returns:
        Equivalent SE2Pose or SE3Pose.
    """
    if isinstance(pose, gtsam.Pose2):
        return SE2Pose(pose.x(), pose.y(), pose.theta())
    return SE3Pose(pose.rotation().matrix(), np.asarray(pose.translation(), dtype=np.float64))


def to_gtsam_information(
    information: npt.NDArray[np.float64], pose_type: type
) -> npt.NDArray[np.float64]:
    """Reorder an information matrix into GTSAM's tangent ordering."""
    if pose_type is SE3Pose:
        p = _POSE3_PERMUTATION
        return np.ascontiguousarray(information[np.ix_(p, p)], dtype=np.float64)
    return np.ascontiguousarray(information, dtype=np.float64)


class GtsamOptimizer(GraphOptimizer):
    """Optimizes pose graphs with GTSAM's Levenberg-Marquardt solver.

    The root node is held by a ``NonlinearEquality`` factor and is never written
    back, so it behaves exactly like the gauge fix of the native optimizer.
    """

    name = "gtsam"

    def optimize(self, graph: PoseGraph) -> OptimizationResult:
        start_time = time.perf_counter()
        initial_error = graph.total_error()
        if not graph.edges:
            return OptimizationResult(
                status=ConvergenceStatus.NOTHING_TO_OPTIMIZE,
                iterations=0,
                initial_error=initial_error,
                final_error=initial_error,
                elapsed=time.perf_counter() - start_time,
            )

        is_planar = graph.pose_type is SE2Pose
        factors = gtsam.NonlinearFactorGraph()
        values = gtsam.Values()

        connected = {e.from_node_id for e in graph.edges} | {e.to_node_id for e in graph.edges}
        for node_id, node in graph.nodes.items():
            if node_id not in connected and not node.fixed:
                continue
            key = gtsam.symbol("x", node_id)
            pose = to_gtsam_pose(node.pose)
            values.insert(key, pose)
            if node.fixed:
                if is_planar:
                    factors.add(gtsam.NonlinearEqualityPose2(key, pose))
                else:
                    factors.add(gtsam.NonlinearEqualityPose3(key, pose))

        between = gtsam.BetweenFactorPose2 if is_planar else gtsam.BetweenFactorPose3
        for edge in graph.edges:
            noise = gtsam.noiseModel.Gaussian.Information(
                to_gtsam_information(edge.information_matrix, graph.pose_type)
            )
            factors.add(
                between(
                    gtsam.symbol("x", edge.from_node_id),
                    gtsam.symbol("x", edge.to_node_id),
                    to_gtsam_pose(edge.relative_pose),
                    noise,
                )
            )

        params = gtsam.LevenbergMarquardtParams()
        params.setMaxIterations(self.max_iterations)
        params.setAbsoluteErrorTol(self.convergence_tolerance)
        params.setRelativeErrorTol(self.convergence_tolerance)
        params.setlambdaInitial(self.initial_damping)
        optimizer = gtsam.LevenbergMarquardtOptimizer(factors, values, params)
        result = optimizer.optimize()
        iterations = int(optimizer.iterations())

        for node_id, node in graph.nodes.items():
            if node.fixed or node_id not in connected:
                continue
            key = gtsam.symbol("x", node_id)
            estimate = result.atPose2(key) if is_planar else result.atPose3(key)
            graph.set_pose(node_id, from_gtsam_pose(estimate))

        status = (
            ConvergenceStatus.MAX_ITERATIONS
            if iterations >= self.max_iterations
            else ConvergenceStatus.CONVERGED
        )
        return OptimizationResult(
            status=status,
            iterations=iterations,
            initial_error=initial_error,
            final_error=graph.total_error(),
            elapsed=time.perf_counter() - start_time,
            num_variables=len(connected - {graph.root}),
        )
