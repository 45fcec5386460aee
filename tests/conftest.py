"""Pytest configuration and fixtures."""

from typing import List

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pytest

from graphslam.pose_graph import Edge, EdgeType, PoseGraph, SE2Pose
from graphslam.sensors import Observation, WallWorld


def make_square_graph(perturbation: float = 0.0, seed: int = 0) -> PoseGraph:
    """Four-node unit square with exact odometry and an exact loop closure.

    Args:
        perturbation: Standard deviation of the noise added to the initial estimates
            of the non-root nodes.
        seed: Random seed of the perturbation.
    """
    rng = np.random.default_rng(seed)
    truth = [
        SE2Pose(0.0, 0.0, 0.0),
        SE2Pose(1.0, 0.0, np.pi / 2),
        SE2Pose(1.0, 1.0, np.pi),
        SE2Pose(0.0, 1.0, -np.pi / 2),
    ]
    graph = PoseGraph(SE2Pose)
    graph.initialize(truth[0], timestamp=0.0)
    for k, pose in enumerate(truth[1:], start=1):
        noisy = pose.retract(rng.normal(0.0, perturbation, 3)) if perturbation else pose
        graph.add_node(noisy, timestamp=float(k))

    step = SE2Pose(1.0, 0.0, np.pi / 2)
    information = np.eye(3) * 100.0
    for i in range(3):
        graph.add_edge(Edge(i, i + 1, step, information, EdgeType.ODOMETRY))
    graph.add_edge(Edge(3, 0, step, information, EdgeType.LOOP_CLOSURE))
    return graph


def observe(points: np.ndarray, pose: SE2Pose, timestamp: float = 0.0) -> Observation:
    """Express world points in the frame of ``pose``."""
    return Observation(timestamp=timestamp, points=pose.inverse().transform_points(points))


@pytest.fixture
def square_graph() -> PoseGraph:
    """Unperturbed square graph."""
    return make_square_graph()


@pytest.fixture
def landmarks() -> np.ndarray:
    """Random planar point cloud used as a perfectly observable world."""
    rng = np.random.default_rng(42)
    return rng.uniform(-2.0, 5.0, size=(150, 2))


@pytest.fixture
def grid_points() -> np.ndarray:
    """10x10 grid of points with 1 m spacing."""
    xs, ys = np.meshgrid(np.arange(10.0), np.arange(10.0))
    return np.column_stack([xs.ravel(), ys.ravel()])


@pytest.fixture
def box_world() -> WallWorld:
    """10 m x 8 m room with two pillars."""
    return WallWorld.box(10.0, 8.0, pillars=[(3.0, 3.0, 1.0), (7.0, 5.0, 1.0)])


@pytest.fixture
def square_loop_poses() -> List[SE2Pose]:
    """Poses every meter around a 3 m square, ending where it started."""
    corners = [(0, 0), (3, 0), (3, 3), (0, 3), (0, 0)]
    poses = []
    for (x0, y0), (x1, y1) in zip(corners[:-1], corners[1:]):
        heading = float(np.arctan2(y1 - y0, x1 - x0))
        for s in range(3):
            poses.append(SE2Pose(x0 + s * (x1 - x0) / 3, y0 + s * (y1 - y0) / 3, heading))
    poses.append(SE2Pose(0.0, 0.0, poses[-1].theta))
    return poses
