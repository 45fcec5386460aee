"""Tests for pairwise-consistent loop closure."""

from typing import List

import numpy as np
import pytest
from conftest import observe

from graphslam.deciders import (
    LoopCloserERD,
    Partition,
    pairwise_consistency,
    select_consistent_subset,
)
from graphslam.exceptions import InconsistentLoopCandidates
from graphslam.pose_graph import Edge, EdgeType, PoseGraph, SE2Pose
from graphslam.utils.config import LoopCloserConfig

LOOP_CONFIG = LoopCloserConfig(
    partition_radius=1.5, consistency_tolerance=0.1, min_node_id_gap=5, max_candidates=3
)


def run_loop(poses: List[SE2Pose], landmarks: np.ndarray, decider: LoopCloserERD) -> PoseGraph:
    """Feed exact odometry nodes through the loop closer, adding what it returns."""
    graph = PoseGraph(SE2Pose)
    information = np.eye(3) * 100.0
    for k, pose in enumerate(poses):
        if k == 0:
            node = graph.initialize(pose, timestamp=0.0)
        else:
            node = graph.add_node(pose, timestamp=float(k))
            relative = poses[k - 1].between(pose)
            graph.add_edge(Edge(k - 1, k, relative, information, EdgeType.ODOMETRY))
        for edge in decider.consider(node, observe(landmarks, pose, float(k)), graph):
            graph.add_edge(edge)
    return graph


def hypothesis(graph: PoseGraph, candidate: int, node: int, offset: float = 0.0) -> Edge:
    """Loop edge from the true relative pose, optionally shifted along x."""
    relative = graph.get_pose(candidate).between(graph.get_pose(node))
    relative = SE2Pose(relative.x + offset, relative.y, relative.theta)
    return Edge(candidate, node, relative, np.eye(3) * 100.0, EdgeType.LOOP_CLOSURE)


class TestPartition:
    """Test spatial partitions."""

    def test_running_mean_centre(self) -> None:
        """Test that the centre is the mean of the member positions."""
        partition = Partition(centre=np.array([0.0, 0.0]), members=[0])
        partition.add(1, np.array([2.0, 0.0]))
        partition.add(2, np.array([1.0, 3.0]))

        assert partition.members == [0, 1, 2]
        assert np.allclose(partition.centre, [1.0, 1.0])


class TestPairwiseConsistency:
    """Test the consistency score of two hypotheses."""

    @pytest.fixture
    def graph(self, square_graph: PoseGraph) -> PoseGraph:
        square_graph.add_node(SE2Pose(0.5, 0.5, 0.0))
        return square_graph

    def test_consistent_pair(self, graph: PoseGraph) -> None:
        """Test that two exact hypotheses score one."""
        score = pairwise_consistency(hypothesis(graph, 0, 4), hypothesis(graph, 2, 4), graph)
        assert np.isclose(score, 1.0)

    def test_inconsistent_pair(self, graph: PoseGraph) -> None:
        """Test that a hypothesis off by one meter scores near zero."""
        score = pairwise_consistency(
            hypothesis(graph, 0, 4), hypothesis(graph, 2, 4, offset=1.0), graph
        )
        assert score < 1e-3

    def test_disconnected_candidates(self) -> None:
        """Test that candidates without a connecting path score zero."""
        graph = PoseGraph(SE2Pose)
        graph.initialize()
        graph.add_node(SE2Pose(1.0, 0.0, 0.0))
        graph.add_node(SE2Pose(0.0, 1.0, 0.0))

        assert pairwise_consistency(hypothesis(graph, 0, 2), hypothesis(graph, 1, 2), graph) == 0.0


class TestSelectConsistentSubset:
    """Test maximum-clique selection."""

    def test_largest_clique(self) -> None:
        """Test that the largest consistent set wins."""
        scores = np.eye(4)
        for a, b in [(0, 1), (0, 2), (1, 2)]:
            scores[a, b] = scores[b, a] = 0.8
        scores[2, 3] = scores[3, 2] = 0.9

        assert select_consistent_subset(scores, 0.1, [10, 11, 12, 13]) == [0, 1, 2]

    def test_tie_broken_by_mean_score(self) -> None:
        """Test that equally large sets are ranked by mean score."""
        scores = np.eye(4)
        scores[0, 1] = scores[1, 0] = 0.5
        scores[2, 3] = scores[3, 2] = 0.9

        assert select_consistent_subset(scores, 0.1, [1, 2, 3, 4]) == [2, 3]

    def test_tie_broken_by_node_ids(self) -> None:
        """Test that fully tied sets prefer the oldest nodes."""
        scores = np.eye(4)
        scores[0, 1] = scores[1, 0] = 0.7
        scores[2, 3] = scores[3, 2] = 0.7

        assert select_consistent_subset(scores, 0.1, [20, 21, 5, 6]) == [2, 3]

    def test_no_pairs(self) -> None:
        """Test that without consistent pairs a single hypothesis is returned."""
        scores = np.eye(3)
        assert len(select_consistent_subset(scores, 0.1, [3, 1, 2])) == 1


class TestLoopCloserERD:
    """Test the loop closer end to end on exact data."""

    def test_closes_the_loop(self, square_loop_poses: List[SE2Pose], landmarks: np.ndarray) -> None:
        """Test that returning to the start produces loop closures to the first nodes."""
        decider = LoopCloserERD(LOOP_CONFIG)
        graph = run_loop(square_loop_poses, landmarks, decider)

        accepted = sorted(edge.from_node_id for edge in decider.last_accepted)
        assert accepted == [0, 1, 2]
        assert all(edge.to_node_id == 12 for edge in decider.last_accepted)
        assert decider.counters["loop_closures"] >= 3
        assert graph.edges_of_kind(EdgeType.LOOP_CLOSURE)
        # Every consecutive pair also got an alignment edge
        assert len(graph.edges_of_kind(EdgeType.ALIGNMENT)) == len(square_loop_poses) - 1

    def test_accepted_pairs_are_consistent(
        self, square_loop_poses: List[SE2Pose], landmarks: np.ndarray
    ) -> None:
        """Test that every accepted pair meets the consistency tolerance."""
        decider = LoopCloserERD(LOOP_CONFIG)
        run_loop(square_loop_poses, landmarks, decider)

        scores = decider.last_consistency
        count = len(decider.last_accepted)
        assert scores.shape == (count, count)
        assert np.all(scores >= LOOP_CONFIG.consistency_tolerance)

    def test_recent_nodes_are_not_candidates(
        self, square_loop_poses: List[SE2Pose], landmarks: np.ndarray
    ) -> None:
        """Test that nodes closer than the id gap never become candidates."""
        decider = LoopCloserERD(LOOP_CONFIG)
        graph = run_loop(square_loop_poses[:5], landmarks, decider)

        assert graph.edges_of_kind(EdgeType.LOOP_CLOSURE) == []
        assert decider.candidate_nodes(graph.last_node, graph) == []

    def test_inconsistent_candidates_raise(self, square_graph: PoseGraph) -> None:
        """Test that two mutually inconsistent hypotheses are rejected."""
        square_graph.add_node(SE2Pose(0.5, 0.5, 0.0))
        hypotheses = [
            hypothesis(square_graph, 0, 4),
            hypothesis(square_graph, 2, 4, offset=1.0),
        ]
        decider = LoopCloserERD(LOOP_CONFIG)

        with pytest.raises(InconsistentLoopCandidates) as excinfo:
            decider._select(hypotheses, square_graph)
        assert excinfo.value.num_candidates == 2

    def test_outlier_is_dropped(self, square_graph: PoseGraph) -> None:
        """Test that the consistent majority survives an outlier."""
        square_graph.add_node(SE2Pose(0.5, 0.5, 0.0))
        hypotheses = [
            hypothesis(square_graph, 0, 4),
            hypothesis(square_graph, 1, 4, offset=1.0),
            hypothesis(square_graph, 2, 4),
        ]
        accepted = LoopCloserERD(LOOP_CONFIG)._select(hypotheses, square_graph)
        assert [edge.from_node_id for edge in accepted] == [0, 2]

    def test_reset(self, square_loop_poses: List[SE2Pose], landmarks: np.ndarray) -> None:
        """Test that reset drops partitions and stored observations."""
        decider = LoopCloserERD(LOOP_CONFIG)
        run_loop(square_loop_poses[:4], landmarks, decider)
        decider.reset()

        assert decider.partitions == []
        assert decider.last_accepted == []
