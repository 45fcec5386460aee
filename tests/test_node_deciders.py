"""Tests for node registration deciders."""

import numpy as np
import pytest

from graphslam.deciders import (
    AlignmentCriteriaNRD,
    EmptyNRD,
    FixedIntervalsNRD,
    NodeProposal,
    create_node_decider,
)
from graphslam.exceptions import ConfigurationError, StreamFormatError
from graphslam.pose_graph import EdgeType, PoseGraph, SE2Pose, SE3Pose
from graphslam.sensors import Observation
from graphslam.utils.config import GraphSlamConfig, NodeDeciderConfig


def attached(decider, pose_type=SE2Pose):
    graph = PoseGraph(pose_type)
    graph.initialize()
    decider.attach(graph)
    return decider, graph


def shifted(points: np.ndarray, dx: float, timestamp: float = 0.0) -> Observation:
    """Points seen by a robot moved ``dx`` along x."""
    return Observation(timestamp, points - np.array([dx, 0.0]))


class TestFixedIntervalsNRD:
    """Test fixed-interval node registration."""

    def test_first_call_proposes_root(self) -> None:
        """Test that the first record binds the root."""
        decider, _ = attached(FixedIntervalsNRD())
        proposal = decider.consider(None, None, 0.0)

        assert proposal.is_root
        assert proposal.relative_pose is None
        assert proposal.pose.almost_equal(SE2Pose())

    def test_threshold_and_residual(self) -> None:
        """Test that 0.4 m adds nothing and 0.6 m adds one node with 0.1 m left over."""
        decider, _ = attached(FixedIntervalsNRD(NodeDeciderConfig(linear_distance_threshold=0.5)))
        decider.consider(None, None, 0.0)
        step = SE2Pose(0.2, 0.0, 0.0)

        assert decider.consider(step, None, 0.1) is None
        assert decider.consider(step, None, 0.2) is None
        proposal = decider.consider(step, None, 0.3)

        assert proposal is not None
        assert proposal.from_node_id == 0
        assert proposal.edge_type is EdgeType.ODOMETRY
        assert np.isclose(proposal.relative_pose.x, 0.6)
        assert np.isclose(decider.accumulated_distance, 0.1)
        assert decider.accumulated_motion.almost_equal(SE2Pose())

    def test_angular_threshold(self) -> None:
        """Test that turning in place registers a node."""
        config = NodeDeciderConfig(angular_distance_threshold=0.5)
        decider, _ = attached(FixedIntervalsNRD(config))
        decider.consider(None, None, 0.0)

        assert decider.consider(SE2Pose(0.0, 0.0, 0.3), None, 1.0) is None
        proposal = decider.consider(SE2Pose(0.0, 0.0, 0.3), None, 2.0)

        assert proposal is not None
        assert np.isclose(proposal.pose.theta, 0.6)
        # The linear accumulator did not fire and starts over
        assert decider.accumulated_distance == 0.0
        assert np.isclose(decider.accumulated_angle, 0.1)

    def test_proposal_composes_on_last_node(self) -> None:
        """Test that the proposed pose is relative to the latest node."""
        decider, graph = attached(FixedIntervalsNRD())
        decider.consider(None, None, 0.0)
        graph.add_node(SE2Pose(1.0, 1.0, np.pi / 2))

        proposal = decider.consider(SE2Pose(0.6, 0.0, 0.0), None, 1.0)

        assert proposal.from_node_id == 1
        assert np.allclose(proposal.pose.translation, [1.0, 1.6])

    def test_out_of_order_timestamp(self) -> None:
        """Test that decreasing timestamps raise a stream error."""
        decider, _ = attached(FixedIntervalsNRD())
        decider.consider(None, None, 1.0)
        with pytest.raises(StreamFormatError, match="precedes"):
            decider.consider(SE2Pose(0.1, 0.0, 0.0), None, 0.5)

    def test_odometry_information(self) -> None:
        """Test that configured sigmas define the odometry information."""
        config = NodeDeciderConfig(odometry_sigmas=[0.1, 0.1, 0.05])
        decider = FixedIntervalsNRD(config)
        assert np.allclose(np.diag(decider.odometry_information), [100.0, 100.0, 400.0])

    def test_spatial_defaults(self) -> None:
        """Test default information size for spatial poses."""
        decider = FixedIntervalsNRD(pose_type=SE3Pose)
        assert decider.odometry_information.shape == (6, 6)

    def test_reset(self) -> None:
        """Test that reset starts over with a root proposal."""
        decider, _ = attached(FixedIntervalsNRD())
        decider.consider(None, None, 5.0)
        decider.consider(SE2Pose(0.3, 0.0, 0.0), None, 6.0)
        decider.reset()

        assert decider.accumulated_distance == 0.0
        assert decider.consider(None, None, 0.0).is_root


class TestAlignmentCriteriaNRD:
    """Test alignment-based node registration."""

    def test_alignment_edge(self, grid_points: np.ndarray) -> None:
        """Test that the registered edge comes from alignment."""
        decider, _ = attached(AlignmentCriteriaNRD())
        decider.consider(None, shifted(grid_points, 0.0), 0.0)
        decider.consider(SE2Pose(0.3, 0.0, 0.0), shifted(grid_points, 0.3), 1.0)
        proposal = decider.consider(SE2Pose(0.3, 0.0, 0.0), shifted(grid_points, 0.6), 2.0)

        assert proposal.edge_type is EdgeType.ALIGNMENT
        assert proposal.relative_pose.almost_equal(SE2Pose(0.6, 0.0, 0.0), tol=1e-6)
        assert proposal.observation is not None

    def test_motion_from_consecutive_alignment(self, grid_points: np.ndarray) -> None:
        """Test that motion is recovered from observations when odometry is absent."""
        decider, _ = attached(AlignmentCriteriaNRD())
        decider.consider(None, shifted(grid_points, 0.0), 0.0)

        assert decider.consider(None, shifted(grid_points, 0.3), 1.0) is None
        assert np.isclose(decider.accumulated_distance, 0.3)
        proposal = decider.consider(None, shifted(grid_points, 0.6), 2.0)

        assert proposal.edge_type is EdgeType.ALIGNMENT
        assert np.isclose(proposal.relative_pose.x, 0.6)

    def test_falls_back_to_odometry(self, grid_points: np.ndarray) -> None:
        """Test odometry fallback when the observation cannot be aligned."""
        decider, _ = attached(AlignmentCriteriaNRD())
        decider.consider(None, shifted(grid_points, 0.0), 0.0)
        sparse = Observation(1.0, np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]]))

        proposal = decider.consider(SE2Pose(0.6, 0.0, 0.0), sparse, 1.0)

        assert proposal.edge_type is EdgeType.ODOMETRY
        assert decider.counters["odometry_fallbacks"] == 1
        assert decider.counters["alignment_failures"] == 1

    def test_defers_without_odometry(self, grid_points: np.ndarray) -> None:
        """Test that a node is deferred when neither alignment nor odometry is usable."""
        decider, _ = attached(AlignmentCriteriaNRD())
        decider.consider(None, None, 0.0)
        decider.consider(None, shifted(grid_points, 0.0), 1.0)
        decider.consider(None, shifted(grid_points, 0.3), 2.0)

        assert decider.consider(None, shifted(grid_points, 0.6), 3.0) is None
        assert decider.counters["deferred_nodes"] == 1

    def test_low_quality_is_counted(self, grid_points: np.ndarray) -> None:
        """Test that a low quality alignment is rejected."""
        decider, _ = attached(AlignmentCriteriaNRD(alignment_quality_threshold=0.9))
        decider.consider(None, Observation(0.0, grid_points), 0.0)
        half = np.vstack([grid_points[:50] - [0.6, 0.0], grid_points[:50] + 100.0])

        proposal = decider.consider(SE2Pose(0.6, 0.0, 0.0), Observation(1.0, half), 1.0)

        assert proposal.edge_type is EdgeType.ODOMETRY
        assert decider.counters["low_quality_alignments"] == 1


class TestEmptyNRD:
    """Test the no-op node decider."""

    def test_never_registers(self) -> None:
        """Test that not even a root proposal is made."""
        decider, _ = attached(EmptyNRD())
        assert decider.consider(None, None, 0.0) is None
        assert decider.consider(SE2Pose(10.0, 0.0, 0.0), None, 1.0) is None

    def test_still_checks_order(self) -> None:
        """Test that ordering errors are still reported."""
        decider, _ = attached(EmptyNRD())
        decider.consider(None, None, 2.0)
        with pytest.raises(StreamFormatError):
            decider.consider(None, None, 1.0)


class TestNodeProposal:
    """Test NodeProposal validation."""

    def test_root_with_edge(self) -> None:
        """Test that a root proposal cannot carry an edge."""
        with pytest.raises(ValueError, match="Root proposal"):
            NodeProposal(SE2Pose(), 0.0, relative_pose=SE2Pose(), is_root=True)

    def test_incomplete_edge(self) -> None:
        """Test that the connecting edge must be complete."""
        with pytest.raises(ValueError, match="source node"):
            NodeProposal(SE2Pose(), 0.0, relative_pose=SE2Pose())

    def test_make_edge(self) -> None:
        """Test creation of the connecting edge."""
        proposal = NodeProposal(
            SE2Pose(1.0, 0.0, 0.0),
            1.0,
            from_node_id=0,
            relative_pose=SE2Pose(1.0, 0.0, 0.0),
            information=np.eye(3),
            edge_type=EdgeType.ODOMETRY,
        )
        edge = proposal.make_edge(1)

        assert (edge.from_node_id, edge.to_node_id) == (0, 1)
        assert edge.timestamp == 1.0


class TestFactory:
    """Test node decider lookup by name."""

    def test_known_names(self) -> None:
        """Test creating each registered decider."""
        config = GraphSlamConfig()
        decider = create_node_decider("fixed_intervals", config, SE2Pose)
        assert isinstance(decider, FixedIntervalsNRD)
        assert isinstance(create_node_decider("empty", config, SE2Pose), EmptyNRD)
        decider = create_node_decider("alignment_criteria", config, SE2Pose)
        assert decider.alignment_quality_threshold == config.alignment.alignment_quality_threshold

    def test_unknown_name(self) -> None:
        """Test that unknown names raise a configuration error."""
        with pytest.raises(ConfigurationError, match="Unknown node registration decider"):
            create_node_decider("every_record", GraphSlamConfig(), SE2Pose)
