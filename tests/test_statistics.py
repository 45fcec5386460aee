"""Tests for run statistics and ground-truth evaluation."""

import numpy as np
import pytest

from graphslam.engine import GroundTruth, PoseError, RunStatistics, StageTimer, StepStatistics
from graphslam.pose_graph import (
    ConvergenceStatus,
    OptimizationResult,
    PoseNode,
    SE2Pose,
    SE3Pose,
)


class TestStageTimer:
    """Test stage timing."""

    def test_accumulates_per_stage(self) -> None:
        """Test that repeated stages add up."""
        timer = StageTimer()
        with timer.stage("a"):
            pass
        with timer.stage("a"):
            pass
        with timer.stage("b"):
            pass

        assert set(timer.timings) == {"a", "b"}
        assert all(value >= 0.0 for value in timer.timings.values())

    def test_records_time_on_error(self) -> None:
        """Test that a failing stage is still timed."""
        timer = StageTimer()
        with pytest.raises(KeyError):
            with timer.stage("fails"):
                raise KeyError("x")
        assert "fails" in timer.timings


class TestRunStatistics:
    """Test run summaries."""

    def test_empty(self) -> None:
        """Test statistics of a run without records."""
        statistics = RunStatistics()

        assert statistics.num_nodes == 0
        assert statistics.translation_rmse() is None
        assert statistics.summary()["records"] == 0

    def test_summary(self) -> None:
        """Test aggregated numbers."""
        statistics = RunStatistics()
        statistics.steps = [
            StepStatistics(0, 0.0, 1, 0, timings={"node_registration": 0.5}),
            StepStatistics(1, 0.1, 2, 2, True, 2, 1, True, {"node_registration": 0.25}),
        ]
        statistics.optimizations = [
            OptimizationResult(ConvergenceStatus.CONVERGED, 3, 1.0, 0.0),
            OptimizationResult(ConvergenceStatus.MAX_ITERATIONS, 100, 1.0, 0.5),
            OptimizationResult(ConvergenceStatus.STALLED, 14, 1.0, 0.25),
        ]
        statistics.rejections["alignment_failures"] += 2
        statistics.pose_errors = [PoseError(0, 0.0, 3.0, 0.0), PoseError(1, 0.1, 4.0, 0.0)]

        summary = statistics.summary()

        assert summary["nodes"] == 2
        assert summary["edges"] == 2
        assert summary["loop_closures"] == 1
        assert summary["optimizer_runs"] == 3
        assert summary["optimizer_non_converged"] == 1
        assert summary["optimizer_stalled"] == 1
        assert summary["rejections"] == {"alignment_failures": 2}
        assert summary["stage_time"] == {"node_registration": 0.75}
        assert np.isclose(summary["translation_rmse"], np.sqrt(12.5))


class TestGroundTruth:
    """Test ground-truth lookups."""

    @pytest.fixture
    def ground_truth(self) -> GroundTruth:
        poses = [SE2Pose(2.0, 1.0, np.pi / 2), SE2Pose(2.0, 2.0, np.pi / 2)]
        return GroundTruth.from_planar([10.0, 11.0], poses, max_time_difference=0.1)

    def test_poses_relative_to_first(self, ground_truth: GroundTruth) -> None:
        """Test that the first pose is the origin."""
        assert ground_truth.pose_at(10.0).almost_equal(SE3Pose(), tol=1e-9)
        assert np.allclose(ground_truth.pose_at(11.05).translation, [1.0, 0.0, 0.0])

    def test_no_pose_near_timestamp(self, ground_truth: GroundTruth) -> None:
        """Test lookups outside the time tolerance."""
        assert ground_truth.pose_at(10.5) is None
        assert ground_truth.error(PoseNode(0, SE2Pose(), timestamp=20.0)) is None
        assert ground_truth.error(PoseNode(0, SE2Pose())) is None

    def test_align_to(self, ground_truth: GroundTruth) -> None:
        """Test re-anchoring at a later pose."""
        assert ground_truth.align_to(11.0)
        assert ground_truth.pose_at(11.0).almost_equal(SE3Pose(), tol=1e-9)
        assert not ground_truth.align_to(50.0)

    def test_planar_error(self, ground_truth: GroundTruth) -> None:
        """Test the error of a planar node estimate."""
        error = ground_truth.error(PoseNode(1, SE2Pose(1.0, 0.5, 0.2), timestamp=11.0))

        assert error.node_id == 1
        assert np.isclose(error.translation_error, 0.5)
        assert np.isclose(error.rotation_error, 0.2)

    def test_spatial_from_array(self) -> None:
        """Test construction from timestamp, position and quaternion rows."""
        data = np.array([[0.0, 1.0, 1.0, 1.0, 0.0, 0.0, 0.0, 1.0]])
        ground_truth = GroundTruth.from_array(data)
        node = PoseNode(0, SE3Pose.from_xyz_rpy(0.0, 0.0, 0.3, 0.0, 0.0, 0.0), timestamp=0.0)

        assert np.isclose(ground_truth.error(node).translation_error, 0.3)

    def test_unsorted_timestamps(self) -> None:
        """Test that timestamps must be sorted."""
        with pytest.raises(ValueError, match="sorted"):
            GroundTruth.from_planar([1.0, 0.0], [SE2Pose(), SE2Pose()])
