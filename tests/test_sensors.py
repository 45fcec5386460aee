"""Tests for stream records, stream validation and the simulated sensor."""

import numpy as np
import pytest

from graphslam.exceptions import StreamFormatError
from graphslam.pose_graph import SE2Pose, SE3Pose
from graphslam.sensors import (
    Observation,
    RecordStream,
    StreamRecord,
    WallWorld,
    simulate_records,
    waypoint_trajectory,
)


class TestObservation:
    """Test Observation class."""

    def test_planar_observation(self) -> None:
        """Test creating a planar observation."""
        observation = Observation(0.5, [[1.0, 2.0], [3.0, 4.0]])

        assert observation.dim == 2
        assert len(observation) == 2
        assert observation.points.dtype == np.float64

    def test_invalid_shape(self) -> None:
        """Test that invalid point shape raises error."""
        with pytest.raises(ValueError, match=r"\(N, 2\) or \(N, 3\)"):
            Observation(0.0, np.zeros((4, 4)))

    def test_non_finite_points(self) -> None:
        """Test that NaN points raise error."""
        with pytest.raises(ValueError, match="finite"):
            Observation(0.0, [[np.nan, 0.0]])


class TestStreamRecord:
    """Test StreamRecord class."""

    def test_scan_property(self) -> None:
        """Test access to the first observation."""
        observation = Observation(0.0, np.zeros((3, 2)))
        assert StreamRecord(0.0, observations=[observation]).scan is observation
        assert StreamRecord(0.0).scan is None

    def test_invalid_motion(self) -> None:
        """Test that non-pose motion raises error."""
        with pytest.raises(ValueError, match="motion"):
            StreamRecord(0.0, motion=np.zeros(3))


class TestRecordStream:
    """Test RecordStream validation."""

    def test_valid_stream(self) -> None:
        """Test iterating a well-formed stream."""
        records = [StreamRecord(0.0), StreamRecord(0.1, motion=SE2Pose(0.1, 0.0, 0.0))]
        stream = RecordStream(records)

        assert list(stream) == records
        assert stream.index == 2
        assert stream.last_timestamp == 0.1

    def test_equal_timestamps_allowed(self) -> None:
        """Test that repeated timestamps are accepted."""
        stream = RecordStream()
        stream.validate(StreamRecord(1.0))
        stream.validate(StreamRecord(1.0))
        assert stream.index == 2

    def test_out_of_order(self) -> None:
        """Test that a decreasing timestamp is reported with its index."""
        stream = RecordStream([StreamRecord(0.0), StreamRecord(0.2), StreamRecord(0.1)])
        with pytest.raises(StreamFormatError, match="record 2") as excinfo:
            list(stream)
        assert excinfo.value.record_index == 2

    def test_wrong_motion_type(self) -> None:
        """Test that spatial motion is rejected by a planar stream."""
        stream = RecordStream(pose_type=SE2Pose)
        with pytest.raises(StreamFormatError, match="SE2Pose"):
            stream.validate(StreamRecord(0.0, motion=SE3Pose()))

    def test_non_finite_timestamp(self) -> None:
        """Test that a timestamp corrupted after construction is caught."""
        record = StreamRecord(0.0)
        record.timestamp = float("nan")
        with pytest.raises(StreamFormatError, match="not finite"):
            RecordStream().validate(record)

    def test_observation_dimension(self) -> None:
        """Test that 3D points are rejected by a planar stream."""
        record = StreamRecord(0.0, observations=[Observation(0.0, np.zeros((5, 3)))])
        with pytest.raises(StreamFormatError, match="2D"):
            RecordStream().validate(record)

    def test_not_a_record(self) -> None:
        """Test that arbitrary objects are rejected."""
        with pytest.raises(StreamFormatError, match="StreamRecord"):
            RecordStream().validate({"timestamp": 0.0})

    def test_reset(self) -> None:
        """Test that reset forgets the ordering state."""
        stream = RecordStream()
        stream.validate(StreamRecord(5.0))
        stream.reset()
        stream.validate(StreamRecord(1.0))
        assert stream.index == 1


class TestSimulation:
    """Test the simulated range sensor."""

    def test_box_segments(self) -> None:
        """Test that a box with one pillar has eight walls."""
        world = WallWorld.box(4.0, 3.0, pillars=[(1.0, 1.0, 0.5)])
        assert world.segments.shape == (8, 2, 2)

    def test_invalid_segments(self) -> None:
        """Test that invalid segment shape raises error."""
        with pytest.raises(ValueError, match="Segments"):
            WallWorld(np.zeros((3, 2)))

    def test_cast_in_empty_box(self) -> None:
        """Test ranges from the centre of an empty square room."""
        world = WallWorld.box(4.0, 4.0)
        points = world.cast(SE2Pose(2.0, 2.0, 0.0), num_beams=4)

        # Beams at -pi, -pi/2, 0, pi/2 all hit a wall 2 m away
        assert points.shape == (4, 2)
        assert np.allclose(np.linalg.norm(points, axis=1), 2.0)

    def test_cast_respects_heading(self) -> None:
        """Test that hit points are in the robot frame."""
        world = WallWorld.box(4.0, 4.0)
        points = world.cast(SE2Pose(1.0, 2.0, np.pi / 2), num_beams=1, field_of_view=0.0)

        # A single forward beam hits the top wall 2 m ahead
        assert np.allclose(points, [[2.0, 0.0]])

    def test_max_range(self) -> None:
        """Test that walls beyond the range produce no points."""
        world = WallWorld.box(40.0, 40.0)
        assert len(world.cast(SE2Pose(20.0, 20.0, 0.0), max_range=5.0)) == 0

    def test_waypoint_trajectory(self) -> None:
        """Test sampling of a straight segment."""
        poses = waypoint_trajectory([(0.0, 0.0), (1.0, 0.0)], step=0.25)

        assert len(poses) == 5
        assert np.allclose(poses[-1].translation, [1.0, 0.0])
        assert all(pose.theta == 0.0 for pose in poses)

    def test_waypoint_trajectory_needs_two_points(self) -> None:
        """Test that a single waypoint raises error."""
        with pytest.raises(ValueError, match="two waypoints"):
            waypoint_trajectory([(0.0, 0.0)])

    def test_simulated_records(self, box_world: WallWorld) -> None:
        """Test noiseless records reproduce the trajectory increments."""
        trajectory = waypoint_trajectory([(1.0, 1.0), (2.0, 1.0)], step=0.5)
        records = simulate_records(box_world, trajectory, dt=0.5)

        assert len(records) == 3
        assert records[0].motion is None
        assert [r.timestamp for r in records] == [0.0, 0.5, 1.0]
        assert records[1].motion.almost_equal(SE2Pose(0.5, 0.0, 0.0), tol=1e-12)
        assert all(len(record.observations) == 1 for record in records)
        assert records[2].scan.dim == 2
