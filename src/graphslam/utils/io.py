"""Input/Output utilities for record streams, ground truth and results."""

import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Type

import numpy as np
import pandas as pd

from ..engine.ground_truth import GroundTruth
from ..engine.statistics import RunStatistics
from ..exceptions import StreamFormatError
from ..pose_graph import PoseGraph
from ..pose_graph.pose import Pose, SE2Pose, SE3Pose
from ..sensors.data import Observation, StreamRecord
from .conversions import rotation_matrix_to_quaternion


def _parse_record(data: Dict[str, Any], pose_type: Type[Pose]) -> StreamRecord:
    if not isinstance(data, dict):
        raise ValueError("record must be a JSON object")
    if "timestamp" not in data:
        raise ValueError("record has no timestamp")
    timestamp = float(data["timestamp"])

    motion = None
    if data.get("motion") is not None:
        motion = pose_type.from_vector(data["motion"])

    observations = []
    if data.get("scan") is not None:
        points = np.asarray(data["scan"], dtype=np.float64).reshape(-1, pose_type.dim)
        observations.append(Observation(timestamp=timestamp, points=points))

    return StreamRecord(timestamp=timestamp, motion=motion, observations=observations)


def load_records(filepath: Path, pose_type: Type[Pose] = SE2Pose) -> List[StreamRecord]:
    """Load stream records from a JSON-lines file.

    Each non-empty line is an object with ``timestamp``, an optional ``motion``
    vector (``[x, y, theta]`` or ``[x, y, z, roll, pitch, yaw]``) and an optional
    ``scan`` given as a list of points in the robot frame.

    Args:
        filepath: Path to the records file.
        pose_type: Pose type of the motion increments.

    Returns:
        List of StreamRecord in file order.

    Raises:
        StreamFormatError: If a line cannot be parsed.
    """
    filepath = Path(filepath)
    if not filepath.exists():
        raise FileNotFoundError(f"Records file not found: {filepath}")

    records = []
    with open(filepath, "r") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                records.append(_parse_record(json.loads(line), pose_type))
            except (ValueError, TypeError, KeyError) as exc:
                raise StreamFormatError(str(exc), record_index=len(records)) from exc
    return records


def save_records(records: Iterable[StreamRecord], filepath: Path) -> None:
    """Write stream records as JSON lines readable by :func:`load_records`.

    Args:
        records: Records to write.
        filepath: Output file path.
    """
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)
    with open(filepath, "w") as f:
        for record in records:
            scan = record.scan
            motion = record.motion
            data = {
                "timestamp": record.timestamp,
                "motion": None if motion is None else motion.vector().tolist(),
                "scan": None if scan is None else scan.points.tolist(),
            }
            f.write(json.dumps(data) + "\n")


def load_ground_truth(filepath: Path, max_time_difference: float = 0.05) -> GroundTruth:
    """Load a ground-truth trajectory.

    Expected whitespace-separated format, one pose per line:
    timestamp x y z qx qy qz qw

    Args:
        filepath: Path to the ground-truth file.
        max_time_difference: Largest timestamp gap accepted when matching nodes.

    Returns:
        GroundTruth instance.
    """
    filepath = Path(filepath)
    if not filepath.exists():
        raise FileNotFoundError(f"Ground-truth file not found: {filepath}")

    data = pd.read_csv(filepath, sep=r"\s+", header=None, comment="#")
    return GroundTruth.from_array(data.to_numpy(dtype=np.float64), max_time_difference)


def save_node_poses(graph: PoseGraph, filepath: Path) -> None:
    """Export the current node estimates.

    Planar graphs are written as ``id timestamp x y theta``, spatial graphs as
    ``id timestamp x y z qx qy qz qw``.

    Args:
        graph: The pose graph to export.
        filepath: Output file path.
    """
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    rows = []
    for node_id in sorted(graph.nodes):
        node = graph.nodes[node_id]
        timestamp = np.nan if node.timestamp is None else node.timestamp
        if isinstance(node.pose, SE3Pose):
            w, x, y, z = rotation_matrix_to_quaternion(node.pose.rotation)
            rows.append([node_id, timestamp, *node.pose.translation, x, y, z, w])
        else:
            rows.append([node_id, timestamp, node.pose.x, node.pose.y, node.pose.theta])

    if graph.pose_type is SE3Pose:
        columns = ["id", "timestamp", "x", "y", "z", "qx", "qy", "qz", "qw"]
    else:
        columns = ["id", "timestamp", "x", "y", "theta"]
    frame = pd.DataFrame(rows, columns=columns).astype({"id": int})
    frame.to_csv(filepath, sep=" ", index=False, float_format="%.9g")


def save_statistics(statistics: RunStatistics, directory: Path) -> None:
    """Write the run summary (JSON) and the per-step statistics (CSV).

    Args:
        statistics: Statistics of a finished run.
        directory: Output directory.
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)

    with open(directory / "summary.json", "w") as f:
        json.dump(statistics.summary(), f, indent=2)

    steps = pd.DataFrame(
        [
            {
                "index": step.index,
                "timestamp": step.timestamp,
                "nodes": step.num_nodes,
                "edges": step.num_edges,
                "node_added": step.node_added,
                "edges_added": step.edges_added,
                "loop_closures": step.loop_closures,
                "optimized": step.optimized,
                **{f"time_{stage}": elapsed for stage, elapsed in step.timings.items()},
            }
            for step in statistics.steps
        ]
    )
    steps.to_csv(directory / "steps.csv", index=False)

    if statistics.pose_errors:
        errors = pd.DataFrame([vars(error) for error in statistics.pose_errors])
        errors.to_csv(directory / "pose_errors.csv", index=False)

    if statistics.online_pose_errors:
        online = pd.DataFrame([vars(error) for error in statistics.online_pose_errors])
        online.to_csv(directory / "online_pose_errors.csv", index=False)


