"""Graph-SLAM engine orchestrating deciders, optimizer and observers."""

from .engine import EngineResult, EngineState, GraphSlamEngine, StepReport
from .ground_truth import GroundTruth
from .statistics import PoseError, RunStatistics, StageTimer, StepStatistics

__all__ = [
    "EngineResult",
    "EngineState",
    "GraphSlamEngine",
    "GroundTruth",
    "PoseError",
    "RunStatistics",
    "StageTimer",
    "StepReport",
    "StepStatistics",
]
