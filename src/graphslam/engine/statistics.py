"""Per-step and per-run statistics of the engine."""

import time
from collections import Counter, defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

import numpy as np

from ..pose_graph import OptimizationResult


class StageTimer:
    """Accumulates wall-clock time per named stage."""

    def __init__(self) -> None:
        self.timings: Dict[str, float] = defaultdict(float)

    @contextmanager
    def stage(self, name: str) -> Iterator[None]:
        start = time.perf_counter()
        try:
            yield
        finally:
            self.timings[name] += time.perf_counter() - start


@dataclass
class StepStatistics:
    """What happened while processing one record."""

    index: int
    timestamp: float
    num_nodes: int
    num_edges: int
    node_added: bool = False
    edges_added: int = 0
    loop_closures: int = 0
    optimized: bool = False
    timings: Dict[str, float] = field(default_factory=dict)


@dataclass
class PoseError:
    """Deviation of a node estimate from the ground truth."""

    node_id: int
    timestamp: float
    translation_error: float
    rotation_error: float


@dataclass
class RunStatistics:
    """Statistics of a whole run."""

    steps: List[StepStatistics] = field(default_factory=list)
    optimizations: List[OptimizationResult] = field(default_factory=list)
    rejections: Counter = field(default_factory=Counter)
    # Errors of the final estimates, filled when the run is finalized
    pose_errors: List[PoseError] = field(default_factory=list)
    # Errors of each new node at the step it was registered, before later optimization
    online_pose_errors: List[PoseError] = field(default_factory=list)

    @property
    def num_records(self) -> int:
        return len(self.steps)

    @property
    def num_nodes(self) -> int:
        return self.steps[-1].num_nodes if self.steps else 0

    @property
    def num_edges(self) -> int:
        return self.steps[-1].num_edges if self.steps else 0

    @property
    def num_loop_closures(self) -> int:
        return sum(step.loop_closures for step in self.steps)

    def stage_totals(self) -> Dict[str, float]:
        """Total time spent in each stage over all steps."""
        totals: Dict[str, float] = defaultdict(float)
        for step in self.steps:
            for stage, elapsed in step.timings.items():
                totals[stage] += elapsed
        return dict(totals)

    def translation_rmse(self) -> Optional[float]:
        """Root-mean-square translation error against the ground truth."""
        return _rmse(self.pose_errors, "translation_error")

    def rotation_rmse(self) -> Optional[float]:
        """Root-mean-square rotation error against the ground truth."""
        return _rmse(self.pose_errors, "rotation_error")

    def summary(self) -> Dict[str, Any]:
        """Flat dictionary of the headline numbers."""
        return {
            "records": self.num_records,
            "nodes": self.num_nodes,
            "edges": self.num_edges,
            "loop_closures": self.num_loop_closures,
            "optimizer_runs": len(self.optimizations),
            "optimizer_non_converged": sum(not r.converged for r in self.optimizations),
            "optimizer_stalled": sum(r.stalled for r in self.optimizations),
            "rejections": dict(self.rejections),
            "stage_time": self.stage_totals(),
            "translation_rmse": self.translation_rmse(),
            "rotation_rmse": self.rotation_rmse(),
            "online_translation_rmse": _rmse(self.online_pose_errors, "translation_error"),
        }


def _rmse(errors: List[PoseError], attribute: str) -> Optional[float]:
    if not errors:
        return None
    values = np.array([getattr(e, attribute) for e in errors])
    return float(np.sqrt(np.mean(values**2)))
