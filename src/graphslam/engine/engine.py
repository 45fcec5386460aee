"""Incremental graph-SLAM engine.

The engine pulls one record at a time through the node decider, the edge decider
and the optimizer:

* ``INIT``: configuration is validated, components are built by name and the
  graph is created with its fixed root node.
* ``STREAMING``: :meth:`GraphSlamEngine.process` handles one record.
* ``FINALIZED``: :meth:`GraphSlamEngine.finalize` ran the final optimization and
  closed the visualization sink.

Failures of the deciders and the optimizer are recovered here and degrade to "no
structural change this round". Configuration and stream-format errors propagate.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, List, Optional

import numpy as np
from tqdm import tqdm

from ..deciders import (
    EdgeRegistrationDecider,
    NodeRegistrationDecider,
    create_edge_decider,
    create_node_decider,
)
from ..exceptions import (
    AlignmentFailure,
    ConfigurationError,
    InconsistentLoopCandidates,
    StreamFormatError,
)
from ..pose_graph import (
    POSE_TYPES,
    Edge,
    EdgeType,
    GraphOptimizer,
    OptimizationResult,
    PoseGraph,
    create_optimizer,
)
from ..sensors.data import StreamRecord
from ..sensors.stream import RecordStream
from ..utils.config import GraphSlamConfig
from ..visualization.sink import VisualizationSink
from .ground_truth import GroundTruth
from .statistics import RunStatistics, StageTimer, StepStatistics

logger = logging.getLogger(__name__)

# Failures that cost one round of structural change but never stop the engine
RECOVERABLE_ERRORS = (
    AlignmentFailure,
    InconsistentLoopCandidates,
    np.linalg.LinAlgError,
    ValueError,
)


class EngineState(Enum):
    """Lifecycle state of the engine."""

    INIT = "init"
    STREAMING = "streaming"
    FINALIZED = "finalized"


@dataclass
class StepReport:
    """Outcome of processing one record."""

    index: int
    timestamp: float
    node_id: Optional[int] = None
    edges: List[Edge] = field(default_factory=list)
    optimization: Optional[OptimizationResult] = None
    failures: List[str] = field(default_factory=list)

    @property
    def node_added(self) -> bool:
        return self.node_id is not None

    @property
    def loop_closures(self) -> List[Edge]:
        return [edge for edge in self.edges if edge.edge_type is EdgeType.LOOP_CLOSURE]


@dataclass
class EngineResult:
    """Final graph and statistics of a run."""

    graph: PoseGraph
    statistics: RunStatistics
    final_optimization: Optional[OptimizationResult] = None


class GraphSlamEngine:
    """Builds and refines a pose graph from an ordered record stream."""

    def __init__(
        self,
        config: Optional[GraphSlamConfig] = None,
        node_decider: Optional[NodeRegistrationDecider] = None,
        edge_decider: Optional[EdgeRegistrationDecider] = None,
        optimizer: Optional[GraphOptimizer] = None,
        visualizer: Optional[VisualizationSink] = None,
        ground_truth: Optional[GroundTruth] = None,
    ) -> None:
        """Initialize the engine.

        Components that are not passed explicitly are created from the names in
        ``config.engine``.

        Args:
            config: Engine configuration (defaults if omitted).
            node_decider: Node registration decider.
            edge_decider: Edge registration decider.
            optimizer: Graph optimizer.
            visualizer: Sink receiving a snapshot after every record.
            ground_truth: Reference trajectory for pose-error statistics.

        Raises:
            ConfigurationError: If the configuration is invalid or names an
                unknown component.
        """
        self.config = (config or GraphSlamConfig()).validate()
        engine_config = self.config.engine
        self.pose_type = POSE_TYPES[engine_config.pose_type]

        self.node_decider = node_decider or create_node_decider(
            engine_config.node_decider, self.config, self.pose_type
        )
        self.edge_decider = edge_decider or create_edge_decider(
            engine_config.edge_decider, self.config
        )
        optimizer_config = self.config.optimizer
        self.optimizer = optimizer or create_optimizer(
            engine_config.optimizer,
            max_iterations=optimizer_config.max_iterations,
            convergence_tolerance=optimizer_config.convergence_tolerance,
            initial_damping=optimizer_config.initial_damping,
        )
        if self.node_decider.pose_type is not self.pose_type:
            raise ConfigurationError("Node decider pose type does not match the engine pose type")

        self.visualizer = visualizer if engine_config.visualize else None
        self.ground_truth = ground_truth

        self.graph = PoseGraph(self.pose_type)
        self._start()
        logger.info(
            "Engine ready: node decider '%s', edge decider '%s', optimizer '%s' (%s)",
            self.node_decider.name,
            self.edge_decider.name,
            self.optimizer.name,
            engine_config.pose_type,
        )

    def _start(self) -> None:
        self.graph.initialize()
        self.node_decider.attach(self.graph)
        self.statistics = RunStatistics()
        self.state = EngineState.INIT
        self._stream = RecordStream(pose_type=self.pose_type)
        self._edges_since_optimization = 0
        self._result: Optional[EngineResult] = None

    def process(self, record: StreamRecord) -> StepReport:
        """Process one stream record.

        Args:
            record: Next record; timestamps must be non-decreasing.

        Returns:
            StepReport describing the structural changes of this step.

        Raises:
            StreamFormatError: If the record is malformed or out of order.
        """
        if self.state is EngineState.FINALIZED:
            raise RuntimeError("Engine is finalized, call reset() to start a new run")

        index = self._stream.index
        self._stream.validate(record)
        self.state = EngineState.STREAMING

        timer = StageTimer()
        report = StepReport(index=index, timestamp=record.timestamp)
        observation = record.scan

        with timer.stage("node_registration"):
            proposal = self._guarded(
                "node_registration",
                report,
                self.node_decider.consider,
                record.motion,
                observation,
                record.timestamp,
            )

        new_edges = 0
        if proposal is not None:
            if proposal.is_root:
                node = self.graph.get_node(self.graph.root)
                node.timestamp = proposal.timestamp
                if self.ground_truth is not None:
                    self.ground_truth.align_to(proposal.timestamp)
            else:
                node = self.graph.add_node(proposal.pose, proposal.timestamp)
                edge = proposal.make_edge(node.id)
                self.graph.add_edge(edge)
                report.edges.append(edge)
                new_edges += 1
            report.node_id = node.id

            with timer.stage("edge_registration"):
                edges = self._guarded(
                    "edge_registration",
                    report,
                    self.edge_decider.consider,
                    node,
                    proposal.observation,
                    self.graph,
                )
            for edge in edges or []:
                self.graph.add_edge(edge)
                report.edges.append(edge)
                new_edges += 1

        self._edges_since_optimization += new_edges
        if self._should_optimize(report):
            with timer.stage("optimization"):
                report.optimization = self._optimize(report)

        if report.node_id is not None and self.ground_truth is not None:
            error = self.ground_truth.error(self.graph.nodes[report.node_id])
            if error is not None:
                self.statistics.online_pose_errors.append(error)
                logger.debug(
                    "Node %d ground-truth error: %.3f m, %.3f rad",
                    error.node_id,
                    error.translation_error,
                    error.rotation_error,
                )

        if self.visualizer is not None:
            with timer.stage("visualization"):
                self.visualizer.push(self.graph.snapshot(step=index))

        self.statistics.steps.append(
            StepStatistics(
                index=index,
                timestamp=record.timestamp,
                num_nodes=len(self.graph),
                num_edges=self.graph.num_edges(),
                node_added=report.node_added,
                edges_added=len(report.edges),
                loop_closures=len(report.loop_closures),
                optimized=report.optimization is not None,
                timings=dict(timer.timings),
            )
        )
        return report

    def run(self, records: Iterable[StreamRecord], progress: bool = False) -> EngineResult:
        """Process a whole stream and finalize.

        Args:
            records: Time-ordered records.
            progress: Whether to show a progress bar.

        Returns:
            EngineResult of :meth:`finalize`.
        """
        for record in tqdm(records, desc="Processing records", disable=not progress):
            self.process(record)
        return self.finalize()

    def finalize(self) -> EngineResult:
        """Run a final optimization, evaluate the ground truth and close the sink.

        Returns:
            EngineResult with the final graph and statistics.
        """
        if self._result is not None:
            return self._result

        report = StepReport(index=self._stream.index, timestamp=float("nan"))
        final = self._optimize(report)

        if self.ground_truth is not None:
            errors = (self.ground_truth.error(node) for node in self.graph.nodes.values())
            self.statistics.pose_errors = [e for e in errors if e is not None]
            rmse = self.statistics.translation_rmse()
            if rmse is not None:
                logger.info("Ground-truth translation RMSE: %.4f m", rmse)

        self.statistics.rejections.update(self.node_decider.counters)
        self.statistics.rejections.update(self.edge_decider.counters)

        if self.visualizer is not None:
            self.visualizer.push(self.graph.snapshot(step=self._stream.index))
            self.visualizer.close()

        self.state = EngineState.FINALIZED
        self._result = EngineResult(
            graph=self.graph, statistics=self.statistics, final_optimization=final
        )
        logger.info(
            "Finalized: %d nodes, %d edges, %d loop closures",
            len(self.graph),
            self.graph.num_edges(),
            self.statistics.num_loop_closures,
        )
        return self._result

    def reset(self) -> None:
        """Discard the graph and all decider state and start over from a fresh root."""
        self.graph.clear()
        self.node_decider.reset()
        self.edge_decider.reset()
        self._start()

    def _should_optimize(self, report: StepReport) -> bool:
        if report.loop_closures:
            return True
        every_n = self.config.optimizer.optimize_every_n_edges
        return every_n > 0 and self._edges_since_optimization >= every_n

    def _optimize(self, report: StepReport) -> Optional[OptimizationResult]:
        self._edges_since_optimization = 0
        result = self._guarded("optimization", report, self.optimizer.optimize, self.graph)
        if result is None:
            return None
        self.statistics.optimizations.append(result)
        if not result.converged:
            logger.warning(
                "Optimizer stopped after %d iterations without converging (error %.6g)",
                result.iterations,
                result.final_error,
            )
        else:
            logger.debug(
                "Optimized %d variables in %d iterations (%s): error %.6g -> %.6g",
                result.num_variables,
                result.iterations,
                result.status.value,
                result.initial_error,
                result.final_error,
            )
        return result

    def _guarded(
        self, stage: str, report: StepReport, func: Callable[..., Any], *args: Any
    ) -> Any:
        """Call a component, turning recoverable failures into "no change"."""
        try:
            return func(*args)
        except StreamFormatError as exc:
            if exc.record_index is None:
                raise StreamFormatError(str(exc), record_index=report.index) from exc
            raise
        except ConfigurationError:
            raise
        except RECOVERABLE_ERRORS as exc:
            self.statistics.rejections[f"{stage}_failures"] += 1
            report.failures.append(f"{stage}: {exc}")
            logger.warning("Record %d: %s failed: %s", report.index, stage, exc)
            return None
