"""Pose graph optimization (Levenberg-Marquardt)."""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

import numpy as np
import numpy.typing as npt
import scipy.sparse as sp
from scipy.sparse.linalg import spsolve

from ..exceptions import OptimizationNonConvergence
from .graph import PoseGraph
from .pose import Pose, relative_jacobians

logger = logging.getLogger(__name__)


class ConvergenceStatus(Enum):
    """Outcome of an optimizer run."""

    CONVERGED = "converged"
    MAX_ITERATIONS = "max_iterations"
    NOTHING_TO_OPTIMIZE = "nothing_to_optimize"
    # Damping grew past its limit without any step lowering the error
    STALLED = "stalled"


@dataclass
class OptimizationResult:
    """Summary of one optimizer invocation."""

    status: ConvergenceStatus
    iterations: int
    initial_error: float
    final_error: float
    elapsed: float = 0.0
    num_variables: int = 0

    @property
    def converged(self) -> bool:
        """Whether the run ended at a stationary point.

        A stalled run counts as converged: no damped step improves the error, so the
        estimate sits at a minimum to numerical precision. Check ``stalled`` to tell
        it apart from a clean convergence.
        """
        return self.status is not ConvergenceStatus.MAX_ITERATIONS

    @property
    def stalled(self) -> bool:
        return self.status is ConvergenceStatus.STALLED

    def raise_for_status(self) -> None:
        """Raise OptimizationNonConvergence if the iteration cap was hit."""
        if not self.converged:
            raise OptimizationNonConvergence(
                f"Optimizer did not converge within {self.iterations} iterations "
                f"(error {self.final_error:.6g})",
                iterations=self.iterations,
                final_error=self.final_error,
            )


class GraphOptimizer(ABC):
    """Refines all non-fixed node poses of a pose graph in place."""

    name: str = ""

    def __init__(
        self,
        max_iterations: int = 100,
        convergence_tolerance: float = 1e-6,
        initial_damping: float = 1e-3,
    ) -> None:
        """Initialize optimizer.

        Args:
            max_iterations: Maximum number of iterations.
            convergence_tolerance: Minimum decrease of the total error that still
                counts as progress.
            initial_damping: Initial Levenberg-Marquardt damping factor.
        """
        self.max_iterations = max_iterations
        self.convergence_tolerance = convergence_tolerance
        self.initial_damping = initial_damping

    @abstractmethod
    def optimize(self, graph: PoseGraph) -> OptimizationResult:
        """Optimize the pose graph.

        Args:
            graph: The pose graph to optimize; node poses are updated in place.

        Returns:
            Convergence summary.
        """


class LevenbergMarquardtOptimizer(GraphOptimizer):
    """Damped Gauss-Newton over the sparse block normal equations.

    The fixed root node is excluded from the variable set (gauge fix), as are nodes
    without any incident edge.
    """

    name = "levenberg_marquardt"

    def __init__(
        self,
        max_iterations: int = 100,
        convergence_tolerance: float = 1e-6,
        initial_damping: float = 1e-3,
        damping_increase: float = 10.0,
        damping_decrease: float = 0.1,
        max_damping: float = 1e10,
    ) -> None:
        """Initialize optimizer.

        Args:
            max_iterations: Maximum number of iterations.
            convergence_tolerance: Minimum decrease of the total error that still
                counts as progress.
            initial_damping: Initial damping factor added to the diagonal.
            damping_increase: Factor applied to the damping after a rejected step.
            damping_decrease: Factor applied to the damping after an accepted step.
            max_damping: Damping above which the problem is considered stationary.
        """
        super().__init__(max_iterations, convergence_tolerance, initial_damping)
        self.damping_increase = damping_increase
        self.damping_decrease = damping_decrease
        self.max_damping = max_damping

    def optimize(self, graph: PoseGraph) -> OptimizationResult:
        start_time = time.perf_counter()
        poses = graph.get_all_poses()
        index = self._variable_index(graph)
        initial_error = graph.total_error(poses)

        if not index:
            return OptimizationResult(
                status=ConvergenceStatus.NOTHING_TO_OPTIMIZE,
                iterations=0,
                initial_error=initial_error,
                final_error=initial_error,
                elapsed=time.perf_counter() - start_time,
            )

        dof = graph.pose_type.dof
        size = dof * len(index)
        damping = self.initial_damping
        error = initial_error
        status = ConvergenceStatus.MAX_ITERATIONS
        iteration = 0

        while iteration < self.max_iterations:
            iteration += 1
            H, b = self._build_normal_equations(graph, poses, index, dof, size)

            if np.max(np.abs(b)) < self.convergence_tolerance:
                status = ConvergenceStatus.CONVERGED
                break

            delta = self._solve(H, b, damping, size)
            if delta is None:
                damping *= self.damping_increase
                if damping > self.max_damping:
                    logger.debug(
                        "LM stalled at iteration %d: no solvable step (lambda %.2g)",
                        iteration,
                        damping,
                    )
                    status = ConvergenceStatus.STALLED
                    break
                continue

            candidate = dict(poses)
            for node_id, offset in index.items():
                candidate[node_id] = poses[node_id].retract(delta[offset : offset + dof])
            candidate_error = graph.total_error(candidate)

            if candidate_error < error:
                improvement = error - candidate_error
                poses = candidate
                error = candidate_error
                damping = max(damping * self.damping_decrease, 1e-12)
                logger.debug(
                    "LM iteration %d: error %.6g (lambda %.2g)", iteration, error, damping
                )
                if improvement < self.convergence_tolerance:
                    status = ConvergenceStatus.CONVERGED
                    break
            else:
                damping *= self.damping_increase
                logger.debug("LM iteration %d: step rejected (lambda %.2g)", iteration, damping)
                if damping > self.max_damping:
                    logger.debug(
                        "LM stalled at iteration %d: error %.6g (lambda %.2g)",
                        iteration,
                        error,
                        damping,
                    )
                    status = ConvergenceStatus.STALLED
                    break

        for node_id in index:
            graph.set_pose(node_id, poses[node_id])

        return OptimizationResult(
            status=status,
            iterations=iteration,
            initial_error=initial_error,
            final_error=error,
            elapsed=time.perf_counter() - start_time,
            num_variables=len(index),
        )

    @staticmethod
    def _variable_index(graph: PoseGraph) -> Dict[int, int]:
        """Map each optimized node id to its offset in the state vector."""
        connected = set()
        for edge in graph.edges:
            connected.add(edge.from_node_id)
            connected.add(edge.to_node_id)

        dof = graph.pose_type.dof
        index: Dict[int, int] = {}
        for node_id in sorted(connected):
            if graph.nodes[node_id].fixed:
                continue
            index[node_id] = dof * len(index)
        return index

    @staticmethod
    def _build_normal_equations(
        graph: PoseGraph,
        poses: Dict[int, Pose],
        index: Dict[int, int],
        dof: int,
        size: int,
    ) -> Tuple[sp.csc_matrix, npt.NDArray[np.float64]]:
        rows: List[npt.NDArray[np.int64]] = []
        cols: List[npt.NDArray[np.int64]] = []
        values: List[npt.NDArray[np.float64]] = []
        b = np.zeros(size)
        block = np.arange(dof)

        def add_block(r: int, c: int, M: npt.NDArray[np.float64]) -> None:
            rows.append(np.repeat(r + block, dof))
            cols.append(np.tile(c + block, dof))
            values.append(M.reshape(-1))

        for edge in graph.edges:
            i, j = edge.from_node_id, edge.to_node_id
            xi, xj = poses[i], poses[j]
            e = edge.error(xi, xj)
            A, B = relative_jacobians(xi, xj, edge.relative_pose)
            omega = edge.information_matrix

            oi = index.get(i)
            oj = index.get(j)
            if oi is not None:
                add_block(oi, oi, A.T @ omega @ A)
                b[oi : oi + dof] += A.T @ omega @ e
            if oj is not None:
                add_block(oj, oj, B.T @ omega @ B)
                b[oj : oj + dof] += B.T @ omega @ e
            if oi is not None and oj is not None:
                add_block(oi, oj, A.T @ omega @ B)
                add_block(oj, oi, B.T @ omega @ A)

        H = sp.coo_matrix(
            (np.concatenate(values), (np.concatenate(rows), np.concatenate(cols))),
            shape=(size, size),
        ).tocsc()
        return H, b

    @staticmethod
    def _solve(
        H: sp.csc_matrix, b: npt.NDArray[np.float64], damping: float, size: int
    ) -> Optional[npt.NDArray[np.float64]]:
        damped = (H + damping * sp.identity(size, format="csc")).tocsc()
        try:
            delta = spsolve(damped, -b)
        except (RuntimeError, ValueError) as exc:
            logger.debug("Sparse solve failed: %s", exc)
            return None
        delta = np.asarray(delta, dtype=np.float64).reshape(-1)
        if not np.all(np.isfinite(delta)):
            return None
        return delta
