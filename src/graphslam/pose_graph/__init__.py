"""Pose graph core module.

This module provides the pose types, the graph container and the optimizers that
refine node estimates from relative-pose measurements.
"""

from typing import Dict, Optional, Type

from ..exceptions import ConfigurationError
from .edge import Edge, EdgeType
from .graph import GraphSnapshot, PoseGraph
from .node import PoseNode, information_from_covariance, information_from_sigmas
from .optimizer import (
    ConvergenceStatus,
    GraphOptimizer,
    LevenbergMarquardtOptimizer,
    OptimizationResult,
)
from .pose import POSE_TYPES, Pose, SE2Pose, SE3Pose, relative_error, relative_jacobians

OPTIMIZERS: Dict[str, Type[GraphOptimizer]] = {
    LevenbergMarquardtOptimizer.name: LevenbergMarquardtOptimizer,
}

__all__ = [
    "POSE_TYPES",
    "OPTIMIZERS",
    "ConvergenceStatus",
    "Edge",
    "EdgeType",
    "GraphOptimizer",
    "GraphSnapshot",
    "LevenbergMarquardtOptimizer",
    "OptimizationResult",
    "Pose",
    "PoseGraph",
    "PoseNode",
    "SE2Pose",
    "SE3Pose",
    "create_optimizer",
    "information_from_covariance",
    "information_from_sigmas",
    "relative_error",
    "relative_jacobians",
]

# GTSAM backend - optional import (requires the gtsam package)
try:
    from .gtsam_optimizer import GtsamOptimizer

    OPTIMIZERS[GtsamOptimizer.name] = GtsamOptimizer
    __all__.append("GtsamOptimizer")
except ImportError:
    # gtsam not available, only the native optimizer can be selected
    pass


def create_optimizer(
    name: str,
    max_iterations: int = 100,
    convergence_tolerance: float = 1e-6,
    initial_damping: float = 1e-3,
) -> GraphOptimizer:
    """Create an optimizer by its registered name.

    Args:
        name: Registered optimizer name (see ``OPTIMIZERS``).
        max_iterations: Maximum number of iterations per run.
        convergence_tolerance: Minimum error decrease that still counts as progress.
        initial_damping: Initial Levenberg-Marquardt damping factor.

    Returns:
        Optimizer instance.

    Raises:
        ConfigurationError: If no optimizer is registered under ``name``.
    """
    optimizer_cls: Optional[Type[GraphOptimizer]] = OPTIMIZERS.get(name)
    if optimizer_cls is None:
        available = ", ".join(sorted(OPTIMIZERS))
        raise ConfigurationError(f"Unknown optimizer '{name}' (available: {available})")
    return optimizer_cls(
        max_iterations=max_iterations,
        convergence_tolerance=convergence_tolerance,
        initial_damping=initial_damping,
    )
