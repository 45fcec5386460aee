"""Node and edge registration deciders, selectable by name."""

from typing import Dict, Type

from ..exceptions import ConfigurationError
from ..pose_graph.pose import Pose
from ..utils.config import GraphSlamConfig
from .base import EdgeRegistrationDecider, NodeProposal, NodeRegistrationDecider
from .edge import AlignmentCriteriaERD, EmptyERD
from .loop_closure import (
    LoopCloserERD,
    Partition,
    pairwise_consistency,
    select_consistent_subset,
)
from .node import AlignmentCriteriaNRD, EmptyNRD, FixedIntervalsNRD, default_odometry_sigmas

NODE_DECIDERS: Dict[str, Type[NodeRegistrationDecider]] = {
    FixedIntervalsNRD.name: FixedIntervalsNRD,
    AlignmentCriteriaNRD.name: AlignmentCriteriaNRD,
    EmptyNRD.name: EmptyNRD,
}

EDGE_DECIDERS: Dict[str, Type[EdgeRegistrationDecider]] = {
    AlignmentCriteriaERD.name: AlignmentCriteriaERD,
    LoopCloserERD.name: LoopCloserERD,
    EmptyERD.name: EmptyERD,
}


def create_node_decider(
    name: str, config: GraphSlamConfig, pose_type: Type[Pose]
) -> NodeRegistrationDecider:
    """Create a node registration decider by its registered name.

    Args:
        name: Registered decider name (see ``NODE_DECIDERS``).
        config: Engine configuration.
        pose_type: Pose type of the graph.

    Returns:
        Decider instance.

    Raises:
        ConfigurationError: If no decider is registered under ``name``.
    """
    decider_cls = NODE_DECIDERS.get(name)
    if decider_cls is None:
        available = ", ".join(sorted(NODE_DECIDERS))
        raise ConfigurationError(
            f"Unknown node registration decider '{name}' (available: {available})"
        )
    return decider_cls.from_config(config, pose_type)


def create_edge_decider(name: str, config: GraphSlamConfig) -> EdgeRegistrationDecider:
    """Create an edge registration decider by its registered name.

    Args:
        name: Registered decider name (see ``EDGE_DECIDERS``).
        config: Engine configuration.

    Returns:
        Decider instance.

    Raises:
        ConfigurationError: If no decider is registered under ``name``.
    """
    decider_cls = EDGE_DECIDERS.get(name)
    if decider_cls is None:
        available = ", ".join(sorted(EDGE_DECIDERS))
        raise ConfigurationError(
            f"Unknown edge registration decider '{name}' (available: {available})"
        )
    return decider_cls.from_config(config)


__all__ = [
    "EDGE_DECIDERS",
    "NODE_DECIDERS",
    "AlignmentCriteriaERD",
    "AlignmentCriteriaNRD",
    "EdgeRegistrationDecider",
    "EmptyERD",
    "EmptyNRD",
    "FixedIntervalsNRD",
    "LoopCloserERD",
    "NodeProposal",
    "NodeRegistrationDecider",
    "Partition",
    "create_edge_decider",
    "create_node_decider",
    "default_odometry_sigmas",
    "pairwise_consistency",
    "select_consistent_subset",
]
