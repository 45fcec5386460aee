"""Interfaces of the node and edge registration deciders."""

from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass
from typing import List, Optional, Type

import numpy as np
import numpy.typing as npt

from ..exceptions import StreamFormatError
from ..pose_graph import Edge, EdgeType, PoseGraph, PoseNode
from ..pose_graph.pose import Pose, SE2Pose
from ..sensors.data import Observation
from ..utils.config import GraphSlamConfig


@dataclass
class NodeProposal:
    """A node the node decider wants to add, with the edge that connects it.

    A root proposal (``is_root``) carries no edge; the engine binds its timestamp
    and observation to the already existing root node.
    """

    pose: Pose
    timestamp: float
    observation: Optional[Observation] = None
    from_node_id: Optional[int] = None
    relative_pose: Optional[Pose] = None
    information: Optional[npt.NDArray[np.float64]] = None
    edge_type: Optional[EdgeType] = None
    is_root: bool = False

    def __post_init__(self) -> None:
        """Validate proposal data."""
        has_edge = self.relative_pose is not None
        if self.is_root and has_edge:
            raise ValueError("Root proposal cannot carry an edge")
        if not self.is_root and not has_edge:
            raise ValueError("Non-root proposal must carry a connecting edge")
        if has_edge and (
            self.from_node_id is None or self.information is None or self.edge_type is None
        ):
            raise ValueError("Connecting edge needs a source node, information and edge type")

    def make_edge(self, to_node_id: int) -> Edge:
        """Create the connecting edge towards the newly added node."""
        return Edge(
            from_node_id=self.from_node_id,
            to_node_id=to_node_id,
            relative_pose=self.relative_pose,
            information_matrix=self.information,
            edge_type=self.edge_type,
            timestamp=self.timestamp,
        )


class NodeRegistrationDecider(ABC):
    """Decides when the robot has moved enough to deserve a new node."""

    name: str = ""

    def __init__(self, pose_type: Type[Pose] = SE2Pose) -> None:
        self.pose_type = pose_type
        self.graph: Optional[PoseGraph] = None
        self.counters: Counter = Counter()
        self._last_timestamp: Optional[float] = None

    @classmethod
    def from_config(
        cls, config: GraphSlamConfig, pose_type: Type[Pose]
    ) -> "NodeRegistrationDecider":
        """Create the decider from the engine configuration."""
        return cls(pose_type=pose_type)

    def attach(self, graph: PoseGraph) -> None:
        """Give the decider read access to the graph it feeds."""
        self.graph = graph

    @abstractmethod
    def consider(
        self,
        motion: Optional[Pose],
        observation: Optional[Observation],
        timestamp: float,
    ) -> Optional[NodeProposal]:
        """Consume one record and possibly propose a node.

        Args:
            motion: Odometry increment since the previous record, if available.
            observation: Observation of this record, if available.
            timestamp: Record timestamp.

        Returns:
            A NodeProposal, or None if no node should be added.
        """

    def reset(self) -> None:
        """Forget all accumulated state."""
        self.counters.clear()
        self._last_timestamp = None

    def _check_order(self, timestamp: float) -> None:
        if self._last_timestamp is not None and timestamp < self._last_timestamp:
            raise StreamFormatError(
                f"timestamp {timestamp} precedes previous timestamp {self._last_timestamp}"
            )
        self._last_timestamp = timestamp


class EdgeRegistrationDecider(ABC):
    """Decides which additional constraints a newly registered node gets."""

    name: str = ""

    def __init__(self) -> None:
        self.counters: Counter = Counter()

    @classmethod
    def from_config(cls, config: GraphSlamConfig) -> "EdgeRegistrationDecider":
        """Create the decider from the engine configuration."""
        return cls()

    @abstractmethod
    def consider(
        self, node: PoseNode, observation: Optional[Observation], graph: PoseGraph
    ) -> List[Edge]:
        """Propose edges for a newly registered node.

        Args:
            node: The node that was just added (or the root, once bound).
            observation: The observation attached to the node.
            graph: Graph containing the node.

        Returns:
            Edges to add; empty when nothing was accepted.
        """

    def reset(self) -> None:
        """Forget all accumulated state."""
        self.counters.clear()
