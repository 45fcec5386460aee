"""Loop closure with pairwise consistency maximization.

Prior nodes are grouped into spatial partitions. When a new node lands near an
existing partition, its observation is aligned against the observations of the
partition members that are old enough to count as a revisit. Each aligned candidate
hypothesises a loop-closure edge; every pair of hypotheses is then checked for
consistency through the cycle it forms with the graph, and the largest mutually
consistent subset is accepted.
"""

import itertools
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import networkx as nx
import numpy as np
import numpy.typing as npt

from ..exceptions import InconsistentLoopCandidates
from ..pose_graph import Edge, EdgeType, PoseGraph, PoseNode, information_from_covariance
from ..sensors.alignment import ICPAligner
from ..sensors.data import Observation
from ..utils.config import GraphSlamConfig, LoopCloserConfig
from .edge import AlignmentCriteriaERD

logger = logging.getLogger(__name__)


@dataclass
class Partition:
    """A spatial cluster of nodes with a running-mean centre."""

    centre: npt.NDArray[np.float64]
    members: List[int] = field(default_factory=list)

    def add(self, node_id: int, position: npt.NDArray[np.float64]) -> None:
        self.members.append(node_id)
        self.centre = self.centre + (position - self.centre) / len(self.members)


def pairwise_consistency(edge_a: Edge, edge_b: Edge, graph: PoseGraph) -> float:
    """Score how well two loop-closure hypotheses agree with each other.

    Both edges end in the same node ``n``. Going ``kA -> n`` along ``edge_a``,
    ``n -> kB`` against ``edge_b`` and back ``kB -> kA`` through the graph must give
    the identity; the Mahalanobis norm of the residual under the summed covariances
    is turned into a score in [0, 1].

    Args:
        edge_a: Hypothesis ``kA -> n``.
        edge_b: Hypothesis ``kB -> n``.
        graph: Graph providing the path between ``kB`` and ``kA``.

    Returns:
        ``exp(-d^2 / 2)``, or 0.0 when ``kA`` and ``kB`` are not connected.
    """
    path = graph.find_path(edge_b.from_node_id, edge_a.from_node_id)
    if path is None:
        return 0.0
    path_pose, path_covariance = graph.compose_path(path)
    cycle = edge_a.relative_pose.compose(edge_b.relative_pose.inverse()).compose(path_pose)
    residual = cycle.log()
    covariance = edge_a.covariance + edge_b.covariance + path_covariance
    d2 = float(residual @ information_from_covariance(covariance) @ residual)
    return float(np.exp(-0.5 * d2))


def select_consistent_subset(
    scores: npt.NDArray[np.float64], tolerance: float, node_ids: Sequence[int]
) -> List[int]:
    """Pick the largest set of mutually consistent hypotheses.

    The consistency graph links hypotheses whose pairwise score is at least
    ``tolerance``; its maximum clique is returned. Ties are broken by the highest
    mean pairwise score, then by the lowest sorted node ids.

    Args:
        scores: Symmetric matrix of pairwise scores.
        tolerance: Minimum score of a consistent pair.
        node_ids: Node id of each hypothesis (used for tie-breaking).

    Returns:
        Sorted indices of the accepted hypotheses.
    """
    count = scores.shape[0]
    consistency = nx.Graph()
    consistency.add_nodes_from(range(count))
    for a, b in itertools.combinations(range(count), 2):
        if scores[a, b] >= tolerance:
            consistency.add_edge(a, b)

    def mean_score(clique: List[int]) -> float:
        if len(clique) < 2:
            return 1.0
        return float(np.mean([scores[a, b] for a, b in itertools.combinations(clique, 2)]))

    cliques = [sorted(c) for c in nx.find_cliques(consistency)]
    best = min(
        cliques,
        key=lambda c: (-len(c), -mean_score(c), sorted(node_ids[i] for i in c)),
    )
    return best


class LoopCloserERD(AlignmentCriteriaERD):
    """Consecutive alignment plus pairwise-consistent loop closure."""

    name = "loop_closer"

    def __init__(
        self,
        config: Optional[LoopCloserConfig] = None,
        aligner: Optional[ICPAligner] = None,
        alignment_quality_threshold: float = 0.6,
    ) -> None:
        """Initialize the loop closer.

        Args:
            config: Partitioning and consistency parameters.
            aligner: Observation aligner.
            alignment_quality_threshold: Minimum alignment quality of an edge.
        """
        super().__init__(aligner, alignment_quality_threshold)
        self.config = config or LoopCloserConfig()
        self.partitions: List[Partition] = []
        self.last_candidates: List[Edge] = []
        self.last_consistency: npt.NDArray[np.float64] = np.zeros((0, 0))
        self.last_accepted: List[Edge] = []
        self._observations: Dict[int, Observation] = {}

    @classmethod
    def from_config(cls, config: GraphSlamConfig) -> "LoopCloserERD":
        return cls(
            config.loop_closer,
            ICPAligner.from_config(config.alignment),
            config.alignment.alignment_quality_threshold,
        )

    def consider(
        self, node: PoseNode, observation: Optional[Observation], graph: PoseGraph
    ) -> List[Edge]:
        edges = super().consider(node, observation, graph)
        self.last_candidates = []
        self.last_consistency = np.zeros((0, 0))
        self.last_accepted = []

        if observation is not None:
            self.last_candidates = self._hypotheses(node, observation, graph)
            self._observations[node.id] = observation

        if self.last_candidates:
            try:
                self.last_accepted = self._select(self.last_candidates, graph)
            except InconsistentLoopCandidates as exc:
                self.counters["inconsistent_rounds"] += 1
                logger.warning("Rejected loop closures for node %d: %s", node.id, exc)

        if self.last_accepted:
            self.counters["loop_closures"] += len(self.last_accepted)
            logger.info(
                "Accepted %d loop closure(s) for node %d: %s",
                len(self.last_accepted),
                node.id,
                [e.from_node_id for e in self.last_accepted],
            )

        self._assign_partition(node)
        return edges + self.last_accepted

    def reset(self) -> None:
        super().reset()
        self.partitions.clear()
        self._observations.clear()
        self.last_candidates = []
        self.last_consistency = np.zeros((0, 0))
        self.last_accepted = []

    def candidate_nodes(self, node: PoseNode, graph: PoseGraph) -> List[int]:
        """Ids of earlier nodes that qualify as a revisited place.

        Args:
            node: The new node.
            graph: Graph holding the current estimates.

        Returns:
            Up to ``max_candidates`` node ids, nearest first.
        """
        position = node.position
        radius = self.config.partition_radius
        candidates = []
        for partition in self.partitions:
            if np.linalg.norm(partition.centre - position) > radius:
                continue
            for member in partition.members:
                if node.id - member < self.config.min_node_id_gap:
                    continue
                if member not in self._observations:
                    continue
                distance = float(np.linalg.norm(graph.get_pose(member).translation - position))
                candidates.append((distance, member))
        candidates.sort()
        return [member for _, member in candidates[: self.config.max_candidates]]

    def _hypotheses(
        self, node: PoseNode, observation: Observation, graph: PoseGraph
    ) -> List[Edge]:
        hypotheses = []
        for candidate in self.candidate_nodes(node, graph):
            guess = graph.get_pose(candidate).between(node.pose)
            result = self.align(observation, self._observations[candidate], guess)
            if result is None:
                continue
            hypotheses.append(
                Edge(
                    from_node_id=candidate,
                    to_node_id=node.id,
                    relative_pose=result.transform,
                    information_matrix=result.information,
                    edge_type=EdgeType.LOOP_CLOSURE,
                    timestamp=node.timestamp,
                )
            )
        return hypotheses

    def _select(self, hypotheses: List[Edge], graph: PoseGraph) -> List[Edge]:
        count = len(hypotheses)
        scores = np.eye(count)
        for a, b in itertools.combinations(range(count), 2):
            scores[a, b] = scores[b, a] = pairwise_consistency(hypotheses[a], hypotheses[b], graph)
        self.last_consistency = scores

        if count == 1:
            return list(hypotheses)

        node_ids = [edge.from_node_id for edge in hypotheses]
        accepted = select_consistent_subset(scores, self.config.consistency_tolerance, node_ids)
        if len(accepted) < 2:
            raise InconsistentLoopCandidates(
                f"no two of {count} loop-closure candidates are mutually consistent",
                num_candidates=count,
            )
        return [hypotheses[i] for i in accepted]

    def _assign_partition(self, node: PoseNode) -> None:
        position = node.position
        nearest: Optional[Tuple[float, Partition]] = None
        for partition in self.partitions:
            distance = float(np.linalg.norm(partition.centre - position))
            if distance > self.config.partition_radius:
                continue
            if nearest is None or distance < nearest[0]:
                nearest = (distance, partition)
        if nearest is None:
            centre = np.array(position, dtype=np.float64)
            self.partitions.append(Partition(centre=centre, members=[node.id]))
        else:
            nearest[1].add(node.id, position)
