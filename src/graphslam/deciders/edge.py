"""Edge registration deciders based on consecutive observation alignment."""

import logging
from typing import List, Optional, Tuple

from ..exceptions import AlignmentFailure
from ..pose_graph import Edge, EdgeType, PoseGraph, PoseNode
from ..pose_graph.pose import Pose
from ..sensors.alignment import AlignmentResult, ICPAligner
from ..sensors.data import Observation
from ..utils.config import GraphSlamConfig
from .base import EdgeRegistrationDecider

logger = logging.getLogger(__name__)


class AlignmentCriteriaERD(EdgeRegistrationDecider):
    """Adds an alignment edge between each new node and the previous one.

    The new node's observation is aligned against the observation of the last node
    that had one, starting from the difference of the current estimates. An edge is
    only emitted when the alignment quality meets the threshold.
    """

    name = "alignment_criteria"

    def __init__(
        self, aligner: Optional[ICPAligner] = None, alignment_quality_threshold: float = 0.6
    ) -> None:
        """Initialize the decider.

        Args:
            aligner: Observation aligner.
            alignment_quality_threshold: Minimum alignment quality of an edge.
        """
        super().__init__()
        self.aligner = aligner or ICPAligner()
        self.alignment_quality_threshold = alignment_quality_threshold
        self._last: Optional[Tuple[int, Observation]] = None

    @classmethod
    def from_config(cls, config: GraphSlamConfig) -> "AlignmentCriteriaERD":
        return cls(
            ICPAligner.from_config(config.alignment),
            config.alignment.alignment_quality_threshold,
        )

    def consider(
        self, node: PoseNode, observation: Optional[Observation], graph: PoseGraph
    ) -> List[Edge]:
        edges: List[Edge] = []
        if observation is None:
            return edges

        if self._last is not None and self._last[0] != node.id:
            previous_id, previous_observation = self._last
            guess = graph.get_pose(previous_id).between(node.pose)
            result = self.align(observation, previous_observation, guess)
            if result is not None:
                edges.append(
                    Edge(
                        from_node_id=previous_id,
                        to_node_id=node.id,
                        relative_pose=result.transform,
                        information_matrix=result.information,
                        edge_type=EdgeType.ALIGNMENT,
                        timestamp=node.timestamp,
                    )
                )

        self._last = (node.id, observation)
        return edges

    def align(
        self, source: Observation, target: Observation, initial_guess: Pose
    ) -> Optional[AlignmentResult]:
        """Align two observations, returning None on failure or low quality."""
        try:
            result = self.aligner.align(source, target, initial_guess)
        except AlignmentFailure as exc:
            self.counters["alignment_failures"] += 1
            logger.debug("Alignment failed: %s", exc)
            return None
        if result.quality < self.alignment_quality_threshold:
            self.counters["low_quality_alignments"] += 1
            logger.debug(
                "Alignment quality %.3f below threshold %.3f",
                result.quality,
                self.alignment_quality_threshold,
            )
            return None
        return result

    def reset(self) -> None:
        super().reset()
        self._last = None


class EmptyERD(EdgeRegistrationDecider):
    """Never adds an edge."""

    name = "empty"

    def consider(
        self, node: PoseNode, observation: Optional[Observation], graph: PoseGraph
    ) -> List[Edge]:
        return []
