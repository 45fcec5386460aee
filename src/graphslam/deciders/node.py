"""Node registration deciders."""

import logging
import math
from typing import Optional, Type

import numpy as np
import numpy.typing as npt

from ..exceptions import AlignmentFailure
from ..pose_graph import EdgeType, information_from_sigmas
from ..pose_graph.pose import Pose, SE2Pose
from ..sensors.alignment import ICPAligner
from ..sensors.data import Observation
from ..utils.config import GraphSlamConfig, NodeDeciderConfig
from .base import NodeProposal, NodeRegistrationDecider

logger = logging.getLogger(__name__)


def default_odometry_sigmas(pose_type: Type[Pose]) -> npt.NDArray[np.float64]:
    """Odometry standard deviations used when none are configured."""
    if pose_type is SE2Pose:
        return np.array([0.05, 0.05, 0.02])
    return np.array([0.05, 0.05, 0.05, 0.02, 0.02, 0.02])


class FixedIntervalsNRD(NodeRegistrationDecider):
    """Registers a node whenever the robot moved or turned far enough.

    Motion increments are composed into the relative pose since the last node; the
    travelled distance and turned angle are accumulated separately and compared
    against their thresholds.
    """

    name = "fixed_intervals"

    def __init__(
        self, config: Optional[NodeDeciderConfig] = None, pose_type: Type[Pose] = SE2Pose
    ) -> None:
        """Initialize the decider.

        Args:
            config: Thresholds and odometry noise.
            pose_type: Pose type of the motion increments.
        """
        super().__init__(pose_type)
        self.config = config or NodeDeciderConfig()
        sigmas = self.config.odometry_sigmas
        self.odometry_information = information_from_sigmas(
            default_odometry_sigmas(pose_type) if sigmas is None else sigmas
        )
        self._reset_accumulators()
        self._root_proposed = False

    @classmethod
    def from_config(cls, config: GraphSlamConfig, pose_type: Type[Pose]) -> "FixedIntervalsNRD":
        return cls(config.node_decider, pose_type)

    @property
    def accumulated_distance(self) -> float:
        return self._distance

    @property
    def accumulated_angle(self) -> float:
        return self._angle

    @property
    def accumulated_motion(self) -> Pose:
        return self._relative.copy()

    def consider(
        self,
        motion: Optional[Pose],
        observation: Optional[Observation],
        timestamp: float,
    ) -> Optional[NodeProposal]:
        self._check_order(timestamp)
        if not self._root_proposed:
            return self._root_proposal(observation, timestamp)

        if motion is not None:
            self._accumulate(motion)
        if not self._threshold_exceeded():
            return None
        return self._register(
            self._relative, self.odometry_information, EdgeType.ODOMETRY, observation, timestamp
        )

    def reset(self) -> None:
        super().reset()
        self._reset_accumulators()
        self._root_proposed = False

    def _root_proposal(self, observation: Optional[Observation], timestamp: float) -> NodeProposal:
        self._root_proposed = True
        root_pose = self.graph.get_pose(self.graph.root) if self.graph is not None else None
        return NodeProposal(
            pose=root_pose if root_pose is not None else self.pose_type.identity(),
            timestamp=timestamp,
            observation=observation,
            is_root=True,
        )

    def _accumulate(self, motion: Pose) -> None:
        self._relative = self._relative.compose(motion)
        self._distance += motion.translation_norm()
        self._angle += motion.rotation_angle()

    def _threshold_exceeded(self) -> bool:
        return (
            self._distance > self.config.linear_distance_threshold
            or self._angle > self.config.angular_distance_threshold
        )

    def _register(
        self,
        relative: Pose,
        information: npt.NDArray[np.float64],
        edge_type: EdgeType,
        observation: Optional[Observation],
        timestamp: float,
    ) -> NodeProposal:
        if self.graph is None or self.graph.last_node is None:
            raise RuntimeError("Decider must be attached to an initialized graph")
        previous = self.graph.last_node
        proposal = NodeProposal(
            pose=previous.pose.compose(relative),
            timestamp=timestamp,
            observation=observation,
            from_node_id=previous.id,
            relative_pose=relative.copy(),
            information=information,
            edge_type=edge_type,
        )
        logger.debug(
            "Registering node after %.3f m / %.3f rad (%s edge)",
            self._distance,
            self._angle,
            edge_type.value,
        )
        self._carry_over()
        return proposal

    def _carry_over(self) -> None:
        """Keep the overshoot of the accumulators that fired, reset the rest."""
        linear = self.config.linear_distance_threshold
        angular = self.config.angular_distance_threshold
        self._distance = math.fmod(self._distance, linear) if self._distance > linear else 0.0
        self._angle = math.fmod(self._angle, angular) if self._angle > angular else 0.0
        self._relative = self.pose_type.identity()

    def _reset_accumulators(self) -> None:
        self._relative = self.pose_type.identity()
        self._distance = 0.0
        self._angle = 0.0


class AlignmentCriteriaNRD(FixedIntervalsNRD):
    """Fixed-interval registration whose edges come from observation alignment.

    Motion is accumulated from odometry when it is present and from alignment of
    consecutive observations otherwise. When a threshold fires, the current
    observation is aligned against the last node's observation. A failed alignment
    falls back to the odometry edge when odometry was available; without odometry
    the node is deferred to a later record.
    """

    name = "alignment_criteria"

    def __init__(
        self,
        config: Optional[NodeDeciderConfig] = None,
        aligner: Optional[ICPAligner] = None,
        alignment_quality_threshold: float = 0.6,
        pose_type: Type[Pose] = SE2Pose,
    ) -> None:
        """Initialize the decider.

        Args:
            config: Thresholds and odometry noise.
            aligner: Observation aligner.
            alignment_quality_threshold: Minimum alignment quality of an edge.
            pose_type: Pose type of the motion increments.
        """
        super().__init__(config, pose_type)
        self.aligner = aligner or ICPAligner()
        self.alignment_quality_threshold = alignment_quality_threshold
        self._previous_observation: Optional[Observation] = None
        self._node_observation: Optional[Observation] = None
        self._has_odometry = False

    @classmethod
    def from_config(cls, config: GraphSlamConfig, pose_type: Type[Pose]) -> "AlignmentCriteriaNRD":
        aligner = ICPAligner.from_config(config.alignment)
        return cls(
            config.node_decider, aligner, config.alignment.alignment_quality_threshold, pose_type
        )

    def consider(
        self,
        motion: Optional[Pose],
        observation: Optional[Observation],
        timestamp: float,
    ) -> Optional[NodeProposal]:
        self._check_order(timestamp)
        if not self._root_proposed:
            self._previous_observation = observation
            self._node_observation = observation
            return self._root_proposal(observation, timestamp)

        if motion is not None:
            self._accumulate(motion)
            self._has_odometry = True
        elif observation is not None and self._previous_observation is not None:
            increment = self._align(observation, self._previous_observation, None)
            if increment is not None:
                self._accumulate(increment.transform)
        if observation is not None:
            self._previous_observation = observation

        if not self._threshold_exceeded():
            return None

        if observation is not None and self._node_observation is not None:
            result = self._align(observation, self._node_observation, self._relative)
            if result is not None:
                self._node_observation = observation
                return self._register(
                    result.transform, result.information, EdgeType.ALIGNMENT, observation, timestamp
                )

        if self._has_odometry:
            self.counters["odometry_fallbacks"] += 1
            if observation is not None:
                self._node_observation = observation
            return self._register(
                self._relative, self.odometry_information, EdgeType.ODOMETRY, observation, timestamp
            )

        self.counters["deferred_nodes"] += 1
        logger.debug("Deferring node registration at t=%.3f, no usable alignment", timestamp)
        return None

    def reset(self) -> None:
        super().reset()
        self._previous_observation = None
        self._node_observation = None
        self._has_odometry = False

    def _align(self, source: Observation, target: Observation, initial_guess: Optional[Pose]):
        try:
            result = self.aligner.align(source, target, initial_guess)
        except AlignmentFailure as exc:
            self.counters["alignment_failures"] += 1
            logger.debug("Alignment failed: %s", exc)
            return None
        if result.quality < self.alignment_quality_threshold:
            self.counters["low_quality_alignments"] += 1
            return None
        return result

    def _carry_over(self) -> None:
        super()._carry_over()
        self._has_odometry = False


class EmptyNRD(NodeRegistrationDecider):
    """Never registers a node, not even the root binding."""

    name = "empty"

    def consider(
        self,
        motion: Optional[Pose],
        observation: Optional[Observation],
        timestamp: float,
    ) -> Optional[NodeProposal]:
        self._check_order(timestamp)
        return None
