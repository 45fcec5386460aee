"""Utility functions for rotations, transforms and configuration."""

from .config import (
    AlignmentConfig,
    EngineConfig,
    GraphSlamConfig,
    LoopCloserConfig,
    NodeDeciderConfig,
    OptimizerConfig,
    load_config,
)
from .conversions import (
    planar_projection,
    pose2d_to_transform,
    pose_to_transform,
    quaternion_to_rotation_matrix,
    rotation_matrix_to_quaternion,
    rotation_matrix_to_rpy,
    rotation_matrix_to_yaw,
    rpy_to_rotation_matrix,
    transform_to_pose,
    transform_to_pose2d,
    yaw_to_rotation_matrix,
)
from .geometry import rotation_matrix, skew_symmetric, so3_exp, so3_log, wrap_angle

__all__ = [
    "AlignmentConfig",
    "EngineConfig",
    "GraphSlamConfig",
    "LoopCloserConfig",
    "NodeDeciderConfig",
    "OptimizerConfig",
    "load_config",
    "planar_projection",
    "pose2d_to_transform",
    "pose_to_transform",
    "quaternion_to_rotation_matrix",
    "rotation_matrix",
    "rotation_matrix_to_quaternion",
    "rotation_matrix_to_rpy",
    "rotation_matrix_to_yaw",
    "rpy_to_rotation_matrix",
    "skew_symmetric",
    "so3_exp",
    "so3_log",
    "transform_to_pose",
    "transform_to_pose2d",
    "wrap_angle",
]
