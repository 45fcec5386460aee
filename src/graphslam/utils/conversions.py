"""Coordinate transformation utilities.

This module provides conversions between the rotation parameterisations used by the
pose graph (yaw, roll/pitch/yaw, quaternions, rotation matrices) and homogeneous
transformation matrices.
"""

import numpy as np
import numpy.typing as npt


def yaw_to_rotation_matrix(yaw: float) -> npt.NDArray[np.float64]:
    """Convert yaw angle to 2D rotation matrix.

    Args:
        yaw: Yaw angle in radians.

    Returns:
        2x2 rotation matrix.
    """
    c, s = np.cos(yaw), np.sin(yaw)
    return np.array([[c, -s], [s, c]], dtype=np.float64)


def rotation_matrix_to_yaw(R: npt.NDArray[np.float64]) -> float:
    """Extract yaw angle from rotation matrix.

    Args:
        R: 2x2 or 3x3 rotation matrix.

    Returns:
        Yaw angle in radians.
    """
    if R.shape in ((2, 2), (3, 3)):
        return float(np.arctan2(R[1, 0], R[0, 0]))
    raise ValueError("Rotation matrix must be 2x2 or 3x3")


def quaternion_to_rotation_matrix(q: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    """Convert quaternion to rotation matrix.

    Args:
        q: Quaternion as [w, x, y, z].

    Returns:
        3x3 rotation matrix.
    """
    q = np.asarray(q, dtype=np.float64)
    q = q / np.linalg.norm(q)
    w, x, y, z = q

    return np.array(
        [
            [1 - 2 * (y**2 + z**2), 2 * (x * y - w * z), 2 * (x * z + w * y)],
            [2 * (x * y + w * z), 1 - 2 * (x**2 + z**2), 2 * (y * z - w * x)],
            [2 * (x * z - w * y), 2 * (y * z + w * x), 1 - 2 * (x**2 + y**2)],
        ]
    )


def rotation_matrix_to_quaternion(R: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    """Convert rotation matrix to quaternion.

    Args:
        R: 3x3 rotation matrix.

    Returns:
        Quaternion as [w, x, y, z].
    """
    trace = np.trace(R)

    if trace > 0:
        s = 0.5 / np.sqrt(trace + 1.0)
        w = 0.25 / s
        x = (R[2, 1] - R[1, 2]) * s
        y = (R[0, 2] - R[2, 0]) * s
        z = (R[1, 0] - R[0, 1]) * s
    elif R[0, 0] > R[1, 1] and R[0, 0] > R[2, 2]:
        s = 2.0 * np.sqrt(1.0 + R[0, 0] - R[1, 1] - R[2, 2])
        w = (R[2, 1] - R[1, 2]) / s
        x = 0.25 * s
        y = (R[0, 1] + R[1, 0]) / s
        z = (R[0, 2] + R[2, 0]) / s
    elif R[1, 1] > R[2, 2]:
        s = 2.0 * np.sqrt(1.0 + R[1, 1] - R[0, 0] - R[2, 2])
        w = (R[0, 2] - R[2, 0]) / s
        x = (R[0, 1] + R[1, 0]) / s
        y = 0.25 * s
        z = (R[1, 2] + R[2, 1]) / s
    else:
        s = 2.0 * np.sqrt(1.0 + R[2, 2] - R[0, 0] - R[1, 1])
        w = (R[1, 0] - R[0, 1]) / s
        x = (R[0, 2] + R[2, 0]) / s
        y = (R[1, 2] + R[2, 1]) / s
        z = 0.25 * s

    return np.array([w, x, y, z])


def rpy_to_rotation_matrix(roll: float, pitch: float, yaw: float) -> npt.NDArray[np.float64]:
    """Build a rotation matrix from roll, pitch and yaw (R = Rz(yaw) Ry(pitch) Rx(roll)).

    Args:
        roll: Rotation about x in radians.
        pitch: Rotation about y in radians.
        yaw: Rotation about z in radians.

    Returns:
        3x3 rotation matrix.
    """
    cr, sr = np.cos(roll), np.sin(roll)
    cp, sp = np.cos(pitch), np.sin(pitch)
    cy, sy = np.cos(yaw), np.sin(yaw)

    return np.array(
        [
            [cy * cp, cy * sp * sr - sy * cr, cy * sp * cr + sy * sr],
            [sy * cp, sy * sp * sr + cy * cr, sy * sp * cr - cy * sr],
            [-sp, cp * sr, cp * cr],
        ],
        dtype=np.float64,
    )


def rotation_matrix_to_rpy(R: npt.NDArray[np.float64]) -> tuple[float, float, float]:
    """Extract roll, pitch and yaw from a rotation matrix.

    Args:
        R: 3x3 rotation matrix.

    Returns:
        Tuple of (roll, pitch, yaw) in radians.
    """
    pitch = float(np.arcsin(np.clip(-R[2, 0], -1.0, 1.0)))
    roll = float(np.arctan2(R[2, 1], R[2, 2]))
    yaw = float(np.arctan2(R[1, 0], R[0, 0]))
    return roll, pitch, yaw


def pose2d_to_transform(
    position: npt.NDArray[np.float64],
    yaw: float,
) -> npt.NDArray[np.float64]:
    """Create 3x3 SE(2) transformation matrix from 2D position and yaw.

    Args:
        position: 2D position vector [x, y].
        yaw: Yaw angle in radians.

    Returns:
        3x3 SE(2) transformation matrix.
    """
    T = np.eye(3)
    T[:2, :2] = yaw_to_rotation_matrix(yaw)
    T[:2, 2] = position[:2]
    return T


def transform_to_pose2d(
    T: npt.NDArray[np.float64],
) -> tuple[npt.NDArray[np.float64], float]:
    """Extract 2D position and yaw from transformation matrix.

    Args:
        T: 3x3 SE(2) transformation matrix.

    Returns:
        Tuple of (position [x, y], yaw).
    """
    position = T[:2, 2].copy()
    yaw = rotation_matrix_to_yaw(T[:2, :2])
    return position, yaw


def pose_to_transform(
    position: npt.NDArray[np.float64],
    quaternion: npt.NDArray[np.float64],
) -> npt.NDArray[np.float64]:
    """Create 4x4 SE(3) transformation matrix from position and quaternion.

    Args:
        position: 3D position vector.
        quaternion: Quaternion as [w, x, y, z].

    Returns:
        4x4 SE(3) transformation matrix.
    """
    T = np.eye(4)
    T[:3, :3] = quaternion_to_rotation_matrix(quaternion)
    T[:3, 3] = position[:3]
    return T


def transform_to_pose(
    T: npt.NDArray[np.float64],
) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    """Extract position and quaternion from a 4x4 transformation matrix.

    Args:
        T: 4x4 SE(3) transformation matrix.

    Returns:
        Tuple of (position [x, y, z], quaternion [w, x, y, z]).
    """
    return T[:3, 3].copy(), rotation_matrix_to_quaternion(T[:3, :3])


def planar_projection(T: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    """Project a 4x4 SE(3) transform onto the ground plane.

    Args:
        T: 4x4 SE(3) transformation matrix.

    Returns:
        Planar pose as [x, y, yaw].
    """
    return np.array([T[0, 3], T[1, 3], rotation_matrix_to_yaw(T[:3, :3])], dtype=np.float64)
