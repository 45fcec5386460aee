"""Geometry utilities for rotations and angles."""

import numpy as np
import numpy.typing as npt

# Below this rotation angle the SO(3) maps switch to their first-order expansions
_ROTATION_EPSILON = 1e-10


def wrap_angle(angle: float) -> float:
    """Wrap an angle to [-pi, pi).

    Args:
        angle: Angle in radians.

    Returns:
        Equivalent angle in [-pi, pi).
    """
    return float((angle + np.pi) % (2.0 * np.pi) - np.pi)


def skew_symmetric(v: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    """Create skew-symmetric matrix from vector.

    Args:
        v: 3D vector.

    Returns:
        3x3 skew-symmetric matrix.
    """
    return np.array([[0.0, -v[2], v[1]], [v[2], 0.0, -v[0]], [-v[1], v[0], 0.0]])


def so3_exp(omega: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    """Map a rotation vector to a rotation matrix (Rodrigues' formula).

    Args:
        omega: Rotation vector (axis * angle) in radians.

    Returns:
        3x3 rotation matrix.
    """
    omega = np.asarray(omega, dtype=np.float64)
    theta = float(np.linalg.norm(omega))
    K = skew_symmetric(omega)

    if theta < _ROTATION_EPSILON:
        return np.eye(3) + K

    return (
        np.eye(3)
        + np.sin(theta) / theta * K
        + (1.0 - np.cos(theta)) / (theta**2) * (K @ K)
    )


def so3_log(R: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    """Map a rotation matrix to its rotation vector.

    Args:
        R: 3x3 rotation matrix.

    Returns:
        Rotation vector (axis * angle) in radians.
    """
    cos_theta = np.clip((np.trace(R) - 1.0) / 2.0, -1.0, 1.0)
    theta = float(np.arccos(cos_theta))
    w = np.array([R[2, 1] - R[1, 2], R[0, 2] - R[2, 0], R[1, 0] - R[0, 1]])

    if theta < _ROTATION_EPSILON:
        return 0.5 * w

    if np.pi - theta < 1e-6:
        # Near pi the antisymmetric part vanishes, recover the axis from R + I
        B = 0.5 * (R + np.eye(3))
        axis = np.sqrt(np.clip(np.diag(B), 0.0, None))
        k = int(np.argmax(axis))
        signs = np.sign(B[k])
        signs[k] = 1.0
        axis = axis * signs
        return theta * axis / np.linalg.norm(axis)

    return theta / (2.0 * np.sin(theta)) * w


def rotation_matrix(axis: str, degrees: float) -> npt.NDArray[np.float64]:
    """Create a 3D rotation matrix for rotation around a specified axis.

    Args:
        axis: Axis to rotate around ('x', 'y', or 'z').
        degrees: Rotation angle in degrees.

    Returns:
        3x3 rotation matrix.
    """
    radians = np.deg2rad(degrees)
    c, s = np.cos(radians), np.sin(radians)

    if axis.lower() == "x":
        return np.array([
            [1, 0, 0],
            [0, c, -s],
            [0, s, c],
        ])
    if axis.lower() == "y":
        return np.array([
            [c, 0, s],
            [0, 1, 0],
            [-s, 0, c],
        ])
    if axis.lower() == "z":
        return np.array([
            [c, -s, 0],
            [s, c, 0],
            [0, 0, 1],
        ])
    raise ValueError(f"Invalid axis: {axis}. Must be 'x', 'y', or 'z'.")
