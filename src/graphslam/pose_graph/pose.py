"""Rigid-body pose types used as node estimates and edge measurements.

Two pose types share one interface so that the graph, the deciders and the
optimizer are written once for both planar and spatial SLAM:

``SE2Pose``
    Planar pose ``(x, y, theta)``. Tangent vectors are ordered ``[x, y, theta]``
    and perturbations are applied additively on that vector.

``SE3Pose``
    Spatial pose ``(R, t)``. Tangent vectors are ordered ``[tx, ty, tz, rx, ry, rz]``
    and a perturbation ``d`` is applied on the right: ``X * (exp(d_rot), d_trans)``.

For an edge ``i -> j`` with measurement ``Z`` the residual is the tangent vector of
``Z^-1 * Xi^-1 * Xj``; it is zero when the estimates agree with the measurement.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Tuple, Type, Union

import numpy as np
import numpy.typing as npt

from ..utils.conversions import (
    rotation_matrix_to_rpy,
    rpy_to_rotation_matrix,
    yaw_to_rotation_matrix,
)
from ..utils.geometry import so3_exp, so3_log, wrap_angle

# Step used for central-difference Jacobians
_JACOBIAN_STEP = 1e-6


class Pose(ABC):
    """Common interface of the rigid transforms stored in the pose graph.

    Poses are immutable values; every operation returns a new instance.
    """

    dof: int = 0
    dim: int = 0

    @classmethod
    @abstractmethod
    def identity(cls) -> "Pose":
        """Return the identity transform."""

    @classmethod
    @abstractmethod
    def from_vector(cls, vector: npt.ArrayLike) -> "Pose":
        """Create a pose from its minimal vector representation."""

    @classmethod
    @abstractmethod
    def from_matrix(cls, T: npt.NDArray[np.float64]) -> "Pose":
        """Create a pose from a homogeneous transformation matrix."""

    @abstractmethod
    def matrix(self) -> npt.NDArray[np.float64]:
        """Return the homogeneous transformation matrix."""

    @abstractmethod
    def vector(self) -> npt.NDArray[np.float64]:
        """Return the minimal vector representation."""

    @property
    @abstractmethod
    def translation(self) -> npt.NDArray[np.float64]:
        """Translation component."""

    @property
    @abstractmethod
    def rotation(self) -> npt.NDArray[np.float64]:
        """Rotation matrix component."""

    @abstractmethod
    def compose(self, other: "Pose") -> "Pose":
        """Return ``self * other``."""

    @abstractmethod
    def inverse(self) -> "Pose":
        """Return the inverse transform."""

    @abstractmethod
    def retract(self, delta: npt.ArrayLike) -> "Pose":
        """Apply a local tangent-space perturbation."""

    @abstractmethod
    def log(self) -> npt.NDArray[np.float64]:
        """Tangent vector of this transform relative to the identity."""

    @abstractmethod
    def rotation_angle(self) -> float:
        """Magnitude of the rotation in radians."""

    def between(self, other: "Pose") -> "Pose":
        """Relative transform ``self^-1 * other``.

        Args:
            other: Target pose.

        Returns:
            Pose of ``other`` expressed in the frame of ``self``.
        """
        return self.inverse().compose(other)

    def local(self, other: "Pose") -> npt.NDArray[np.float64]:
        """Tangent vector taking ``self`` to ``other``."""
        return self.between(other).log()

    def translation_norm(self) -> float:
        """Length of the translation component."""
        return float(np.linalg.norm(self.translation))

    def transform_points(self, points: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """Apply the transform to an ``(N, dim)`` array of points.

        Args:
            points: Points expressed in the local frame.

        Returns:
            Points expressed in the parent frame.
        """
        points = np.asarray(points, dtype=np.float64).reshape(-1, self.dim)
        return points @ self.rotation.T + self.translation

    def copy(self) -> "Pose":
        """Return an independent copy."""
        return type(self).from_matrix(self.matrix())

    def almost_equal(self, other: "Pose", tol: float = 1e-9) -> bool:
        """Check whether two poses agree within ``tol`` in the tangent space."""
        return type(self) is type(other) and bool(np.all(np.abs(self.local(other)) < tol))

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError(f"{type(self).__name__} is immutable; compose or retract instead")

    def __mul__(self, other: "Pose") -> "Pose":
        return self.compose(other)

    def __repr__(self) -> str:
        values = ", ".join(f"{v:.4f}" for v in self.vector())
        return f"{type(self).__name__}({values})"


class SE2Pose(Pose):
    """Planar rigid transform ``(x, y, theta)``."""

    dof = 3
    dim = 2

    def __init__(self, x: float = 0.0, y: float = 0.0, theta: float = 0.0) -> None:
        """Initialize a planar pose.

        Args:
            x: Translation along x.
            y: Translation along y.
            theta: Heading in radians (wrapped to [-pi, pi)).
        """
        object.__setattr__(self, "x", float(x))
        object.__setattr__(self, "y", float(y))
        object.__setattr__(self, "theta", wrap_angle(float(theta)))

    @classmethod
    def identity(cls) -> "SE2Pose":
        return cls()

    @classmethod
    def from_vector(cls, vector: npt.ArrayLike) -> "SE2Pose":
        v = np.asarray(vector, dtype=np.float64).reshape(-1)
        if v.shape != (3,):
            raise ValueError("SE2 vector must have 3 elements [x, y, theta]")
        return cls(v[0], v[1], v[2])

    @classmethod
    def from_matrix(cls, T: npt.NDArray[np.float64]) -> "SE2Pose":
        if T.shape != (3, 3):
            raise ValueError("SE2 transform must be a 3x3 matrix")
        return cls(T[0, 2], T[1, 2], np.arctan2(T[1, 0], T[0, 0]))

    def matrix(self) -> npt.NDArray[np.float64]:
        T = np.eye(3)
        T[:2, :2] = yaw_to_rotation_matrix(self.theta)
        T[0, 2] = self.x
        T[1, 2] = self.y
        return T

    def vector(self) -> npt.NDArray[np.float64]:
        return np.array([self.x, self.y, self.theta], dtype=np.float64)

    @property
    def translation(self) -> npt.NDArray[np.float64]:
        return np.array([self.x, self.y], dtype=np.float64)

    @property
    def rotation(self) -> npt.NDArray[np.float64]:
        return yaw_to_rotation_matrix(self.theta)

    def compose(self, other: Pose) -> "SE2Pose":
        c, s = np.cos(self.theta), np.sin(self.theta)
        return SE2Pose(
            self.x + c * other.x - s * other.y,
            self.y + s * other.x + c * other.y,
            self.theta + other.theta,
        )

    def inverse(self) -> "SE2Pose":
        c, s = np.cos(self.theta), np.sin(self.theta)
        return SE2Pose(-c * self.x - s * self.y, s * self.x - c * self.y, -self.theta)

    def retract(self, delta: npt.ArrayLike) -> "SE2Pose":
        d = np.asarray(delta, dtype=np.float64).reshape(-1)
        return SE2Pose(self.x + d[0], self.y + d[1], self.theta + d[2])

    def log(self) -> npt.NDArray[np.float64]:
        return self.vector()

    def copy(self) -> "SE2Pose":
        return SE2Pose(self.x, self.y, self.theta)

    def rotation_angle(self) -> float:
        return abs(self.theta)


class SE3Pose(Pose):
    """Spatial rigid transform ``(R, t)``."""

    dof = 6
    dim = 3

    def __init__(
        self,
        rotation: npt.ArrayLike | None = None,
        translation: npt.ArrayLike | None = None,
    ) -> None:
        """Initialize a spatial pose.

        Args:
            rotation: 3x3 rotation matrix (identity if omitted).
            translation: 3D translation (zero if omitted).
        """
        R = np.eye(3) if rotation is None else np.array(rotation, dtype=np.float64)
        t = np.zeros(3) if translation is None else np.array(translation, dtype=np.float64)
        if R.shape != (3, 3):
            raise ValueError("Rotation must be a 3x3 matrix")
        if t.shape != (3,):
            raise ValueError("Translation must be a 3D vector")
        R.setflags(write=False)
        t.setflags(write=False)
        object.__setattr__(self, "_R", R)
        object.__setattr__(self, "_t", t)

    @classmethod
    def identity(cls) -> "SE3Pose":
        return cls()

    @classmethod
    def from_xyz_rpy(
        cls, x: float, y: float, z: float, roll: float, pitch: float, yaw: float
    ) -> "SE3Pose":
        """Create a pose from a position and roll/pitch/yaw angles."""
        return cls(rpy_to_rotation_matrix(roll, pitch, yaw), [x, y, z])

    @classmethod
    def from_vector(cls, vector: npt.ArrayLike) -> "SE3Pose":
        v = np.asarray(vector, dtype=np.float64).reshape(-1)
        if v.shape != (6,):
            raise ValueError("SE3 vector must have 6 elements [x, y, z, roll, pitch, yaw]")
        return cls.from_xyz_rpy(*v)

    @classmethod
    def from_matrix(cls, T: npt.NDArray[np.float64]) -> "SE3Pose":
        if T.shape != (4, 4):
            raise ValueError("SE3 transform must be a 4x4 matrix")
        return cls(T[:3, :3], T[:3, 3])

    def matrix(self) -> npt.NDArray[np.float64]:
        T = np.eye(4)
        T[:3, :3] = self._R
        T[:3, 3] = self._t
        return T

    def vector(self) -> npt.NDArray[np.float64]:
        return np.concatenate([self._t, rotation_matrix_to_rpy(self._R)])

    @property
    def translation(self) -> npt.NDArray[np.float64]:
        return self._t.copy()

    @property
    def rotation(self) -> npt.NDArray[np.float64]:
        return self._R.copy()

    def compose(self, other: Pose) -> "SE3Pose":
        return SE3Pose(self._R @ other.rotation, self._R @ other.translation + self._t)

    def inverse(self) -> "SE3Pose":
        R_inv = self._R.T
        return SE3Pose(R_inv, -R_inv @ self._t)

    def retract(self, delta: npt.ArrayLike) -> "SE3Pose":
        d = np.asarray(delta, dtype=np.float64).reshape(-1)
        R = self._R @ so3_exp(d[3:])
        # Re-orthonormalise so repeated retractions do not drift off SO(3)
        U, _, Vt = np.linalg.svd(R)
        R = U @ Vt
        return SE3Pose(R, self._t + self._R @ d[:3])

    def log(self) -> npt.NDArray[np.float64]:
        return np.concatenate([self._t, so3_log(self._R)])

    def copy(self) -> "SE3Pose":
        return SE3Pose(self._R, self._t)

    def rotation_angle(self) -> float:
        return float(np.linalg.norm(so3_log(self._R)))


PoseType = Type[Pose]
AnyPose = Union[SE2Pose, SE3Pose]

POSE_TYPES = {"se2": SE2Pose, "se3": SE3Pose}


def relative_error(xi: Pose, xj: Pose, z: Pose) -> npt.NDArray[np.float64]:
    """Residual of a relative-pose measurement.

    Args:
        xi: Estimate of the source node.
        xj: Estimate of the target node.
        z: Measured pose of ``j`` in the frame of ``i``.

    Returns:
        Tangent residual of ``z^-1 * xi^-1 * xj``.
    """
    return z.inverse().compose(xi.between(xj)).log()


def relative_jacobians(
    xi: Pose, xj: Pose, z: Pose
) -> Tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    """Jacobians of :func:`relative_error` with respect to local perturbations.

    Args:
        xi: Estimate of the source node.
        xj: Estimate of the target node.
        z: Measured relative pose.

    Returns:
        Tuple ``(A, B)`` with ``A = de/dxi`` and ``B = de/dxj``.
    """
    if isinstance(xi, SE2Pose):
        return _se2_jacobians(xi, xj, z)
    return _numerical_jacobians(xi, xj, z)


def _se2_jacobians(
    xi: SE2Pose, xj: SE2Pose, z: SE2Pose
) -> Tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    ci, si = np.cos(xi.theta), np.sin(xi.theta)
    dx = xj.x - xi.x
    dy = xj.y - xi.y

    A = np.array(
        [
            [-ci, -si, -si * dx + ci * dy],
            [si, -ci, -ci * dx - si * dy],
            [0.0, 0.0, -1.0],
        ]
    )
    B = np.array(
        [
            [ci, si, 0.0],
            [-si, ci, 0.0],
            [0.0, 0.0, 1.0],
        ]
    )

    # Rotate into the measurement frame
    Rz = np.eye(3)
    Rz[:2, :2] = yaw_to_rotation_matrix(z.theta).T
    return Rz @ A, Rz @ B


def _numerical_jacobians(
    xi: Pose, xj: Pose, z: Pose
) -> Tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    dof = xi.dof
    A = np.zeros((dof, dof))
    B = np.zeros((dof, dof))

    for k in range(dof):
        step = np.zeros(dof)
        step[k] = _JACOBIAN_STEP
        A[:, k] = (
            relative_error(xi.retract(step), xj, z) - relative_error(xi.retract(-step), xj, z)
        ) / (2.0 * _JACOBIAN_STEP)
        B[:, k] = (
            relative_error(xi, xj.retract(step), z) - relative_error(xi, xj.retract(-step), z)
        ) / (2.0 * _JACOBIAN_STEP)

    return A, B
