"""Rotations and rigid-body transforms with their Lie-algebra maps.

Tangent vectors of SE(3) are ordered translation first, rotation second.
"""

from __future__ import annotations

import math

import numpy as np

_SMALL = 1e-10
_ORTHO_TOL = 1e-6


def _vec(v, size: int) -> np.ndarray:
    arr = np.asarray(v, dtype=float).reshape(-1)
    if arr.shape != (size,):
        raise ValueError(f"expected a vector of length {size}, got shape {arr.shape}")
    return arr


def hat(v) -> np.ndarray:
    """Skew-symmetric matrix of a 3-vector."""
    x, y, z = _vec(v, 3)
    return np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])


def vee(m) -> np.ndarray:
    """3-vector of a skew-symmetric matrix."""
    m = np.asarray(m, dtype=float)
    if m.shape != (3, 3):
        raise ValueError(f"expected a 3x3 matrix, got shape {m.shape}")
    return np.array([m[2, 1], m[0, 2], m[1, 0]])


def quaternion_to_matrix(w, x, y, z) -> np.ndarray:
    """Rotation matrix of a quaternion; the quaternion is normalised first."""
    n = math.sqrt(w * w + x * x + y * y + z * z)
    if n == 0.0:
        raise ValueError("zero quaternion has no rotation")
    w, x, y, z = w / n, x / n, y / n, z / n
    return np.array(
        [
            [1 - 2 * (y * y + z * z), 2 * (x * y - w * z), 2 * (x * z + w * y)],
            [2 * (x * y + w * z), 1 - 2 * (x * x + z * z), 2 * (y * z - w * x)],
            [2 * (x * z - w * y), 2 * (y * z + w * x), 1 - 2 * (x * x + y * y)],
        ]
    )


def matrix_to_quaternion(m) -> tuple[float, float, float, float]:
    """Unit quaternion (w, x, y, z) of a rotation matrix."""
    m = np.asarray(m, dtype=float)
    if m.shape != (3, 3):
        raise ValueError(f"expected a 3x3 matrix, got shape {m.shape}")
    trace = m[0, 0] + m[1, 1] + m[2, 2]
    if trace > 0.0:
        t = math.sqrt(trace + 1.0)
        w = 0.5 * t
        t = 0.5 / t
        q = [w, (m[2, 1] - m[1, 2]) * t, (m[0, 2] - m[2, 0]) * t, (m[1, 0] - m[0, 1]) * t]
    else:
        i = 0
        if m[1, 1] > m[0, 0]:
            i = 1
        if m[2, 2] > m[i, i]:
            i = 2
        j = (i + 1) % 3
        k = (j + 1) % 3
        t = math.sqrt(m[i, i] - m[j, j] - m[k, k] + 1.0)
        vec = [0.0, 0.0, 0.0]
        vec[i] = 0.5 * t
        t = 0.5 / t
        w = (m[k, j] - m[j, k]) * t
        vec[j] = (m[j, i] + m[i, j]) * t
        vec[k] = (m[k, i] + m[i, k]) * t
        q = [w, *vec]
    n = math.sqrt(sum(c * c for c in q))
    return tuple(float(c / n) for c in q)


def angle_axis_to_matrix(angle, axis) -> np.ndarray:
    """Rotation matrix of a rotation by ``angle`` about ``axis``."""
    a = _vec(axis, 3)
    n = np.linalg.norm(a)
    if n == 0.0:
        raise ValueError("rotation axis must be non-zero")
    a = a / n
    c, s = math.cos(angle), math.sin(angle)
    return c * np.eye(3) + (1.0 - c) * np.outer(a, a) + s * hat(a)


def euler_angles_zyx(m) -> np.ndarray:
    """Yaw, pitch, roll such that m = Rz(yaw) Ry(pitch) Rx(roll); yaw lies in [0, pi]."""
    m = np.asarray(m, dtype=float)
    if m.shape != (3, 3):
        raise ValueError(f"expected a 3x3 matrix, got shape {m.shape}")
    i, j, k = 2, 1, 0
    yaw = math.atan2(m[j, k], m[k, k])
    c2 = math.hypot(m[i, i], m[i, j])
    if yaw < 0.0:
        yaw += math.pi
        pitch = math.atan2(-m[i, k], -c2)
    else:
        pitch = math.atan2(-m[i, k], c2)
    s1, c1 = math.sin(yaw), math.cos(yaw)
    roll = math.atan2(s1 * m[k, i] - c1 * m[j, i], c1 * m[j, j] - s1 * m[k, j])
    return np.array([yaw, pitch, roll])


def _apply(rotation: np.ndarray, translation: np.ndarray, points) -> np.ndarray:
    p = np.asarray(points, dtype=float)
    if p.shape == (3,):
        return rotation @ p + translation
    if p.ndim == 2 and p.shape[1] == 3:
        return p @ rotation.T + translation
    raise ValueError(f"expected a 3-vector or an (N, 3) array, got shape {p.shape}")


class SO3:
    """A rotation in three dimensions."""

    __slots__ = ("_matrix",)

    def __init__(self, matrix=None):
        if matrix is None:
            self._matrix = np.eye(3)
            return
        m = np.array(matrix, dtype=float)
        if m.shape != (3, 3):
            raise ValueError(f"expected a 3x3 matrix, got shape {m.shape}")
        if not np.allclose(m @ m.T, np.eye(3), atol=_ORTHO_TOL) or np.linalg.det(m) <= 0.0:
            raise ValueError("matrix is not a rotation")
        self._matrix = m

    @classmethod
    def _trusted(cls, matrix: np.ndarray) -> SO3:
        obj = cls.__new__(cls)
        obj._matrix = matrix
        return obj

    @classmethod
    def from_quaternion(cls, w, x, y, z) -> SO3:
        return cls._trusted(quaternion_to_matrix(w, x, y, z))

    @classmethod
    def exp(cls, omega) -> SO3:
        """Exponential map from a rotation vector."""
        omega = _vec(omega, 3)
        theta = float(np.linalg.norm(omega))
        k = hat(omega)
        if theta < _SMALL:
            return cls._trusted(np.eye(3) + k + 0.5 * (k @ k))
        return cls._trusted(
            np.eye(3)
            + (math.sin(theta) / theta) * k
            + ((1.0 - math.cos(theta)) / (theta * theta)) * (k @ k)
        )

    def log(self) -> np.ndarray:
        """Rotation vector of this rotation."""
        w, x, y, z = self.unit_quaternion()
        vec = np.array([x, y, z])
        n = float(np.linalg.norm(vec))
        if n < _SMALL:
            factor = 2.0 / w - 2.0 / 3.0 * n * n / (w**3)
        elif abs(w) < _SMALL:
            factor = (math.pi if w > 0 else -math.pi) / n
        else:
            factor = 2.0 * math.atan(n / w) / n
        return factor * vec

    def inverse(self) -> SO3:
        return SO3._trusted(self._matrix.T.copy())

    def matrix(self) -> np.ndarray:
        return self._matrix.copy()

    def unit_quaternion(self) -> tuple[float, float, float, float]:
        return matrix_to_quaternion(self._matrix)

    def __mul__(self, other):
        if isinstance(other, SO3):
            return SO3._trusted(self._matrix @ other._matrix)
        if isinstance(other, SE3):
            return NotImplemented
        return _apply(self._matrix, np.zeros(3), other)

    def __repr__(self) -> str:
        return f"SO3({self._matrix.tolist()!r})"


class SE3:
    """A rigid-body transform: rotation followed by translation."""

    __slots__ = ("rotation", "translation")

    def __init__(self, rotation=None, translation=None):
        if rotation is None:
            rotation = SO3()
        elif not isinstance(rotation, SO3):
            rotation = SO3(rotation)
        self.rotation: SO3 = rotation
        self.translation: np.ndarray = (
            np.zeros(3) if translation is None else _vec(translation, 3).copy()
        )

    @classmethod
    def identity(cls) -> SE3:
        return cls()

    @classmethod
    def from_quaternion(cls, w, x, y, z, translation) -> SE3:
        return cls(SO3.from_quaternion(w, x, y, z), translation)

    @classmethod
    def exp(cls, xi) -> SE3:
        """Exponential map from a twist (translation part first)."""
        xi = _vec(xi, 6)
        rho, phi = xi[:3], xi[3:]
        return cls(SO3.exp(phi), _left_jacobian(phi) @ rho)

    @staticmethod
    def hat(xi) -> np.ndarray:
        xi = _vec(xi, 6)
        m = np.zeros((4, 4))
        m[:3, :3] = hat(xi[3:])
        m[:3, 3] = xi[:3]
        return m

    @staticmethod
    def vee(m) -> np.ndarray:
        m = np.asarray(m, dtype=float)
        if m.shape != (4, 4):
            raise ValueError(f"expected a 4x4 matrix, got shape {m.shape}")
        return np.concatenate([m[:3, 3], vee(m[:3, :3])])

    def log(self) -> np.ndarray:
        phi = self.rotation.log()
        rho = _left_jacobian_inv(phi) @ self.translation
        return np.concatenate([rho, phi])

    def inverse(self) -> SE3:
        r_inv = self.rotation.inverse()
        return SE3(r_inv, -(r_inv * self.translation))

    def matrix(self) -> np.ndarray:
        m = np.eye(4)
        m[:3, :3] = self.rotation.matrix()
        m[:3, 3] = self.translation
        return m

    def matrix3x4(self) -> np.ndarray:
        return self.matrix()[:3, :]

    def adjoint(self) -> np.ndarray:
        r = self.rotation.matrix()
        adj = np.zeros((6, 6))
        adj[:3, :3] = r
        adj[3:, 3:] = r
        adj[:3, 3:] = hat(self.translation) @ r
        return adj

    def __mul__(self, other):
        if isinstance(other, SE3):
            return SE3(
                self.rotation * other.rotation,
                self.rotation * other.translation + self.translation,
            )
        if isinstance(other, SO3):
            return NotImplemented
        return _apply(self.rotation.matrix(), self.translation, other)

    def __repr__(self) -> str:
        return f"SE3(rotation={self.rotation!r}, translation={self.translation.tolist()!r})"


def _left_jacobian(phi: np.ndarray) -> np.ndarray:
    theta = float(np.linalg.norm(phi))
    k = hat(phi)
    if theta < _SMALL:
        return np.eye(3) + 0.5 * k + (k @ k) / 6.0
    return (
        np.eye(3)
        + ((1.0 - math.cos(theta)) / theta**2) * k
        + ((theta - math.sin(theta)) / theta**3) * (k @ k)
    )


def _left_jacobian_inv(phi: np.ndarray) -> np.ndarray:
    theta = float(np.linalg.norm(phi))
    k = hat(phi)
    if theta < _SMALL:
        return np.eye(3) - 0.5 * k + (k @ k) / 12.0
    half = 0.5 * theta
    coeff = (1.0 - half * math.cos(half) / math.sin(half)) / theta**2
    return np.eye(3) - 0.5 * k + coeff * (k @ k)