"""Reprojection edges and a small bundle adjuster with a Huber robust kernel.

Pose increments are applied on the left, ``T <- exp(dx) T``, with the
translation part of the twist first.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable, Mapping

import numpy as np
from scipy.sparse import coo_matrix, identity
from scipy.sparse.linalg import spsolve

from slamtools.lie import SE3

_LM_TAU = 1e-5
_LM_MAX_TRIES = 10


def _vec(v, size: int) -> np.ndarray:
    arr = np.array(v, dtype=float).reshape(-1)
    if arr.shape != (size,):
        raise ValueError(f"expected a vector of length {size}, got shape {arr.shape}")
    return arr


def _mat(m, shape: tuple[int, int]) -> np.ndarray:
    arr = np.array(m, dtype=float)
    if arr.shape != shape:
        raise ValueError(f"expected a matrix of shape {shape}, got {arr.shape}")
    return arr


def _project(K: np.ndarray, p_cam: np.ndarray) -> np.ndarray:
    pix = K @ p_cam
    return pix[:2] / pix[2]


def pose_jacobian(K, pos_cam) -> np.ndarray:
    """2x6 Jacobian of (measurement - projection) with respect to a left pose increment."""
    K = _mat(K, (3, 3))
    x, y, z = _vec(pos_cam, 3)
    fx, fy = K[0, 0], K[1, 1]
    zinv = 1.0 / (z + 1e-18)
    zinv2 = zinv * zinv
    return np.array(
        [
            [-fx * zinv, 0.0, fx * x * zinv2, fx * x * y * zinv2, -fx - fx * x * x * zinv2, fx * y * zinv],
            [0.0, -fy * zinv, fy * y * zinv2, fy + fy * y * y * zinv2, -fy * x * y * zinv2, -fy * x * zinv],
        ]
    )


def huber_weight(chi2, delta) -> float:
    """Weight a Huber kernel of width ``delta`` gives to an edge with this chi2."""
    if delta is None:
        return 1.0
    if delta <= 0:
        raise ValueError("Huber delta must be positive")
    if chi2 <= delta * delta:
        return 1.0
    return delta / math.sqrt(chi2)


def _huber_rho(chi2: float, delta) -> float:
    if delta is None or chi2 <= delta * delta:
        return chi2
    return 2.0 * math.sqrt(chi2) * delta - delta * delta


@dataclass
class PoseOnlyEdge:
    """Projection of a fixed 3-D point into a camera whose pose is estimated."""

    pos3d: np.ndarray
    K: np.ndarray
    measurement: np.ndarray
    information: np.ndarray = field(default_factory=lambda: np.eye(2))

    def __post_init__(self) -> None:
        self.pos3d = _vec(self.pos3d, 3)
        self.K = _mat(self.K, (3, 3))
        self.measurement = _vec(self.measurement, 2)
        self.information = _mat(self.information, (2, 2))

    def error(self, pose: SE3) -> np.ndarray:
        return self.measurement - _project(self.K, pose * self.pos3d)

    def jacobian(self, pose: SE3) -> np.ndarray:
        return pose_jacobian(self.K, pose * self.pos3d)

    def chi2(self, pose: SE3) -> float:
        e = self.error(pose)
        return float(e @ self.information @ e)


@dataclass
class ProjectionEdge:
    """Projection of an estimated point into a camera of a stereo rig with estimated pose.

    ``cam_ext`` maps the rig frame to this camera; ``pose_id`` and
    ``point_id`` name the vertices for :func:`bundle_adjust`.
    """

    K: np.ndarray
    cam_ext: SE3
    measurement: np.ndarray
    pose_id: int = 0
    point_id: int = 0
    information: np.ndarray = field(default_factory=lambda: np.eye(2))

    def __post_init__(self) -> None:
        self.K = _mat(self.K, (3, 3))
        self.measurement = _vec(self.measurement, 2)
        self.information = _mat(self.information, (2, 2))

    def error(self, pose: SE3, point) -> np.ndarray:
        p = _vec(point, 3)
        return self.measurement - _project(self.K, self.cam_ext * (pose * p))

    def jacobians(self, pose: SE3, point) -> tuple[np.ndarray, np.ndarray]:
        """Jacobians with respect to the pose (2x6) and the point (2x3)."""
        p = _vec(point, 3)
        pos_cam = (self.cam_ext * pose) * p
        ji = pose_jacobian(self.K, pos_cam)
        jj = ji[:, :3] @ self.cam_ext.rotation.matrix() @ pose.rotation.matrix()
        return ji, jj

    def chi2(self, pose: SE3, point) -> float:
        e = self.error(pose, point)
        return float(e @ self.information @ e)


def _robust_cost(poses, points, edges, delta) -> float:
    return sum(
        _huber_rho(edge.chi2(poses[edge.pose_id], points[edge.point_id]), delta)
        for edge in edges
    )


def bundle_adjust(poses: Mapping, points: Mapping, edges: Iterable[ProjectionEdge],
                  iterations=10, delta=None):
    """Levenberg-Marquardt over all poses and points; returns new (poses, points) dicts.

    ``delta`` is the width of the Huber kernel; None means no robust kernel.
    The inputs are not modified.
    """
    poses = dict(poses)
    points = {pid: _vec(p, 3) for pid, p in points.items()}
    edges = list(edges)
    for edge in edges:
        if edge.pose_id not in poses:
            raise KeyError(f"no pose with id {edge.pose_id}")
        if edge.point_id not in points:
            raise KeyError(f"no point with id {edge.point_id}")
    if not edges or iterations <= 0:
        return poses, points

    pose_start = {pid: 6 * k for k, pid in enumerate(poses)}
    offset = 6 * len(poses)
    point_start = {pid: offset + 3 * k for k, pid in enumerate(points)}
    n = offset + 3 * len(points)

    def build(cur_poses, cur_points):
        rows, cols, data = [], [], []
        b = np.zeros(n)
        for edge in edges:
            pose, point = cur_poses[edge.pose_id], cur_points[edge.point_id]
            e = edge.error(pose, point)
            ji, jj = edge.jacobians(pose, point)
            omega = edge.information
            w = huber_weight(float(e @ omega @ e), delta)
            blocks = [(pose_start[edge.pose_id], ji), (point_start[edge.point_id], jj)]
            for sa, ja in blocks:
                jt_omega = w * (ja.T @ omega)
                b[sa : sa + ja.shape[1]] += jt_omega @ e
                for sb, jb in blocks:
                    r = np.arange(sa, sa + ja.shape[1])
                    c = np.arange(sb, sb + jb.shape[1])
                    rr, cc = np.meshgrid(r, c, indexing="ij")
                    rows.append(rr.ravel())
                    cols.append(cc.ravel())
                    data.append((jt_omega @ jb).ravel())
        h = coo_matrix(
            (np.concatenate(data), (np.concatenate(rows), np.concatenate(cols))), shape=(n, n)
        ).tocsc()
        return h, b

    def apply(dx):
        new_poses = {
            pid: SE3.exp(dx[s : s + 6]) * poses[pid] for pid, s in pose_start.items()
        }
        new_points = {pid: points[pid] + dx[s : s + 3] for pid, s in point_start.items()}
        return new_poses, new_points

    cost = _robust_cost(poses, points, edges, delta)
    lam: float | None = None
    nu = 2.0
    for _ in range(iterations):
        h, b = build(poses, points)
        if lam is None:
            lam = _LM_TAU * max(float(h.diagonal().max()), 1e-12)
        accepted = False
        for _ in range(_LM_MAX_TRIES):
            damped = (h + lam * identity(n, format="csc")).tocsc()
            dx = np.asarray(spsolve(damped, -b)).reshape(-1)
            if np.all(np.isfinite(dx)):
                cand_poses, cand_points = apply(dx)
                cost_new = _robust_cost(cand_poses, cand_points, edges, delta)
                scale = float(dx @ (lam * dx - b)) + 1e-3
                rho = (cost - cost_new) / scale
                if np.isfinite(cost_new) and rho > 0:
                    poses, points, cost = cand_poses, cand_points, cost_new
                    alpha = min(1.0 - (2.0 * rho - 1.0) ** 3, 2.0 / 3.0)
                    lam *= max(1.0 / 3.0, alpha)
                    nu = 2.0
                    accepted = True
                    break
            lam *= nu
            nu *= 2.0
        if not accepted:
            break
    return poses, points