"""Linear triangulation of points seen from several poses."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from slamtools.lie import SE3

_QUALITY_RATIO = 1e-2


@dataclass(frozen=True)
class Triangulation:
    """A triangulated world point and whether the solution is well conditioned."""

    point: np.ndarray
    success: bool


def triangulate(poses: Sequence[SE3], points: Sequence) -> Triangulation:
    """Triangulate one point from its normalized-plane observations by SVD.

    ``poses`` map world to camera; ``points`` are observations (x, y, 1).
    The result is marked successful when the smallest singular value is
    small relative to the next one.
    """
    poses = list(poses)
    observations = [np.asarray(p, dtype=float).reshape(-1) for p in points]
    if len(poses) != len(observations):
        raise ValueError("need exactly one observation per pose")
    if len(poses) < 2:
        raise ValueError("triangulation needs at least two views")
    rows = []
    for pose, obs in zip(poses, observations):
        m = pose.matrix3x4()
        rows.append(obs[0] * m[2] - m[0])
        rows.append(obs[1] * m[2] - m[1])
    _, singular, vt = np.linalg.svd(np.array(rows), full_matrices=False)
    v = vt[3]
    with np.errstate(divide="ignore", invalid="ignore"):
        point = v[:3] / v[3]
    success = bool(singular[3] < _QUALITY_RATIO * singular[2])
    return Triangulation(point=point, success=success)