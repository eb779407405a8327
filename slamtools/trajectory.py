"""Trajectory files: reading, comparing and drawing helpers."""

from __future__ import annotations

import argparse
import math
import sys
from typing import Iterable, Sequence

import numpy as np

from slamtools.lie import SE3

DEFAULT_GROUNDTRUTH = "./example/groundtruth.txt"
DEFAULT_ESTIMATED = "./example/estimated.txt"


def parse_trajectory(lines: Iterable[str]) -> list[SE3]:
    """Parse lines of ``time tx ty tz qx qy qz qw`` into poses."""
    poses = []
    for number, line in enumerate(lines, 1):
        fields = line.split()
        if not fields:
            continue
        if len(fields) != 8:
            raise ValueError(f"line {number}: expected 8 values, got {len(fields)}")
        try:
            _, tx, ty, tz, qx, qy, qz, qw = (float(f) for f in fields)
        except ValueError as exc:
            raise ValueError(f"line {number}: {exc}") from None
        poses.append(SE3.from_quaternion(qw, qx, qy, qz, [tx, ty, tz]))
    return poses


def read_trajectory(path) -> list[SE3]:
    """Read a trajectory file."""
    with open(path, encoding="utf-8") as fh:
        return parse_trajectory(fh)


def trajectory_rmse(groundtruth: Sequence[SE3], estimated: Sequence[SE3]) -> float:
    """Root-mean-square of the SE(3) log error between matching poses."""
    if not groundtruth or not estimated:
        raise ValueError("trajectories must not be empty")
    if len(groundtruth) != len(estimated):
        raise ValueError("trajectories must have the same length")
    total = sum(
        float(np.linalg.norm((gt.inverse() * est).log())) ** 2
        for gt, est in zip(groundtruth, estimated)
    )
    return math.sqrt(total / len(estimated))


def pose_axes(pose: SE3, length: float = 0.1) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """Origin and the tips of the x, y and z axes of a pose, in world coordinates."""
    tips = pose * (length * np.eye(3))
    return pose.translation.copy(), tips[0], tips[1], tips[2]


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="trajectory-error",
        description="Compute the RMSE between a ground-truth and an estimated trajectory.",
    )
    parser.add_argument("groundtruth", nargs="?", default=DEFAULT_GROUNDTRUTH)
    parser.add_argument("estimated", nargs="?", default=DEFAULT_ESTIMATED)
    args = parser.parse_args(argv)
    try:
        groundtruth = read_trajectory(args.groundtruth)
        estimated = read_trajectory(args.estimated)
        rmse = trajectory_rmse(groundtruth, estimated)
    except OSError as exc:
        print(f"trajectory not found: {exc}", file=sys.stderr)
        return 1
    except ValueError as exc:
        print(f"invalid trajectory: {exc}", file=sys.stderr)
        return 1
    print(f"RMSE = {rmse:g}")
    return 0