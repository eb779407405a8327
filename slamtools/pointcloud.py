"""Point clouds from RGB-D images with known poses, and their filters."""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from pathlib import Path

import numpy as np
from PIL import Image
from scipy.spatial import cKDTree

from slamtools.lie import SE3

NUM_IMAGES = 5
MEAN_K = 50
STDDEV_MUL = 1.0
VOXEL_RESOLUTION = 0.03


@dataclass(frozen=True)
class Intrinsics:
    """Pinhole camera intrinsics."""

    fx: float
    fy: float
    cx: float
    cy: float


RGBD_INTRINSICS = Intrinsics(518.0, 519.0, 325.5, 253.5)
RGBD_DEPTH_SCALE = 1000.0
ICL_INTRINSICS = Intrinsics(481.2, -480.0, 319.5, 239.5)
ICL_DEPTH_SCALE = 5000.0


def read_poses(path, count=NUM_IMAGES) -> list[SE3]:
    """Read ``count`` camera-to-world poses written as tx ty tz qx qy qz qw."""
    tokens = Path(path).read_text(encoding="utf-8").split()
    needed = 7 * count
    if len(tokens) < needed:
        raise ValueError(f"{path}: expected {needed} values, got {len(tokens)}")
    values = np.array(tokens[:needed], dtype=float).reshape(count, 7)
    return [
        SE3.from_quaternion(qw, qx, qy, qz, [tx, ty, tz])
        for tx, ty, tz, qx, qy, qz, qw in values
    ]


def rgbd_to_points(color, depth, pose: SE3, intrinsics: Intrinsics, depth_scale) -> np.ndarray:
    """World points (x, y, z, r, g, b) of every pixel with non-zero depth, row by row.

    ``color`` is an RGB image; ``pose`` maps camera to world.
    """
    color = np.asarray(color)
    depth = np.asarray(depth)
    if color.ndim != 3 or color.shape[2] < 3 or depth.shape != color.shape[:2]:
        raise ValueError("color must be HxWx3 and depth HxW of the same size")
    if depth_scale <= 0:
        raise ValueError("depth scale must be positive")
    v, u = np.nonzero(depth != 0)
    z = depth[v, u].astype(float) / depth_scale
    x = (u - intrinsics.cx) * z / intrinsics.fx
    y = (v - intrinsics.cy) * z / intrinsics.fy
    world = pose * np.column_stack([x, y, z])
    rgb = color[v, u, :3].astype(float)
    return np.column_stack([world, rgb])


def _check_points(points) -> np.ndarray:
    pts = np.asarray(points, dtype=float)
    if pts.ndim != 2 or pts.shape[1] < 3:
        raise ValueError(f"expected an (N, >=3) array of points, got shape {pts.shape}")
    return pts


def statistical_outlier_removal(points, mean_k=MEAN_K, stddev_mul=STDDEV_MUL) -> np.ndarray:
    """Drop points whose mean distance to their neighbours is unusually large."""
    pts = _check_points(points)
    if mean_k < 1:
        raise ValueError("mean_k must be at least 1")
    n = len(pts)
    if n < 2:
        return pts.copy()
    k = min(mean_k, n - 1)
    xyz = pts[:, :3]
    dist, _ = cKDTree(xyz).query(xyz, k=k + 1)
    mean_dist = dist[:, 1:].mean(axis=1)
    threshold = mean_dist.mean() + stddev_mul * mean_dist.std(ddof=1)
    return pts[mean_dist <= threshold]


def voxel_filter(points, resolution=VOXEL_RESOLUTION) -> np.ndarray:
    """Replace the points in each cubic voxel by their centroid (all columns averaged)."""
    pts = _check_points(points)
    if resolution <= 0:
        raise ValueError("resolution must be positive")
    if len(pts) == 0:
        return pts.copy()
    keys = np.floor(pts[:, :3] / resolution).astype(np.int64)
    _, inverse = np.unique(keys[:, ::-1], axis=0, return_inverse=True)
    inverse = np.asarray(inverse).reshape(-1)
    counts = np.bincount(inverse)
    sums = np.zeros((counts.size, pts.shape[1]))
    np.add.at(sums, inverse, pts)
    return sums / counts[:, None]


def _save_pcd(points: np.ndarray, path) -> None:
    with open(path, "w", encoding="ascii") as fh:
        fh.write("VERSION .7\nFIELDS x y z r g b\nSIZE 4 4 4 1 1 1\nTYPE F F F U U U\n")
        fh.write(f"COUNT 1 1 1 1 1 1\nWIDTH {len(points)}\nHEIGHT 1\n")
        fh.write(f"VIEWPOINT 0 0 0 1 0 0 0\nPOINTS {len(points)}\nDATA ascii\n")
        for x, y, z, r, g, b in points:
            fh.write(f"{x:.6g} {y:.6g} {z:.6g} {int(round(r))} {int(round(g))} {int(round(b))}\n")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="pointcloud", description="Join RGB-D images with known poses into one point cloud."
    )
    parser.add_argument("root", nargs="?", default=".", help="directory holding pose.txt")
    parser.add_argument("--mode", choices=("join", "filtered"), default="join")
    parser.add_argument("-o", "--output", default=None)
    args = parser.parse_args(argv)

    root = Path(args.root)
    try:
        poses = read_poses(root / "pose.txt")
    except OSError:
        print("cannot find pose file")
        return 1
    except ValueError as exc:
        print(f"invalid pose file: {exc}")
        return 1

    filtered = args.mode == "filtered"
    intrinsics = ICL_INTRINSICS if filtered else RGBD_INTRINSICS
    depth_scale = ICL_DEPTH_SCALE if filtered else RGBD_DEPTH_SCALE
    depth_ext = "png" if filtered else "pgm"
    clouds = []
    for i, pose in enumerate(poses, 1):
        print(f"converting image: {i}")
        try:
            with Image.open(root / "color" / f"{i}.png") as img:
                color = np.asarray(img.convert("RGB"))
            with Image.open(root / "depth" / f"{i}.{depth_ext}") as img:
                depth = np.asarray(img)
        except OSError as exc:
            print(f"cannot read image: {exc}")
            return 1
        try:
            cloud = rgbd_to_points(color, depth, pose, intrinsics, depth_scale)
        except ValueError as exc:
            print(f"error: {exc}")
            return 1
        if filtered:
            cloud = statistical_outlier_removal(cloud)
        clouds.append(cloud)

    cloud = np.vstack(clouds) if clouds else np.zeros((0, 6))
    print(f"point cloud has {len(cloud)} points.")
    if filtered:
        cloud = voxel_filter(cloud)
        print(f"after filtering, point cloud has {len(cloud)} points.")
    if len(cloud) == 0:
        print("Point cloud is empty!")
    output = args.output or ("map.pcd" if filtered else "pointcloud.pcd")
    _save_pcd(cloud, output)
    return 0