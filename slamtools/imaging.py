"""Lens undistortion and stereo disparity to point cloud."""

from __future__ import annotations

import argparse
from dataclasses import dataclass

import numpy as np
from PIL import Image

UNDISTORT_FX, UNDISTORT_FY = 458.654, 457.296
UNDISTORT_CX, UNDISTORT_CY = 367.215, 248.375

STEREO_FX = STEREO_FY = 718.856
STEREO_CX, STEREO_CY = 607.1928, 185.2157
STEREO_BASELINE = 0.573
MAX_DISPARITY = 96.0


@dataclass(frozen=True)
class Distortion:
    """Radial (k1, k2) and tangential (p1, p2) distortion coefficients."""

    k1: float = -0.28340811
    k2: float = 0.07395907
    p1: float = 0.00019359
    p2: float = 1.76187114e-05


def undistort(
    image,
    distortion: Distortion | None = None,
    fx=UNDISTORT_FX,
    fy=UNDISTORT_FY,
    cx=UNDISTORT_CX,
    cy=UNDISTORT_CY,
) -> np.ndarray:
    """Undistort a grey image by nearest-neighbour lookup; unmapped pixels become 0."""
    img = np.asarray(image)
    if img.ndim != 2:
        raise ValueError(f"expected a grey image, got shape {img.shape}")
    d = distortion or Distortion()
    rows, cols = img.shape
    v, u = (a.astype(float) for a in np.mgrid[0:rows, 0:cols])
    x = (u - cx) / fx
    y = (v - cy) / fy
    r = np.sqrt(x * x + y * y)
    r2 = r * r
    radial = 1 + d.k1 * r2 + d.k2 * r2 * r2
    x_d = x * radial + 2 * d.p1 * x * y + d.p2 * (r2 + 2 * x * x)
    y_d = y * radial + d.p1 * (r2 + 2 * y * y) + 2 * d.p2 * x * y
    u_d = fx * x_d + cx
    v_d = fy * y_d + cy
    valid = (u_d >= 0) & (v_d >= 0) & (u_d < cols) & (v_d < rows)
    out = np.zeros_like(img)
    out[valid] = img[v_d[valid].astype(int), u_d[valid].astype(int)]
    return out


def disparity_to_pointcloud(
    gray,
    disparity,
    fx=STEREO_FX,
    fy=STEREO_FY,
    cx=STEREO_CX,
    cy=STEREO_CY,
    baseline=STEREO_BASELINE,
) -> np.ndarray:
    """Points (x, y, z, intensity) for pixels whose disparity lies in (0, 96)."""
    gray = np.asarray(gray)
    disp = np.asarray(disparity, dtype=float)
    if gray.ndim != 2 or gray.shape != disp.shape:
        raise ValueError("image and disparity must be 2-D arrays of the same shape")
    valid = (disp > 0.0) & (disp < MAX_DISPARITY)
    v, u = np.nonzero(valid)
    d = disp[v, u]
    depth = fx * baseline / d
    x = (u - cx) / fx * depth
    y = (v - cy) / fy * depth
    intensity = gray[v, u].astype(float) / 255.0
    return np.column_stack([x, y, depth, intensity])


def _load_gray(path) -> np.ndarray:
    with Image.open(path) as img:
        return np.asarray(img.convert("L"))


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="imaging", description="Undistort images and turn stereo disparity into points."
    )
    sub = parser.add_subparsers(dest="command", required=True)
    und = sub.add_parser("undistort", help="undistort a grey image")
    und.add_argument("input", nargs="?", default="./distorted.png")
    und.add_argument("-o", "--output", default="undistorted.png")
    stereo = sub.add_parser("stereo", help="point cloud from a left image and its disparity")
    stereo.add_argument("left", help="left grey image")
    stereo.add_argument("disparity", help="disparity in pixels, stored as .npy")
    stereo.add_argument("-o", "--output", default="pointcloud.txt")
    args = parser.parse_args(argv)

    if args.command == "undistort":
        try:
            image = _load_gray(args.input)
        except OSError as exc:
            print(f"cannot read image: {exc}")
            return 1
        Image.fromarray(undistort(image)).save(args.output)
        return 0

    try:
        left = _load_gray(args.left)
        disparity = np.load(args.disparity)
    except (OSError, ValueError) as exc:
        print(f"cannot read input: {exc}")
        return 1
    try:
        cloud = disparity_to_pointcloud(left, disparity)
    except ValueError as exc:
        print(f"error: {exc}")
        return 1
    if cloud.size == 0:
        print("Point cloud is empty!")
    np.savetxt(args.output, cloud)
    print(f"point cloud has {len(cloud)} points.")
    return 0