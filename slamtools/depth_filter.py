"""Dense monocular depth estimation by epipolar search and Gaussian depth filters."""

from __future__ import annotations

import argparse
import math
from dataclasses import dataclass
from pathlib import Path

import numpy as np
from PIL import Image

from slamtools.lie import SE3

BORDER = 20
WIDTH = 640
HEIGHT = 480
FX = float(np.float32(481.2))
FY = float(np.float32(-480.0))
CX = float(np.float32(319.5))
CY = float(np.float32(239.5))
NCC_WINDOW = 3
NCC_AREA = (2 * NCC_WINDOW + 1) ** 2
MIN_COV = 0.1
MAX_COV = 10.0
NCC_THRESHOLD = float(np.float32(0.85))
SEARCH_STEP = 0.7
MAX_HALF_LENGTH = 100.0
MIN_DEPTH = 0.1
INIT_DEPTH = 3.0
INIT_COV2 = 3.0

TRAJECTORY_FILE = "first_200_frames_traj_over_table_input_sequence.txt"
REFERENCE_DEPTH_FILE = "depthmaps/scene_000.depth"

_OFFSETS_X, _OFFSETS_Y = (
    a.ravel().astype(float)
    for a in np.meshgrid(
        np.arange(-NCC_WINDOW, NCC_WINDOW + 1),
        np.arange(-NCC_WINDOW, NCC_WINDOW + 1),
        indexing="ij",
    )
)


def _normalized(v: np.ndarray) -> np.ndarray:
    n = float(np.linalg.norm(v))
    return v / n if n > 0.0 else v


def _acos(value: float) -> float:
    return math.acos(max(-1.0, min(1.0, value)))


def px2cam(px) -> np.ndarray:
    """Pixel to a point on the normalized image plane (z = 1)."""
    u, v = np.asarray(px, dtype=float).reshape(-1)
    return np.array([(u - CX) / FX, (v - CY) / FY, 1.0])


def cam2px(p_cam) -> np.ndarray:
    """Camera-frame point to pixel."""
    x, y, z = np.asarray(p_cam, dtype=float).reshape(-1)
    return np.array([x * FX / z + CX, y * FY / z + CY])


def inside(pt) -> bool:
    """Whether a pixel lies inside the image, away from the border."""
    x, y = np.asarray(pt, dtype=float).reshape(-1)
    return bool(x >= BORDER and y >= BORDER and x + BORDER < WIDTH and y + BORDER <= HEIGHT)


def _bilinear(img: np.ndarray, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
    ix = xs.astype(int)
    iy = ys.astype(int)
    xx = xs - np.floor(xs)
    yy = ys - np.floor(ys)
    img = np.asarray(img, dtype=float)
    return (
        (1 - xx) * (1 - yy) * img[iy, ix]
        + xx * (1 - yy) * img[iy, ix + 1]
        + (1 - xx) * yy * img[iy + 1, ix]
        + xx * yy * img[iy + 1, ix + 1]
    ) / 255.0


def bilinear_value(img, pt) -> float:
    """Bilinearly interpolated grey value at ``pt`` (x, y), scaled to [0, 1]."""
    x, y = np.asarray(pt, dtype=float).reshape(-1)
    return float(_bilinear(img, np.array([x]), np.array([y]))[0])


def ncc(ref, curr, pt_ref, pt_curr) -> float:
    """Zero-mean normalized cross-correlation of the windows around two points."""
    rx, ry = np.asarray(pt_ref, dtype=float).reshape(-1)
    cx, cy = np.asarray(pt_curr, dtype=float).reshape(-1)
    values_ref = (
        np.asarray(ref, dtype=float)[
            (_OFFSETS_Y + ry).astype(int), (_OFFSETS_X + rx).astype(int)
        ]
        / 255.0
    )
    values_curr = _bilinear(curr, _OFFSETS_X + cx, _OFFSETS_Y + cy)
    dr = values_ref - values_ref.sum() / NCC_AREA
    dc = values_curr - values_curr.sum() / NCC_AREA
    numerator = float(dr @ dc)
    return numerator / math.sqrt(float(dr @ dr) * float(dc @ dc) + 1e-10)


@dataclass(frozen=True)
class EpipolarMatch:
    """Best match along the epipolar line."""

    pt_curr: np.ndarray
    direction: np.ndarray
    score: float


def epipolar_search(ref, curr, T_C_R: SE3, pt_ref, depth_mu, depth_cov) -> EpipolarMatch | None:
    """Search the epipolar segment for ``pt_ref`` in ``curr``; None if no good match."""
    f_ref = _normalized(px2cam(pt_ref))
    px_mean_curr = cam2px(T_C_R * (f_ref * depth_mu))
    d_min = max(depth_mu - 3 * depth_cov, MIN_DEPTH)
    d_max = depth_mu + 3 * depth_cov
    px_min_curr = cam2px(T_C_R * (f_ref * d_min))
    px_max_curr = cam2px(T_C_R * (f_ref * d_max))

    epipolar_line = px_max_curr - px_min_curr
    direction = _normalized(epipolar_line)
    half_length = min(0.5 * float(np.linalg.norm(epipolar_line)), MAX_HALF_LENGTH)

    best_ncc = -1.0
    best_px = None
    l = -half_length
    while l <= half_length:
        px_curr = px_mean_curr + l * direction
        if inside(px_curr):
            score = ncc(ref, curr, pt_ref, px_curr)
            if score > best_ncc:
                best_ncc = score
                best_px = px_curr
        l += SEARCH_STEP
    if best_px is None or best_ncc < NCC_THRESHOLD:
        return None
    return EpipolarMatch(pt_curr=best_px, direction=direction, score=best_ncc)


def update_depth_filter(pt_ref, pt_curr, T_C_R: SE3, epipolar_direction, depth, depth_cov2):
    """Triangulate the match and fuse it into the depth filter at ``pt_ref``.

    The arrays are updated in place; the fused (mean, variance) is returned,
    or None when the geometry admits no triangulation.
    """
    T_R_C = T_C_R.inverse()
    f_ref = _normalized(px2cam(pt_ref))
    f_curr = _normalized(px2cam(pt_curr))

    t = T_R_C.translation
    t_norm = float(np.linalg.norm(t))
    if t_norm == 0.0:
        return None
    f2 = T_R_C.rotation * f_curr
    b = np.array([t @ f_ref, t @ f2])
    a_mat = np.array([[f_ref @ f_ref, -(f_ref @ f2)], [f_ref @ f2, -(f2 @ f2)]])
    try:
        ans = np.linalg.solve(a_mat, b)
    except np.linalg.LinAlgError:
        return None
    xm = ans[0] * f_ref
    xn = t + ans[1] * f2
    depth_estimation = float(np.linalg.norm((xm + xn) / 2.0))

    alpha = _acos(float(f_ref @ t) / t_norm)
    direction = np.asarray(epipolar_direction, dtype=float).reshape(-1)
    f_curr_prime = _normalized(px2cam(np.asarray(pt_curr, dtype=float) + direction))
    beta_prime = _acos(float(f_curr_prime @ -t) / t_norm)
    gamma = math.pi - alpha - beta_prime
    p_prime = t_norm * math.sin(beta_prime) / math.sin(gamma)
    d_cov = p_prime - depth_estimation
    d_cov2 = d_cov * d_cov

    x, y = (int(c) for c in np.asarray(pt_ref, dtype=float).reshape(-1))
    mu = float(depth[y, x])
    sigma2 = float(depth_cov2[y, x])
    mu_fuse = (d_cov2 * mu + sigma2 * depth_estimation) / (sigma2 + d_cov2)
    sigma_fuse2 = (sigma2 * d_cov2) / (sigma2 + d_cov2)
    depth[y, x] = mu_fuse
    depth_cov2[y, x] = sigma_fuse2
    return mu_fuse, sigma_fuse2


def update(ref, curr, T_C_R: SE3, depth, depth_cov2) -> int:
    """Update every unconverged pixel of the depth map; returns how many were updated."""
    if depth.shape != (HEIGHT, WIDTH) or depth_cov2.shape != (HEIGHT, WIDTH):
        raise ValueError(f"depth maps must be {HEIGHT}x{WIDTH}")
    region = np.zeros((HEIGHT, WIDTH), dtype=bool)
    region[BORDER : HEIGHT - BORDER, BORDER : WIDTH - BORDER] = True
    active = region & ~((depth_cov2 < MIN_COV) | (depth_cov2 > MAX_COV))
    xs, ys = np.nonzero(active.T)
    updated = 0
    for x, y in zip(xs.tolist(), ys.tolist()):
        pt_ref = np.array([float(x), float(y)])
        match = epipolar_search(
            ref, curr, T_C_R, pt_ref, float(depth[y, x]), math.sqrt(depth_cov2[y, x])
        )
        if match is None:
            continue
        if update_depth_filter(pt_ref, match.pt_curr, T_C_R, match.direction, depth, depth_cov2):
            updated += 1
    return updated


def evaluate_depth(depth_truth, depth_estimate) -> tuple[float, float]:
    """Average error and average squared error of the estimate, border excluded."""
    truth = np.asarray(depth_truth, dtype=float)
    estimate = np.asarray(depth_estimate, dtype=float)
    if truth.shape != estimate.shape:
        raise ValueError("depth maps must have the same shape")
    rows, cols = truth.shape
    error = (truth - estimate)[BORDER : rows - BORDER, BORDER : cols - BORDER]
    if error.size == 0:
        raise ValueError("depth maps are smaller than the border")
    return float(error.mean()), float((error * error).mean())


def read_dataset(path):
    """Read image paths, camera-to-world poses and the reference depth map."""
    root = Path(path)
    image_files: list[str] = []
    poses: list[SE3] = []
    with open(root / TRAJECTORY_FILE, encoding="utf-8") as fh:
        for number, line in enumerate(fh, 1):
            fields = line.split()
            if not fields:
                continue
            if len(fields) != 8:
                raise ValueError(f"line {number}: expected 8 values, got {len(fields)}")
            try:
                tx, ty, tz, qx, qy, qz, qw = (float(f) for f in fields[1:])
            except ValueError as exc:
                raise ValueError(f"line {number}: {exc}") from None
            image_files.append(str(root / "images" / fields[0]))
            poses.append(SE3.from_quaternion(qw, qx, qy, qz, [tx, ty, tz]))

    with open(root / REFERENCE_DEPTH_FILE, encoding="utf-8") as fh:
        values = np.array(fh.read().split(), dtype=float)
    ref_depth = np.zeros(HEIGHT * WIDTH)
    n = min(values.size, ref_depth.size)
    ref_depth[:n] = values[:n] / 100.0
    return image_files, poses, ref_depth.reshape(HEIGHT, WIDTH)


def _load_gray(path) -> np.ndarray | None:
    try:
        with Image.open(path) as img:
            return np.asarray(img.convert("L"))
    except OSError:
        return None


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="dense-mapping",
        description="Estimate a dense depth map from a monocular sequence with known poses.",
    )
    parser.add_argument("dataset", help="path to the test dataset")
    parser.add_argument("-o", "--output", default="depth.png")
    args = parser.parse_args(argv)

    try:
        image_files, poses_twc, ref_depth = read_dataset(args.dataset)
    except (OSError, ValueError):
        print("Reading image files failed!")
        return 1
    print(f"read total {len(image_files)} files.")
    if not image_files:
        print("Reading image files failed!")
        return 1

    ref = _load_gray(image_files[0])
    if ref is None:
        print("Reading image files failed!")
        return 1
    pose_ref_twc = poses_twc[0]
    depth = np.full((HEIGHT, WIDTH), INIT_DEPTH)
    depth_cov2 = np.full((HEIGHT, WIDTH), INIT_COV2)

    for index in range(1, len(image_files)):
        print(f"*** loop {index} ***")
        curr = _load_gray(image_files[index])
        if curr is None:
            continue
        pose_t_c_r = poses_twc[index].inverse() * pose_ref_twc
        update(ref, curr, pose_t_c_r, depth, depth_cov2)
        mean_error, mean_sq_error = evaluate_depth(ref_depth, depth)
        print(f"Average squared error = {mean_sq_error:g}, average error: {mean_error:g}")

    print("estimation returns, saving depth map ...")
    Image.fromarray(np.clip(np.rint(depth), 0, 255).astype(np.uint8)).save(args.output)
    print("done.")
    return 0