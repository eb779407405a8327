import numpy as np
import pytest

from slamtools.lie import SE3, SO3
from slamtools.pointcloud import (
    Intrinsics,
    main,
    read_poses,
    rgbd_to_points,
    statistical_outlier_removal,
    voxel_filter,
)

INTR = Intrinsics(1.0, 1.0, 1.0, 1.0)


def _images():
    color = np.zeros((3, 3, 3), dtype=np.uint8)
    color[1, 1] = (10, 20, 30)
    color[2, 0] = (40, 50, 60)
    depth = np.zeros((3, 3), dtype=np.uint16)
    depth[1, 1] = 2000
    depth[2, 0] = 1000
    return color, depth


def test_rgbd_to_points_skips_zero_depth_and_keeps_colour():
    color, depth = _images()
    cloud = rgbd_to_points(color, depth, SE3(), INTR, 1000.0)
    assert cloud.shape == (2, 6)
    assert np.allclose(cloud[0, :3], [0.0, 0.0, 2.0])
    assert np.array_equal(cloud[0, 3:], [10, 20, 30])
    assert np.array_equal(cloud[1, 3:], [40, 50, 60])
    assert cloud[1, 2] == pytest.approx(1.0)


def test_rgbd_to_points_applies_pose():
    color, depth = _images()
    pose = SE3(SO3.exp([0.1, 0.2, -0.3]), [1.0, -2.0, 0.5])
    base = rgbd_to_points(color, depth, SE3(), INTR, 1000.0)
    moved = rgbd_to_points(color, depth, pose, INTR, 1000.0)
    assert np.allclose(moved[:, :3], pose * base[:, :3])
    assert np.array_equal(moved[:, 3:], base[:, 3:])


def test_rgbd_to_points_rejects_mismatched_shapes():
    color, _ = _images()
    with pytest.raises(ValueError):
        rgbd_to_points(color, np.zeros((2, 2)), SE3(), INTR, 1000.0)


def test_read_poses(tmp_path):
    path = tmp_path / "pose.txt"
    path.write_text("1 2 3 0 0 0 1\n-1 0 0.5 0 0 1 0\n")
    poses = read_poses(path, 2)
    assert np.allclose(poses[0].translation, [1, 2, 3])
    assert np.allclose(poses[0].rotation.matrix(), np.eye(3))
    assert np.allclose(poses[1].translation, [-1, 0, 0.5])
    assert np.allclose(poses[1].rotation.matrix(), SO3.exp([0, 0, np.pi]).matrix(), atol=1e-9)
    with pytest.raises(ValueError):
        read_poses(path, 3)


def test_voxel_filter_merges_points_in_same_voxel():
    pts = np.array(
        [
            [0.01, 0.01, 0.01, 0, 0, 0],
            [0.02, 0.02, 0.02, 100, 100, 100],
            [1.0, 1.0, 1.0, 5, 5, 5],
        ]
    )
    out = voxel_filter(pts, 0.03)
    assert len(out) == 2
    assert any(np.allclose(row, pts[:2].mean(axis=0)) for row in out)
    assert any(np.allclose(row, pts[2]) for row in out)
    with pytest.raises(ValueError):
        voxel_filter(pts, 0.0)


def test_voxel_filter_keeps_distinct_points():
    pts = np.column_stack([np.arange(5) * 1.0, np.zeros(5), np.zeros(5)])
    out = voxel_filter(pts, 0.5)
    assert len(out) == len(pts)
    assert np.allclose(np.sort(out[:, 0]), pts[:, 0])


def test_statistical_outlier_removal_drops_far_point():
    rng = np.random.default_rng(0)
    cluster = rng.normal(0.0, 0.01, size=(200, 3))
    outlier = np.array([[5.0, 5.0, 5.0]])
    pts = np.vstack([cluster, outlier])
    kept = statistical_outlier_removal(pts, 50, 1.0)
    assert not any(np.allclose(row, outlier[0]) for row in kept)
    assert len(kept) < len(pts)
    assert len(kept) > len(cluster) // 2


def test_statistical_outlier_removal_small_inputs():
    single = np.array([[1.0, 2.0, 3.0]])
    assert np.array_equal(statistical_outlier_removal(single), single)
    with pytest.raises(ValueError):
        statistical_outlier_removal(single, 0)


def test_main_missing_pose_file(tmp_path):
    assert main([str(tmp_path)]) == 1