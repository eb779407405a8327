import numpy as np

from slamtools.camera import Camera
from slamtools.lie import SE3


def _camera():
    return Camera(
        fx=500.0,
        fy=480.0,
        cx=320.0,
        cy=240.0,
        baseline=0.5,
        pose=SE3(np.eye(3), [0.5, 0.0, 0.0]),
    )


def _world_pose():
    return SE3.exp([0.2, -0.1, 0.3, 0.05, -0.02, 0.1])


def test_intrinsic_matrix():
    np.testing.assert_allclose(
        _camera().K(), [[500.0, 0.0, 320.0], [0.0, 480.0, 240.0], [0.0, 0.0, 1.0]]
    )


def test_optical_axis_projects_to_principal_point():
    np.testing.assert_allclose(_camera().camera2pixel([0.0, 0.0, 2.0]), [320.0, 240.0])


def test_pixel_camera_round_trip():
    cam = _camera()
    p = cam.pixel2camera([100.0, 50.0], depth=3.0)
    assert p[2] == 3.0
    np.testing.assert_allclose(cam.camera2pixel(p), [100.0, 50.0])


def test_default_depth_is_unit():
    assert _camera().pixel2camera([10.0, 20.0])[2] == 1.0


def test_world_camera_round_trip():
    cam = _camera()
    p = np.array([0.3, -0.2, 4.0])
    np.testing.assert_allclose(
        cam.camera2world(cam.world2camera(p, _world_pose()), _world_pose()), p, atol=1e-12
    )


def test_world_pixel_round_trip():
    cam = _camera()
    t = _world_pose()
    p = np.array([0.3, -0.2, 4.0])
    px = cam.world2pixel(p, t)
    depth = cam.world2camera(p, t)[2]
    np.testing.assert_allclose(cam.pixel2world(px, t, depth), p, atol=1e-10)


def test_extrinsic_applied_after_world_pose():
    cam = _camera()
    p = np.array([1.0, 2.0, 3.0])
    np.testing.assert_allclose(cam.world2camera(p, SE3()), p + cam.pose.translation)


def test_pose_inverse_is_kept():
    cam = _camera()
    np.testing.assert_allclose((cam.pose_inv * cam.pose).matrix(), np.eye(4), atol=1e-12)


def test_default_camera_has_identity_extrinsic():
    cam = Camera()
    assert cam.fx == 0.0 and cam.baseline == 0.0
    np.testing.assert_allclose(cam.pose.matrix(), np.eye(4))