import math

import numpy as np
import pytest

from slamtools.lie import (
    SE3,
    SO3,
    angle_axis_to_matrix,
    euler_angles_zyx,
    hat,
    matrix_to_quaternion,
    quaternion_to_matrix,
    vee,
)


def _random_rotations(count, seed=0):
    rng = np.random.default_rng(seed)
    return [quaternion_to_matrix(*rng.normal(size=4)) for _ in range(count)]


def test_hat_is_skew_and_matches_cross_product():
    v = np.array([0.3, -1.2, 2.0])
    w = np.array([1.0, 0.5, -0.7])
    m = hat(v)
    np.testing.assert_allclose(m, -m.T)
    np.testing.assert_allclose(m @ w, np.cross(v, w))


def test_vee_inverts_hat():
    v = np.array([0.3, -1.2, 2.0])
    np.testing.assert_allclose(vee(hat(v)), v)


def test_hat_rejects_wrong_length():
    with pytest.raises(ValueError):
        hat([1.0, 2.0])


def test_angle_axis_rotates_x_axis_onto_y():
    r = angle_axis_to_matrix(math.pi / 2, [0, 0, 1])
    np.testing.assert_allclose(r @ np.array([1.0, 0.0, 0.0]), [0.0, 1.0, 0.0], atol=1e-12)


def test_angle_axis_rejects_zero_axis():
    with pytest.raises(ValueError):
        angle_axis_to_matrix(1.0, [0, 0, 0])


def test_so3_from_matrix_and_quaternion_agree():
    r = angle_axis_to_matrix(math.pi / 2, [0, 0, 1])
    q = matrix_to_quaternion(r)
    np.testing.assert_allclose(SO3(r).matrix(), SO3.from_quaternion(*q).matrix(), atol=1e-12)


@pytest.mark.parametrize(
    "angle,axis",
    [
        (math.pi, [1, 0, 0]),
        (math.pi, [0, 1, 0]),
        (math.pi, [0, 0, 1]),
        (2.5, [1, 2, 3]),
        (0.1, [-1, 0.5, 0.2]),
    ],
)
def test_matrix_quaternion_round_trip(angle, axis):
    r = angle_axis_to_matrix(angle, axis)
    q = matrix_to_quaternion(r)
    assert math.isclose(float(np.linalg.norm(q)), 1.0)
    np.testing.assert_allclose(quaternion_to_matrix(*q), r, atol=1e-12)


def test_quaternion_sign_and_scale_do_not_matter():
    a = quaternion_to_matrix(0.35, 0.2, 0.3, 0.1)
    b = quaternion_to_matrix(-0.7, -0.4, -0.6, -0.2)
    np.testing.assert_allclose(a, b, atol=1e-12)


def test_zero_quaternion_rejected():
    with pytest.raises(ValueError):
        quaternion_to_matrix(0, 0, 0, 0)


def test_euler_angles_of_pure_yaw():
    r = angle_axis_to_matrix(math.pi / 4, [0, 0, 1])
    np.testing.assert_allclose(euler_angles_zyx(r), [math.pi / 4, 0.0, 0.0], atol=1e-12)


def test_euler_angles_rebuild_rotation():
    for r in _random_rotations(20):
        yaw, pitch, roll = euler_angles_zyx(r)
        assert 0.0 <= yaw <= math.pi
        rebuilt = (
            angle_axis_to_matrix(yaw, [0, 0, 1])
            @ angle_axis_to_matrix(pitch, [0, 1, 0])
            @ angle_axis_to_matrix(roll, [1, 0, 0])
        )
        np.testing.assert_allclose(rebuilt, r, atol=1e-10)


@pytest.mark.parametrize(
    "omega",
    [[1e-4, 0, 0], [0, 0, 1e-12], [0.5, -0.3, 1.2], [0, 0, 3.0]],
)
def test_so3_exp_log_round_trip(omega):
    np.testing.assert_allclose(SO3.exp(omega).log(), omega, atol=1e-12)


def test_so3_exp_matches_angle_axis():
    np.testing.assert_allclose(
        SO3.exp([0, 0, 1.0]).matrix(), angle_axis_to_matrix(1.0, [0, 0, 1]), atol=1e-12
    )


def test_so3_log_of_half_turn_has_norm_pi():
    r = SO3(angle_axis_to_matrix(math.pi, [1, 1, 0]))
    assert math.isclose(float(np.linalg.norm(r.log())), math.pi, rel_tol=1e-9)


def test_so3_inverse_composes_to_identity():
    for m in _random_rotations(5, seed=3):
        r = SO3(m)
        np.testing.assert_allclose((r * r.inverse()).matrix(), np.eye(3), atol=1e-12)


def test_so3_rotates_vectors_like_its_matrix():
    m = _random_rotations(1, seed=4)[0]
    v = np.array([0.4, -2.0, 1.5])
    np.testing.assert_allclose(SO3(m) * v, m @ v)


@pytest.mark.parametrize("bad", [np.diag([1.0, 1.0, -1.0]), 2.0 * np.eye(3), np.ones((2, 2))])
def test_so3_rejects_non_rotation(bad):
    with pytest.raises(ValueError):
        SO3(bad)


def test_so3_small_update_moves_little():
    r = SO3(angle_axis_to_matrix(math.pi / 2, [0, 0, 1]))
    updated = SO3.exp([1e-4, 0, 0]) * r
    assert np.max(np.abs(updated.matrix() - r.matrix())) < 2e-4


@pytest.mark.parametrize(
    "xi",
    [
        [1.0, 0.0, 0.0, 0.0, 0.0, math.pi / 2],
        [0.1, -0.2, 0.3, 1e-12, 0.0, 0.0],
        [-1.0, 2.0, 0.5, 0.4, -0.7, 1.1],
    ],
)
def test_se3_exp_log_round_trip(xi):
    np.testing.assert_allclose(SE3.exp(xi).log(), xi, atol=1e-10)


def test_se3_exp_of_pure_translation():
    t = SE3.exp([1.0, 2.0, 3.0, 0.0, 0.0, 0.0])
    np.testing.assert_allclose(t.translation, [1.0, 2.0, 3.0])
    np.testing.assert_allclose(t.rotation.matrix(), np.eye(3))


def test_se3_hat_vee_round_trip():
    xi = np.array([0.5, -0.1, 2.0, 0.3, 0.2, -0.4])
    m = SE3.hat(xi)
    np.testing.assert_allclose(m[3], np.zeros(4))
    np.testing.assert_allclose(SE3.vee(m), xi)


def test_se3_inverse_matches_matrix_inverse():
    t = SE3.exp([0.3, -0.5, 1.0, 0.2, 0.1, -0.6])
    np.testing.assert_allclose(t.inverse().matrix(), np.linalg.inv(t.matrix()), atol=1e-12)
    np.testing.assert_allclose((t * t.inverse()).matrix(), np.eye(4), atol=1e-12)


def test_se3_matrix3x4_is_top_of_matrix():
    t = SE3.exp([0.3, -0.5, 1.0, 0.2, 0.1, -0.6])
    np.testing.assert_allclose(t.matrix3x4(), t.matrix()[:3])


def test_se3_adjoint_conjugates_twists():
    t = SE3.exp([0.3, -0.5, 1.0, 0.2, 0.1, -0.6])
    xi = np.array([0.01, 0.02, -0.03, 0.04, -0.05, 0.06])
    left = t * SE3.exp(xi) * t.inverse()
    right = SE3.exp(t.adjoint() @ xi)
    np.testing.assert_allclose(left.matrix(), right.matrix(), atol=1e-12)


def test_se3_transforms_points_single_and_batched():
    t = SE3.exp([0.3, -0.5, 1.0, 0.2, 0.1, -0.6])
    pts = np.array([[1.0, 2.0, 3.0], [-0.5, 0.0, 4.0]])
    r = t.rotation.matrix()
    np.testing.assert_allclose(t * pts[0], r @ pts[0] + t.translation)
    np.testing.assert_allclose(t * pts, pts @ r.T + t.translation)


def test_se3_composition_matches_matrix_product():
    a = SE3.exp([0.3, -0.5, 1.0, 0.2, 0.1, -0.6])
    b = SE3.exp([-1.0, 0.2, 0.0, -0.3, 0.4, 0.5])
    np.testing.assert_allclose((a * b).matrix(), a.matrix() @ b.matrix(), atol=1e-12)


def test_coordinate_transform_between_robots():
    t1w = SE3.from_quaternion(0.35, 0.2, 0.3, 0.1, [0.3, 0.1, 0.1])
    t2w = SE3.from_quaternion(-0.5, 0.4, -0.1, 0.2, [-0.1, 0.5, 0.3])
    p1 = np.array([0.5, 0.0, 0.2])
    p2 = t2w * (t1w.inverse() * p1)
    expected = t2w.matrix() @ np.linalg.inv(t1w.matrix()) @ np.append(p1, 1.0)
    np.testing.assert_allclose(p2, expected[:3], atol=1e-12)
    np.testing.assert_allclose(t1w * (t2w.inverse() * p2), p1, atol=1e-12)