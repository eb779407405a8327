import numpy as np
import pytest
from scipy.ndimage import gaussian_filter

from slamtools.depth_filter import (
    BORDER,
    CX,
    CY,
    FX,
    HEIGHT,
    WIDTH,
    EpipolarMatch,
    bilinear_value,
    cam2px,
    epipolar_search,
    evaluate_depth,
    inside,
    main,
    ncc,
    px2cam,
    read_dataset,
    update,
    update_depth_filter,
)
from slamtools.lie import SE3

SHIFT = 10
BASELINE = 0.05
PT = (300.0, 200.0)


@pytest.fixture(scope="module")
def texture():
    rng = np.random.default_rng(7)
    smooth = gaussian_filter(rng.uniform(0, 255, (HEIGHT, WIDTH)), 3.0)
    smooth = (smooth - smooth.min()) / (smooth.max() - smooth.min()) * 255
    return smooth.astype(np.uint8)


@pytest.fixture(scope="module")
def shifted(texture):
    return np.roll(texture, SHIFT, axis=1)


def _translation():
    return SE3(None, [BASELINE, 0.0, 0.0])


def _true_depth():
    z = FX * BASELINE / SHIFT
    return z * np.linalg.norm(px2cam(PT))


def test_principal_point_maps_to_optical_axis():
    np.testing.assert_allclose(px2cam([CX, CY]), [0.0, 0.0, 1.0])


def test_pixel_camera_round_trip():
    px = np.array([123.25, 401.5])
    np.testing.assert_allclose(cam2px(px2cam(px)), px)


def test_cam2px_is_scale_invariant():
    p = np.array([0.3, -0.2, 1.7])
    np.testing.assert_allclose(cam2px(p), cam2px(4.0 * p))


def test_inside_border_limits():
    assert inside([BORDER, BORDER])
    assert not inside([BORDER - 1, BORDER])
    assert inside([WIDTH - BORDER - 1, HEIGHT - BORDER])
    assert not inside([WIDTH - BORDER, BORDER])
    assert not inside([BORDER, HEIGHT - BORDER + 1])


def test_bilinear_at_integer_pixel():
    img = np.arange(50 * 50, dtype=np.uint16).reshape(50, 50) % 251
    assert bilinear_value(img, [12, 7]) == pytest.approx(img[7, 12] / 255.0)


def test_bilinear_exact_on_linear_image():
    ys, xs = np.mgrid[0:50, 0:50]
    img = (xs + 2 * ys).astype(np.uint8)
    assert bilinear_value(img, [10.25, 7.5]) == pytest.approx((10.25 + 2 * 7.5) / 255.0)


def test_ncc_identical_patch(texture):
    assert ncc(texture, texture, (100, 100), (100, 100)) == pytest.approx(1.0, abs=1e-6)


def test_ncc_inverted_patch(texture):
    inverted = 255 - texture
    assert ncc(texture, inverted, (100, 100), (100, 100)) == pytest.approx(-1.0, abs=1e-6)


def test_ncc_constant_patch_is_zero(texture):
    flat = np.full_like(texture, 128)
    assert ncc(texture, flat, (100, 100), (100, 100)) == pytest.approx(0.0, abs=1e-9)


def test_epipolar_search_identity_finds_same_pixel(texture):
    match = epipolar_search(texture, texture, SE3(), PT, 3.0, 1.0)
    assert isinstance(match, EpipolarMatch)
    np.testing.assert_allclose(match.pt_curr, PT, atol=1e-6)
    assert match.score > 0.99


def test_epipolar_search_follows_translation(texture, shifted):
    match = epipolar_search(texture, shifted, _translation(), PT, 3.0, 1.0)
    assert match is not None
    assert abs(match.pt_curr[0] - (PT[0] + SHIFT)) <= 0.7
    assert abs(match.pt_curr[1] - PT[1]) < 1e-6
    assert np.linalg.norm(match.direction) == pytest.approx(1.0)


def test_epipolar_search_rejects_unrelated_image(texture):
    rng = np.random.default_rng(3)
    noise = rng.integers(0, 256, (HEIGHT, WIDTH)).astype(np.uint8)
    assert epipolar_search(texture, noise, SE3(), PT, 3.0, 1.0) is None


def test_update_depth_filter_recovers_depth():
    depth = np.full((HEIGHT, WIDTH), 3.0)
    cov = np.full((HEIGHT, WIDTH), 3.0)
    cov[int(PT[1]), int(PT[0])] = 1e6
    result = update_depth_filter(
        PT, (PT[0] + SHIFT, PT[1]), _translation(), (1.0, 0.0), depth, cov
    )
    assert result is not None
    mu, sigma2 = result
    assert mu == pytest.approx(_true_depth(), rel=1e-4)
    assert depth[int(PT[1]), int(PT[0])] == mu
    assert cov[int(PT[1]), int(PT[0])] == sigma2
    assert sigma2 < 1e6


def test_update_depth_filter_needs_baseline():
    depth = np.full((HEIGHT, WIDTH), 3.0)
    cov = np.full((HEIGHT, WIDTH), 3.0)
    assert update_depth_filter(PT, PT, SE3(), (1.0, 0.0), depth, cov) is None
    assert np.all(depth == 3.0)


def test_update_only_touches_active_pixels(texture, shifted):
    depth = np.full((HEIGHT, WIDTH), 3.0)
    cov = np.full((HEIGHT, WIDTH), 100.0)
    x, y = int(PT[0]), int(PT[1])
    cov[y, x] = 3.0
    count = update(texture, shifted, _translation(), depth, cov)
    assert count == 1
    assert cov[y, x] < 3.0
    assert abs(depth[y, x] - _true_depth()) < abs(3.0 - _true_depth())
    mask = np.ones_like(depth, dtype=bool)
    mask[y, x] = False
    assert np.all(depth[mask] == 3.0)
    assert np.all(cov[mask] == 100.0)


def test_update_rejects_wrong_shape(texture):
    small = np.ones((10, 10))
    with pytest.raises(ValueError):
        update(texture, texture, SE3(), small, small.copy())


def test_evaluate_depth_equal_maps():
    est = np.full((60, 70), 2.0)
    assert evaluate_depth(est, est.copy()) == (0.0, 0.0)


def test_evaluate_depth_constant_offset_ignores_border():
    est = np.full((60, 70), 2.0)
    truth = est + 1.0
    est[:BORDER, :] = 50.0
    est[:, -BORDER:] = -50.0
    mean, mean_sq = evaluate_depth(truth, est)
    assert mean == pytest.approx(1.0)
    assert mean_sq == pytest.approx(1.0)
    mean, mean_sq = evaluate_depth(truth - 2.0, truth - 1.0)
    assert mean == pytest.approx(-1.0)
    assert mean_sq == pytest.approx(1.0)


def test_evaluate_depth_shape_mismatch():
    with pytest.raises(ValueError):
        evaluate_depth(np.zeros((50, 50)), np.zeros((50, 51)))


def _write_dataset(root):
    (root / "depthmaps").mkdir()
    (root / "first_200_frames_traj_over_table_input_sequence.txt").write_text(
        "a.png 1 2 3 0 0 0 1\nb.png 4 5 6 0 0 0 1\n\n", encoding="utf-8"
    )
    (root / "depthmaps" / "scene_000.depth").write_text("100 200 300", encoding="utf-8")


def test_read_dataset(tmp_path):
    _write_dataset(tmp_path)
    files, poses, ref_depth = read_dataset(tmp_path)
    assert files == [str(tmp_path / "images" / "a.png"), str(tmp_path / "images" / "b.png")]
    np.testing.assert_allclose(poses[1].translation, [4, 5, 6])
    np.testing.assert_allclose(poses[0].rotation.matrix(), np.eye(3))
    assert ref_depth.shape == (HEIGHT, WIDTH)
    np.testing.assert_allclose(ref_depth[0, :3], np.array([100, 200, 300]) / 100.0)
    assert np.count_nonzero(ref_depth) == 3


def test_read_dataset_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_dataset(tmp_path)


def test_main_missing_dataset(tmp_path):
    assert main([str(tmp_path / "nowhere")]) == 1


def test_main_requires_argument():
    with pytest.raises(SystemExit):
        main([])