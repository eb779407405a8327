# slamtools

Building blocks for visual SLAM in plain Python, NumPy and SciPy.

## Modules

- `slamtools.lie`: rotations and rigid transforms (`SO3`, `SE3`) with
  `exp`/`log` maps, `inverse`, composition and point transformation by `*`,
  `SE3.matrix`, `SE3.matrix3x4` and `SE3.adjoint`. Free functions `hat`,
  `vee`, `quaternion_to_matrix`, `matrix_to_quaternion`,
  `angle_axis_to_matrix` and `euler_angles_zyx`. SE(3) tangent vectors put
  the translation first and the rotation second.
- `slamtools.camera`: a pinhole `Camera` of a stereo rig with `K()` and
  conversions between world, camera and pixel coordinates
  (`world2camera`, `camera2world`, `camera2pixel`, `pixel2camera`,
  `world2pixel`, `pixel2world`).
- `slamtools.geometry`: `triangulate(poses, points)` solves for a point from
  its normalised-plane observations by SVD and returns a `Triangulation`
  holding the `point` and a `success` flag for a well-conditioned solution.
- `slamtools.trajectory`: `parse_trajectory`/`read_trajectory` for lines of
  `time tx ty tz qx qy qz qw`, `trajectory_rmse` between two trajectories,
  and `pose_axes` for the origin and axis tips of a pose.
- `slamtools.curve_fitting`: `generate_data`, `model`, `gauss_newton` and
  `levenberg_marquardt` for fitting `y = exp(a*x^2 + b*x + c)`; fits return a
  `FitResult`.
- `slamtools.pose_graph`: `PoseGraph.load`/`save` for the `VERTEX_SE3:QUAT`
  and `EDGE_SE3:QUAT` text format, `total_chi2`, and Levenberg-Marquardt
  `optimize` (vertex 0 is held fixed).
- `slamtools.depth_filter`: monocular dense depth estimation by epipolar
  search, NCC matching and Gaussian depth fusion (`epipolar_search`, `ncc`,
  `update_depth_filter`, `update`, `evaluate_depth`, `read_dataset`).
- `slamtools.imaging`: `undistort` for radial-tangential lens distortion
  (`Distortion`), and `disparity_to_pointcloud` for a stereo disparity map.
- `slamtools.pointcloud`: `read_poses`, `rgbd_to_points`,
  `statistical_outlier_removal` and `voxel_filter`.
- `slamtools.entities`: `Frame`, `Feature` and `MapPoint`, with thread-safe
  poses and positions and automatically assigned ids.
- `slamtools.slam_map`: `Map`, holding all keyframes and landmarks plus a
  sliding window of active ones.
- `slamtools.config`: `Config.set_parameter_file` loads a YAML settings file
  (including `!!opencv-matrix` entries) and `Config.get` reads a value.
- `slamtools.dataset`: `Dataset` reads `calib.txt` and the
  `image_0/`, `image_1/` stereo pairs of a KITTI-style sequence, at half
  resolution.
- `slamtools.ba`: reprojection edges (`PoseOnlyEdge`, `ProjectionEdge`),
  `huber_weight`, `pose_jacobian` and `bundle_adjust`.
- `slamtools.backend`: `Backend`, a worker thread that bundle-adjusts the
  map's active keyframes and landmarks when `update_map` is called and flags
  outlier observations.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Using the library

```python
import numpy as np
from slamtools.lie import SO3, SE3, angle_axis_to_matrix

R = angle_axis_to_matrix(np.pi / 2, [0.0, 0.0, 1.0])
T = SE3(SO3(R), np.array([1.0, 0.0, 0.0]))

xi = T.log()            # 6-vector, translation first, rotation second
T_again = SE3.exp(xi)   # back to the group
p = T * np.array([1.0, 2.0, 3.0])
```

Triangulating a point seen from several poses:

```python
from slamtools.geometry import triangulate

result = triangulate(poses, points)
if result.success:
    print(result.point)
```

Projecting with a camera:

```python
from slamtools.camera import Camera

cam = Camera(fx=718.0, fy=718.0, cx=607.0, cy=185.0, baseline=0.54, pose=SE3())
pixel = cam.world2pixel(np.array([1.0, 0.5, 10.0]), SE3())
```

## Commands

- `slamtools-trajectory [GROUNDTRUTH] [ESTIMATED]`: print the RMSE between
  two trajectory files (defaults `./example/groundtruth.txt` and
  `./example/estimated.txt`).
- `slamtools-curve-fitting [--method gauss-newton|levenberg-marquardt]
  [--iterations N] [-n SAMPLES] [--sigma S] [--seed SEED]`: generate noisy
  samples of the curve and fit them.
- `slamtools-pose-graph GRAPH [-o OUTPUT] [--iterations N]`: optimise a
  `.g2o` pose graph and write it to `result_lie.g2o` by default.
- `slamtools-depth-filter DATASET [-o OUTPUT]`: run dense depth estimation
  over a dataset directory and save the depth map (`depth.png` by default).
- `slamtools-imaging undistort [INPUT] [-o OUTPUT]`: undistort a grey image.
- `slamtools-imaging stereo LEFT DISPARITY.npy [-o OUTPUT]`: write the point
  cloud of a left image and its disparity as text.
- `slamtools-pointcloud [ROOT] [--mode join|filtered] [-o OUTPUT]`: fuse the
  five RGB-D images under `ROOT` (`pose.txt`, `color/`, `depth/`) into a
  `.pcd` file; `filtered` also applies outlier removal and voxel filtering.

For example:

```
slamtools-pose-graph sphere.g2o
```

## What the package does not do

- There is no viewer: nothing is drawn on screen; results are printed or
  written to files.
- There is no stereo matcher: `slamtools-imaging stereo` needs a disparity
  map computed elsewhere, stored as a `.npy` array.
- There is no complete visual-odometry front end (feature detection, optical
  flow tracking) and no command that runs the whole odometry over a sequence;
  the frame, map, dataset, bundle-adjustment and back-end pieces are provided
  as a library.