[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "slamtools"
version = "0.1.0"
description = "Visual SLAM building blocks: Lie groups, camera models, triangulation, curve fitting, pose graphs, depth filtering and point clouds."
requires-python = ">=3.10"
keywords = [
    "slam",
    "visual odometry",
    "lie groups",
    "se3",
    "pose graph",
    "bundle adjustment",
    "triangulation",
    "point cloud",
    "depth estimation",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Image Processing",
    "Topic :: Scientific/Engineering :: Mathematics",
]
dependencies = [
    "numpy",
    "scipy",
    "pillow",
    "pyyaml",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
slamtools-trajectory = "slamtools.trajectory:main"
slamtools-curve-fitting = "slamtools.curve_fitting:main"
slamtools-pose-graph = "slamtools.pose_graph:main"
slamtools-depth-filter = "slamtools.depth_filter:main"
slamtools-imaging = "slamtools.imaging:main"
slamtools-pointcloud = "slamtools.pointcloud:main"

[tool.hatch.build.targets.wheel]
packages = ["slamtools"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
ignore_missing_imports = true
