"""Reading a KITTI-style stereo sequence: calibration and image pairs."""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
from PIL import Image

from slamtools.camera import Camera
from slamtools.entities import Frame
from slamtools.lie import SE3, SO3

log = logging.getLogger(__name__)

CALIB_FILE = "calib.txt"
NUM_CAMERAS = 4
IMAGE_SCALE = 0.5


def _load_gray(path: str) -> np.ndarray | None:
    try:
        with Image.open(path) as img:
            return np.asarray(img.convert("L"))
    except OSError:
        return None


def _half_size(image: np.ndarray) -> np.ndarray:
    """Nearest-neighbour downscaling by one half."""
    rows = int(np.rint(image.shape[0] * IMAGE_SCALE))
    cols = int(np.rint(image.shape[1] * IMAGE_SCALE))
    return image[0 : 2 * rows : 2, 0 : 2 * cols : 2].copy()


class Dataset:
    """A sequence directory holding calib.txt and image_0/, image_1/ folders."""

    def __init__(self, dataset_path):
        self.dataset_path = str(dataset_path)
        self.current_image_index = 0
        self._cameras: list[Camera] = []

    def init(self) -> None:
        """Read the camera intrinsics and extrinsics and rewind to the first image."""
        path = Path(self.dataset_path) / CALIB_FILE
        try:
            tokens = iter(path.read_text(encoding="utf-8").split())
        except FileNotFoundError:
            log.error("cannot find %s!", path)
            raise
        cameras = []
        try:
            for index in range(NUM_CAMERAS):
                next(tokens)  # camera name such as "P0:"
                projection = np.array([float(next(tokens)) for _ in range(12)]).reshape(3, 4)
                k = projection[:, :3]
                t = np.linalg.solve(k, projection[:, 3])
                k = k * IMAGE_SCALE
                cameras.append(
                    Camera(
                        k[0, 0], k[1, 1], k[0, 2], k[1, 2], float(np.linalg.norm(t)), SE3(SO3(), t)
                    )
                )
                log.info("Camera %d extrinsics: %s", index, t)
        except StopIteration:
            raise ValueError(f"{path}: expected {NUM_CAMERAS} projection matrices") from None
        except ValueError as exc:
            raise ValueError(f"{path}: {exc}") from None
        except np.linalg.LinAlgError:
            raise ValueError(f"{path}: singular intrinsic matrix") from None
        self._cameras = cameras
        self.current_image_index = 0

    def _image_path(self, camera: int) -> str:
        return f"{self.dataset_path}/image_{camera}/{self.current_image_index:06d}.png"

    def next_frame(self) -> Frame | None:
        """The next stereo pair at half resolution, or None when the images run out."""
        left = _load_gray(self._image_path(0))
        right = _load_gray(self._image_path(1))
        if left is None or right is None:
            log.warning("cannot find images at index %d", self.current_image_index)
            return None
        frame = Frame.create()
        frame.left_img = _half_size(left)
        frame.right_img = _half_size(right)
        self.current_image_index += 1
        return frame

    def camera(self, camera_id: int) -> Camera:
        """Camera by index, as read by init."""
        if camera_id < 0:
            raise IndexError(f"no camera with id {camera_id}")
        return self._cameras[camera_id]