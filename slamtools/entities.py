"""Frames, 2-D features and 3-D map points of a stereo visual odometry."""

from __future__ import annotations

import itertools
import threading
import weakref

import numpy as np

from slamtools.lie import SE3


def _ref(obj):
    return None if obj is None else weakref.ref(obj)


def _deref(ref):
    return None if ref is None else ref()


class Feature:
    """A 2-D keypoint in an image; once triangulated it refers to a map point.

    The frame and the map point are held by weak references, so a feature
    never keeps either of them alive.
    """

    def __init__(self, frame=None, position=(0.0, 0.0), size=7.0, *, is_on_left_image=True):
        pos = np.array(position, dtype=float).reshape(-1)
        if pos.shape != (2,):
            raise ValueError(f"expected a 2-D position, got shape {pos.shape}")
        self._frame = _ref(frame)
        self.position = pos
        self.size = float(size)
        self._map_point = None
        self.is_outlier = False
        self.is_on_left_image = is_on_left_image

    @property
    def frame(self) -> Frame | None:
        return _deref(self._frame)

    @frame.setter
    def frame(self, frame: Frame | None) -> None:
        self._frame = _ref(frame)

    @property
    def map_point(self) -> MapPoint | None:
        return _deref(self._map_point)

    @map_point.setter
    def map_point(self, map_point: MapPoint | None) -> None:
        self._map_point = _ref(map_point)

    def __repr__(self) -> str:
        return f"Feature(position={self.position.tolist()!r}, left={self.is_on_left_image})"


class Frame:
    """A stereo frame; every frame gets an id, keyframes also a keyframe id."""

    _ids = itertools.count()
    _keyframe_ids = itertools.count()
    _id_lock = threading.Lock()

    def __init__(self, frame_id=0, time_stamp=0.0, pose=None, left_img=None, right_img=None):
        self.id = frame_id
        self.keyframe_id = 0
        self.is_keyframe = False
        self.time_stamp = float(time_stamp)
        self._pose: SE3 = SE3() if pose is None else pose
        self._pose_lock = threading.Lock()
        self.left_img = left_img
        self.right_img = right_img
        self.features_left: list[Feature] = []
        self.features_right: list[Feature | None] = []

    @property
    def pose(self) -> SE3:
        """World-to-camera transform."""
        with self._pose_lock:
            return self._pose

    @pose.setter
    def pose(self, pose: SE3) -> None:
        with self._pose_lock:
            self._pose = pose

    @classmethod
    def create(cls) -> Frame:
        """A new frame with the next frame id."""
        with Frame._id_lock:
            frame_id = next(Frame._ids)
        return cls(frame_id)

    def set_keyframe(self) -> None:
        """Mark this frame as a keyframe and give it the next keyframe id."""
        with Frame._id_lock:
            self.keyframe_id = next(Frame._keyframe_ids)
        self.is_keyframe = True

    def __repr__(self) -> str:
        return f"Frame(id={self.id}, keyframe_id={self.keyframe_id}, keyframe={self.is_keyframe})"


class MapPoint:
    """A landmark in the world, observed by features."""

    _ids = itertools.count()
    _id_lock = threading.Lock()

    def __init__(self, point_id=0, position=None):
        self.id = point_id
        self.is_outlier = False
        self._pos = np.zeros(3) if position is None else _vec3(position)
        self._lock = threading.Lock()
        self.observed_times = 0
        self._observations: list[weakref.ref] = []

    @property
    def pos(self) -> np.ndarray:
        with self._lock:
            return self._pos.copy()

    @pos.setter
    def pos(self, position) -> None:
        value = _vec3(position)
        with self._lock:
            self._pos = value

    @classmethod
    def create(cls) -> MapPoint:
        """A new map point with the next id."""
        with MapPoint._id_lock:
            point_id = next(MapPoint._ids)
        return cls(point_id)

    def add_observation(self, feature: Feature) -> None:
        with self._lock:
            self._observations.append(weakref.ref(feature))
            self.observed_times += 1

    def remove_observation(self, feature: Feature) -> bool:
        """Forget one observation by ``feature`` and unlink it; False if there was none."""
        with self._lock:
            for position, ref in enumerate(self._observations):
                if ref() is feature:
                    del self._observations[position]
                    feature.map_point = None
                    self.observed_times -= 1
                    return True
        return False

    def observations(self) -> list[Feature]:
        """The observing features that are still alive, in the order they were added."""
        with self._lock:
            alive = (ref() for ref in self._observations)
            return [feature for feature in alive if feature is not None]

    def __repr__(self) -> str:
        return f"MapPoint(id={self.id}, pos={self._pos.tolist()!r})"


def _vec3(position) -> np.ndarray:
    arr = np.array(position, dtype=float).reshape(-1)
    if arr.shape != (3,):
        raise ValueError(f"expected a 3-D position, got shape {arr.shape}")
    return arr