"""The map: keyframes and landmarks, with a sliding window of active ones."""

from __future__ import annotations

import logging
import threading

import numpy as np

from slamtools.entities import Frame, MapPoint

log = logging.getLogger(__name__)

NUM_ACTIVE_KEYFRAMES = 7
MIN_DISTANCE_THRESHOLD = 0.2


class Map:
    """Keyframes and map points by id; the front end inserts, the back end optimises."""

    def __init__(self, num_active_keyframes: int = NUM_ACTIVE_KEYFRAMES):
        self._lock = threading.RLock()
        self._landmarks: dict[int, MapPoint] = {}
        self._active_landmarks: dict[int, MapPoint] = {}
        self._keyframes: dict[int, Frame] = {}
        self._active_keyframes: dict[int, Frame] = {}
        self.current_frame: Frame | None = None
        self.num_active_keyframes = num_active_keyframes

    def insert_keyframe(self, frame: Frame) -> None:
        """Add a keyframe; retire one when the active window grows too large."""
        with self._lock:
            self.current_frame = frame
            self._keyframes[frame.keyframe_id] = frame
            self._active_keyframes[frame.keyframe_id] = frame
            if len(self._active_keyframes) > self.num_active_keyframes:
                self._remove_old_keyframe()

    def insert_map_point(self, map_point: MapPoint) -> None:
        with self._lock:
            self._landmarks[map_point.id] = map_point
            self._active_landmarks[map_point.id] = map_point

    def all_map_points(self) -> dict[int, MapPoint]:
        with self._lock:
            return dict(self._landmarks)

    def all_keyframes(self) -> dict[int, Frame]:
        with self._lock:
            return dict(self._keyframes)

    def active_map_points(self) -> dict[int, MapPoint]:
        with self._lock:
            return dict(self._active_landmarks)

    def active_keyframes(self) -> dict[int, Frame]:
        with self._lock:
            return dict(self._active_keyframes)

    def clean_map(self) -> int:
        """Drop active landmarks that nothing observes; returns how many were dropped."""
        with self._lock:
            stale = [
                lid for lid, mp in self._active_landmarks.items() if mp.observed_times == 0
            ]
            for lid in stale:
                del self._active_landmarks[lid]
        log.info("Removed %d active landmarks", len(stale))
        return len(stale)

    def _remove_old_keyframe(self) -> None:
        current = self.current_frame
        if current is None:
            return
        twc = current.pose.inverse()
        distances = {
            kid: float(np.linalg.norm((kf.pose * twc).log()))
            for kid, kf in self._active_keyframes.items()
            if kf is not current
        }
        if not distances:
            return
        nearest = min(distances, key=distances.__getitem__)
        farthest = max(distances, key=distances.__getitem__)
        # A very close keyframe adds little, so it goes first; otherwise the farthest.
        chosen = nearest if distances[nearest] < MIN_DISTANCE_THRESHOLD else farthest
        frame_to_remove = self._keyframes[chosen]

        log.info("remove keyframe %d", frame_to_remove.keyframe_id)
        del self._active_keyframes[frame_to_remove.keyframe_id]
        for feature in [*frame_to_remove.features_left, *frame_to_remove.features_right]:
            if feature is None:
                continue
            mp = feature.map_point
            if mp is not None:
                mp.remove_observation(feature)
        self.clean_map()