"""Back end: a worker thread that bundle-adjusts the active window of the map."""

from __future__ import annotations

import logging
import threading

from slamtools.ba import ProjectionEdge, bundle_adjust
from slamtools.camera import Camera
from slamtools.entities import Frame, MapPoint
from slamtools.slam_map import Map

log = logging.getLogger(__name__)

CHI2_THRESHOLD = 5.991
OPTIMIZE_ITERATIONS = 10
MAX_THRESHOLD_ROUNDS = 5


class Backend:
    """Runs an optimisation of the active keyframes and landmarks whenever the map changes."""

    def __init__(self):
        self.cam_left: Camera | None = None
        self.cam_right: Camera | None = None
        self._map: Map | None = None
        self._cond = threading.Condition(threading.Lock())
        self._pending = False
        self._running = True
        self._thread = threading.Thread(target=self._loop, name="backend", daemon=True)
        self._thread.start()

    @property
    def running(self) -> bool:
        return self._running and self._thread.is_alive()

    def set_cameras(self, left: Camera, right: Camera) -> None:
        self.cam_left = left
        self.cam_right = right

    def set_map(self, map_: Map) -> None:
        self._map = map_

    def update_map(self) -> None:
        """Ask the worker to optimise the current active window."""
        with self._cond:
            self._pending = True
            self._cond.notify_all()

    def stop(self) -> None:
        """Finish any requested optimisation and end the worker thread."""
        with self._cond:
            self._running = False
            self._cond.notify_all()
        self._thread.join()

    def _loop(self) -> None:
        with self._cond:
            while True:
                while not self._pending and self._running:
                    self._cond.wait()
                if not self._pending:
                    break
                self._pending = False
                self._optimize_active()
                if not self._running:
                    break

    def _optimize_active(self) -> None:
        map_ = self._map
        if map_ is None:
            return
        try:
            self.optimize(map_.active_keyframes(), map_.active_map_points())
        except Exception:
            log.exception("back-end optimisation failed")

    def optimize(self, keyframes: dict[int, Frame], landmarks: dict[int, MapPoint]):
        """Bundle-adjust the given keyframes and landmarks, then flag outlier observations.

        Poses and positions are written back; returns (outliers, inliers).
        """
        if self.cam_left is None or self.cam_right is None:
            raise RuntimeError("cameras are not set")
        K = self.cam_left.K()
        left_ext = self.cam_left.pose
        right_ext = self.cam_right.pose

        frames = {kf.keyframe_id: kf for kf in keyframes.values()}
        poses = {kid: kf.pose for kid, kf in frames.items()}
        points = {}
        pairs = []
        for lid, mp in landmarks.items():
            if mp.is_outlier:
                continue
            for feat in mp.observations():
                frame = feat.frame
                if feat.is_outlier or frame is None or frame.keyframe_id not in poses:
                    continue
                if lid not in points:
                    points[lid] = mp.pos
                ext = left_ext if feat.is_on_left_image else right_ext
                edge = ProjectionEdge(K, ext, feat.position, frame.keyframe_id, lid)
                pairs.append((edge, feat))

        edges = [edge for edge, _ in pairs]
        poses, points = bundle_adjust(poses, points, edges, OPTIMIZE_ITERATIONS, CHI2_THRESHOLD)
        chi2s = [edge.chi2(poses[edge.pose_id], points[edge.point_id]) for edge in edges]

        threshold = CHI2_THRESHOLD
        outliers = inliers = 0
        for _ in range(MAX_THRESHOLD_ROUNDS):
            outliers = sum(1 for c in chi2s if c > threshold)
            inliers = len(chi2s) - outliers
            if not chi2s or inliers / len(chi2s) > 0.5:
                break
            threshold *= 2

        for (_, feat), chi2 in zip(pairs, chi2s):
            if chi2 > threshold:
                feat.is_outlier = True
                mp = feat.map_point
                if mp is not None:
                    mp.remove_observation(feat)
            else:
                feat.is_outlier = False

        log.info("Outlier/Inlier in optimization: %d/%d", outliers, inliers)

        for kid, pose in poses.items():
            frames[kid].pose = pose
        for lid, pos in points.items():
            landmarks[lid].pos = pos
        return outliers, inliers