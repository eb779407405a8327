import numpy as np

from slamtools.entities import Feature, Frame, MapPoint
from slamtools.lie import SE3
from slamtools.slam_map import Map


def _keyframe(x):
    frame = Frame.create()
    frame.pose = SE3(translation=[x, 0.0, 0.0])
    frame.set_keyframe()
    return frame


def test_insert_keyframe_is_all_and_active():
    m = Map()
    frame = _keyframe(0.0)
    m.insert_keyframe(frame)
    assert m.all_keyframes() == {frame.keyframe_id: frame}
    assert m.active_keyframes() == {frame.keyframe_id: frame}
    assert m.current_frame is frame


def test_insert_map_point_is_all_and_active():
    m = Map()
    mp = MapPoint.create()
    m.insert_map_point(mp)
    assert m.all_map_points() == {mp.id: mp}
    assert m.active_map_points() == {mp.id: mp}


def test_getters_return_copies():
    m = Map()
    m.insert_keyframe(_keyframe(0.0))
    m.insert_map_point(MapPoint.create())
    m.active_keyframes().clear()
    m.all_map_points().clear()
    assert len(m.active_keyframes()) == 1
    assert len(m.all_map_points()) == 1


def test_reinserting_keyframe_id_replaces_frame():
    m = Map()
    first = _keyframe(0.0)
    m.insert_keyframe(first)
    second = Frame.create()
    second.keyframe_id = first.keyframe_id
    m.insert_keyframe(second)
    assert m.all_keyframes()[first.keyframe_id] is second
    assert len(m.all_keyframes()) == 1


def test_nearby_keyframe_is_removed_first():
    m = Map()
    frames = [_keyframe(10.0 * i) for i in range(7)]
    for frame in frames:
        m.insert_keyframe(frame)
    current = _keyframe(60.1)
    m.insert_keyframe(current)
    active = m.active_keyframes()
    assert len(active) == 7
    assert frames[6].keyframe_id not in active
    assert current.keyframe_id in active
    assert len(m.all_keyframes()) == 8


def test_farthest_keyframe_is_removed_otherwise():
    m = Map()
    frames = [_keyframe(10.0 * i) for i in range(7)]
    for frame in frames:
        m.insert_keyframe(frame)
    m.insert_keyframe(_keyframe(1000.0))
    active = m.active_keyframes()
    assert len(active) == 7
    assert frames[0].keyframe_id not in active
    assert frames[6].keyframe_id in active


def test_removed_keyframe_drops_its_observations():
    m = Map()
    frames = [_keyframe(10.0 * i) for i in range(7)]
    mp = MapPoint.create()
    feature = Feature(frames[0], (1.0, 1.0))
    frames[0].features_left.append(feature)
    frames[0].features_right.append(None)
    feature.map_point = mp
    mp.add_observation(feature)
    m.insert_map_point(mp)
    for frame in frames:
        m.insert_keyframe(frame)
    m.insert_keyframe(_keyframe(1000.0))
    assert mp.observed_times == 0
    assert feature.map_point is None
    assert mp.id not in m.active_map_points()
    assert m.all_map_points()[mp.id] is mp


def test_clean_map_removes_unobserved_active_landmarks():
    m = Map()
    unobserved = MapPoint.create()
    observed = MapPoint.create()
    keep_alive = Feature()
    observed.add_observation(keep_alive)
    m.insert_map_point(unobserved)
    m.insert_map_point(observed)
    assert m.clean_map() == 1
    assert set(m.active_map_points()) == {observed.id}
    assert set(m.all_map_points()) == {unobserved.id, observed.id}
    np.testing.assert_allclose(m.all_map_points()[unobserved.id].pos, np.zeros(3))