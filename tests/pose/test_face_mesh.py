"""Tests for face mesh regions and key points."""

import numpy as np

from retarget.core import FACE_LANDMARK_LENGTH
from retarget.pose.face_mesh import (
    FACE_MESH_CONNECTIONS,
    FaceMeshGroup,
    KEY_POINT_LOCATIONS,
    PoseKeyPoints,
    build_index_lists,
    key_point_landmark_index,
    unique_indices,
    unpack_face_mesh,
)
from retarget.pose.filters import KalmanParams
from retarget.pose.landmark import create_filtered_landmarks


def test_unique_indices_keep_first_seen_order():
    assert unique_indices([(3, 1), (1, 2), (2, 3)]) == [3, 1, 2]


def test_region_sizes():
    lists = build_index_lists()
    assert len(lists) == len(FACE_MESH_CONNECTIONS) == 8
    assert len(lists[FaceMeshGroup.FACE_OVAL]) == 36
    assert len(lists[FaceMeshGroup.LIPS]) == 40
    assert len(lists[FaceMeshGroup.LEFT_EYE]) == 16
    assert len(lists[FaceMeshGroup.LEFT_IRIS]) == 4
    assert all(0 <= i < FACE_LANDMARK_LENGTH for indices in lists for i in indices)


def test_face_oval_key_points():
    lists = build_index_lists()
    assert key_point_landmark_index("top_face_oval", lists) == 10
    assert key_point_landmark_index("bottom_face_oval", lists) == 152
    assert key_point_landmark_index("left_face_oval", lists) == 389
    assert key_point_landmark_index("right_face_oval", lists) == 162


def test_eye_key_points_are_distinct():
    lists = build_index_lists()
    for side in ("left", "right"):
        names = [n for n in KEY_POINT_LOCATIONS if n.startswith(f"{side}_eye")]
        indices = {key_point_landmark_index(n, lists) for n in names}
        assert len(indices) == len(names)


def test_key_points_reference_filtered_landmarks():
    lists = build_index_lists()
    face = create_filtered_landmarks(FACE_LANDMARK_LENGTH, KalmanParams(r=1.0, q=1.0))
    key_points = PoseKeyPoints.from_face(face, lists)

    face[10].update_position(np.array([0.0, 0.1, 0.0]))
    np.testing.assert_array_equal(key_points.top_face_oval.pos, [0.0, 0.1, 0.0])
    assert set(key_points.positions()) == set(KEY_POINT_LOCATIONS)


def test_unpack_shapes():
    lists = build_index_lists()
    face = create_filtered_landmarks(FACE_LANDMARK_LENGTH, KalmanParams(r=1.0, q=1.0))
    mesh = unpack_face_mesh(face, lists)
    assert [m.shape for m in mesh] == [(len(indices), 3) for indices in lists]
