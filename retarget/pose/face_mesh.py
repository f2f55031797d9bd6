"""
Face mesh regions and named key points.

Connection tables are the MediaPipe Face Mesh region outlines (edge lists
over the 478 face landmarks, iris included). Key points are looked up by
position in each region's de-duplicated index list.
"""

from dataclasses import dataclass, fields
from enum import IntEnum
from typing import Dict, List, Sequence, Tuple

import numpy as np

from .landmark import FilteredLandmark


Connection = Tuple[int, int]


FACEMESH_LIPS: Tuple[Connection, ...] = (
    (61, 146), (146, 91), (91, 181), (181, 84), (84, 17),
    (17, 314), (314, 405), (405, 321), (321, 375), (375, 291),
    (61, 185), (185, 40), (40, 39), (39, 37), (37, 0),
    (0, 267), (267, 269), (269, 270), (270, 409), (409, 291),
    (78, 95), (95, 88), (88, 178), (178, 87), (87, 14),
    (14, 317), (317, 402), (402, 318), (318, 324), (324, 308),
    (78, 191), (191, 80), (80, 81), (81, 82), (82, 13),
    (13, 312), (312, 311), (311, 310), (310, 415), (415, 308),
)

FACEMESH_LEFT_EYE: Tuple[Connection, ...] = (
    (263, 249), (249, 390), (390, 373), (373, 374),
    (374, 380), (380, 381), (381, 382), (382, 362),
    (263, 466), (466, 388), (388, 387), (387, 386),
    (386, 385), (385, 384), (384, 398), (398, 362),
)

FACEMESH_LEFT_IRIS: Tuple[Connection, ...] = (
    (474, 475), (475, 476), (476, 477), (477, 474),
)

FACEMESH_LEFT_EYEBROW: Tuple[Connection, ...] = (
    (276, 283), (283, 282), (282, 295), (295, 285),
    (300, 293), (293, 334), (334, 296), (296, 336),
)

FACEMESH_RIGHT_EYE: Tuple[Connection, ...] = (
    (33, 7), (7, 163), (163, 144), (144, 145),
    (145, 153), (153, 154), (154, 155), (155, 133),
    (33, 246), (246, 161), (161, 160), (160, 159),
    (159, 158), (158, 157), (157, 173), (173, 133),
)

FACEMESH_RIGHT_EYEBROW: Tuple[Connection, ...] = (
    (46, 53), (53, 52), (52, 65), (65, 55),
    (70, 63), (63, 105), (105, 66), (66, 107),
)

FACEMESH_RIGHT_IRIS: Tuple[Connection, ...] = (
    (469, 470), (470, 471), (471, 472), (472, 469),
)

FACEMESH_FACE_OVAL: Tuple[Connection, ...] = (
    (10, 338), (338, 297), (297, 332), (332, 284),
    (284, 251), (251, 389), (389, 356), (356, 454),
    (454, 323), (323, 361), (361, 288), (288, 397),
    (397, 365), (365, 379), (379, 378), (378, 400),
    (400, 377), (377, 152), (152, 148), (148, 176),
    (176, 149), (149, 150), (150, 136), (136, 172),
    (172, 58), (58, 132), (132, 93), (93, 234),
    (234, 127), (127, 162), (162, 21), (21, 54),
    (54, 103), (103, 67), (67, 109), (109, 10),
)


class FaceMeshGroup(IntEnum):
    """Face regions, in unpacking order."""
    LEFT_EYEBROW = 0
    RIGHT_EYEBROW = 1
    LEFT_EYE = 2
    RIGHT_EYE = 3
    LEFT_IRIS = 4
    RIGHT_IRIS = 5
    LIPS = 6
    FACE_OVAL = 7


FACE_MESH_CONNECTIONS: Tuple[Tuple[Connection, ...], ...] = (
    FACEMESH_LEFT_EYEBROW, FACEMESH_RIGHT_EYEBROW,
    FACEMESH_LEFT_EYE, FACEMESH_RIGHT_EYE,
    FACEMESH_LEFT_IRIS, FACEMESH_RIGHT_IRIS,
    FACEMESH_LIPS, FACEMESH_FACE_OVAL,
)


def unique_indices(connections: Sequence[Connection]) -> List[int]:
    """Landmark indices of an edge list, de-duplicated in first-seen order."""
    return list(dict.fromkeys(i for edge in connections for i in edge))


def build_index_lists() -> List[List[int]]:
    return [unique_indices(c) for c in FACE_MESH_CONNECTIONS]


def unpack_face_mesh(
    face_landmarks: Sequence[FilteredLandmark],
    index_lists: Sequence[Sequence[int]],
) -> List[np.ndarray]:
    """Filtered positions of every region as (N, 3) arrays."""
    return [
        np.array([face_landmarks[i].pos for i in indices], dtype=np.float64).reshape(-1, 3)
        for indices in index_lists
    ]


# (group, position in the group's index list) per key point
KEY_POINT_LOCATIONS: Dict[str, Tuple[FaceMeshGroup, int]] = {
    "top_face_oval": (FaceMeshGroup.FACE_OVAL, 0),
    "left_face_oval": (FaceMeshGroup.FACE_OVAL, 6),
    "bottom_face_oval": (FaceMeshGroup.FACE_OVAL, 18),
    "right_face_oval": (FaceMeshGroup.FACE_OVAL, 30),
    "left_eye_top": (FaceMeshGroup.LEFT_EYE, 12),
    "left_eye_bottom": (FaceMeshGroup.LEFT_EYE, 4),
    "left_eye_inner": (FaceMeshGroup.LEFT_EYE, 8),
    "left_eye_outer": (FaceMeshGroup.LEFT_EYE, 0),
    "left_eye_inner_secondary": (FaceMeshGroup.LEFT_EYE, 14),
    "left_eye_outer_secondary": (FaceMeshGroup.LEFT_EYE, 10),
    "left_iris_top": (FaceMeshGroup.LEFT_IRIS, 1),
    "left_iris_bottom": (FaceMeshGroup.LEFT_IRIS, 3),
    "left_iris_left": (FaceMeshGroup.LEFT_IRIS, 2),
    "left_iris_right": (FaceMeshGroup.LEFT_IRIS, 0),
    "right_eye_top": (FaceMeshGroup.RIGHT_EYE, 12),
    "right_eye_bottom": (FaceMeshGroup.RIGHT_EYE, 4),
    "right_eye_inner": (FaceMeshGroup.RIGHT_EYE, 8),
    "right_eye_outer": (FaceMeshGroup.RIGHT_EYE, 0),
    "right_eye_inner_secondary": (FaceMeshGroup.RIGHT_EYE, 14),
    "right_eye_outer_secondary": (FaceMeshGroup.RIGHT_EYE, 10),
    "right_iris_top": (FaceMeshGroup.RIGHT_IRIS, 1),
    "right_iris_bottom": (FaceMeshGroup.RIGHT_IRIS, 3),
    "right_iris_left": (FaceMeshGroup.RIGHT_IRIS, 2),
    "right_iris_right": (FaceMeshGroup.RIGHT_IRIS, 0),
    "mouth_top_first": (FaceMeshGroup.LIPS, 24),
    "mouth_top_second": (FaceMeshGroup.LIPS, 25),
    "mouth_top_third": (FaceMeshGroup.LIPS, 26),
    "mouth_bottom_first": (FaceMeshGroup.LIPS, 34),
    "mouth_bottom_second": (FaceMeshGroup.LIPS, 35),
    "mouth_bottom_third": (FaceMeshGroup.LIPS, 36),
    "mouth_left": (FaceMeshGroup.LIPS, 10),
    "mouth_right": (FaceMeshGroup.LIPS, 0),
}


def key_point_landmark_index(name: str, index_lists: Sequence[Sequence[int]]) -> int:
    """Face landmark index a key point resolves to."""
    group, position = KEY_POINT_LOCATIONS[name]
    return index_lists[group][position]


@dataclass
class PoseKeyPoints:
    """
    Named references into the filtered face landmarks.

    A view rebuilt every frame; the landmarks themselves are owned by the
    frame workspace.
    """
    top_face_oval: FilteredLandmark
    left_face_oval: FilteredLandmark
    bottom_face_oval: FilteredLandmark
    right_face_oval: FilteredLandmark
    left_eye_top: FilteredLandmark
    left_eye_bottom: FilteredLandmark
    left_eye_inner: FilteredLandmark
    left_eye_outer: FilteredLandmark
    left_eye_inner_secondary: FilteredLandmark
    left_eye_outer_secondary: FilteredLandmark
    left_iris_top: FilteredLandmark
    left_iris_bottom: FilteredLandmark
    left_iris_left: FilteredLandmark
    left_iris_right: FilteredLandmark
    right_eye_top: FilteredLandmark
    right_eye_bottom: FilteredLandmark
    right_eye_inner: FilteredLandmark
    right_eye_outer: FilteredLandmark
    right_eye_inner_secondary: FilteredLandmark
    right_eye_outer_secondary: FilteredLandmark
    right_iris_top: FilteredLandmark
    right_iris_bottom: FilteredLandmark
    right_iris_left: FilteredLandmark
    right_iris_right: FilteredLandmark
    mouth_top_first: FilteredLandmark
    mouth_top_second: FilteredLandmark
    mouth_top_third: FilteredLandmark
    mouth_bottom_first: FilteredLandmark
    mouth_bottom_second: FilteredLandmark
    mouth_bottom_third: FilteredLandmark
    mouth_left: FilteredLandmark
    mouth_right: FilteredLandmark

    @classmethod
    def from_face(
        cls,
        face_landmarks: Sequence[FilteredLandmark],
        index_lists: Sequence[Sequence[int]],
    ) -> "PoseKeyPoints":
        return cls(**{
            name: face_landmarks[key_point_landmark_index(name, index_lists)]
            for name in KEY_POINT_LOCATIONS
        })

    def positions(self) -> Dict[str, np.ndarray]:
        return {f.name: getattr(self, f.name).pos.copy() for f in fields(self)}
