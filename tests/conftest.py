"""Shared fixtures: repository config and synthetic holistic frames."""

from pathlib import Path

import numpy as np
import pytest

from retarget.core import (
    Config,
    PoseLandmark,
    POSE_LANDMARK_LENGTH,
    FACE_LANDMARK_LENGTH,
    HAND_LANDMARK_LENGTH,
)
from retarget.pose.face_mesh import build_index_lists, key_point_landmark_index


ROOT = Path(__file__).resolve().parent.parent


@pytest.fixture(autouse=True)
def fresh_config():
    """Config is a process-wide singleton, every test starts from disk."""
    Config.reset()
    yield
    Config.reset()


@pytest.fixture
def config():
    return Config(str(ROOT / "config.yaml"))


def _lm(p, visibility=None):
    d = {"x": float(p[0]), "y": float(p[1]), "z": float(p[2])}
    if visibility is not None:
        d["visibility"] = float(visibility)
    return d


@pytest.fixture
def make_pose():
    """
    Build pose and world-pose landmark lists from world-space points.

    Points are given Y up; the detector reports Y down, so Y is negated.
    Landmarks without a point sit at the origin.
    """
    def build(points, visible=(), visibility=0.9, hidden_visibility=0.1):
        out = []
        for i in range(POSE_LANDMARK_LENGTH):
            p = points.get(i, (0.0, 0.0, 0.0))
            v = visibility if (i in visible or i in points) else hidden_visibility
            out.append(_lm((p[0], -p[1], p[2]), v))
        return out
    return build


@pytest.fixture
def torso_points():
    """Hips and shoulders of an upright subject facing the camera (-Z)."""
    def build(yaw=0.0):
        c, s = np.cos(yaw), np.sin(yaw)

        def rot(x, y, z):
            # Rotation about +Y by yaw
            return (c * x + s * z, y, -s * x + c * z)

        return {
            PoseLandmark.LEFT_HIP: rot(0.1, 0.0, 0.0),
            PoseLandmark.RIGHT_HIP: rot(-0.1, 0.0, 0.0),
            PoseLandmark.RIGHT_SHOULDER: rot(-0.15, 0.5, 0.0),
            PoseLandmark.LEFT_SHOULDER: rot(0.15, 0.5, 0.0),
        }
    return build


@pytest.fixture
def make_face():
    """
    Build a face landmark list from named key points (world space, Y up).

    Every other landmark sits at the origin.
    """
    index_lists = build_index_lists()

    def build(key_points):
        points = [(0.0, 0.0, 0.0)] * FACE_LANDMARK_LENGTH
        for name, p in key_points.items():
            points[key_point_landmark_index(name, index_lists)] = p
        return [_lm((p[0], -p[1], p[2])) for p in points]
    return build


@pytest.fixture
def face_oval():
    """Face oval key points, rotated about +Y by yaw."""
    def build(yaw=0.0):
        c, s = np.cos(yaw), np.sin(yaw)

        def rot(x, y, z):
            return (c * x + s * z, y, -s * x + c * z)

        return {
            "top_face_oval": rot(0.0, 0.1, 0.0),
            "bottom_face_oval": rot(0.0, -0.1, 0.0),
            "left_face_oval": rot(0.07, 0.0, 0.0),
            "right_face_oval": rot(-0.07, 0.0, 0.0),
        }
    return build


@pytest.fixture
def make_hand():
    def build(points):
        assert len(points) == HAND_LANDMARK_LENGTH
        return [_lm((p[0], -p[1], p[2])) for p in points]
    return build
