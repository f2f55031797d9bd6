"""Core systems - config, logging, timing, errors, skeleton"""

from .config import Config
from .logging import setup_logging, get_logger, set_frame_context
from .timing import FrameTimer, FrameClock
from .errors import (
    RetargetError,
    ConfigurationError,
    GeometryError,
    NotBoundError,
)
from .skeleton import (
    # Landmark sets
    PoseLandmark,
    HandLandmark,
    POSE_LANDMARK_LENGTH,
    FACE_LANDMARK_LENGTH,
    HAND_LANDMARK_LENGTH,
    # Bone identifiers
    Side,
    BoneKind,
    BoneId,
    FINGER_BONE_KINDS,
    all_driven_bones,
    HAND_LANDMARK_TO_BONE_KIND,
    hand_landmark_to_bone,
    # Hierarchy
    BoneNode,
    BoneHierarchy,
    iter_depth_first,
    default_humanoid_tree,
)

__all__ = [
    "Config", "setup_logging", "get_logger", "set_frame_context", "FrameTimer", "FrameClock",
    "RetargetError", "ConfigurationError", "GeometryError", "NotBoundError",
    "PoseLandmark", "HandLandmark",
    "POSE_LANDMARK_LENGTH", "FACE_LANDMARK_LENGTH", "HAND_LANDMARK_LENGTH",
    "Side", "BoneKind", "BoneId", "FINGER_BONE_KINDS", "all_driven_bones",
    "HAND_LANDMARK_TO_BONE_KIND", "hand_landmark_to_bone",
    "BoneNode", "BoneHierarchy", "iter_depth_first", "default_humanoid_tree",
]
