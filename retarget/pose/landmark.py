"""
Landmark containers and temporally filtered landmarks.

Detector output arrives as MediaPipe Holistic style results (lists of
{x, y, z, visibility} dicts). FrameResults freezes one frame of it;
FilteredLandmark smooths a single landmark over frames.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple
import numpy as np

from retarget.core.errors import ConfigurationError
from retarget.core.skeleton import (
    POSE_LANDMARK_LENGTH,
    FACE_LANDMARK_LENGTH,
    HAND_LANDMARK_LENGTH,
)
from .filters import (
    VISIBILITY_THRESHOLD,
    GAUSSIAN_WINDOW_SIZE,
    FilterParams,
    GaussianVectorFilter,
    OneEuroParams,
    create_vector_filter,
)


@dataclass(frozen=True)
class Landmark:
    """A raw detector landmark."""
    x: float
    y: float
    z: float
    visibility: Optional[float] = None

    def as_vector(self, scaling: float = 1.0, reverse_y: bool = False) -> np.ndarray:
        """Position as a vector, optionally scaled and with Y mirrored."""
        y = -self.y if reverse_y else self.y
        return np.array([self.x, y, self.z], dtype=np.float64) * scaling

    @classmethod
    def from_vector(cls, v: np.ndarray, visibility: Optional[float] = None) -> "Landmark":
        return cls(float(v[0]), float(v[1]), float(v[2]), visibility)

    @classmethod
    def from_dict(cls, data: Any) -> "Landmark":
        if isinstance(data, Landmark):
            return data
        try:
            if isinstance(data, dict):
                visibility = data.get("visibility")
                return cls(
                    float(data["x"]), float(data["y"]), float(data.get("z", 0.0)),
                    None if visibility is None else float(visibility),
                )
            values = list(data)
            visibility = values[3] if len(values) > 3 else None
            return cls(float(values[0]), float(values[1]), float(values[2]),
                       None if visibility is None else float(visibility))
        except (KeyError, TypeError, ValueError, IndexError) as e:
            raise ConfigurationError(f"Malformed landmark: {data!r}") from e

    def to_dict(self) -> Dict[str, float]:
        d = {"x": self.x, "y": self.y, "z": self.z}
        if self.visibility is not None:
            d["visibility"] = self.visibility
        return d


LandmarkList = Tuple[Landmark, ...]


def _parse_landmarks(data: Any, expected: int, name: str) -> Optional[LandmarkList]:
    if data is None:
        return None
    landmarks = tuple(Landmark.from_dict(lm) for lm in data)
    if not landmarks:
        return None
    if len(landmarks) != expected:
        raise ConfigurationError(
            f"{name} must have {expected} landmarks, got {len(landmarks)}"
        )
    return landmarks


@dataclass(frozen=True)
class FrameResults:
    """
    One frame of detector output.

    Every landmark set is optional; a missing set leaves the corresponding
    filtered landmarks untouched for that frame.
    """
    pose_landmarks: Optional[LandmarkList] = None
    pose_world_landmarks: Optional[LandmarkList] = None
    face_landmarks: Optional[LandmarkList] = None
    left_hand_landmarks: Optional[LandmarkList] = None
    right_hand_landmarks: Optional[LandmarkList] = None

    # MediaPipe Holistic key aliases, camelCase first
    _KEYS = {
        "pose_landmarks": ("poseLandmarks", "pose_landmarks"),
        "pose_world_landmarks": ("poseWorldLandmarks", "za", "ea", "pose_world_landmarks"),
        "face_landmarks": ("faceLandmarks", "face_landmarks"),
        "left_hand_landmarks": ("leftHandLandmarks", "left_hand_landmarks"),
        "right_hand_landmarks": ("rightHandLandmarks", "right_hand_landmarks"),
    }

    _LENGTHS = {
        "pose_landmarks": POSE_LANDMARK_LENGTH,
        "pose_world_landmarks": POSE_LANDMARK_LENGTH,
        "face_landmarks": FACE_LANDMARK_LENGTH,
        "left_hand_landmarks": HAND_LANDMARK_LENGTH,
        "right_hand_landmarks": HAND_LANDMARK_LENGTH,
    }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FrameResults":
        """
        Parse a results mapping.

        Args:
            data: Mapping with camelCase (poseLandmarks, ...) or snake_case keys

        Returns:
            FrameResults with validated landmark counts
        """
        if not isinstance(data, dict):
            raise ConfigurationError(f"Frame results must be a mapping, got {type(data).__name__}")
        kwargs = {}
        for attr, keys in cls._KEYS.items():
            raw = next((data[k] for k in keys if data.get(k) is not None), None)
            kwargs[attr] = _parse_landmarks(raw, cls._LENGTHS[attr], attr)
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        out = {}
        for attr, keys in self._KEYS.items():
            landmarks = getattr(self, attr)
            if landmarks is not None:
                out[keys[0]] = [lm.to_dict() for lm in landmarks]
        return out


# =============================================================================
# FILTERED LANDMARKS
# =============================================================================

class FilteredLandmark:
    """
    A landmark position smoothed over frames.

    Each update advances a logical clock by one. Samples whose visibility is
    known and not above VISIBILITY_THRESHOLD are dropped without touching the
    filter state.
    """

    def __init__(self, params: Optional[FilterParams] = None):
        self.params = params if params is not None else OneEuroParams(min_cutoff=0.01, beta=0.0)
        self.t = 0
        self._pos = np.zeros(3)
        self.visibility: Optional[float] = 0.0
        self._main_filter = create_vector_filter(self.params, self.t, self._pos)
        self._gaussian: Optional[GaussianVectorFilter] = None
        if self.params.gaussian_sigma:
            self._gaussian = GaussianVectorFilter(GAUSSIAN_WINDOW_SIZE, self.params.gaussian_sigma)

    @property
    def pos(self) -> np.ndarray:
        return self._pos

    def update_position(self, pos: np.ndarray, visibility: Optional[float] = None):
        """
        Feed one sample.

        Args:
            pos: Raw position
            visibility: Detector visibility, None when the set does not report it
        """
        self.t += 1

        if visibility is None or visibility > VISIBILITY_THRESHOLD:
            filtered = self._main_filter.next(self.t, np.asarray(pos, dtype=np.float64))

            if self._gaussian is not None:
                self._gaussian.push(filtered)
                filtered = self._gaussian.apply()

            self._pos = filtered
            self.visibility = visibility

    def reset(self):
        self.t = 0
        self._pos = np.zeros(3)
        self.visibility = 0.0
        self._main_filter = create_vector_filter(self.params, self.t, self._pos)
        if self._gaussian is not None:
            self._gaussian.reset()

    def to_landmark(self) -> Landmark:
        return Landmark.from_vector(self._pos, self.visibility)


def create_filtered_landmarks(count: int, params: Optional[FilterParams] = None) -> List[FilteredLandmark]:
    return [FilteredLandmark(params) for _ in range(count)]


def landmarks_to_vectors(
    landmarks: Sequence[Landmark], scaling: float = 1.0, reverse_y: bool = False
) -> np.ndarray:
    """Stack landmark positions into an (N, 3) array."""
    return np.array([lm.as_vector(scaling, reverse_y) for lm in landmarks], dtype=np.float64).reshape(-1, 3)
