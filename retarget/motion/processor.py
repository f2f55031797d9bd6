"""Frame orchestration - runs the retargeter and packages per-frame output"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
import numpy as np

from retarget.core import Config, FrameTimer, get_logger, set_frame_context
from retarget.core.errors import RetargetError
from retarget.core.skeleton import Side
from retarget.pose.landmark import FrameResults, Landmark
from .bones import BoneOptions
from .retargeter import PoseRetargeter


Quaternion = Tuple[float, float, float, float]


def _quat_tuple(q: np.ndarray) -> Quaternion:
    return tuple(float(c) for c in q)


def _vec_tuple(v: np.ndarray) -> Tuple[float, float, float]:
    return tuple(float(c) for c in v)


@dataclass
class FrameOutput:
    """Everything solved for one frame."""
    frame_index: int
    bone_rotations: Dict[str, Quaternion]
    iris_quaternions: List[Quaternion]
    mouth_morph: float
    blink_left: float
    blink_right: float
    blink_all: float
    mid_hip_offset: Tuple[float, float, float]
    pose_normals: List[Tuple[float, float, float]] = field(default_factory=list)
    left_hand_normal: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    right_hand_normal: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    pose_landmarks: List[Landmark] = field(default_factory=list)
    left_hand_landmarks: List[Landmark] = field(default_factory=list)
    right_hand_landmarks: List[Landmark] = field(default_factory=list)
    processing_time: float = 0.0

    def to_dict(self, include_landmarks: bool = False) -> Dict[str, Any]:
        """
        Plain-data form of the output.

        Args:
            include_landmarks: Also emit the filtered pose and hand landmarks
        """
        data = {
            "frame": self.frame_index,
            "bones": {
                name: {"x": q[0], "y": q[1], "z": q[2], "w": q[3]}
                for name, q in self.bone_rotations.items()
            },
            "iris": [list(q) for q in self.iris_quaternions],
            "expressions": {
                "mouth": self.mouth_morph,
                "blink_left": self.blink_left,
                "blink_right": self.blink_right,
                "blink_all": self.blink_all,
            },
            "mid_hip_offset": list(self.mid_hip_offset),
            "pose_normals": [list(n) for n in self.pose_normals],
            "hand_normals": {
                "left": list(self.left_hand_normal),
                "right": list(self.right_hand_normal),
            },
        }
        if include_landmarks:
            data["landmarks"] = {
                "pose": [lm.to_dict() for lm in self.pose_landmarks],
                "left_hand": [lm.to_dict() for lm in self.left_hand_landmarks],
                "right_hand": [lm.to_dict() for lm in self.right_hand_landmarks],
            }
        return data


class FrameProcessor:
    """
    Runs one PoseRetargeter frame by frame.

    A frame that raises a RetargetError is rolled back: rotations, expressions
    and derived normals from the last good frame stay in place and no output
    is produced. Landmark filters keep the samples the failed frame fed them.
    """

    def __init__(self, config: Optional[Config] = None, options: Optional[BoneOptions] = None):
        self.logger = get_logger("motion.processor")
        self.config = config or Config()
        self.retargeter = PoseRetargeter(self.config, options)
        self.timer = FrameTimer()

        self.frame_count = 0
        self.processed_frames = 0
        self.skipped_frames = 0

        self.logger.info("Initialized FrameProcessor")

    @property
    def is_bound(self) -> bool:
        return self.retargeter.is_bound

    def bind(self, tree: Any) -> bool:
        return self.retargeter.bind(tree)

    def unbind(self):
        self.retargeter.unbind()

    def process(self, results: FrameResults) -> Optional[FrameOutput]:
        """
        Process one frame of detector results.

        Args:
            results: FrameResults, or a results mapping parsed with FrameResults.from_dict

        Returns:
            FrameOutput, or None before binding or when the frame failed
        """
        frame_index = self.frame_count
        self.frame_count += 1

        set_frame_context(frame_index)
        try:
            return self._process_frame(frame_index, results)
        finally:
            set_frame_context(None)

    def _process_frame(self, frame_index: int, results: FrameResults) -> Optional[FrameOutput]:
        if not self.retargeter.is_bound:
            self.logger.warning("No skeleton bound, frame skipped")
            return None

        if isinstance(results, dict):
            results = FrameResults.from_dict(results)

        snapshot = self.retargeter.snapshot()
        self.timer.start()
        try:
            self.retargeter.process(results)
        except RetargetError as e:
            self.timer.cancel()
            self.retargeter.restore(snapshot)
            self.skipped_frames += 1
            self.logger.error(f"Frame skipped: {e}")
            return None
        elapsed = self.timer.stop()

        self.processed_frames += 1
        self.logger.debug(f"Processed in {elapsed * 1000:.2f} ms")
        return self._build_output(frame_index, elapsed)

    def _build_output(self, frame_index: int, elapsed: float) -> FrameOutput:
        engine = self.retargeter
        ws = engine.workspace
        return FrameOutput(
            frame_index=frame_index,
            bone_rotations=engine.bone_rotations.to_dict(),
            iris_quaternions=[_quat_tuple(q) for q in engine.iris_quaternions],
            mouth_morph=float(engine.mouth_morph),
            blink_left=float(engine.blink_left),
            blink_right=float(engine.blink_right),
            blink_all=float(engine.blink_all),
            mid_hip_offset=_vec_tuple(ws.mid_hip_offset),
            pose_normals=[_vec_tuple(n) for n in ws.pose_normals],
            left_hand_normal=_vec_tuple(ws.hand_normals[Side.LEFT]),
            right_hand_normal=_vec_tuple(ws.hand_normals[Side.RIGHT]),
            pose_landmarks=engine.filtered_landmarks("pose"),
            left_hand_landmarks=engine.filtered_landmarks("left_hand"),
            right_hand_landmarks=engine.filtered_landmarks("right_hand"),
            processing_time=elapsed,
        )

    def get_stats(self) -> Dict[str, Any]:
        return {
            "frames": self.frame_count,
            "processed": self.processed_frames,
            "skipped": self.skipped_frames,
            "avg_ms": self.timer.average_frame_time * 1000,
            "max_ms": self.timer.max_frame_time * 1000,
            "fps": self.timer.fps,
        }

    def reset(self):
        self.retargeter.reset()
        self.timer.reset()
        self.frame_count = 0
        self.processed_frames = 0
        self.skipped_frames = 0
