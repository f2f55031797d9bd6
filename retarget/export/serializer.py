"""Bone rotation serialization - dict form and JSON Lines recordings"""

import json
from pathlib import Path
from typing import Any, Dict, IO, Iterator, Mapping, Optional, Sequence, Tuple

from retarget.core import Config, get_logger
from retarget.core.errors import ConfigurationError
from retarget.motion.processor import FrameOutput


QuaternionTuple = Tuple[float, float, float, float]

_FIELDS = ("x", "y", "z", "w")


def bone_rotations_to_dict(
    rotations: Mapping[str, Sequence[float]],
    precision: Optional[int] = None,
) -> Dict[str, Dict[str, float]]:
    """
    Bone name -> {"x", "y", "z", "w"}.

    Args:
        rotations: Bone name to (x, y, z, w)
        precision: Round every component to this many decimals
    """
    out = {}
    for name, q in rotations.items():
        values = [float(c) for c in q]
        if len(values) != 4:
            raise ConfigurationError(f"Rotation of {name} must have 4 components, got {len(values)}")
        if precision is not None:
            values = [round(c, precision) for c in values]
        out[name] = dict(zip(_FIELDS, values))
    return out


def bone_rotations_from_dict(data: Mapping[str, Any]) -> Dict[str, QuaternionTuple]:
    """Inverse of bone_rotations_to_dict."""
    out = {}
    for name, q in data.items():
        try:
            out[name] = tuple(float(q[k]) for k in _FIELDS)
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Malformed rotation for {name}: {q!r}") from e
    return out


def _round_floats(value: Any, precision: int) -> Any:
    if isinstance(value, float):
        return round(value, precision)
    if isinstance(value, dict):
        return {k: _round_floats(v, precision) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_round_floats(v, precision) for v in value]
    return value


class FrameOutputWriter:
    """
    Writes frame outputs as JSON Lines, one object per frame.

    Usage:
        with FrameOutputWriter("out/rotations.jsonl") as writer:
            writer.write(output)
    """

    def __init__(
        self,
        path: Optional[str] = None,
        precision: Optional[int] = None,
        include_landmarks: bool = False,
        config: Optional[Config] = None,
    ):
        self.logger = get_logger("export.serializer")
        self.config = config or Config()

        export_config = self.config.export or {}
        if path is None:
            output_dir = Path(export_config.get("output_dir", "./output"))
            path = str(output_dir / "rotations.jsonl")
        self._path = Path(path)
        self._precision = precision if precision is not None else export_config.get("precision")
        self._include_landmarks = include_landmarks

        self._file: Optional[IO[str]] = None
        self.frames_written = 0

        self.logger.info(f"Initialized frame writer ({self._path})")

    @property
    def path(self) -> Path:
        return self._path

    def open(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._file = open(self._path, "w")

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None
            self.logger.info(f"Wrote {self.frames_written} frames to {self._path}")

    def write(self, output: FrameOutput) -> None:
        if self._file is None:
            self.open()
        data = output.to_dict(include_landmarks=self._include_landmarks)
        if self._precision is not None:
            data = _round_floats(data, int(self._precision))
        data["bones"] = bone_rotations_to_dict(output.bone_rotations, self._precision)
        self._file.write(json.dumps(data) + "\n")
        self.frames_written += 1

    def __enter__(self) -> "FrameOutputWriter":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def read_frame_outputs(path: str) -> Iterator[Dict[str, Any]]:
    """Frames of a JSON Lines file written by FrameOutputWriter, as dicts."""
    with open(path, "r") as f:
        for line in f:
            line = line.strip()
            if line:
                yield json.loads(line)
