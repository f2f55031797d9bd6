"""Output export module"""

from .serializer import (
    bone_rotations_to_dict,
    bone_rotations_from_dict,
    FrameOutputWriter,
    read_frame_outputs,
)

__all__ = [
    "bone_rotations_to_dict", "bone_rotations_from_dict",
    "FrameOutputWriter", "read_frame_outputs",
]
