"""Motion module - rotation math and the retargeting engine"""

from .basis import Basis, get_basis, quaternion_between_bases, calc_spherical_coord, spherical_to_quaternion
from .curve import catmull_rom_spline, find_point, RotationAngleCurve
from .bones import BoneOptions, BoneRotation, BoneRotationMap, build_rotation_map, default_bind_pose
from .retargeter import PoseRetargeter, FrameWorkspace
from .processor import FrameProcessor, FrameOutput
from .worker import PoseWorker

__all__ = [
    "Basis", "get_basis", "quaternion_between_bases", "calc_spherical_coord", "spherical_to_quaternion",
    "catmull_rom_spline", "find_point", "RotationAngleCurve",
    "BoneOptions", "BoneRotation", "BoneRotationMap", "build_rotation_map", "default_bind_pose",
    "PoseRetargeter", "FrameWorkspace",
    "FrameProcessor", "FrameOutput",
    "PoseWorker",
]
