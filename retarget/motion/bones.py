"""
Bone rotation records, bind pose and rig options.

Rotations live in an arena indexed by the hierarchy's bone ids. Every node of
the bound tree gets a record (identity for bones nothing drives), and driven
bones missing from the tree get synthetic records so solving never has to
special-case them.
"""

from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple, Union
import numpy as np

from retarget.core import Config, get_logger
from retarget.core.errors import ConfigurationError
from retarget.core.skeleton import (
    BoneHierarchy,
    BoneId,
    BoneKind,
    FINGER_BONE_KINDS,
    Side,
    all_driven_bones,
)
from .basis import Basis, get_basis
from .quaternion import normalize, quat_from_euler, quat_identity, vec3


@dataclass
class BoneOptions:
    """Per-rig solving switches."""
    iris_link_lr: bool = True
    iris_lock_x: bool = True
    lock_finger: bool = False
    lock_arm: bool = False
    lock_leg: bool = False
    reset_invisible: bool = False

    @classmethod
    def from_config(cls, config: Optional[Config] = None) -> "BoneOptions":
        config = config or Config()
        section = config.bones or {}
        if not isinstance(section, dict):
            raise ConfigurationError("bones must be a mapping")
        known = set(cls.__dataclass_fields__)
        unknown = set(section) - known
        if unknown:
            raise ConfigurationError(f"Unknown bone options: {sorted(unknown)}")
        return cls(**{k: bool(v) for k, v in section.items()})

    def to_dict(self) -> Dict[str, bool]:
        return {k: getattr(self, k) for k in self.__dataclass_fields__}


class BoneRotation:
    """Local rotation of one bone plus the frame its angles are measured in."""

    __slots__ = ("name", "rotation", "base_basis", "bind_rotation")

    def __init__(self, name: str, rotation: Optional[np.ndarray] = None, base_basis: Optional[Basis] = None):
        self.name = name
        self.rotation = quat_identity() if rotation is None else np.array(rotation, dtype=np.float64)
        self.bind_rotation = self.rotation.copy()
        self.base_basis = base_basis if base_basis is not None else Basis()

    def set(self, q: np.ndarray):
        self.rotation = np.array(q, dtype=np.float64)

    def reset(self):
        self.rotation = self.bind_rotation.copy()

    def rotate_basis(self, q: np.ndarray) -> Basis:
        return self.base_basis.rotate(q)

    def __repr__(self) -> str:
        return f"BoneRotation({self.name}, {self.rotation.tolist()})"


BoneKey = Union[BoneId, str, int]


class BoneRotationMap:
    """
    Rotation records for every bone of a bound hierarchy.

    Lookups accept a BoneId, a bone name or an arena id.
    """

    def __init__(self, hierarchy: BoneHierarchy, bind_pose: Dict[BoneId, Tuple[np.ndarray, Basis]]):
        self.hierarchy = hierarchy
        self._records: List[BoneRotation] = []
        for name in hierarchy:
            rotation, basis = None, None
            bone = _try_parse(name)
            if bone is not None and bone in bind_pose:
                rotation, basis = bind_pose[bone]
            self._records.append(BoneRotation(name, rotation, basis))

    def _id(self, key: BoneKey) -> int:
        if isinstance(key, int):
            return key
        name = key.name if isinstance(key, BoneId) else key
        bone_id = self.hierarchy.index_of(name)
        if bone_id is None:
            raise KeyError(name)
        return bone_id

    def __getitem__(self, key: BoneKey) -> BoneRotation:
        return self._records[self._id(key)]

    def __contains__(self, key: object) -> bool:
        if isinstance(key, BoneId):
            key = key.name
        return key in self.hierarchy

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[BoneRotation]:
        return iter(self._records)

    def rotation_of(self, bone_id: int) -> np.ndarray:
        return self._records[bone_id].rotation

    def snapshot(self) -> np.ndarray:
        """Copy of every rotation, shape (N, 4)."""
        return np.array([r.rotation for r in self._records], dtype=np.float64).reshape(-1, 4)

    def restore(self, snapshot: np.ndarray):
        if len(snapshot) != len(self._records):
            raise ValueError(f"Snapshot has {len(snapshot)} rotations, map has {len(self._records)}")
        for record, q in zip(self._records, snapshot):
            record.set(q)

    def reset(self):
        for record in self._records:
            record.reset()

    def to_dict(self) -> Dict[str, Tuple[float, float, float, float]]:
        """Bone name to (x, y, z, w)."""
        return {r.name: tuple(float(c) for c in r.rotation) for r in self._records}


def _try_parse(name: str) -> Optional[BoneId]:
    try:
        return BoneId.parse(name)
    except ConfigurationError:
        return None


# =============================================================================
# BIND POSE
# =============================================================================

# Right wrist frame measured on a reference avatar
RIGHT_WRIST_AXES = (
    (-0.9327159079568041, 0.12282522615654383, -0.3390501421086685),
    (-0.010002212677077182, 0.0024727643453822945, 0.028411551927747327),
    (0.14320801411112857, 0.9890497926949048, -0.03566472016590984),
)

UPPER_ARM_BIND_ROLL = 1.0472
UPPER_LEG_BIND_ROLL = 0.05236
LOWER_LEG_BIND_ROLL = 0.0873
THUMB_BIND_ROLL = 0.2


def _hand_bind_pose(side: Side) -> Dict[BoneId, Tuple[np.ndarray, Basis]]:
    is_left = side is Side.LEFT
    s = 1.0 if is_left else -1.0
    pose: Dict[BoneId, Tuple[np.ndarray, Basis]] = {}

    if is_left:
        wrist = get_basis([vec3(0, 0, 0), vec3(1, 0, 0), vec3(1, 0, 1)])
    else:
        wrist = Basis([normalize(np.array(a)) for a in RIGHT_WRIST_AXES])
    pose[BoneId(side, BoneKind.HAND)] = (quat_identity(), wrist)

    thumb_x = normalize(vec3(s, 0, -1.5))
    thumb_y = vec3(0, -s, 0)
    thumb_z = normalize(np.cross(thumb_x, thumb_y))
    thumb = Basis([thumb_x, thumb_y, thumb_z]).rotate(quat_from_euler(0, 0, s * THUMB_BIND_ROLL))
    finger = Basis([vec3(s, 0, 0), vec3(0, 0, -s), vec3(0, 1, 0)])

    for kind in FINGER_BONE_KINDS:
        basis = thumb if kind.value.startswith("Thumb") else finger
        pose[BoneId(side, kind)] = (quat_identity(), basis)
    return pose


def default_bind_pose() -> Dict[BoneId, Tuple[np.ndarray, Basis]]:
    """
    Bind rotation and base basis of every driven bone.

    Returns:
        BoneId -> (bind rotation, base basis)
    """
    pose: Dict[BoneId, Tuple[np.ndarray, Basis]] = {}
    for side in (Side.LEFT, Side.RIGHT):
        pose.update(_hand_bind_pose(side))

    pose[BoneId.center(BoneKind.HEAD)] = (quat_identity(), Basis())
    pose[BoneId.center(BoneKind.NECK)] = (quat_identity(), Basis())
    torso = Basis([vec3(0, 0, -1), vec3(-1, 0, 0), vec3(0, 1, 0)])
    pose[BoneId.center(BoneKind.HIPS)] = (quat_identity(), torso)
    pose[BoneId.center(BoneKind.SPINE)] = (quat_identity(), torso)

    for side in (Side.LEFT, Side.RIGHT):
        s = 1.0 if side is Side.LEFT else -1.0
        arm = Basis([vec3(s, 0, 0), vec3(0, 0, -s), vec3(0, 1, 0)])
        pose[BoneId(side, BoneKind.UPPER_ARM)] = (quat_from_euler(0, 0, s * UPPER_ARM_BIND_ROLL), arm)
        pose[BoneId(side, BoneKind.LOWER_ARM)] = (quat_identity(), arm)

        leg = Basis([vec3(0, -1, 0), vec3(-1, 0, 0), vec3(0, 0, -1)])
        pose[BoneId(side, BoneKind.UPPER_LEG)] = (
            quat_identity(), leg.rotate(quat_from_euler(0, 0, -s * UPPER_LEG_BIND_ROLL))
        )
        pose[BoneId(side, BoneKind.LOWER_LEG)] = (
            quat_identity(), leg.rotate(quat_from_euler(0, 0, -s * LOWER_LEG_BIND_ROLL))
        )
        pose[BoneId(side, BoneKind.FOOT)] = (quat_identity(), leg)
    return pose


def build_rotation_map(root) -> BoneRotationMap:
    """
    Build the hierarchy arena and rotation records for a skeleton tree.

    Driven bones absent from the tree are added as parentless synthetic
    entries, so their ancestor chain is the identity.
    """
    logger = get_logger("motion.bones")
    hierarchy = BoneHierarchy.from_tree(root)
    missing = [bone.name for bone in all_driven_bones() if bone.name not in hierarchy]
    for name in missing:
        hierarchy.add_synthetic(name)
    if missing:
        logger.debug(f"Skeleton lacks {len(missing)} driven bones, added as synthetic: {missing}")
    return BoneRotationMap(hierarchy, default_bind_pose())
