"""
Humanoid bone identifiers, landmark indices and the bone hierarchy arena.

Bone names follow the VRM humanoid convention ("hips", "leftUpperArm",
"rightLittleDistal", ...). Driven bones are addressed through BoneId so the
side/kind pair is explicit and the name mapping is total.
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .errors import ConfigurationError


class PoseLandmark(IntEnum):
    """MediaPipe Pose landmark indices."""
    NOSE = 0
    LEFT_EYE_INNER = 1
    LEFT_EYE = 2
    LEFT_EYE_OUTER = 3
    RIGHT_EYE_INNER = 4
    RIGHT_EYE = 5
    RIGHT_EYE_OUTER = 6
    LEFT_EAR = 7
    RIGHT_EAR = 8
    MOUTH_LEFT = 9
    MOUTH_RIGHT = 10
    LEFT_SHOULDER = 11
    RIGHT_SHOULDER = 12
    LEFT_ELBOW = 13
    RIGHT_ELBOW = 14
    LEFT_WRIST = 15
    RIGHT_WRIST = 16
    LEFT_PINKY = 17
    RIGHT_PINKY = 18
    LEFT_INDEX = 19
    RIGHT_INDEX = 20
    LEFT_THUMB = 21
    RIGHT_THUMB = 22
    LEFT_HIP = 23
    RIGHT_HIP = 24
    LEFT_KNEE = 25
    RIGHT_KNEE = 26
    LEFT_ANKLE = 27
    RIGHT_ANKLE = 28
    LEFT_HEEL = 29
    RIGHT_HEEL = 30
    LEFT_FOOT_INDEX = 31
    RIGHT_FOOT_INDEX = 32


class HandLandmark(IntEnum):
    """MediaPipe Hand landmark indices (21 per hand)."""
    WRIST = 0
    THUMB_CMC = 1
    THUMB_MCP = 2
    THUMB_IP = 3
    THUMB_TIP = 4
    INDEX_MCP = 5
    INDEX_PIP = 6
    INDEX_DIP = 7
    INDEX_TIP = 8
    MIDDLE_MCP = 9
    MIDDLE_PIP = 10
    MIDDLE_DIP = 11
    MIDDLE_TIP = 12
    RING_MCP = 13
    RING_PIP = 14
    RING_DIP = 15
    RING_TIP = 16
    PINKY_MCP = 17
    PINKY_PIP = 18
    PINKY_DIP = 19
    PINKY_TIP = 20


POSE_LANDMARK_LENGTH = 33
FACE_LANDMARK_LENGTH = 478
HAND_LANDMARK_LENGTH = 21


class Side(Enum):
    """Body side of a bone. CENTER bones carry no prefix in their name."""
    LEFT = "left"
    RIGHT = "right"
    CENTER = ""

    @property
    def sign(self) -> int:
        """-1 for the left side, +1 otherwise."""
        return -1 if self is Side.LEFT else 1


class BoneKind(Enum):
    """Every bone kind the retargeter drives."""
    HIPS = "hips"
    SPINE = "spine"
    NECK = "neck"
    HEAD = "head"
    UPPER_ARM = "UpperArm"
    LOWER_ARM = "LowerArm"
    HAND = "Hand"
    UPPER_LEG = "UpperLeg"
    LOWER_LEG = "LowerLeg"
    FOOT = "Foot"
    THUMB_PROXIMAL = "ThumbProximal"
    THUMB_INTERMEDIATE = "ThumbIntermediate"
    THUMB_DISTAL = "ThumbDistal"
    INDEX_PROXIMAL = "IndexProximal"
    INDEX_INTERMEDIATE = "IndexIntermediate"
    INDEX_DISTAL = "IndexDistal"
    MIDDLE_PROXIMAL = "MiddleProximal"
    MIDDLE_INTERMEDIATE = "MiddleIntermediate"
    MIDDLE_DISTAL = "MiddleDistal"
    RING_PROXIMAL = "RingProximal"
    RING_INTERMEDIATE = "RingIntermediate"
    RING_DISTAL = "RingDistal"
    LITTLE_PROXIMAL = "LittleProximal"
    LITTLE_INTERMEDIATE = "LittleIntermediate"
    LITTLE_DISTAL = "LittleDistal"

    @property
    def is_center(self) -> bool:
        return self in CENTER_BONE_KINDS


CENTER_BONE_KINDS = frozenset({
    BoneKind.HIPS, BoneKind.SPINE, BoneKind.NECK, BoneKind.HEAD,
})

FINGER_BONE_KINDS: Tuple[BoneKind, ...] = tuple(
    kind for kind in BoneKind
    if kind.value.startswith(("Thumb", "Index", "Middle", "Ring", "Little"))
)


@dataclass(frozen=True)
class BoneId:
    """A driven bone: explicit side plus kind."""
    side: Side
    kind: BoneKind

    def __post_init__(self):
        if self.kind.is_center != (self.side is Side.CENTER):
            raise ConfigurationError(
                f"Bone kind {self.kind.name} cannot be combined with side {self.side.name}"
            )

    @property
    def name(self) -> str:
        if self.side is Side.CENTER:
            return self.kind.value
        return f"{self.side.value}{self.kind.value}"

    @property
    def is_left(self) -> bool:
        return self.side is Side.LEFT

    @classmethod
    def center(cls, kind: BoneKind) -> "BoneId":
        return cls(Side.CENTER, kind)

    @classmethod
    def parse(cls, name: str) -> "BoneId":
        """Inverse of `name`. Raises ConfigurationError for unknown names."""
        bone = _BONES_BY_NAME.get(name)
        if bone is None:
            raise ConfigurationError(f"Unknown bone name: {name!r}")
        return bone

    def __str__(self) -> str:
        return self.name


def all_driven_bones() -> List[BoneId]:
    """Every bone the retargeter writes, center bones first."""
    bones = [BoneId.center(kind) for kind in BoneKind if kind.is_center]
    for side in (Side.LEFT, Side.RIGHT):
        bones.extend(BoneId(side, kind) for kind in BoneKind if not kind.is_center)
    return bones


_BONES_BY_NAME: Dict[str, BoneId] = {bone.name: bone for bone in all_driven_bones()}


# Hand landmark index -> bone it drives. Tips drive nothing.
HAND_LANDMARK_TO_BONE_KIND: Dict[HandLandmark, BoneKind] = {
    HandLandmark.WRIST: BoneKind.HAND,
    HandLandmark.THUMB_CMC: BoneKind.THUMB_PROXIMAL,
    HandLandmark.THUMB_MCP: BoneKind.THUMB_INTERMEDIATE,
    HandLandmark.THUMB_IP: BoneKind.THUMB_DISTAL,
    HandLandmark.INDEX_MCP: BoneKind.INDEX_PROXIMAL,
    HandLandmark.INDEX_PIP: BoneKind.INDEX_INTERMEDIATE,
    HandLandmark.INDEX_DIP: BoneKind.INDEX_DISTAL,
    HandLandmark.MIDDLE_MCP: BoneKind.MIDDLE_PROXIMAL,
    HandLandmark.MIDDLE_PIP: BoneKind.MIDDLE_INTERMEDIATE,
    HandLandmark.MIDDLE_DIP: BoneKind.MIDDLE_DISTAL,
    HandLandmark.RING_MCP: BoneKind.RING_PROXIMAL,
    HandLandmark.RING_PIP: BoneKind.RING_INTERMEDIATE,
    HandLandmark.RING_DIP: BoneKind.RING_DISTAL,
    HandLandmark.PINKY_MCP: BoneKind.LITTLE_PROXIMAL,
    HandLandmark.PINKY_PIP: BoneKind.LITTLE_INTERMEDIATE,
    HandLandmark.PINKY_DIP: BoneKind.LITTLE_DISTAL,
}


def hand_landmark_to_bone(index: int, side: Side) -> BoneId:
    """Bone driven by a hand landmark on the given side."""
    try:
        kind = HAND_LANDMARK_TO_BONE_KIND[HandLandmark(index)]
    except (ValueError, KeyError):
        raise ConfigurationError(f"Hand landmark {index} does not drive a bone") from None
    return BoneId(side, kind)


# =============================================================================
# BONE TREE
# =============================================================================

@dataclass
class BoneNode:
    """Minimal named tree node, mirroring a skeleton's transform tree."""
    name: str
    children: List["BoneNode"] = field(default_factory=list)

    def add(self, *children: "BoneNode") -> "BoneNode":
        self.children.extend(children)
        return self

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BoneNode":
        if "name" not in data:
            raise ConfigurationError("Bone tree node without a 'name'")
        return cls(
            name=str(data["name"]),
            children=[cls.from_dict(c) for c in data.get("children") or []],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "children": [c.to_dict() for c in self.children]}


def _node_name(node: Any) -> str:
    if isinstance(node, dict):
        return node["name"]
    return node.name


def _node_children(node: Any) -> List[Any]:
    if isinstance(node, dict):
        return node.get("children") or []
    return getattr(node, "children", None) or []


def iter_depth_first(root: Any) -> Iterator[Tuple[Any, Optional[Any]]]:
    """
    Stack-based depth-first walk of a generic tree.
    
    Nodes may be BoneNode, any object with `name`/`children`, or nested dicts.
    
    Yields:
        (node, parent) pairs, parent is None for the root
    """
    stack: List[Tuple[Any, Optional[Any]]] = [(root, None)]
    while stack:
        node, parent = stack.pop()
        yield node, parent
        for child in _node_children(node):
            stack.append((child, node))


class BoneHierarchy:
    """
    Arena of bone names with a precomputed parent-id array.
    
    Built once per skeleton bind. Ids are stable for the arena's lifetime,
    ancestor lookups are plain array walks.
    """

    ROOT = -1

    def __init__(self):
        self._names: List[str] = []
        self._index: Dict[str, int] = {}
        self._parent_ids: List[int] = []
        self._synthetic: List[bool] = []

    @classmethod
    def from_tree(cls, root: Any) -> "BoneHierarchy":
        hierarchy = cls()
        node_ids: Dict[int, int] = {}
        for node, parent in iter_depth_first(root):
            parent_id = node_ids[id(parent)] if parent is not None else cls.ROOT
            node_ids[id(node)] = hierarchy._add(_node_name(node), parent_id, synthetic=False)
        return hierarchy

    def _add(self, name: str, parent_id: int, synthetic: bool) -> int:
        if name in self._index:
            raise ConfigurationError(f"Duplicate bone name in hierarchy: {name!r}")
        bone_id = len(self._names)
        self._names.append(name)
        self._index[name] = bone_id
        self._parent_ids.append(parent_id)
        self._synthetic.append(synthetic)
        return bone_id

    def add_synthetic(self, name: str) -> int:
        """Register a bone that is not part of the skeleton tree (no parent)."""
        existing = self._index.get(name)
        if existing is not None:
            return existing
        return self._add(name, self.ROOT, synthetic=True)

    def index_of(self, name: str) -> Optional[int]:
        return self._index.get(name)

    def name_of(self, bone_id: int) -> str:
        return self._names[bone_id]

    def parent_of(self, bone_id: int) -> int:
        return self._parent_ids[bone_id]

    def is_synthetic(self, bone_id: int) -> bool:
        return self._synthetic[bone_id]

    def ancestors(self, bone_id: int) -> List[int]:
        """Ancestor ids ordered from the direct parent up to the root."""
        chain = []
        parent = self._parent_ids[bone_id]
        while parent != self.ROOT:
            chain.append(parent)
            parent = self._parent_ids[parent]
        return chain

    @property
    def names(self) -> List[str]:
        return list(self._names)

    @property
    def parent_ids(self) -> List[int]:
        return list(self._parent_ids)

    def __len__(self) -> int:
        return len(self._names)

    def __contains__(self, name: object) -> bool:
        return name in self._index

    def __iter__(self) -> Iterator[str]:
        return iter(self._names)


def default_humanoid_tree() -> BoneNode:
    """Standard humanoid bone tree used when no skeleton file is given."""
    def finger_chain(side: str, finger: str) -> BoneNode:
        return BoneNode(f"{side}{finger}Proximal").add(
            BoneNode(f"{side}{finger}Intermediate").add(
                BoneNode(f"{side}{finger}Distal")
            )
        )

    def arm(side: str) -> BoneNode:
        hand = BoneNode(f"{side}Hand").add(
            *(finger_chain(side, f) for f in ("Thumb", "Index", "Middle", "Ring", "Little"))
        )
        return BoneNode(f"{side}Shoulder").add(
            BoneNode(f"{side}UpperArm").add(
                BoneNode(f"{side}LowerArm").add(hand)
            )
        )

    def leg(side: str) -> BoneNode:
        return BoneNode(f"{side}UpperLeg").add(
            BoneNode(f"{side}LowerLeg").add(
                BoneNode(f"{side}Foot").add(BoneNode(f"{side}Toes"))
            )
        )

    head = BoneNode("head").add(BoneNode("leftEye"), BoneNode("rightEye"))
    upper_chest = BoneNode("upperChest").add(
        BoneNode("neck").add(head), arm("left"), arm("right")
    )
    spine = BoneNode("spine").add(BoneNode("chest").add(upper_chest))
    return BoneNode("hips").add(spine, leg("left"), leg("right"))
