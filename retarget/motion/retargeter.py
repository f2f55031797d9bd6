"""
Pose Retargeting - convert holistic landmarks to humanoid bone rotations.

Per frame, in order:
1. Preprocess: mirror Y, re-anchor hands on the pose wrists, filter landmarks
2. Unpack face mesh regions and gather named key points
3. Iris rotations and the face-camera blend weights
4. Head and neck from the face oval
5. Blink and mouth expressions
6. Hips, spine, arms, wrists, legs and feet from the pose
7. Finger segments from the hands

Conventions:
- MediaPipe: image Y down, the subject faces -Z (towards the camera), left and
  right mirrored
- Output rotations are parent-local (x, y, z, w) quaternions keyed by
  humanoid bone name
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple
import numpy as np

from retarget.core import Config, get_logger
from retarget.core.errors import GeometryError, NotBoundError
from retarget.core.skeleton import (
    POSE_LANDMARK_LENGTH,
    FACE_LANDMARK_LENGTH,
    HAND_LANDMARK_LENGTH,
    BoneId,
    BoneKind,
    HandLandmark,
    PoseLandmark,
    Side,
    hand_landmark_to_bone,
)
from retarget.pose.filters import VISIBILITY_THRESHOLD, FilterParams, load_filter_presets
from retarget.pose.landmark import (
    FilteredLandmark,
    FrameResults,
    Landmark,
    LandmarkList,
    create_filtered_landmarks,
)
from retarget.pose.face_mesh import PoseKeyPoints, build_index_lists, unpack_face_mesh
from .basis import (
    Basis,
    calc_avg_plane,
    calc_spherical_coord,
    calc_spherical_coord_iso,
    get_basis,
    quaternion_between_bases,
    spherical_to_quaternion,
)
from .bones import BoneOptions, BoneRotation, BoneRotationMap, build_rotation_map
from .curve import catmull_rom_spline, find_point
from .quaternion import (
    Axis,
    check_quaternion,
    degree_between_vectors,
    normalize,
    plane_normal_from_points,
    project_vector_on_plane,
    quat_conjugate,
    quat_from_axes,
    quat_from_axis_angle,
    quat_from_yaw_pitch_roll,
    quat_identity,
    quat_inverse,
    quat_multiply,
    quat_normalize,
    remap_range_with_cap,
    remove_rotation_axis_with_cap,
    reverse_rotation,
    rotate_vector,
    scale_rotation,
    vec3,
)


# =============================================================================
# CONSTANTS
# =============================================================================

HAND_POSITION_SCALING = 0.8
HEAD_NECK_RATIO = 0.6
TWIST_COEFFICIENT = 0.5

# MediaPipe iris offset range -> rotation range (radians)
IRIS_MP_X_RANGE = 0.027
IRIS_MP_Y_RANGE = 0.011
IRIS_ROTATION_X_RANGE = 0.28
IRIS_ROTATION_Y_RANGE = 0.22

EYE_WIDTH_BASELINE = 0.0546
MOUTH_WIDTH_BASELINE = 0.095
MOUTH_MP_RANGE_LOW = 0.001
MOUTH_MP_RANGE_HIGH = 0.06
LR_FACE_DIRECTION_RANGE = 27.0

# Eye openness envelopes, keyed by eye width (decreasing x)
BLINK_EYE_WIDTH_CURVE_LOW = catmull_rom_spline([
    (0.105, 0.0189, 0), (0.058, 0.018, 0), (0.016, 0.0144, 0), (0.0105, 0.0165, 0),
], 100)
BLINK_EYE_WIDTH_CURVE_HIGH = catmull_rom_spline([
    (0.105, 0.0215, 0), (0.058, 0.0198, 0), (0.016, 0.015, 0), (0.0105, 0.0205, 0),
], 100)

# Finger segment caps in degrees
FINGER_CAP_LOW = -15.0
FINGER_CAP_HIGH = 15.0
FINGER_BEND_HIGH = 110.0

# Parent rotations mirrored on Y only; every other bone is mirrored on YZ
Y_MIRRORED_BONES = frozenset({"spine", "hips"})

SIDES = (Side.LEFT, Side.RIGHT)

_SIDE_LANDMARKS = {
    Side.LEFT: {
        "shoulder": PoseLandmark.LEFT_SHOULDER, "elbow": PoseLandmark.LEFT_ELBOW,
        "wrist": PoseLandmark.LEFT_WRIST, "hip": PoseLandmark.LEFT_HIP,
        "knee": PoseLandmark.LEFT_KNEE, "ankle": PoseLandmark.LEFT_ANKLE,
        "heel": PoseLandmark.LEFT_HEEL, "foot_index": PoseLandmark.LEFT_FOOT_INDEX,
    },
    Side.RIGHT: {
        "shoulder": PoseLandmark.RIGHT_SHOULDER, "elbow": PoseLandmark.RIGHT_ELBOW,
        "wrist": PoseLandmark.RIGHT_WRIST, "hip": PoseLandmark.RIGHT_HIP,
        "knee": PoseLandmark.RIGHT_KNEE, "ankle": PoseLandmark.RIGHT_ANKLE,
        "heel": PoseLandmark.RIGHT_HEEL, "foot_index": PoseLandmark.RIGHT_FOOT_INDEX,
    },
}

# Palm triangles whose normals average to the hand normal
_PALM_TRIANGLES = (
    (HandLandmark.WRIST, HandLandmark.PINKY_MCP, HandLandmark.INDEX_MCP),
    (HandLandmark.WRIST, HandLandmark.RING_MCP, HandLandmark.INDEX_MCP),
    (HandLandmark.WRIST, HandLandmark.PINKY_MCP, HandLandmark.MIDDLE_MCP),
)

_PALM_POINTS = (
    HandLandmark.WRIST, HandLandmark.INDEX_MCP, HandLandmark.MIDDLE_MCP,
    HandLandmark.RING_MCP, HandLandmark.PINKY_MCP,
)


def normal_from_vertices(vertices: Sequence[np.ndarray], reverse: bool = False) -> np.ndarray:
    """Unit normal of a triangle from consecutive edges, winding optionally reversed."""
    v0, v1, v2 = reversed(vertices) if reverse else vertices
    return normalize(np.cross(v1 - v0, v2 - v1))


# =============================================================================
# FRAME WORKSPACE
# =============================================================================

class FrameWorkspace:
    """
    Filtered landmark buffers reused across frames.

    Owned by exactly one engine; the filters carry temporal state, so a
    workspace must never be shared between engines or threads.
    """

    def __init__(self, presets: Dict[str, FilterParams]):
        self.pose = create_filtered_landmarks(POSE_LANDMARK_LENGTH, presets["pose"])
        self.world_pose = create_filtered_landmarks(POSE_LANDMARK_LENGTH, presets["world_pose"])
        self.face = create_filtered_landmarks(FACE_LANDMARK_LENGTH, presets["face"])
        self.hands: Dict[Side, List[FilteredLandmark]] = {
            side: create_filtered_landmarks(HAND_LANDMARK_LENGTH, presets["hand"]) for side in SIDES
        }
        self.wrist_offsets: Dict[Side, FilteredLandmark] = {
            side: FilteredLandmark(presets["wrist_offset"]) for side in SIDES
        }

        self.face_index_lists = build_index_lists()
        self.face_mesh: List[np.ndarray] = []
        self.key_points = PoseKeyPoints.from_face(self.face, self.face_index_lists)

        # Raw image-space pose of the current frame, visibility gates read it
        self.input_pose: Optional[LandmarkList] = None
        self.hands_present: Dict[Side, bool] = {side: False for side in SIDES}

        self.hand_normals: Dict[Side, np.ndarray] = {side: np.zeros(3) for side in SIDES}
        self.foot_normals: Dict[Side, np.ndarray] = {side: np.zeros(3) for side in SIDES}
        self.pose_normals: List[np.ndarray] = []
        self.face_normal = np.zeros(3)
        self.mid_hip_offset = np.zeros(3)

    def snapshot_derived(self) -> Dict[str, Any]:
        """Copies of the normals and offset derived while solving a frame."""
        return {
            "hand_normals": {side: n.copy() for side, n in self.hand_normals.items()},
            "foot_normals": {side: n.copy() for side, n in self.foot_normals.items()},
            "pose_normals": [n.copy() for n in self.pose_normals],
            "face_normal": self.face_normal.copy(),
            "mid_hip_offset": self.mid_hip_offset.copy(),
        }

    def restore_derived(self, saved: Dict[str, Any]):
        """Put back vectors from snapshot_derived(). Filter state is not touched."""
        self.hand_normals = {side: n.copy() for side, n in saved["hand_normals"].items()}
        self.foot_normals = {side: n.copy() for side, n in saved["foot_normals"].items()}
        self.pose_normals = [n.copy() for n in saved["pose_normals"]]
        self.face_normal = saved["face_normal"].copy()
        self.mid_hip_offset = saved["mid_hip_offset"].copy()

    def reset(self):
        for landmarks in (self.pose, self.world_pose, self.face, *self.hands.values()):
            for lm in landmarks:
                lm.reset()
        for offset in self.wrist_offsets.values():
            offset.reset()
        self.face_mesh = []
        self.input_pose = None
        self.hands_present = {side: False for side in SIDES}
        self.hand_normals = {side: np.zeros(3) for side in SIDES}
        self.foot_normals = {side: np.zeros(3) for side in SIDES}
        self.pose_normals = []
        self.face_normal = np.zeros(3)
        self.mid_hip_offset = np.zeros(3)


def _filter_landmarks(
    raw: Sequence[Landmark],
    filtered: Sequence[FilteredLandmark],
    offset: Optional[np.ndarray] = None,
    scaling: float = 1.0,
):
    """Mirror Y, scale, offset and feed every landmark through its filter."""
    offset = np.zeros(3) if offset is None else offset
    for lm, target in zip(raw, filtered):
        target.update_position(lm.as_vector(scaling, reverse_y=True) + offset, lm.visibility)


# =============================================================================
# RETARGETER
# =============================================================================

class PoseRetargeter:
    """
    Stateful landmark-to-rotation engine.

    Not reentrant: frames must be processed one at a time, in order.

    Usage:
        retargeter = PoseRetargeter()
        retargeter.bind(default_humanoid_tree())
        retargeter.process(FrameResults.from_dict(results))
        rotations = retargeter.bone_rotations.to_dict()
    """

    def __init__(self, config: Optional[Config] = None, options: Optional[BoneOptions] = None):
        self.logger = get_logger("motion.retargeter")
        self.config = config or Config()

        retarget_config = self.config.retarget or {}
        self.visibility_threshold = float(retarget_config.get("visibility_threshold", VISIBILITY_THRESHOLD))
        self.hand_position_scaling = float(retarget_config.get("hand_position_scaling", HAND_POSITION_SCALING))
        self.head_neck_ratio = float(retarget_config.get("head_neck_ratio", HEAD_NECK_RATIO))
        self.twist_coefficient = float(retarget_config.get("twist_coefficient", TWIST_COEFFICIENT))

        self.options = options or BoneOptions.from_config(self.config)
        self.workspace = FrameWorkspace(load_filter_presets(self.config))

        self._rotations: Optional[BoneRotationMap] = None
        self._results: Optional[FrameResults] = None

        self._reset_outputs()

        self.logger.info(
            f"Initialized PoseRetargeter (visibility > {self.visibility_threshold}, "
            f"head/neck {self.head_neck_ratio}, twist {self.twist_coefficient})"
        )

    def _reset_outputs(self):
        self.iris_quaternions: List[np.ndarray] = [quat_identity(), quat_identity(), quat_identity()]
        self.mouth_morph = 0.0
        self.blink_left = 1.0
        self.blink_right = 1.0
        self.blink_all = 1.0

    # -------------------------------------------------------------------------
    # Binding
    # -------------------------------------------------------------------------

    @property
    def is_bound(self) -> bool:
        return self._rotations is not None

    @property
    def bone_rotations(self) -> BoneRotationMap:
        if self._rotations is None:
            raise NotBoundError("No skeleton bound")
        return self._rotations

    def bind(self, tree: Any) -> bool:
        """
        Bind a skeleton tree. A no-op while a skeleton is already bound.

        Args:
            tree: Root node (BoneNode, any object with name/children, or nested dicts)

        Returns:
            True if the tree was bound by this call
        """
        if self._rotations is not None:
            self.logger.debug("Skeleton already bound, ignoring bind")
            return False
        self._rotations = build_rotation_map(tree)
        self.logger.info(f"Bound skeleton with {len(self._rotations)} bones")
        return True

    def unbind(self):
        """Drop the bound skeleton so a new one (model switch) can be bound."""
        self._rotations = None
        self.logger.info("Skeleton unbound")

    def reset(self):
        """Forget filter state, outputs and solved rotations."""
        self.workspace.reset()
        self._reset_outputs()
        if self._rotations is not None:
            self._rotations.reset()

    # -------------------------------------------------------------------------
    # Snapshots
    # -------------------------------------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        """Copy of every solved output, for rolling back a failed frame."""
        return {
            "rotations": self.bone_rotations.snapshot(),
            "iris": [q.copy() for q in self.iris_quaternions],
            "expressions": (self.mouth_morph, self.blink_left, self.blink_right, self.blink_all),
            "derived": self.workspace.snapshot_derived(),
        }

    def restore(self, snapshot: Dict[str, Any]):
        self.bone_rotations.restore(snapshot["rotations"])
        self.workspace.restore_derived(snapshot["derived"])
        self.iris_quaternions = [q.copy() for q in snapshot["iris"]]
        self.mouth_morph, self.blink_left, self.blink_right, self.blink_all = snapshot["expressions"]

    # -------------------------------------------------------------------------
    # Frame processing
    # -------------------------------------------------------------------------

    def process(self, results: FrameResults) -> bool:
        """
        Solve one frame.

        Args:
            results: Detector output for this frame

        Returns:
            False when nothing was solved (no skeleton bound)

        Raises:
            GeometryError: degenerate geometry or a non-finite rotation; outputs
                may be partially updated, callers roll back with restore()
        """
        if self._rotations is None:
            self.logger.warning("process() called before a skeleton was bound, frame ignored")
            return False

        self._results = results
        self._preprocess(results)

        self.workspace.face_mesh = unpack_face_mesh(self.workspace.face, self.workspace.face_index_lists)
        self._gather_key_points()

        if results.face_landmarks is not None:
            self._calc_iris()
        self._calc_face_bones()
        if results.face_landmarks is not None:
            self._calc_expressions()

        if results.pose_landmarks is not None and results.pose_world_landmarks is not None:
            self._calc_pose_bones()

        self._calc_hand_bones()
        self._check_finite()
        return True

    def _preprocess(self, results: FrameResults):
        ws = self.workspace

        if results.pose_landmarks is not None and results.pose_world_landmarks is not None:
            ws.input_pose = results.pose_landmarks
            _filter_landmarks(results.pose_world_landmarks, ws.world_pose)
            _filter_landmarks(results.pose_landmarks, ws.pose)

            world = results.pose_world_landmarks
            if (
                (world[PoseLandmark.LEFT_HIP].visibility or 0.0) > self.visibility_threshold
                and (world[PoseLandmark.RIGHT_HIP].visibility or 0.0) > self.visibility_threshold
            ):
                offset = (ws.pose[PoseLandmark.LEFT_HIP].pos + ws.pose[PoseLandmark.RIGHT_HIP].pos) * 0.5
                offset[2] = 0.0  # no depth
                ws.mid_hip_offset = offset

        if results.face_landmarks is not None:
            _filter_landmarks(results.face_landmarks, ws.face)

        for side, raw in ((Side.LEFT, results.left_hand_landmarks), (Side.RIGHT, results.right_hand_landmarks)):
            ws.hands_present[side] = raw is not None
            if raw is None:
                continue
            wrist = PoseLandmark.LEFT_WRIST if side is Side.LEFT else PoseLandmark.RIGHT_WRIST
            offset = ws.wrist_offsets[side]
            offset.update_position(
                ws.world_pose[wrist].pos
                - raw[HandLandmark.WRIST].as_vector(self.hand_position_scaling, reverse_y=True)
            )
            _filter_landmarks(raw, ws.hands[side], offset.pos, self.hand_position_scaling)

    def _gather_key_points(self):
        ws = self.workspace
        ws.key_points = PoseKeyPoints.from_face(ws.face, ws.face_index_lists)

    def _input_visibility(self, index: int) -> float:
        pose = self.workspace.input_pose
        if pose is None:
            return 0.0
        return pose[index].visibility or 0.0

    def _visible(self, *indices: int) -> bool:
        return all(self._input_visibility(i) > self.visibility_threshold for i in indices)

    def _check_finite(self):
        for record in self.bone_rotations:
            if not check_quaternion(record.rotation):
                raise GeometryError(f"Non-finite rotation produced for {record.name}")
        for q in self.iris_quaternions:
            if not check_quaternion(q):
                raise GeometryError("Non-finite iris rotation produced")

    # -------------------------------------------------------------------------
    # Ancestor chain
    # -------------------------------------------------------------------------

    def apply_quaternion_chain(self, bone: BoneId) -> np.ndarray:
        """
        Accumulated parent rotation of a bone, composed root first.

        Each ancestor's rotation is mirrored back (Y for hips/spine, YZ
        otherwise) before composition.
        """
        rotations = self.bone_rotations
        hierarchy = rotations.hierarchy
        bone_id = hierarchy.index_of(bone.name)

        q = quat_identity()
        for ancestor in reversed(hierarchy.ancestors(bone_id)):
            axis = Axis.Y if hierarchy.name_of(ancestor) in Y_MIRRORED_BONES else Axis.YZ
            q = quat_multiply(q, reverse_rotation(rotations.rotation_of(ancestor), axis))
        return quat_normalize(q)

    def _bone(self, side: Side, kind: BoneKind) -> BoneRotation:
        return self.bone_rotations[BoneId(side, kind)]

    # -------------------------------------------------------------------------
    # Face
    # -------------------------------------------------------------------------

    def _lr_link_weights(self) -> Tuple[float, float]:
        """Left/right blend weights from the face's yaw towards the camera."""
        angle = degree_between_vectors(self.workspace.face_normal, vec3(0, 0, -1), remap_degree=True)
        weight_left = remap_range_with_cap(angle[1], LR_FACE_DIRECTION_RANGE, -LR_FACE_DIRECTION_RANGE, 0, 1)
        weight_right = remap_range_with_cap(angle[1], -LR_FACE_DIRECTION_RANGE, LR_FACE_DIRECTION_RANGE, 0, 1)
        return weight_left, weight_right

    def _iris_rotation(self, side: str) -> Optional[np.ndarray]:
        kp = self.workspace.key_points
        def get(name: str) -> np.ndarray:
            return getattr(kp, f"{side}_{name}").pos

        width = float(np.linalg.norm(get("eye_inner") - get("eye_outer")))
        if width == 0.0:
            return None

        iris_center = (get("iris_top") + get("iris_bottom") + get("iris_left") + get("iris_right")) * 0.5
        eye_center = (
            get("eye_top") + get("eye_bottom") + get("eye_inner_secondary") + get("eye_outer_secondary")
        ) * 0.5
        offset = (iris_center - eye_center) * (EYE_WIDTH_BASELINE / width)

        yaw = remap_range_with_cap(
            offset[0], -IRIS_MP_X_RANGE, IRIS_MP_X_RANGE, -IRIS_ROTATION_X_RANGE, IRIS_ROTATION_X_RANGE
        )
        pitch = remap_range_with_cap(
            offset[1], -IRIS_MP_Y_RANGE, IRIS_MP_Y_RANGE, -IRIS_ROTATION_Y_RANGE, IRIS_ROTATION_Y_RANGE
        )
        if self.options.iris_lock_x:
            pitch = 0.0
        return quat_from_yaw_pitch_roll(yaw, pitch, 0.0)

    def _calc_iris(self):
        left = self._iris_rotation("left")
        right = self._iris_rotation("right")
        if left is None or right is None:
            return

        weight_left, weight_right = self._lr_link_weights()
        linked = quat_normalize(left * weight_left + right * weight_right)
        if self.options.iris_link_lr:
            self.iris_quaternions = [linked.copy(), linked.copy(), linked]
        else:
            self.iris_quaternions = [left, right, linked]

    def _calc_face_bones(self):
        kp = self.workspace.key_points
        axis_x = normalize(kp.left_face_oval.pos - kp.right_face_oval.pos)
        axis_y = normalize(kp.top_face_oval.pos - kp.bottom_face_oval.pos)
        axis_z = normalize(np.cross(axis_x, axis_y))
        if not axis_x.any() or not axis_y.any() or not axis_z.any():
            return

        face_basis = Basis([axis_x, np.cross(axis_z, axis_x), axis_z])
        self.workspace.face_normal = -face_basis.z

        # Same rotation on both joints spreads it over the neck
        head = self.bone_rotations[BoneId.center(BoneKind.HEAD)]
        neck = self.bone_rotations[BoneId.center(BoneKind.NECK)]
        head_basis = head.rotate_basis(self.apply_quaternion_chain(BoneId.center(BoneKind.NECK)))
        q = reverse_rotation(quaternion_between_bases(face_basis, head_basis), Axis.X)
        q = scale_rotation(q, self.head_neck_ratio)
        head.set(q)
        neck.set(q.copy())

    def _blink(self, side: str) -> Optional[float]:
        kp = self.workspace.key_points
        def get(name: str) -> np.ndarray:
            return getattr(kp, f"{side}_{name}").pos

        width = float(np.linalg.norm(get("eye_inner") - get("eye_outer")))
        if width == 0.0:
            return None
        low = find_point(BLINK_EYE_WIDTH_CURVE_LOW, width)
        high = find_point(BLINK_EYE_WIDTH_CURVE_HIGH, width)
        if low == high:
            return None

        openness = float(np.linalg.norm(get("eye_top") - get("eye_bottom"))) * EYE_WIDTH_BASELINE / width
        return 1.0 - remap_range_with_cap(openness, low, high, 0, 1)

    def _calc_expressions(self):
        left = self._blink("left")
        right = self._blink("right")
        if left is not None and right is not None:
            weight_left, weight_right = self._lr_link_weights()
            self.blink_left = left
            self.blink_right = right
            self.blink_all = weight_left * left + weight_right * right

        kp = self.workspace.key_points
        mouth_width = float(np.linalg.norm(kp.mouth_left.pos - kp.mouth_right.pos))
        if mouth_width == 0.0:
            return
        ranges = [
            remap_range_with_cap(
                float(np.linalg.norm(top.pos - bottom.pos)) * MOUTH_WIDTH_BASELINE / mouth_width,
                MOUTH_MP_RANGE_LOW, MOUTH_MP_RANGE_HIGH, 0, 1,
            )
            for top, bottom in (
                (kp.mouth_top_first, kp.mouth_bottom_first),
                (kp.mouth_top_second, kp.mouth_bottom_second),
                (kp.mouth_top_third, kp.mouth_bottom_third),
            )
        ]
        self.mouth_morph = sum(ranges) / 3

    # -------------------------------------------------------------------------
    # Body
    # -------------------------------------------------------------------------

    def _world(self, index: int) -> np.ndarray:
        return self.workspace.world_pose[index].pos

    def _calc_pose_bones(self):
        ws = self.workspace
        left_hip = self._world(PoseLandmark.LEFT_HIP)
        right_hip = self._world(PoseLandmark.RIGHT_HIP)
        left_shoulder = self._world(PoseLandmark.LEFT_SHOULDER)
        right_shoulder = self._world(PoseLandmark.RIGHT_SHOULDER)

        hip_normal = normalize(
            plane_normal_from_points(left_hip, right_hip, right_shoulder)
            + plane_normal_from_points(left_hip, right_hip, left_shoulder)
        )
        hip_normal[1] = 0.0
        shoulder_normal = normalize(
            plane_normal_from_points(right_shoulder, left_shoulder, right_hip)
            + plane_normal_from_points(right_shoulder, left_shoulder, left_hip)
        )
        ws.pose_normals = [hip_normal.copy(), shoulder_normal.copy(), shoulder_normal.copy()]

        hips_id = BoneId.center(BoneKind.HIPS)
        spine_id = BoneId.center(BoneKind.SPINE)
        hips = self.bone_rotations[hips_id]
        spine = self.bone_rotations[spine_id]

        if hip_normal.any():
            theta, phi = calc_spherical_coord_iso(hip_normal, hips.base_basis)
            hips.set(reverse_rotation(spherical_to_quaternion(hips.base_basis, theta, phi), Axis.Y))

        if shoulder_normal.any():
            spine_basis = spine.rotate_basis(self.apply_quaternion_chain(spine_id))
            theta, phi = calc_spherical_coord_iso(shoulder_normal, spine_basis)
            spine.set(reverse_rotation(spherical_to_quaternion(spine.base_basis, theta, phi), Axis.Y))

        # Hand normals first, the forearm twist follows them
        self._calc_wrist_bones(first_pass=True)
        for side in SIDES:
            self._calc_arm(side)
        self._calc_wrist_bones(first_pass=False)

        if self.options.lock_leg:
            return
        if not self._shall_update_legs():
            if self.options.reset_invisible:
                for side in SIDES:
                    for kind in (BoneKind.UPPER_LEG, BoneKind.LOWER_LEG, BoneKind.FOOT):
                        self._bone(side, kind).reset()
            return
        self._calc_feet_bones()
        for side in SIDES:
            self._calc_leg(side)
        self._calc_feet_bones()

    def _solve_upper_segment(self, bone_id: BoneId, direction: np.ndarray):
        record = self.bone_rotations[bone_id]
        basis = record.rotate_basis(self.apply_quaternion_chain(bone_id))
        theta, phi = calc_spherical_coord_iso(direction, basis)
        record.set(reverse_rotation(spherical_to_quaternion(record.base_basis, theta, phi), Axis.YZ))

    def _solve_lower_segment(self, bone_id: BoneId, direction: np.ndarray, child_normal: np.ndarray):
        record = self.bone_rotations[bone_id]
        prev_q = self.apply_quaternion_chain(bone_id)
        basis = record.rotate_basis(prev_q)
        theta, phi = calc_spherical_coord_iso(direction, basis)
        first_q = reverse_rotation(spherical_to_quaternion(record.base_basis, theta, phi), Axis.YZ)
        record.set(self.apply_x_rotation_with_child(record, prev_q, first_q, child_normal, basis))

    def _calc_arm(self, side: Side):
        lm = _SIDE_LANDMARKS[side]
        upper_id = BoneId(side, BoneKind.UPPER_ARM)
        lower_id = BoneId(side, BoneKind.LOWER_ARM)
        if self.options.lock_arm:
            return
        if not self._visible(lm["shoulder"], lm["elbow"], lm["wrist"]):
            if self.options.reset_invisible:
                self.bone_rotations[upper_id].reset()
                self.bone_rotations[lower_id].reset()
            return

        shoulder = self._world(lm["shoulder"])
        elbow = self._world(lm["elbow"])
        wrist = self._world(lm["wrist"])
        upper_dir = normalize(elbow - shoulder)
        lower_dir = normalize(wrist - elbow)

        if upper_dir.any():
            self._solve_upper_segment(upper_id, upper_dir)
        if lower_dir.any():
            self._solve_lower_segment(lower_id, lower_dir, self.workspace.hand_normals[side])

    def _calc_leg(self, side: Side):
        lm = _SIDE_LANDMARKS[side]
        hip = self._world(lm["hip"])
        knee = self._world(lm["knee"])
        ankle = self._world(lm["ankle"])
        upper_dir = normalize(knee - hip)
        lower_dir = normalize(ankle - knee)

        if upper_dir.any():
            self._solve_upper_segment(BoneId(side, BoneKind.UPPER_LEG), upper_dir)
        if lower_dir.any():
            self._solve_lower_segment(
                BoneId(side, BoneKind.LOWER_LEG), lower_dir, self.workspace.foot_normals[side]
            )

    def apply_x_rotation_with_child(
        self,
        record: BoneRotation,
        prev_q: np.ndarray,
        first_q: np.ndarray,
        normal: np.ndarray,
        this_basis: Basis,
    ) -> np.ndarray:
        """
        Twist a lower limb about its own axis towards its child's normal.

        Args:
            record: Lower limb bone
            prev_q: Accumulated parent rotation
            first_q: Direction-only rotation of this bone
            normal: Child (hand/foot) normal, pointing along the bone's -y
            this_basis: Bone basis after prev_q

        Returns:
            Final local rotation, blended by the twist coefficient
        """
        rotated = record.rotate_basis(quat_multiply(prev_q, reverse_rotation(first_q, Axis.YZ)))
        to_local = quat_inverse(quat_from_axes(rotated.x, rotated.y, rotated.z))

        projected_prev_z = normalize(rotate_vector(project_vector_on_plane(rotated.x, -this_basis.z), to_local))
        x_prev = np.arctan2(projected_prev_z[1], -projected_prev_z[2])

        projected_normal = rotate_vector(project_vector_on_plane(rotated.x, normal), to_local)
        if projected_normal.any():
            x_angle = np.arctan2(projected_normal[1], -projected_normal[2])
        else:
            # No child normal measured yet
            x_angle = x_prev

        twisted = rotated.rotate(quat_from_axis_angle(rotated.x, (x_angle - x_prev) * self.twist_coefficient))
        return reverse_rotation(quaternion_between_bases(this_basis, twisted, prev_q), Axis.YZ)

    def _shall_update_legs(self) -> bool:
        for side in SIDES:
            lm = _SIDE_LANDMARKS[side]
            if not self._visible(lm["knee"], lm["ankle"], lm["foot_index"], lm["heel"]):
                return False
        return True

    def _calc_feet_bones(self):
        for side in SIDES:
            lm = _SIDE_LANDMARKS[side]
            foot_id = BoneId(side, BoneKind.FOOT)
            basis = get_basis([
                self._world(lm["heel"]), self._world(lm["foot_index"]), self._world(lm["ankle"])
            ]).negate_axes(Axis.YZ).transpose([1, 2, 0])
            basis.verify()
            self.workspace.foot_normals[side] = -basis.z

            record = self.bone_rotations[foot_id]
            target = basis.rotate(quat_conjugate(self.apply_quaternion_chain(foot_id)))
            record.set(reverse_rotation(quaternion_between_bases(record.base_basis, target), Axis.YZ))

    # -------------------------------------------------------------------------
    # Hands
    # -------------------------------------------------------------------------

    def _calc_wrist_bones(self, first_pass: bool = True):
        """
        Palm normals and wrist rotations.

        Args:
            first_pass: Only measure the palm normals the forearm twist needs;
                wrist rotations are solved on the pass after the arms
        """
        wrists = {Side.LEFT: PoseLandmark.LEFT_WRIST, Side.RIGHT: PoseLandmark.RIGHT_WRIST}
        for side in SIDES:
            if not self._visible(wrists[side]) or not self.workspace.hands_present[side]:
                continue
            hand = self.workspace.hands[side]

            normal = normalize(sum(
                normal_from_vertices([hand[i].pos for i in tri], reverse=side is Side.LEFT)
                for tri in _PALM_TRIANGLES
            ))
            self.workspace.hand_normals[side] = normal
            if first_pass:
                continue

            wrist_id = BoneId(side, BoneKind.HAND)
            record = self.bone_rotations[wrist_id]
            projected = calc_avg_plane([hand[i].pos for i in _PALM_POINTS], normal)
            target = get_basis([projected[0], projected[1], projected[4]]).rotate(
                quat_conjugate(self.apply_quaternion_chain(wrist_id))
            )
            record.set(reverse_rotation(quaternion_between_bases(record.base_basis, target), Axis.YZ))

    def _calc_hand_bones(self):
        if self.options.lock_finger:
            return
        for side in SIDES:
            if not self.workspace.hands_present[side]:
                continue
            hand = self.workspace.hands[side]
            lr = side.sign

            for i in range(1, HAND_LANDMARK_LENGTH):
                if i % 4 == 0:
                    continue
                bone_id = hand_landmark_to_bone(i, side)
                record = self.bone_rotations[bone_id]
                direction = normalize(hand[i + 1].pos - hand[i].pos)
                if not direction.any():
                    continue

                basis = record.rotate_basis(self.apply_quaternion_chain(bone_id))
                # Middle phalanges bend in the plane of the finger
                if i % 4 in (2, 3):
                    direction = project_vector_on_plane(basis.y, direction)
                    if not normalize(direction).any():
                        continue
                theta, phi = calc_spherical_coord(direction, basis)

                is_thumb = i < 4
                if i % 4 == 1:
                    remove_axis = Axis.NONE if is_thumb else Axis.X
                else:
                    remove_axis = Axis.XZ if is_thumb else Axis.XY
                # Thumbs bend about Y, other fingers about Z
                first_cap = Axis.Z if is_thumb else Axis.Y
                second_cap = Axis.Y if is_thumb else Axis.Z

                q = remove_rotation_axis_with_cap(
                    spherical_to_quaternion(record.base_basis, theta, phi),
                    remove_axis,
                    first_cap, FINGER_CAP_LOW, FINGER_CAP_HIGH,
                    second_cap, lr * FINGER_CAP_LOW, lr * FINGER_BEND_HIGH,
                )
                record.set(reverse_rotation(q, Axis.YZ))

    # -------------------------------------------------------------------------
    # Filtered landmark views
    # -------------------------------------------------------------------------

    def filtered_landmarks(self, name: str) -> List[Landmark]:
        """
        Current filtered landmarks of one set.

        Args:
            name: "pose", "world_pose", "face", "left_hand" or "right_hand"
        """
        ws = self.workspace
        sets = {
            "pose": ws.pose,
            "world_pose": ws.world_pose,
            "face": ws.face,
            "left_hand": ws.hands[Side.LEFT],
            "right_hand": ws.hands[Side.RIGHT],
        }
        return [lm.to_landmark() for lm in sets[name]]
