"""Behavioral tests for the retargeting engine on synthetic frames."""

import numpy as np
import pytest

from retarget.core import (
    BoneId,
    BoneKind,
    BoneNode,
    GeometryError,
    NotBoundError,
    PoseLandmark,
    Side,
    default_humanoid_tree,
)
from retarget.motion.bones import BoneOptions
from retarget.motion.quaternion import quat_from_euler, quat_identity, quat_to_euler
from retarget.motion.retargeter import PoseRetargeter
from retarget.pose.landmark import FrameResults


FACE_WINDOW = 5

LIMB_BONES = [
    BoneId(side, kind)
    for side in (Side.LEFT, Side.RIGHT)
    for kind in (BoneKind.UPPER_ARM, BoneKind.LOWER_ARM, BoneKind.UPPER_LEG, BoneKind.LOWER_LEG, BoneKind.FOOT)
]

LEG_BONES = [
    BoneId(side, kind)
    for side in (Side.LEFT, Side.RIGHT)
    for kind in (BoneKind.UPPER_LEG, BoneKind.LOWER_LEG, BoneKind.FOOT)
]


def head_tree():
    return BoneNode("hips").add(BoneNode("spine").add(BoneNode("head")))


def euler(q):
    return quat_to_euler(q)


@pytest.fixture
def engine(config):
    retargeter = PoseRetargeter(config)
    retargeter.bind(default_humanoid_tree())
    return retargeter


def eye_points(side, width=0.03, height=0.01, iris_shift=(0.0, 0.0)):
    cx = 0.03 if side == "left" else -0.03
    cy = 0.02
    # Outer corners point away from the face center
    out = 1.0 if side == "left" else -1.0
    ix, iy = cx + iris_shift[0], cy + iris_shift[1]
    r = 0.004
    return {
        f"{side}_eye_outer": (cx + out * width / 2, cy, 0.0),
        f"{side}_eye_inner": (cx - out * width / 2, cy, 0.0),
        f"{side}_eye_top": (cx, cy + height / 2, 0.0),
        f"{side}_eye_bottom": (cx, cy - height / 2, 0.0),
        f"{side}_eye_outer_secondary": (cx + out * width / 4, cy, 0.0),
        f"{side}_eye_inner_secondary": (cx - out * width / 4, cy, 0.0),
        f"{side}_iris_top": (ix, iy + r, 0.0),
        f"{side}_iris_bottom": (ix, iy - r, 0.0),
        f"{side}_iris_left": (ix + r, iy, 0.0),
        f"{side}_iris_right": (ix - r, iy, 0.0),
    }


def run_face(retargeter, face, frames=FACE_WINDOW):
    results = FrameResults.from_dict({"faceLandmarks": face})
    for _ in range(frames):
        retargeter.process(results)


class TestBinding:
    def test_rotations_require_binding(self, config):
        retargeter = PoseRetargeter(config)
        assert not retargeter.is_bound
        with pytest.raises(NotBoundError):
            retargeter.bone_rotations
        assert retargeter.process(FrameResults()) is False

    def test_bind_is_idempotent(self, config):
        retargeter = PoseRetargeter(config)
        assert retargeter.bind(default_humanoid_tree())
        first = retargeter.bone_rotations
        assert not retargeter.bind(head_tree())
        assert retargeter.bone_rotations is first

    def test_unbind_allows_model_switch(self, engine):
        engine.unbind()
        assert engine.bind(head_tree())
        assert engine.bone_rotations.hierarchy.is_synthetic(engine.bone_rotations.hierarchy.index_of("neck"))

    def test_empty_frame_keeps_bind_pose(self, engine):
        before = engine.bone_rotations.snapshot()
        assert engine.process(FrameResults())
        np.testing.assert_array_equal(engine.bone_rotations.snapshot(), before)

    def test_non_finite_rotation_raises(self, engine):
        engine.bone_rotations["chest"].set(np.array([np.nan, 0.0, 0.0, 1.0]))
        with pytest.raises(GeometryError):
            engine.process(FrameResults())


class TestQuaternionChain:
    def test_hips_mirrored_on_y_only(self, engine):
        engine.bone_rotations["hips"].set(quat_from_euler(0.1, 0.3, 0.2))
        chain = engine.apply_quaternion_chain(BoneId.center(BoneKind.SPINE))
        np.testing.assert_allclose(euler(chain), [0.1, -0.3, 0.2], atol=1e-9)

    def test_chain_composes_root_first(self, engine):
        engine.bone_rotations["hips"].set(quat_from_euler(0.0, 0.3, 0.0))
        engine.bone_rotations["upperChest"].set(quat_from_euler(0.0, 0.2, 0.0))
        chain = engine.apply_quaternion_chain(BoneId.center(BoneKind.NECK))
        np.testing.assert_allclose(euler(chain), [0.0, -0.5, 0.0], atol=1e-9)

    def test_synthetic_bone_has_identity_chain(self, config):
        retargeter = PoseRetargeter(config)
        retargeter.bind(head_tree())
        retargeter.bone_rotations["hips"].set(quat_from_euler(0.0, 0.3, 0.0))
        chain = retargeter.apply_quaternion_chain(BoneId.center(BoneKind.NECK))
        np.testing.assert_allclose(chain, quat_identity(), atol=1e-12)


class TestFace:
    def test_head_and_neck_share_scaled_rotation(self, config, make_face, face_oval):
        retargeter = PoseRetargeter(config)
        retargeter.bind(head_tree())
        yaw = 0.3
        run_face(retargeter, make_face(face_oval(yaw)))

        head = retargeter.bone_rotations["head"].rotation
        neck = retargeter.bone_rotations["neck"].rotation
        np.testing.assert_array_equal(head, neck)
        np.testing.assert_allclose(euler(head), [0.0, -0.6 * yaw, 0.0], atol=1e-6)

    def test_frontal_face_is_identity(self, engine, make_face, face_oval):
        run_face(engine, make_face(face_oval()))
        np.testing.assert_allclose(euler(engine.bone_rotations["head"].rotation), [0, 0, 0], atol=1e-9)
        np.testing.assert_allclose(engine.workspace.face_normal, [0, 0, -1], atol=1e-9)

    def test_head_waits_for_smoothing_window(self, engine, make_face, face_oval):
        run_face(engine, make_face(face_oval(0.3)), frames=FACE_WINDOW - 1)
        np.testing.assert_array_equal(engine.bone_rotations["head"].rotation, quat_identity())

    def test_head_ratio_from_config(self, config, make_face, face_oval):
        config.set("retarget.head_neck_ratio", 1.0)
        retargeter = PoseRetargeter(config)
        retargeter.bind(head_tree())
        run_face(retargeter, make_face(face_oval(0.2)))
        assert euler(retargeter.bone_rotations["head"].rotation)[1] == pytest.approx(-0.2, abs=1e-6)


class TestExpressions:
    def test_symmetric_eyes_blink_together(self, engine, make_face, face_oval):
        points = {**face_oval(), **eye_points("left"), **eye_points("right")}
        run_face(engine, make_face(points))
        assert engine.blink_left == pytest.approx(engine.blink_right)
        assert engine.blink_all == pytest.approx(engine.blink_left)
        assert 0.0 <= engine.blink_left <= 1.0

    def test_open_and_closed_eyes(self, config, make_face, face_oval):
        opened = PoseRetargeter(config)
        opened.bind(head_tree())
        run_face(opened, make_face({**face_oval(), **eye_points("left", height=0.03), **eye_points("right", height=0.03)}))
        assert opened.blink_all == pytest.approx(0.0)

        closed = PoseRetargeter(config)
        closed.bind(head_tree())
        run_face(closed, make_face({**face_oval(), **eye_points("left", height=0.0), **eye_points("right", height=0.0)}))
        assert closed.blink_all == pytest.approx(1.0)

    def test_blink_untouched_without_eye_width(self, engine, make_face, face_oval):
        run_face(engine, make_face(face_oval()))
        assert (engine.blink_left, engine.blink_right, engine.blink_all) == (1.0, 1.0, 1.0)
        assert engine.mouth_morph == 0.0

    def test_mouth_opening(self, engine, make_face, face_oval):
        mouth = {
            "mouth_left": (0.025, -0.05, 0.0),
            "mouth_right": (-0.025, -0.05, 0.0),
        }
        for i, suffix in enumerate(("first", "second", "third")):
            x = -0.01 + 0.01 * i
            mouth[f"mouth_top_{suffix}"] = (x, -0.04, 0.0)
            mouth[f"mouth_bottom_{suffix}"] = (x, -0.06, 0.0)
        run_face(engine, make_face({**face_oval(), **mouth}))
        expected = (0.02 * 0.095 / 0.05 - 0.001) / (0.06 - 0.001)
        assert engine.mouth_morph == pytest.approx(expected)


class TestIris:
    def test_centered_iris_is_identity(self, engine, make_face, face_oval):
        run_face(engine, make_face({**face_oval(), **eye_points("left"), **eye_points("right")}))
        for q in engine.iris_quaternions:
            np.testing.assert_allclose(euler(q), [0, 0, 0], atol=1e-9)

    def test_linked_iris_yaw(self, engine, make_face, face_oval):
        shift = (0.002, 0.001)
        run_face(engine, make_face({
            **face_oval(),
            **eye_points("left", iris_shift=shift),
            **eye_points("right", iris_shift=shift),
        }))
        expected_yaw = (2 * shift[0] * 0.0546 / 0.03) / 0.027 * 0.28
        left, right, linked = engine.iris_quaternions
        np.testing.assert_allclose(left, linked)
        np.testing.assert_allclose(right, linked)
        # Pitch locked by default
        np.testing.assert_allclose(euler(linked), [0.0, expected_yaw, 0.0], atol=1e-6)

    def test_unlinked_iris_with_pitch(self, config, make_face, face_oval):
        retargeter = PoseRetargeter(config, BoneOptions(iris_link_lr=False, iris_lock_x=False))
        retargeter.bind(head_tree())
        shift = (0.0, 0.001)
        run_face(retargeter, make_face({
            **face_oval(),
            **eye_points("left", iris_shift=shift),
            **eye_points("right"),
        }))
        expected_pitch = (2 * shift[1] * 0.0546 / 0.03) / 0.011 * 0.22
        left, right, _ = retargeter.iris_quaternions
        assert euler(left)[0] == pytest.approx(expected_pitch, abs=1e-6)
        np.testing.assert_allclose(euler(right), [0, 0, 0], atol=1e-9)


class TestBody:
    def pose_results(self, make_pose, points, visible=()):
        pose = make_pose(points, visible)
        return FrameResults.from_dict({"poseLandmarks": pose, "poseWorldLandmarks": pose})

    def test_upright_torso_is_identity(self, engine, make_pose, torso_points):
        engine.process(self.pose_results(make_pose, torso_points()))
        np.testing.assert_allclose(euler(engine.bone_rotations["hips"].rotation), [0, 0, 0], atol=1e-9)
        np.testing.assert_allclose(euler(engine.bone_rotations["spine"].rotation), [0, 0, 0], atol=1e-9)
        np.testing.assert_allclose(engine.workspace.pose_normals[0], [0, 0, -1], atol=1e-12)

    @pytest.mark.parametrize("yaw", [-0.6, 0.25, 1.0])
    def test_hips_follow_torso_yaw(self, engine, make_pose, torso_points, yaw):
        engine.process(self.pose_results(make_pose, torso_points(yaw)))
        np.testing.assert_allclose(euler(engine.bone_rotations["hips"].rotation), [0, -yaw, 0], atol=1e-6)
        # Spine is solved in the hips frame, the whole body turned together
        np.testing.assert_allclose(euler(engine.bone_rotations["spine"].rotation), [0, 0, 0], atol=1e-6)

    def test_mid_hip_offset_drops_depth(self, engine, make_pose, torso_points):
        shifted = {k: (p[0] + 0.2, p[1] + 0.3, p[2] + 0.5) for k, p in torso_points().items()}
        engine.process(self.pose_results(make_pose, shifted))
        np.testing.assert_allclose(engine.workspace.mid_hip_offset, [0.2, 0.3, 0.0], atol=1e-12)

    def test_pose_without_world_landmarks_is_ignored(self, engine, make_pose, torso_points):
        before = engine.bone_rotations.snapshot()
        engine.process(FrameResults.from_dict({"poseLandmarks": make_pose(torso_points(0.5))}))
        np.testing.assert_array_equal(engine.bone_rotations.snapshot(), before)

    def test_invisible_limbs_keep_rotations(self, engine, make_pose, torso_points):
        before = {bone: engine.bone_rotations[bone].rotation.copy() for bone in LIMB_BONES}
        engine.process(self.pose_results(make_pose, torso_points(0.3)))
        for bone, q in before.items():
            np.testing.assert_array_equal(engine.bone_rotations[bone].rotation, q)

    def visible_left_arm(self, torso_points):
        points = torso_points()
        points[PoseLandmark.LEFT_ELBOW] = (0.3, 0.3, 0.0)
        points[PoseLandmark.LEFT_WRIST] = (0.35, 0.1, -0.1)
        return points

    def test_visible_arm_is_solved(self, engine, make_pose, torso_points):
        bind = engine.bone_rotations["leftUpperArm"].rotation.copy()
        engine.process(self.pose_results(make_pose, self.visible_left_arm(torso_points)))
        upper = engine.bone_rotations["leftUpperArm"].rotation
        assert np.all(np.isfinite(upper))
        assert not np.allclose(upper, bind)
        assert np.all(np.isfinite(engine.bone_rotations["leftLowerArm"].rotation))

    @pytest.mark.parametrize("reset_invisible", [False, True])
    def test_arm_after_losing_visibility(self, config, make_pose, torso_points, reset_invisible):
        retargeter = PoseRetargeter(config, BoneOptions(reset_invisible=reset_invisible))
        retargeter.bind(default_humanoid_tree())
        upper = retargeter.bone_rotations["leftUpperArm"]
        bind = upper.rotation.copy()

        retargeter.process(self.pose_results(make_pose, self.visible_left_arm(torso_points)))
        solved = upper.rotation.copy()
        retargeter.process(self.pose_results(make_pose, torso_points()))

        expected = bind if reset_invisible else solved
        np.testing.assert_array_equal(upper.rotation, expected)

    def test_lock_arm(self, config, make_pose, torso_points):
        retargeter = PoseRetargeter(config, BoneOptions(lock_arm=True))
        retargeter.bind(default_humanoid_tree())
        bind = retargeter.bone_rotations["leftUpperArm"].rotation.copy()
        retargeter.process(self.pose_results(make_pose, self.visible_left_arm(torso_points)))
        np.testing.assert_array_equal(retargeter.bone_rotations["leftUpperArm"].rotation, bind)

    def visible_legs(self, torso_points):
        """Both legs with the knees bent towards the camera, feet flat."""
        points = torso_points()
        for x, knee, ankle, heel, toe in (
            (0.1, PoseLandmark.LEFT_KNEE, PoseLandmark.LEFT_ANKLE,
             PoseLandmark.LEFT_HEEL, PoseLandmark.LEFT_FOOT_INDEX),
            (-0.1, PoseLandmark.RIGHT_KNEE, PoseLandmark.RIGHT_ANKLE,
             PoseLandmark.RIGHT_HEEL, PoseLandmark.RIGHT_FOOT_INDEX),
        ):
            points[knee] = (x, -0.45, -0.2)
            points[ankle] = (x, -0.9, 0.0)
            points[heel] = (x, -0.95, 0.05)
            points[toe] = (x, -0.97, -0.15)
        return points

    def leg_rotations(self, retargeter):
        return {bone: retargeter.bone_rotations[bone].rotation.copy() for bone in LEG_BONES}

    def test_visible_legs_are_solved(self, engine, make_pose, torso_points):
        bind = self.leg_rotations(engine)
        engine.process(self.pose_results(make_pose, self.visible_legs(torso_points)))
        solved = self.leg_rotations(engine)

        for bone in LEG_BONES:
            assert np.all(np.isfinite(solved[bone]))
            assert not np.allclose(solved[bone], bind[bone]), bone.name
        # Symmetric legs bend by the same pitch on both sides
        for kind in (BoneKind.UPPER_LEG, BoneKind.LOWER_LEG, BoneKind.FOOT):
            left = euler(solved[BoneId(Side.LEFT, kind)])
            right = euler(solved[BoneId(Side.RIGHT, kind)])
            assert abs(left[0]) > 0.05
            assert left[0] == pytest.approx(right[0], abs=1e-4)
        for side in (Side.LEFT, Side.RIGHT):
            assert np.linalg.norm(engine.workspace.foot_normals[side]) == pytest.approx(1.0)

    @pytest.mark.parametrize("reset_invisible", [False, True])
    def test_legs_after_losing_visibility(self, config, make_pose, torso_points, reset_invisible):
        retargeter = PoseRetargeter(config, BoneOptions(reset_invisible=reset_invisible))
        retargeter.bind(default_humanoid_tree())
        bind = self.leg_rotations(retargeter)

        retargeter.process(self.pose_results(make_pose, self.visible_legs(torso_points)))
        solved = self.leg_rotations(retargeter)
        retargeter.process(self.pose_results(make_pose, torso_points()))

        expected = bind if reset_invisible else solved
        for bone in LEG_BONES:
            np.testing.assert_array_equal(retargeter.bone_rotations[bone].rotation, expected[bone])

    def test_lock_leg(self, config, make_pose, torso_points):
        retargeter = PoseRetargeter(config, BoneOptions(lock_leg=True))
        retargeter.bind(default_humanoid_tree())
        bind = self.leg_rotations(retargeter)
        retargeter.process(self.pose_results(make_pose, self.visible_legs(torso_points)))
        for bone in LEG_BONES:
            np.testing.assert_array_equal(retargeter.bone_rotations[bone].rotation, bind[bone])


def straight_hand():
    points = [(0.0, 0.0, 0.0)]
    for finger, x in enumerate((-0.03, -0.01, 0.0, 0.01, 0.02)):
        base = 0.03 if finger == 0 else 0.08
        for joint in range(4):
            points.append((x, base + 0.025 * joint, 0.01 * joint * joint))
    return points


class TestHands:
    def test_degenerate_hand_without_pose_is_skipped(self, engine, make_hand):
        before = engine.bone_rotations.snapshot()
        hand = make_hand([(0.5, 0.5, 0.0)] * 21)
        engine.process(FrameResults.from_dict({"leftHandLandmarks": hand}))
        np.testing.assert_array_equal(engine.bone_rotations.snapshot(), before)

    def test_fingers_solved_from_hand_only(self, engine, make_hand):
        engine.process(FrameResults.from_dict({"rightHandLandmarks": make_hand(straight_hand())}))
        rotations = engine.bone_rotations
        for kind in (BoneKind.INDEX_PROXIMAL, BoneKind.INDEX_INTERMEDIATE, BoneKind.THUMB_DISTAL):
            assert np.all(np.isfinite(rotations[BoneId(Side.RIGHT, kind)].rotation))
        assert engine.workspace.hands_present[Side.RIGHT]
        assert not engine.workspace.hands_present[Side.LEFT]

    def test_lock_finger(self, config, make_hand):
        retargeter = PoseRetargeter(config, BoneOptions(lock_finger=True))
        retargeter.bind(default_humanoid_tree())
        before = retargeter.bone_rotations.snapshot()
        retargeter.process(FrameResults.from_dict({"leftHandLandmarks": make_hand(straight_hand())}))
        np.testing.assert_array_equal(retargeter.bone_rotations.snapshot(), before)

    def test_hand_anchored_on_pose_wrist(self, engine, make_hand, make_pose, torso_points):
        points = torso_points()
        points[PoseLandmark.LEFT_WRIST] = (0.4, 0.2, 0.0)
        pose = make_pose(points)
        engine.process(FrameResults.from_dict({
            "poseLandmarks": pose,
            "poseWorldLandmarks": pose,
            "leftHandLandmarks": make_hand(straight_hand()),
        }))
        wrist = engine.filtered_landmarks("left_hand")[0]
        assert (wrist.x, wrist.y, wrist.z) == pytest.approx((0.4, 0.2, 0.0))

    def wrist_frame(self, make_pose, make_hand, torso_points, hand_points):
        points = torso_points()
        points[PoseLandmark.LEFT_WRIST] = (0.4, 0.2, 0.0)
        pose = make_pose(points)
        return FrameResults.from_dict({
            "poseLandmarks": pose,
            "poseWorldLandmarks": pose,
            "leftHandLandmarks": make_hand(hand_points),
        })

    def test_first_wrist_pass_only_measures_palm(self, engine, make_pose, make_hand, torso_points):
        engine._preprocess(self.wrist_frame(make_pose, make_hand, torso_points, straight_hand()))
        bind = engine.bone_rotations["leftHand"].rotation.copy()

        engine._calc_wrist_bones(first_pass=True)
        assert np.linalg.norm(engine.workspace.hand_normals[Side.LEFT]) == pytest.approx(1.0)
        np.testing.assert_array_equal(engine.bone_rotations["leftHand"].rotation, bind)

        engine._calc_wrist_bones(first_pass=False)
        assert not np.allclose(engine.bone_rotations["leftHand"].rotation, bind)

    def test_degenerate_palm_fails_only_when_wrist_is_solved(self, engine, make_pose, make_hand, torso_points):
        collapsed = [(0.5, 0.5, 0.0)] * 21
        engine._preprocess(self.wrist_frame(make_pose, make_hand, torso_points, collapsed))
        engine._calc_wrist_bones(first_pass=True)
        with pytest.raises(GeometryError):
            engine._calc_wrist_bones(first_pass=False)
