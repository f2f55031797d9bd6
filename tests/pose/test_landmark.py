"""Tests for landmark parsing and filtered landmarks."""

import numpy as np
import pytest

from retarget.core import ConfigurationError
from retarget.pose.filters import KalmanParams
from retarget.pose.landmark import (
    FilteredLandmark,
    FrameResults,
    Landmark,
    landmarks_to_vectors,
)


class TestLandmark:
    def test_from_dict_and_sequence(self):
        assert Landmark.from_dict({"x": 1, "y": 2, "z": 3, "visibility": 0.5}) == Landmark(1.0, 2.0, 3.0, 0.5)
        assert Landmark.from_dict([1, 2, 3]) == Landmark(1.0, 2.0, 3.0)

    def test_missing_z_defaults_to_zero(self):
        assert Landmark.from_dict({"x": 1, "y": 2}).z == 0.0

    def test_malformed(self):
        with pytest.raises(ConfigurationError):
            Landmark.from_dict({"x": 1})
        with pytest.raises(ConfigurationError):
            Landmark.from_dict("abc")

    def test_as_vector_mirrors_y(self):
        lm = Landmark(1.0, 2.0, 3.0)
        np.testing.assert_array_equal(lm.as_vector(2.0, reverse_y=True), [2.0, -4.0, 6.0])

    def test_vectors_stack(self):
        out = landmarks_to_vectors([Landmark(1, 2, 3), Landmark(4, 5, 6)], reverse_y=True)
        assert out.shape == (2, 3)
        assert out[1, 1] == -5.0


class TestFrameResults:
    def test_camel_case_keys(self, make_hand):
        hand = make_hand([(float(i), 0.0, 0.0) for i in range(21)])
        results = FrameResults.from_dict({"leftHandLandmarks": hand})
        assert results.left_hand_landmarks is not None
        assert results.right_hand_landmarks is None
        assert results.pose_landmarks is None
        assert results.left_hand_landmarks[3].x == 3.0

    def test_snake_case_and_world_alias(self, make_pose):
        pose = make_pose({})
        results = FrameResults.from_dict({"pose_landmarks": pose, "za": pose})
        assert results.pose_world_landmarks is not None

    def test_empty_list_is_missing(self):
        assert FrameResults.from_dict({"faceLandmarks": []}).face_landmarks is None

    def test_wrong_count_rejected(self):
        with pytest.raises(ConfigurationError):
            FrameResults.from_dict({"rightHandLandmarks": [{"x": 0, "y": 0, "z": 0}] * 20})

    def test_not_a_mapping(self):
        with pytest.raises(ConfigurationError):
            FrameResults.from_dict([])

    def test_dict_round_trip(self, make_pose):
        results = FrameResults.from_dict({"poseLandmarks": make_pose({0: (0.1, 0.2, 0.3)})})
        again = FrameResults.from_dict(results.to_dict())
        assert again == results


class TestFilteredLandmark:
    def test_low_visibility_sample_dropped(self):
        lm = FilteredLandmark(KalmanParams(r=1.0, q=1.0))
        lm.update_position(np.array([1.0, 1.0, 1.0]), visibility=0.9)
        lm.update_position(np.array([5.0, 5.0, 5.0]), visibility=0.2)
        np.testing.assert_array_equal(lm.pos, [1.0, 1.0, 1.0])
        assert lm.visibility == 0.9
        assert lm.t == 2

    def test_unknown_visibility_accepted(self):
        lm = FilteredLandmark(KalmanParams(r=1.0, q=1.0))
        lm.update_position(np.array([1.0, 2.0, 3.0]))
        np.testing.assert_array_equal(lm.pos, [1.0, 2.0, 3.0])

    def test_gaussian_stage_waits_for_full_window(self):
        lm = FilteredLandmark(KalmanParams(r=1.0, q=10.0, gaussian_sigma=2.0))
        for _ in range(4):
            lm.update_position(np.array([1.0, 0.0, 0.0]))
        np.testing.assert_array_equal(lm.pos, np.zeros(3))
        lm.update_position(np.array([1.0, 0.0, 0.0]))
        np.testing.assert_allclose(lm.pos, [1.0, 0.0, 0.0])

    def test_reset(self):
        lm = FilteredLandmark(KalmanParams(r=1.0, q=1.0))
        lm.update_position(np.array([1.0, 2.0, 3.0]), visibility=0.9)
        lm.reset()
        assert lm.t == 0
        np.testing.assert_array_equal(lm.pos, np.zeros(3))
        assert lm.to_landmark() == Landmark(0.0, 0.0, 0.0, 0.0)
