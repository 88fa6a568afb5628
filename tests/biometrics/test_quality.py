"""Tests for capture quality assessment."""

import numpy as np
import pytest

from biometrics.quality import (
    assess,
    classify_lighting,
    classify_sharpness,
    estimate_pose,
    quality_feedback,
    summarise,
)
from biometrics.types import (
    FaceAngle,
    FaceDetection,
    FacePosition,
    FaceSize,
    LightingLevel,
    SharpnessLevel,
)


def _exposed(frame: np.ndarray, low: int, high: int) -> np.ndarray:
    """Rescale a frame's noise into ``[low, high]`` keeping its texture."""
    scaled = low + (frame.astype(np.float32) - 60.0) * (high - low) / 135.0
    return np.clip(scaled, 0, 255).astype(np.uint8)


class TestAssess:
    def test_well_exposed_centred_face_scores_high(self, textured_frame, centred_face) -> None:
        metrics = assess(textured_frame, centred_face)

        assert metrics.lighting is LightingLevel.EXCELLENT
        assert metrics.sharpness is SharpnessLevel.EXCELLENT
        assert metrics.angle is FaceAngle.FRONT
        assert metrics.size is FaceSize.OPTIMAL
        assert metrics.position is FacePosition.CENTERED
        assert metrics.eyes_visible and metrics.face_complete
        assert metrics.score == pytest.approx(1.0)
        assert metrics.confidence == pytest.approx(0.9)

    def test_underexposed_frame_scores_lower(self, textured_frame, centred_face) -> None:
        """Quality falls as exposure moves toward an extreme."""
        normal = assess(textured_frame, centred_face).score
        dim = assess(_exposed(textured_frame, 50, 110), centred_face).score
        dark = assess(_exposed(textured_frame, 0, 20), centred_face).score

        assert normal > dim > dark

    def test_overexposed_frame_scores_lower(self, textured_frame, centred_face) -> None:
        normal = assess(textured_frame, centred_face)
        bright = assess(_exposed(textured_frame, 235, 255), centred_face)

        assert bright.lighting is LightingLevel.POOR
        assert bright.score < normal.score
        assert "Face is overexposed" in bright.issues

    def test_blurred_frame_loses_sharpness(self, centred_face) -> None:
        flat = np.full((240, 320, 3), 128, dtype=np.uint8)
        metrics = assess(flat, centred_face)
        assert metrics.sharpness is SharpnessLevel.POOR
        assert metrics.edge_energy == 0.0

    def test_missing_detection_uses_estimated_region(self, textured_frame) -> None:
        metrics = assess(textured_frame)

        assert metrics.size is FaceSize.OPTIMAL
        assert metrics.position is FacePosition.CENTERED
        assert metrics.angle is FaceAngle.SLIGHT
        assert metrics.eyes_visible is False
        assert metrics.confidence == pytest.approx(0.25)
        assert "Pose could not be estimated" in metrics.issues

    def test_small_off_centre_face_is_flagged(self, textured_frame) -> None:
        corner = FaceDetection(box=(0, 0, 40, 40), score=0.9)
        metrics = assess(textured_frame, corner)
        assert metrics.size is FaceSize.TOO_SMALL
        assert metrics.position is FacePosition.OFF_CENTER

    def test_partially_visible_face_is_incomplete(self, textured_frame) -> None:
        clipped = FaceDetection(
            box=(260, 70, 100, 100),
            landmarks={"left_eye": (280.0, 100.0), "right_eye": (330.0, 100.0)},
        )
        metrics = assess(textured_frame, clipped)
        assert metrics.face_complete is False
        assert metrics.eyes_visible is False

    @pytest.mark.parametrize(
        "frame",
        [None, np.zeros((0, 0, 3), dtype=np.uint8), np.zeros((10, 10, 2), dtype=np.uint8)],
    )
    def test_unusable_frames_score_zero_without_raising(self, frame) -> None:
        metrics = assess(frame)
        assert metrics.score == 0.0
        assert metrics.issues

    def test_grayscale_frames_are_supported(self, textured_frame, centred_face) -> None:
        metrics = assess(textured_frame[..., 0], centred_face)
        assert metrics.score == pytest.approx(1.0)


class TestClassifiers:
    @pytest.mark.parametrize(
        "brightness, expected",
        [
            (20, LightingLevel.POOR),
            (230, LightingLevel.POOR),
            (60, LightingLevel.FAIR),
            (85, LightingLevel.GOOD),
            (130, LightingLevel.EXCELLENT),
        ],
    )
    def test_lighting_bands(self, brightness, expected) -> None:
        assert classify_lighting(brightness, contrast=40.0) is expected

    def test_flat_contrast_downgrades_lighting(self) -> None:
        assert classify_lighting(130, contrast=2.0) is LightingLevel.GOOD
        assert classify_lighting(20, contrast=2.0) is LightingLevel.POOR

    def test_sharpness_bands(self) -> None:
        assert classify_sharpness(10) is SharpnessLevel.POOR
        assert classify_sharpness(60) is SharpnessLevel.FAIR
        assert classify_sharpness(200) is SharpnessLevel.GOOD
        assert classify_sharpness(1000) is SharpnessLevel.EXCELLENT


class TestPose:
    def test_symmetric_landmarks_are_frontal(self, centred_face) -> None:
        angle, yaw, roll = estimate_pose(centred_face)
        assert angle is FaceAngle.FRONT
        assert yaw == pytest.approx(0.0)
        assert roll == pytest.approx(0.0)

    def test_nose_offset_indicates_turned_head(self) -> None:
        detection = FaceDetection(
            box=(0, 0, 100, 100),
            landmarks={"left_eye": (30.0, 40.0), "right_eye": (70.0, 40.0), "nose": (62.0, 60.0)},
        )
        angle, yaw, _ = estimate_pose(detection)
        assert yaw == pytest.approx(0.3)
        assert angle is FaceAngle.EXTREME

    def test_tilted_eyes_indicate_roll(self) -> None:
        detection = FaceDetection(
            box=(0, 0, 100, 100),
            landmarks={"left_eye": (30.0, 40.0), "right_eye": (70.0, 50.0), "nose": (50.0, 60.0)},
        )
        angle, _, roll = estimate_pose(detection)
        assert 10.0 < roll < 20.0
        assert angle is FaceAngle.SLIGHT

    def test_missing_eyes_give_no_estimate(self) -> None:
        assert estimate_pose(FaceDetection(box=(0, 0, 10, 10))) == (None, None, None)


def test_feedback_for_dark_small_face(textured_frame) -> None:
    dark = _exposed(textured_frame, 0, 20)
    metrics = assess(dark, FaceDetection(box=(0, 0, 40, 40)))
    feedback = quality_feedback(metrics)

    assert "Improve lighting - face is too dark" in feedback
    assert "Move closer to the camera" in feedback
    assert "Center your face in the frame" in feedback
    assert "Ensure your eyes are clearly visible" in feedback


def test_feedback_praises_good_capture(textured_frame, centred_face) -> None:
    assert quality_feedback(assess(textured_frame, centred_face)) == ["Excellent face quality"]


def test_summary_reports_verdicts_as_strings(textured_frame, centred_face) -> None:
    summary = summarise(assess(textured_frame, centred_face))

    assert set(summary) == {"score", "lighting", "angle", "sharpness", "size", "position"}
    assert summary["angle"] == FaceAngle.FRONT.value
    assert summary["position"] == FacePosition.CENTERED.value
    assert 0.0 <= summary["score"] <= 1.0
