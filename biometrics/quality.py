"""Capture quality assessment for face frames.

The assessor scores a single frame along five axes (lighting, sharpness,
pose angle, size/position and landmark completeness) and combines them into
a composite score used to gate the costly embedding step. It is a pure
function of its inputs and never raises: any internal failure produces a
zero-quality result.
"""

from __future__ import annotations

import logging
import math
from typing import Dict, List, Optional, Tuple

import cv2
import numpy as np

from .types import (
    FaceAngle,
    FaceDetection,
    FacePosition,
    FaceSize,
    LightingLevel,
    QualityMetrics,
    SharpnessLevel,
)

logger = logging.getLogger(__name__)


# Lighting bands on mean luminance (0-255). Both ends are penalised.
BRIGHTNESS_POOR_LOW = 40
BRIGHTNESS_POOR_HIGH = 220
BRIGHTNESS_FAIR_LOW = 70
BRIGHTNESS_FAIR_HIGH = 190
BRIGHTNESS_GOOD_LOW = 100
BRIGHTNESS_GOOD_HIGH = 160
# Luminance standard deviation below which a face is considered flat-lit.
CONTRAST_FLAT_THRESHOLD = 12.0

# Laplacian variance bands.
SHARPNESS_FAIR_THRESHOLD = 50.0
SHARPNESS_GOOD_THRESHOLD = 150.0
SHARPNESS_EXCELLENT_THRESHOLD = 400.0
SHARPNESS_NORMALISER = 500.0

# Nose offset from the eye midpoint relative to inter-eye distance.
YAW_FRONT_THRESHOLD = 0.10
YAW_SLIGHT_THRESHOLD = 0.25
# Eye-line tilt in degrees.
ROLL_FRONT_DEGREES = 10.0
ROLL_SLIGHT_DEGREES = 20.0

FACE_SIZE_MIN_RATIO = 0.05
FACE_SIZE_MAX_RATIO = 0.40
CENTER_OFFSET_THRESHOLD = 0.15

WEIGHT_LIGHTING = 0.25
WEIGHT_SHARPNESS = 0.25
WEIGHT_ANGLE = 0.25
WEIGHT_SIZE_POSITION = 0.15
WEIGHT_COMPLETENESS = 0.10

_LEVEL_SCORES = {"poor": 0.2, "fair": 0.5, "good": 0.8, "excellent": 1.0}
_ANGLE_SCORES = {FaceAngle.FRONT: 1.0, FaceAngle.SLIGHT: 0.7, FaceAngle.EXTREME: 0.2}
_LIGHTING_ORDER = [
    LightingLevel.POOR,
    LightingLevel.FAIR,
    LightingLevel.GOOD,
    LightingLevel.EXCELLENT,
]


def _to_grayscale(frame: np.ndarray) -> np.ndarray:
    if frame.ndim == 2:
        return frame
    if frame.ndim == 3 and frame.shape[2] == 4:
        return cv2.cvtColor(frame, cv2.COLOR_BGRA2GRAY)
    if frame.ndim == 3 and frame.shape[2] == 3:
        return cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
    if frame.ndim == 3 and frame.shape[2] == 1:
        return frame[..., 0]
    raise ValueError(f"Unsupported frame shape {frame.shape}")


def _clamp_box(
    box: Tuple[int, int, int, int], width: int, height: int
) -> Optional[Tuple[int, int, int, int]]:
    x, y, w, h = (int(v) for v in box)
    x1, y1 = max(x, 0), max(y, 0)
    x2, y2 = min(x + w, width), min(y + h, height)
    if x1 >= x2 or y1 >= y2:
        return None
    return x1, y1, x2, y2


def _estimated_detection(width: int, height: int) -> FaceDetection:
    """Central half of the frame, used when no detector box is supplied."""

    return FaceDetection(box=(width // 4, height // 4, width // 2, height // 2), score=0.5)


def classify_lighting(brightness: float, contrast: float) -> LightingLevel:
    if brightness < BRIGHTNESS_POOR_LOW or brightness > BRIGHTNESS_POOR_HIGH:
        level = LightingLevel.POOR
    elif brightness < BRIGHTNESS_FAIR_LOW or brightness > BRIGHTNESS_FAIR_HIGH:
        level = LightingLevel.FAIR
    elif brightness < BRIGHTNESS_GOOD_LOW or brightness > BRIGHTNESS_GOOD_HIGH:
        level = LightingLevel.GOOD
    else:
        level = LightingLevel.EXCELLENT

    if contrast < CONTRAST_FLAT_THRESHOLD:
        level = _LIGHTING_ORDER[max(0, _LIGHTING_ORDER.index(level) - 1)]
    return level


def measure_sharpness(gray_region: np.ndarray) -> float:
    """Return the Laplacian variance of a grayscale region."""

    laplacian = cv2.Laplacian(gray_region, cv2.CV_64F)
    return float(laplacian.var())


def classify_sharpness(laplacian_variance: float) -> SharpnessLevel:
    if laplacian_variance >= SHARPNESS_EXCELLENT_THRESHOLD:
        return SharpnessLevel.EXCELLENT
    if laplacian_variance >= SHARPNESS_GOOD_THRESHOLD:
        return SharpnessLevel.GOOD
    if laplacian_variance >= SHARPNESS_FAIR_THRESHOLD:
        return SharpnessLevel.FAIR
    return SharpnessLevel.POOR


def estimate_pose(
    detection: FaceDetection,
) -> Tuple[Optional[FaceAngle], Optional[float], Optional[float]]:
    """Estimate pose from landmark symmetry.

    Returns ``(angle, yaw_offset, roll_degrees)``; all ``None`` when the eye
    landmarks are unavailable. Without a nose landmark the eye midpoint is
    compared against the bounding-box centre instead.
    """

    left_eye = detection.landmarks.get("left_eye")
    right_eye = detection.landmarks.get("right_eye")
    if left_eye is None or right_eye is None:
        return None, None, None

    dx = float(right_eye[0]) - float(left_eye[0])
    dy = float(right_eye[1]) - float(left_eye[1])
    eye_distance = math.hypot(dx, dy)
    if eye_distance <= 0:
        return FaceAngle.EXTREME, None, None

    mid_x = (float(left_eye[0]) + float(right_eye[0])) / 2.0
    nose = detection.landmarks.get("nose")
    if nose is not None:
        reference_x = float(nose[0])
    else:
        reference_x = detection.box[0] + detection.box[2] / 2.0
    yaw_offset = abs(reference_x - mid_x) / eye_distance

    roll = abs(math.degrees(math.atan2(dy, dx)))
    if roll > 90.0:
        roll = 180.0 - roll

    if yaw_offset < YAW_FRONT_THRESHOLD and roll < ROLL_FRONT_DEGREES:
        angle = FaceAngle.FRONT
    elif yaw_offset < YAW_SLIGHT_THRESHOLD and roll < ROLL_SLIGHT_DEGREES:
        angle = FaceAngle.SLIGHT
    else:
        angle = FaceAngle.EXTREME
    return angle, yaw_offset, roll


def _landmarks_inside(detection: FaceDetection, width: int, height: int) -> bool:
    for name in ("left_eye", "right_eye"):
        point = detection.landmarks.get(name)
        if point is None:
            return False
        if not (0 <= point[0] < width and 0 <= point[1] < height):
            return False
    return True


def assess(frame: Optional[np.ndarray], detection: Optional[FaceDetection] = None) -> QualityMetrics:
    """Score the capture quality of ``frame``.

    Args:
        frame: BGR, BGRA or grayscale image as a NumPy array.
        detection: Optional detected face. When omitted the central half of
            the frame is assessed and confidence is halved.

    Returns:
        :class:`QualityMetrics`; a zeroed result when the frame is unusable.
    """

    if frame is None or not isinstance(frame, np.ndarray) or frame.size == 0:
        return QualityMetrics(issues=["Invalid or empty frame"])

    try:
        return _assess(frame, detection)
    except Exception as exc:
        logger.warning(
            "Quality assessment failed: %s",
            exc,
            extra={"event": "quality_assessment", "status": "failure"},
        )
        return QualityMetrics(issues=[f"Quality assessment failed: {exc}"])


def _assess(frame: np.ndarray, detection: Optional[FaceDetection]) -> QualityMetrics:
    height, width = frame.shape[:2]
    estimated = detection is None
    if detection is None:
        detection = _estimated_detection(width, height)

    metrics = QualityMetrics()
    issues: List[str] = []

    gray = _to_grayscale(frame)
    bounds = _clamp_box(detection.box, width, height)
    if bounds is None:
        metrics.issues = ["Face region lies outside the frame"]
        return metrics
    x1, y1, x2, y2 = bounds
    region = np.ascontiguousarray(gray[y1:y2, x1:x2])

    # Lighting
    metrics.brightness = float(np.mean(region))
    metrics.contrast = float(np.std(region))
    metrics.lighting = classify_lighting(metrics.brightness, metrics.contrast)
    if metrics.brightness < BRIGHTNESS_FAIR_LOW:
        issues.append("Face is too dark")
    elif metrics.brightness > BRIGHTNESS_FAIR_HIGH:
        issues.append("Face is overexposed")
    elif metrics.contrast < CONTRAST_FLAT_THRESHOLD:
        issues.append("Lighting is flat")

    # Sharpness
    laplacian_variance = measure_sharpness(region)
    metrics.edge_energy = min(1.0, laplacian_variance / SHARPNESS_NORMALISER)
    metrics.sharpness = classify_sharpness(laplacian_variance)
    if metrics.sharpness is SharpnessLevel.POOR:
        issues.append(f"Image is blurry (sharpness: {laplacian_variance:.1f})")

    # Angle
    angle, yaw_offset, _roll = estimate_pose(detection)
    metrics.yaw_offset = yaw_offset
    if angle is None:
        metrics.angle = FaceAngle.SLIGHT
        issues.append("Pose could not be estimated")
    else:
        metrics.angle = angle
        if angle is FaceAngle.EXTREME:
            issues.append("Face is turned away from the camera")

    # Size and position
    frame_area = float(width * height)
    face_area = float(max(detection.width, 0) * max(detection.height, 0))
    metrics.face_ratio = face_area / frame_area if frame_area else 0.0
    if metrics.face_ratio < FACE_SIZE_MIN_RATIO:
        metrics.size = FaceSize.TOO_SMALL
    elif metrics.face_ratio > FACE_SIZE_MAX_RATIO:
        metrics.size = FaceSize.TOO_LARGE
    else:
        metrics.size = FaceSize.OPTIMAL

    center_x = detection.box[0] + detection.box[2] / 2.0
    center_y = detection.box[1] + detection.box[3] / 2.0
    offset_x = abs(center_x - width / 2.0) / width
    offset_y = abs(center_y - height / 2.0) / height
    metrics.center_offset = math.hypot(offset_x, offset_y)
    metrics.position = (
        FacePosition.CENTERED
        if metrics.center_offset < CENTER_OFFSET_THRESHOLD
        else FacePosition.OFF_CENTER
    )

    # Completeness
    metrics.eyes_visible = _landmarks_inside(detection, width, height)
    x, y, w, h = detection.box
    metrics.face_complete = w > 0 and h > 0 and x >= 0 and y >= 0 and x + w <= width and y + h <= height
    if not metrics.face_complete:
        issues.append("Face is partially outside the frame")

    confidence = float(detection.score)
    if estimated or angle is None:
        confidence *= 0.5
    metrics.confidence = max(0.0, min(1.0, confidence))

    metrics.score = composite_score(metrics)
    metrics.issues = issues
    return metrics


def composite_score(metrics: QualityMetrics) -> float:
    """Weighted combination of the axis verdicts, clamped to ``[0, 1]``.

    Weights: lighting 25%, sharpness 25%, angle 25%, size/position 15%,
    eyes/completeness 10%.
    """

    lighting = _LEVEL_SCORES[metrics.lighting.value]
    sharpness = _LEVEL_SCORES[metrics.sharpness.value]
    angle = _ANGLE_SCORES[metrics.angle]
    size = 1.0 if metrics.size is FaceSize.OPTIMAL else 0.4
    position = 1.0 if metrics.position is FacePosition.CENTERED else 0.5
    completeness = (0.5 if metrics.eyes_visible else 0.0) + (0.5 if metrics.face_complete else 0.0)

    score = (
        WEIGHT_LIGHTING * lighting
        + WEIGHT_SHARPNESS * sharpness
        + WEIGHT_ANGLE * angle
        + WEIGHT_SIZE_POSITION * (size + position) / 2.0
        + WEIGHT_COMPLETENESS * completeness
    )
    return float(min(1.0, max(0.0, score)))


def quality_feedback(metrics: QualityMetrics) -> List[str]:
    """Return actionable capture guidance for the user."""

    feedback: List[str] = []

    if metrics.lighting is LightingLevel.POOR:
        if metrics.brightness > BRIGHTNESS_FAIR_HIGH:
            feedback.append("Reduce lighting - face is overexposed")
        else:
            feedback.append("Improve lighting - face is too dark")
    elif metrics.lighting is LightingLevel.FAIR:
        feedback.append("Better lighting would improve recognition")

    if metrics.angle is FaceAngle.EXTREME:
        feedback.append("Face the camera directly")
    elif metrics.angle is FaceAngle.SLIGHT and metrics.yaw_offset is not None:
        feedback.append("Turn your face more toward the camera")

    if metrics.sharpness is SharpnessLevel.POOR:
        feedback.append("Hold still or improve camera focus")

    if metrics.size is FaceSize.TOO_SMALL:
        feedback.append("Move closer to the camera")
    elif metrics.size is FaceSize.TOO_LARGE:
        feedback.append("Move further from the camera")

    if metrics.position is FacePosition.OFF_CENTER:
        feedback.append("Center your face in the frame")

    if not metrics.eyes_visible:
        feedback.append("Ensure your eyes are clearly visible")

    if metrics.score >= 0.8:
        feedback.append("Excellent face quality")
    elif metrics.score >= 0.6:
        feedback.append("Good face quality")

    return feedback


def summarise(metrics: QualityMetrics) -> Dict[str, object]:
    return {
        "score": round(metrics.score, 4),
        "lighting": metrics.lighting.value,
        "angle": metrics.angle.value,
        "sharpness": metrics.sharpness.value,
        "size": metrics.size.value,
        "position": metrics.position.value,
    }


__all__ = [
    "assess",
    "classify_lighting",
    "classify_sharpness",
    "composite_score",
    "estimate_pose",
    "measure_sharpness",
    "quality_feedback",
    "summarise",
]
