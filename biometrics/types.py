"""Result records shared by the verification pipeline stages."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class LightingLevel(str, Enum):
    POOR = "poor"
    FAIR = "fair"
    GOOD = "good"
    EXCELLENT = "excellent"


class SharpnessLevel(str, Enum):
    POOR = "poor"
    FAIR = "fair"
    GOOD = "good"
    EXCELLENT = "excellent"


class FaceAngle(str, Enum):
    FRONT = "front"
    SLIGHT = "slight"
    EXTREME = "extreme"


class FaceSize(str, Enum):
    TOO_SMALL = "too-small"
    OPTIMAL = "optimal"
    TOO_LARGE = "too-large"


class FacePosition(str, Enum):
    CENTERED = "centered"
    OFF_CENTER = "off-center"


class FailureReason(str, Enum):
    """Why a verification attempt stopped without verifying the user."""

    NO_FACE = "no-face"
    MULTIPLE_FACES = "multiple-faces"
    LOW_QUALITY = "low-quality"
    EXTRACTOR_ERROR = "extractor-error"
    NO_REFERENCE_DATA = "no-reference-data"
    BELOW_THRESHOLD = "below-threshold"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


class VerificationState(str, Enum):
    READY = "ready"
    DETECTING = "detecting"
    MULTI_FACE_CHECK = "multi_face_check"
    QUALITY_CHECK = "quality_check"
    EXTRACTING = "extracting"
    LIVENESS_CHECK = "liveness_check"
    COMPARING = "comparing"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in {
            VerificationState.SUCCESS,
            VerificationState.FAILED,
            VerificationState.CANCELLED,
        }


Point = Tuple[float, float]


@dataclass(frozen=True)
class FaceDetection:
    """A detected face region with optional landmark points.

    Attributes:
        box: ``(x, y, w, h)`` bounding box in frame pixel coordinates.
        score: Detector confidence in the 0-1 range.
        landmarks: Mapping of landmark names (``left_eye``, ``right_eye``,
            ``nose``, ``mouth_left``, ``mouth_right``) to ``(x, y)`` points.
    """

    box: Tuple[int, int, int, int]
    score: float = 1.0
    landmarks: Dict[str, Point] = field(default_factory=dict)

    @property
    def width(self) -> int:
        return int(self.box[2])

    @property
    def height(self) -> int:
        return int(self.box[3])

    def as_region(self) -> Dict[str, int]:
        x, y, w, h = self.box
        return {"x": int(x), "y": int(y), "w": int(w), "h": int(h)}


@dataclass
class QualityMetrics:
    """Per-frame capture quality assessment.

    Attributes:
        score: Weighted composite quality in the 0-1 range.
        lighting: Lighting verdict from luminance mean and contrast.
        angle: Pose verdict from landmark symmetry.
        sharpness: Edge-energy verdict.
        size: Face-to-frame area verdict.
        position: Whether the face sits near the frame centre.
        eyes_visible: Both eye landmarks were found inside the frame.
        face_complete: The bounding box lies entirely inside the frame.
        confidence: Detector confidence, reduced when landmarks are missing.
        brightness: Mean luminance (0-255) of the face region.
        contrast: Luminance standard deviation of the face region.
        edge_energy: Normalised edge strength (0-1).
        yaw_offset: Nose offset from the eye midpoint over eye distance.
        face_ratio: Face area divided by frame area.
        center_offset: Normalised distance of the face centre from the frame centre.
        issues: Human readable notes about degraded axes.
    """

    score: float = 0.0
    lighting: LightingLevel = LightingLevel.POOR
    angle: FaceAngle = FaceAngle.EXTREME
    sharpness: SharpnessLevel = SharpnessLevel.POOR
    size: FaceSize = FaceSize.TOO_SMALL
    position: FacePosition = FacePosition.OFF_CENTER
    eyes_visible: bool = False
    face_complete: bool = False
    confidence: float = 0.0
    brightness: float = 0.0
    contrast: float = 0.0
    edge_energy: float = 0.0
    yaw_offset: Optional[float] = None
    face_ratio: float = 0.0
    center_offset: float = 0.0
    issues: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        for key in ("lighting", "angle", "sharpness", "size", "position"):
            payload[key] = getattr(self, key).value
        return payload


@dataclass(frozen=True)
class LivenessResult:
    """Best-effort liveness estimate. Advisory only."""

    is_live: bool
    confidence: float
    motion_score: Optional[float] = None
    texture_score: Optional[float] = None
    frames_analyzed: int = 0
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class MultiFaceResult:
    multiple_faces: bool
    count: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class VerificationOutcome:
    """Terminal result of one verification attempt.

    ``similarity`` is populated whenever a comparison was reached, including
    failed matches, so callers can report "matched at 42%, needed 55%".
    """

    verified: bool
    reason: Optional[FailureReason] = None
    similarity: Optional[float] = None
    threshold: Optional[float] = None
    quality: Optional[QualityMetrics] = None
    liveness: Optional[LivenessResult] = None
    faces: Optional[int] = None
    detail: Optional[str] = None
    state_trail: List[VerificationState] = field(default_factory=list)

    @classmethod
    def failure(cls, reason: FailureReason, **kwargs: Any) -> "VerificationOutcome":
        return cls(verified=False, reason=reason, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "verified": self.verified,
            "reason": self.reason.value if self.reason else None,
            "similarity": self.similarity,
            "threshold": self.threshold,
            "quality": self.quality.to_dict() if self.quality else None,
            "liveness": self.liveness.to_dict() if self.liveness else None,
            "faces": self.faces,
            "detail": self.detail,
            "states": [state.value for state in self.state_trail],
        }


__all__ = [
    "FaceAngle",
    "FaceDetection",
    "FacePosition",
    "FaceSize",
    "FailureReason",
    "LightingLevel",
    "LivenessResult",
    "MultiFaceResult",
    "QualityMetrics",
    "SharpnessLevel",
    "VerificationOutcome",
    "VerificationState",
]
