"""Lightweight liveness heuristics for the verification pipeline.

The checker is a best-effort screen against photo and screen replays, not an
anti-spoofing guarantee. It combines inter-frame micro-motion in the face
region with single-frame texture cues (moire peaks, specular glare) into a
confidence score. Results are advisory: the orchestrator records them but
never blocks a verification on them.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

import cv2
import numpy as np

from .types import LivenessResult

ArrayLike = np.ndarray

logger = logging.getLogger(__name__)

# Optical-flow magnitude (pixels on the 128px working frame) counted as movement.
MOTION_FLOW_THRESHOLD = 0.05
# Mean absolute intensity change (0-1) expected from a live, breathing subject.
NATURAL_VARIATION_MIN = 0.005
NATURAL_VARIATION_MAX = 0.1
# Per-pair change below which two frames are treated as identical.
STATIC_FRAME_EPSILON = 1e-3
# Ratio of the strongest high-frequency peak to the mean high-frequency energy.
MOIRE_PEAK_RATIO = 40.0
# Fraction of saturated pixels suggesting a flat reflective surface.
GLARE_RATIO_THRESHOLD = 0.08
LIVE_CONFIDENCE_THRESHOLD = 0.6

WORKING_SIZE = 128


@dataclass
class LivenessBuffer:
    """Fixed-size buffer that stores the most recent frames for liveness checks."""

    maxlen: int = 5
    _frames: deque[ArrayLike] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.maxlen = max(2, int(self.maxlen))
        self._frames = deque(maxlen=self.maxlen)

    def append(self, frame: Optional[ArrayLike]) -> None:
        """Append a frame to the buffer, copying it to avoid downstream mutation."""

        if frame is None or not isinstance(frame, np.ndarray) or frame.size == 0:
            return
        self._frames.append(frame.copy())

    def snapshot(self) -> list[ArrayLike]:
        """Return a copy of the current buffer contents."""

        return list(self._frames)

    def __len__(self) -> int:  # pragma: no cover - trivial
        return len(self._frames)


def _crop_to_region(frame: ArrayLike, face_region: Optional[Dict[str, int]]) -> ArrayLike:
    if not isinstance(face_region, dict):
        return frame

    height, width = frame.shape[:2]
    x = max(int(face_region.get("x", 0) or 0), 0)
    y = max(int(face_region.get("y", 0) or 0), 0)
    w = max(int(face_region.get("w", 0) or 0), 0)
    h = max(int(face_region.get("h", 0) or 0), 0)

    if w <= 0 or h <= 0:
        return frame

    x2 = min(x + w, width)
    y2 = min(y + h, height)
    if x >= x2 or y >= y2:
        return frame

    return frame[y:y2, x:x2]


def _prepare_gray_frame(
    frame: Optional[ArrayLike],
    face_region: Optional[Dict[str, int]],
    *,
    target_size: int = WORKING_SIZE,
    blur: bool = True,
) -> Optional[ArrayLike]:
    if frame is None or not isinstance(frame, np.ndarray) or frame.size == 0:
        return None

    working = _crop_to_region(frame, face_region)
    if working.ndim == 3:
        if working.shape[2] == 4:
            working = cv2.cvtColor(working, cv2.COLOR_BGRA2GRAY)
        elif working.shape[2] == 3:
            working = cv2.cvtColor(working, cv2.COLOR_BGR2GRAY)
        else:
            working = working[..., 0]
    elif working.ndim != 2:
        return None

    working = np.ascontiguousarray(working, dtype=np.uint8)
    if target_size > 0:
        working = cv2.resize(working, (target_size, target_size), interpolation=cv2.INTER_AREA)
    if blur:
        working = cv2.GaussianBlur(working, (5, 5), 0)
    return working


def _compute_motion_score(frames: Sequence[ArrayLike]) -> Optional[float]:
    """Median optical-flow magnitude between consecutive frames."""

    magnitudes: list[float] = []
    for prev, curr in zip(frames, frames[1:]):
        try:
            flow = cv2.calcOpticalFlowFarneback(
                prev, curr, None, 0.5, 1, 11, 2, 5, 1.1, 0
            )
            magnitude, _ = cv2.cartToPolar(flow[..., 0], flow[..., 1])
            magnitudes.append(float(np.mean(magnitude)))
        except cv2.error as exc:  # pragma: no cover - fall back to absolute differences
            logger.debug("Optical flow failed, using frame difference: %s", exc)
            diff = np.abs(curr.astype(np.float32) - prev.astype(np.float32))
            magnitudes.append(float(np.mean(diff) / 255.0))

    if not magnitudes:
        return None
    return float(np.median(magnitudes))


def _frame_differences(frames: Sequence[ArrayLike]) -> List[float]:
    """Mean absolute intensity change (0-1) for each consecutive pair."""

    return [
        float(np.mean(np.abs(curr.astype(np.float32) - prev.astype(np.float32))) / 255.0)
        for prev, curr in zip(frames, frames[1:])
    ]


def _moire_peak_ratio(gray: ArrayLike) -> float:
    """Peak-to-mean ratio of high-frequency spectral energy.

    Screens and halftone prints leave sharp periodic peaks in the spectrum
    that live skin does not.
    """

    working = gray.astype(np.float32)
    working -= float(working.mean())
    spectrum = np.abs(np.fft.fftshift(np.fft.fft2(working)))
    rows, cols = spectrum.shape
    yy, xx = np.ogrid[:rows, :cols]
    radius = np.hypot(yy - rows / 2.0, xx - cols / 2.0)
    high = spectrum[radius > min(rows, cols) / 8.0]
    mean_energy = float(np.mean(high)) if high.size else 0.0
    if mean_energy <= 0.0:
        return 0.0
    return float(np.max(high) / mean_energy)


def _glare_ratio(gray: ArrayLike) -> float:
    return float(np.mean(gray >= 250))


def analyse_texture(
    frame: ArrayLike, face_region: Optional[Dict[str, int]] = None
) -> Dict[str, Any]:
    """Return single-frame texture cues for replay screening."""

    gray = _prepare_gray_frame(frame, face_region, blur=False)
    if gray is None:
        return {
            "moire_ratio": 0.0,
            "glare_ratio": 0.0,
            "moire_suspected": False,
            "glare_suspected": False,
            "texture_score": 0.0,
        }

    moire_ratio = _moire_peak_ratio(gray)
    glare_ratio = _glare_ratio(gray)
    moire_suspected = moire_ratio > MOIRE_PEAK_RATIO
    glare_suspected = glare_ratio > GLARE_RATIO_THRESHOLD

    texture_score = 1.0
    if moire_suspected:
        texture_score -= 0.6
    if glare_suspected:
        texture_score -= 0.4
    return {
        "moire_ratio": moire_ratio,
        "glare_ratio": glare_ratio,
        "moire_suspected": moire_suspected,
        "glare_suspected": glare_suspected,
        "texture_score": max(0.0, texture_score),
    }


def check_liveness(
    frames: Union[ArrayLike, Sequence[ArrayLike]],
    *,
    face_region: Optional[Dict[str, int]] = None,
) -> LivenessResult:
    """Estimate whether ``frames`` show a live subject.

    Args:
        frames: A single frame or a short burst of consecutive frames.
        face_region: Optional ``{x, y, w, h}`` box to restrict the analysis.

    Returns:
        :class:`LivenessResult`. Confidence starts at 0.5 and is raised by
        movement, natural variation and clean texture, lowered by static
        replay, moire and glare; ``is_live`` requires confidence above 0.6.
    """

    if isinstance(frames, np.ndarray):
        frames = [frames]

    try:
        return _check_liveness(list(frames), face_region)
    except Exception as exc:
        logger.warning(
            "Liveness check failed: %s",
            exc,
            extra={"event": "liveness_check", "status": "failure"},
        )
        return LivenessResult(is_live=False, confidence=0.0, details={"error": str(exc)})


def _check_liveness(
    frames: List[ArrayLike], face_region: Optional[Dict[str, int]]
) -> LivenessResult:
    usable = [frame for frame in frames if isinstance(frame, np.ndarray) and frame.size > 0]
    if not usable:
        return LivenessResult(is_live=False, confidence=0.0, details={"error": "no_frames"})

    texture = analyse_texture(usable[-1], face_region)
    details: Dict[str, Any] = {
        "moire_ratio": texture["moire_ratio"],
        "glare_ratio": texture["glare_ratio"],
        "movement": False,
        "natural_variation": False,
        "static_replay": False,
    }

    confidence = 0.5
    motion_score: Optional[float] = None

    prepared = [
        gray for gray in (_prepare_gray_frame(frame, face_region) for frame in usable)
        if gray is not None
    ]
    if len(prepared) >= 2:
        motion_score = _compute_motion_score(prepared)
        differences = _frame_differences(prepared)
        mean_difference = float(np.mean(differences))
        details["mean_difference"] = mean_difference

        movement = motion_score is not None and motion_score > MOTION_FLOW_THRESHOLD
        natural = NATURAL_VARIATION_MIN < mean_difference < NATURAL_VARIATION_MAX
        static = all(diff < STATIC_FRAME_EPSILON for diff in differences)
        details.update(
            {"movement": movement, "natural_variation": natural, "static_replay": static}
        )

        if movement:
            confidence += 0.2
        if natural:
            confidence += 0.2
        if static:
            confidence -= 0.3

    if texture["moire_suspected"]:
        confidence -= 0.2
    if texture["glare_suspected"]:
        confidence -= 0.1
    if not texture["moire_suspected"] and not texture["glare_suspected"]:
        confidence += 0.1

    confidence = float(min(1.0, max(0.0, confidence)))
    return LivenessResult(
        is_live=confidence > LIVE_CONFIDENCE_THRESHOLD,
        confidence=confidence,
        motion_score=motion_score,
        texture_score=texture["texture_score"],
        frames_analyzed=len(prepared),
        details=details,
    )


__all__ = [
    "LivenessBuffer",
    "analyse_texture",
    "check_liveness",
]
