"""Multiple-face guard for single-person verification.

Verification is only meaningful when exactly one person is in front of the
camera. This guard counts faces in a frame and reports when more than one is
present so the orchestrator can stop before extraction.

Failure policy: when the detector itself fails the guard *fails open* and
reports ``multiple_faces=False``. It is a secondary layer behind the identity
match, so a detector fault must not lock users out. The error is logged and
carried on the result.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from django.conf import settings

import numpy as np

from .interfaces import FaceDetector
from .types import FaceDetection, MultiFaceResult

logger = logging.getLogger(__name__)


def get_min_face_size() -> int:
    """Minimum face width/height in pixels counted by the guard."""

    return int(getattr(settings, "BIOMETRICS_MULTI_FACE_MIN_SIZE", 40))


def filter_faces_by_size(
    detections: Sequence[FaceDetection], min_size: Optional[int] = None
) -> List[FaceDetection]:
    """Drop detections smaller than ``min_size`` pixels on either side."""

    if min_size is None:
        min_size = get_min_face_size()

    filtered = []
    for detection in detections:
        if detection.width >= min_size and detection.height >= min_size:
            filtered.append(detection)
        else:
            logger.debug(
                "Ignored small face: %sx%spx (min: %spx)",
                detection.width,
                detection.height,
                min_size,
            )
    return filtered


def evaluate_detections(
    detections: Sequence[FaceDetection], min_size: Optional[int] = None
) -> MultiFaceResult:
    """Build a :class:`MultiFaceResult` from detections already computed."""

    counted = filter_faces_by_size(detections, min_size)
    return MultiFaceResult(multiple_faces=len(counted) > 1, count=len(counted))


def check_multiple_faces(
    frame: np.ndarray, detector: FaceDetector, min_size: Optional[int] = None
) -> MultiFaceResult:
    """Return whether ``frame`` contains more than one face."""

    try:
        detections = list(detector.detect(frame) or [])
    except Exception as exc:
        logger.warning(
            "Face detector failed during multi-face check; failing open",
            extra={"event": "multi_face_check", "status": "detector_error", "error": str(exc)},
        )
        return MultiFaceResult(multiple_faces=False, count=0, error=str(exc))

    result = evaluate_detections(detections, min_size)
    if result.multiple_faces:
        logger.info(
            "Multiple faces detected",
            extra={"event": "multi_face_check", "count": result.count},
        )
    return result


__all__ = [
    "check_multiple_faces",
    "evaluate_detections",
    "filter_faces_by_size",
    "get_min_face_size",
]
