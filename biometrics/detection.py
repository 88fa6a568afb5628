"""OpenCV Haar-cascade face detector.

Provides bounding boxes and eye landmarks for the quality assessor and the
multi-face guard. Identity embeddings still come from the external extractor;
this detector only locates faces.
"""

from __future__ import annotations

import logging
from typing import List, Optional

import cv2
import numpy as np

from .types import FaceDetection

logger = logging.getLogger(__name__)

FACE_CASCADE = "haarcascade_frontalface_default.xml"
EYE_CASCADE = "haarcascade_eye.xml"


def _load_cascade(name: str) -> cv2.CascadeClassifier:
    cascade = cv2.CascadeClassifier(cv2.data.haarcascades + name)
    if cascade.empty():
        raise RuntimeError(f"Failed to load Haar cascade {name}")
    return cascade


class HaarFaceDetector:
    """Detect faces and eye landmarks with the bundled OpenCV cascades."""

    def __init__(
        self,
        *,
        scale_factor: float = 1.1,
        min_neighbors: int = 5,
        min_size: int = 60,
        detect_eyes: bool = True,
    ) -> None:
        self.scale_factor = scale_factor
        self.min_neighbors = min_neighbors
        self.min_size = min_size
        self.detect_eyes = detect_eyes
        self._face_cascade: Optional[cv2.CascadeClassifier] = None
        self._eye_cascade: Optional[cv2.CascadeClassifier] = None

    def _faces(self) -> cv2.CascadeClassifier:
        if self._face_cascade is None:
            self._face_cascade = _load_cascade(FACE_CASCADE)
        return self._face_cascade

    def _eyes(self) -> cv2.CascadeClassifier:
        if self._eye_cascade is None:
            self._eye_cascade = _load_cascade(EYE_CASCADE)
        return self._eye_cascade

    def detect(self, frame: np.ndarray) -> List[FaceDetection]:
        if frame is None or frame.size == 0:
            return []

        gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY) if frame.ndim == 3 else frame
        rects = self._faces().detectMultiScale(
            gray,
            scaleFactor=self.scale_factor,
            minNeighbors=self.min_neighbors,
            minSize=(self.min_size, self.min_size),
        )

        detections = []
        for (x, y, w, h) in rects:
            landmarks = self._eye_landmarks(gray, int(x), int(y), int(w), int(h))
            # Cascades give no calibrated score; finding both eyes raises it.
            score = 0.9 if len(landmarks) == 2 else 0.6
            detections.append(
                FaceDetection(box=(int(x), int(y), int(w), int(h)), score=score, landmarks=landmarks)
            )
        logger.debug("Haar detector found %d face(s)", len(detections))
        return detections

    def _eye_landmarks(self, gray: np.ndarray, x: int, y: int, w: int, h: int) -> dict:
        if not self.detect_eyes:
            return {}

        upper_face = gray[y : y + h // 2, x : x + w]
        eyes = self._eyes().detectMultiScale(upper_face, scaleFactor=1.1, minNeighbors=5)
        if len(eyes) < 2:
            return {}

        # Keep the two largest candidates, ordered left to right in the image.
        largest = sorted(eyes, key=lambda rect: rect[2] * rect[3], reverse=True)[:2]
        centres = sorted(
            (x + ex + ew / 2.0, y + ey + eh / 2.0) for (ex, ey, ew, eh) in largest
        )
        return {"left_eye": centres[0], "right_eye": centres[1]}


__all__ = ["HaarFaceDetector"]
