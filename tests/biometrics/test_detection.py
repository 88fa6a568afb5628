import numpy as np

from biometrics.detection import HaarFaceDetector


def test_blank_frame_has_no_faces() -> None:
    frame = np.zeros((240, 320, 3), dtype=np.uint8)
    assert HaarFaceDetector().detect(frame) == []


def test_missing_frame_has_no_faces() -> None:
    detector = HaarFaceDetector()
    assert detector.detect(None) == []
    assert detector.detect(np.zeros((0,), dtype=np.uint8)) == []


def test_grayscale_frames_are_accepted(textured_frame) -> None:
    gray = textured_frame[:, :, 0]
    detections = HaarFaceDetector(detect_eyes=False).detect(gray)
    assert all(detection.landmarks == {} for detection in detections)
