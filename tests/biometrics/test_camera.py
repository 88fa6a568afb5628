"""Tests for the shared camera manager lifecycle."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

from django.test import SimpleTestCase, override_settings

import numpy as np

from biometrics import monitoring
from biometrics.camera import CameraManager, get_camera_manager, reset_camera_manager


def _stream(frame):
    stream = MagicMock()
    stream.start.return_value = stream
    stream.read.side_effect = lambda: frame
    return stream


@override_settings(BIOMETRICS_CAMERA_WARMUP=0.0)
class CameraManagerLifecycleTests(SimpleTestCase):
    """Ensure the shared camera releases resources cleanly."""

    def setUp(self) -> None:
        monitoring.reset_for_tests()
        return super().setUp()

    def tearDown(self) -> None:
        reset_camera_manager()
        return super().tearDown()

    @patch("biometrics.camera.VideoStream")
    def test_shutdown_stops_underlying_stream(self, mock_videostream):
        stream = _stream(np.zeros((2, 2, 3), dtype=np.uint8))
        mock_videostream.return_value = stream

        manager = get_camera_manager()
        source = manager.frame_source(timeout=0.5)
        self.assertIsNotNone(source.read())
        self.assertEqual(manager.consumer_count, 1)

        source.close()
        self.assertIsNone(source.read())

        manager.shutdown()
        stream.stop.assert_called_once()
        self.assertFalse(monitoring.get_health_snapshot()["camera"]["running"])

    @patch("biometrics.camera.VideoStream")
    def test_reset_disposes_existing_instance(self, mock_videostream):
        frame = np.zeros((2, 2, 3), dtype=np.uint8)
        stream_one = _stream(frame)
        stream_two = _stream(frame)
        mock_videostream.side_effect = [stream_one, stream_two]

        manager_first = get_camera_manager()
        self.assertIsNotNone(manager_first.frame_source(timeout=0.5).read())

        reset_camera_manager()
        stream_one.stop.assert_called_once()

        manager_second = get_camera_manager()
        self.assertIsNot(manager_first, manager_second)
        self.assertIsNotNone(manager_second.frame_source(timeout=0.5).read())

    @patch("biometrics.camera.VideoStream")
    def test_warmup_frames_are_not_served(self, mock_videostream):
        mock_videostream.return_value = _stream(np.zeros((2, 2, 3), dtype=np.uint8))

        manager = CameraManager(warmup_time=30.0)
        try:
            self.assertIsNone(manager.frame_source(timeout=0.05).read())
        finally:
            manager.shutdown()

    @patch("biometrics.camera.VideoStream")
    def test_start_failure_is_recorded(self, mock_videostream):
        mock_videostream.side_effect = RuntimeError("no device")

        manager = CameraManager(warmup_time=0.0)
        with self.assertRaises(RuntimeError):
            manager.start()

        self.assertFalse(manager.running)
        snapshot = monitoring.get_health_snapshot()
        self.assertEqual(snapshot["camera"]["last_error"], "no device")
