"""Tests for the monitoring instrumentation utilities."""

from __future__ import annotations

from django.test import SimpleTestCase, override_settings

from biometrics import monitoring


class MonitoringInstrumentationTests(SimpleTestCase):
    """Ensure monitoring helpers capture health signals as expected."""

    def setUp(self) -> None:
        monitoring.reset_for_tests()
        return super().setUp()

    def test_camera_start_and_stop_state(self) -> None:
        monitoring.record_camera_start(success=True, latency=0.25)
        snapshot = monitoring.get_health_snapshot()
        self.assertTrue(snapshot["camera"]["running"])
        self.assertIsNone(snapshot["camera"]["last_error"])

        monitoring.record_camera_stop()
        snapshot = monitoring.get_health_snapshot()
        self.assertFalse(snapshot["camera"]["running"])

    def test_camera_start_failure_raises_alert(self) -> None:
        monitoring.record_camera_start(success=False, latency=0.1, error="device busy")
        snapshot = monitoring.get_health_snapshot()

        self.assertEqual(snapshot["camera"]["last_error"], "device busy")
        self.assertEqual(snapshot["metrics"]["camera_start_failure"], 1.0)
        self.assertEqual(snapshot["alerts"][-1]["type"], "camera_start_failure")

    @override_settings(BIOMETRICS_CAMERA_START_ALERT_SECONDS=0.01)
    def test_slow_camera_start_raises_alert(self) -> None:
        monitoring.record_camera_start(success=True, latency=0.5)
        alert_types = {alert["type"] for alert in monitoring.get_health_snapshot()["alerts"]}
        self.assertIn("camera_start_latency", alert_types)

    @override_settings(BIOMETRICS_EXTRACTION_ALERT_SECONDS=0.01)
    def test_stage_duration_alert_when_extraction_slow(self) -> None:
        monitoring.observe_stage_duration("extraction", 0.05, threshold_key="extraction")
        snapshot = monitoring.get_health_snapshot()

        stages = [alert["data"].get("stage") for alert in snapshot["alerts"]]
        self.assertIn("extraction", stages)
        self.assertEqual(snapshot["stages"]["extraction"]["last_duration"], 0.05)

    def test_fast_stage_does_not_alert(self) -> None:
        monitoring.observe_stage_duration("verification", 0.01, threshold_key="verification")
        self.assertEqual(monitoring.get_health_snapshot()["alerts"], [])

    @override_settings(BIOMETRICS_HEALTH_ALERT_HISTORY=2)
    def test_alert_history_is_bounded(self) -> None:
        for _ in range(5):
            monitoring.record_camera_start(success=False, latency=None, error="boom")
        self.assertEqual(len(monitoring.get_health_snapshot()["alerts"]), 2)

    def test_outcomes_are_counted(self) -> None:
        monitoring.record_outcome(True, None, 0.91)
        monitoring.record_outcome(False, "below-threshold", 0.2)

        snapshot = monitoring.get_health_snapshot()
        self.assertEqual(snapshot["metrics"]["verified"], 1.0)
        self.assertEqual(snapshot["last_outcome"]["reason"], "below-threshold")

        exported = monitoring.export_metrics().decode()
        self.assertIn('biometrics_verification_total{result="rejected",reason="below-threshold"} 1.0', exported)

    def test_frame_drops_and_timestamps(self) -> None:
        monitoring.record_frame_drop()
        monitoring.record_frame(capture_time=0.0)

        snapshot = monitoring.get_health_snapshot()
        self.assertEqual(snapshot["metrics"]["frame_drop_total"], 1.0)
        self.assertIsNotNone(snapshot["camera"]["last_frame_timestamp"])

    def test_unknown_threshold_key(self) -> None:
        with self.assertRaises(KeyError):
            monitoring.get_threshold("warmup")
