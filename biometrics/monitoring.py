"""Prometheus instrumentation for verification attempts and camera health."""

from __future__ import annotations

import datetime as _dt
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from django.conf import settings

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)


@dataclass
class _HealthState:
    """Mutable snapshot of the latest monitoring information."""

    camera_running: bool = False
    last_camera_error: Optional[str] = None
    last_frame_timestamp: Optional[float] = None
    last_outcome: Optional[Dict[str, Any]] = None
    stage_durations: Dict[str, float] = field(default_factory=dict)


_STATE = _HealthState()
_STATE_LOCK = threading.Lock()
_ALERTS: deque[Dict[str, Any]] = deque()

_THRESHOLD_SETTING_NAMES: Dict[str, str] = {
    "camera_start": "BIOMETRICS_CAMERA_START_ALERT_SECONDS",
    "extraction": "BIOMETRICS_EXTRACTION_ALERT_SECONDS",
    "verification": "BIOMETRICS_VERIFICATION_ALERT_SECONDS",
}

_DEFAULT_THRESHOLDS: Dict[str, float] = {
    "camera_start": 3.0,
    "extraction": 1.5,
    "verification": 5.0,
}


def _max_alert_history() -> int:
    value = getattr(settings, "BIOMETRICS_HEALTH_ALERT_HISTORY", 50)
    try:
        numeric = int(value)
    except (TypeError, ValueError):  # pragma: no cover
        numeric = 50
    return max(1, numeric)


def _format_timestamp(ts: Optional[float]) -> Optional[str]:
    if ts is None:
        return None
    return _dt.datetime.fromtimestamp(ts, tz=_dt.timezone.utc).isoformat()


def _append_alert(
    event_type: str, severity: str, message: str, data: Optional[Dict[str, Any]] = None
) -> None:
    payload = {
        "timestamp": _format_timestamp(time.time()),
        "type": event_type,
        "severity": severity,
        "message": message,
        "data": data or {},
    }
    with _STATE_LOCK:
        _ALERTS.append(payload)
        max_alerts = _max_alert_history()
        while len(_ALERTS) > max_alerts:
            _ALERTS.popleft()


def _build_metrics() -> None:
    global REGISTRY
    global VERIFICATION_COUNTER
    global SIMILARITY_HISTOGRAM
    global QUALITY_HISTOGRAM
    global LIVENESS_COUNTER
    global STAGE_DURATION_HISTOGRAM
    global CAMERA_START_COUNTER
    global CAMERA_RUNNING_GAUGE
    global FRAME_DROP_COUNTER

    REGISTRY = CollectorRegistry(auto_describe=True)

    VERIFICATION_COUNTER = Counter(
        "biometrics_verification",
        "Completed verification attempts by outcome",
        labelnames=("result", "reason"),
        registry=REGISTRY,
    )
    SIMILARITY_HISTOGRAM = Histogram(
        "biometrics_similarity_score",
        "Similarity scores computed against reference descriptors",
        buckets=(0.1, 0.2, 0.3, 0.4, 0.5, 0.55, 0.6, 0.7, 0.8, 0.9, 1.0),
        registry=REGISTRY,
    )
    QUALITY_HISTOGRAM = Histogram(
        "biometrics_capture_quality",
        "Composite capture quality of assessed frames",
        buckets=(0.2, 0.4, 0.55, 0.6, 0.7, 0.8, 0.9, 1.0),
        registry=REGISTRY,
    )
    LIVENESS_COUNTER = Counter(
        "biometrics_liveness_advisory",
        "Advisory liveness results recorded during verification",
        labelnames=("live",),
        registry=REGISTRY,
    )
    STAGE_DURATION_HISTOGRAM = Histogram(
        "biometrics_stage_duration_seconds",
        "Duration of verification stages",
        labelnames=("stage",),
        buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        registry=REGISTRY,
    )
    CAMERA_START_COUNTER = Counter(
        "biometrics_camera_start",
        "Total camera start attempts",
        labelnames=("status",),
        registry=REGISTRY,
    )
    CAMERA_RUNNING_GAUGE = Gauge(
        "biometrics_camera_running",
        "1 when the shared camera is capturing",
        registry=REGISTRY,
    )
    FRAME_DROP_COUNTER = Counter(
        "biometrics_frame_drop",
        "Count of camera reads that returned no frame",
        registry=REGISTRY,
    )


_build_metrics()


def reset_for_tests() -> None:
    """Reset in-memory state and metrics (intended for test suites)."""

    global _STATE
    with _STATE_LOCK:
        _STATE = _HealthState()
        _ALERTS.clear()
    _build_metrics()


def get_threshold(key: str) -> float:
    """Fetch the configured alert threshold for the supplied key."""

    if key not in _THRESHOLD_SETTING_NAMES:
        raise KeyError(f"Unknown threshold key: {key}")
    value = getattr(settings, _THRESHOLD_SETTING_NAMES[key], _DEFAULT_THRESHOLDS[key])
    try:
        return float(value)
    except (TypeError, ValueError):  # pragma: no cover
        return _DEFAULT_THRESHOLDS[key]


def _metric_value(name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
    return REGISTRY.get_sample_value(name, labels or {})


def observe_stage_duration(
    stage: str, duration: float, *, threshold_key: Optional[str] = None
) -> None:
    """Record stage durations and emit alerts for slow executions."""

    STAGE_DURATION_HISTOGRAM.labels(stage=stage).observe(max(0.0, duration))
    with _STATE_LOCK:
        _STATE.stage_durations[stage] = duration
    if threshold_key:
        threshold = get_threshold(threshold_key)
        if duration > threshold:
            logger.warning(
                "Verification stage '%s' exceeded threshold",
                stage,
                extra={
                    "event": "stage_duration",
                    "stage": stage,
                    "duration_seconds": duration,
                    "threshold": threshold,
                },
            )
            _append_alert(
                "stage_duration",
                "warning",
                f"Stage '{stage}' duration {duration:.3f}s exceeded {threshold:.3f}s",
                {"stage": stage, "duration": duration, "threshold": threshold},
            )


def record_quality(score: float) -> None:
    QUALITY_HISTOGRAM.observe(max(0.0, min(1.0, score)))


def record_liveness(is_live: bool) -> None:
    LIVENESS_COUNTER.labels(live="true" if is_live else "false").inc()


def record_outcome(verified: bool, reason: Optional[str], similarity: Optional[float]) -> None:
    """Count a finished verification attempt."""

    result = "verified" if verified else "rejected"
    VERIFICATION_COUNTER.labels(result=result, reason=reason or "none").inc()
    if similarity is not None:
        SIMILARITY_HISTOGRAM.observe(similarity)
    with _STATE_LOCK:
        _STATE.last_outcome = {
            "timestamp": _format_timestamp(time.time()),
            "result": result,
            "reason": reason,
            "similarity": similarity,
        }


def record_camera_start(success: bool, latency: Optional[float], error: Optional[str] = None) -> None:
    status = "success" if success else "failure"
    CAMERA_START_COUNTER.labels(status=status).inc()
    CAMERA_RUNNING_GAUGE.set(1 if success else 0)
    with _STATE_LOCK:
        _STATE.camera_running = success
        _STATE.last_camera_error = None if success else error
    log_extra = {"event": "camera_start", "status": status, "latency_seconds": latency}
    if not success:
        logger.error("Failed to start camera", extra={**log_extra, "error": error})
        _append_alert("camera_start_failure", "error", "Failed to start camera", {"error": error})
        return

    logger.info("Camera started", extra=log_extra)
    threshold = get_threshold("camera_start")
    if latency is not None and latency > threshold:
        message = f"Camera start latency {latency:.3f}s exceeded threshold {threshold:.3f}s"
        logger.warning(message, extra={**log_extra, "threshold": threshold})
        _append_alert("camera_start_latency", "warning", message, {"latency": latency})


def record_camera_stop() -> None:
    CAMERA_RUNNING_GAUGE.set(0)
    with _STATE_LOCK:
        _STATE.camera_running = False
    logger.info("Camera stopped", extra={"event": "camera_stop"})


def record_frame_drop() -> None:
    FRAME_DROP_COUNTER.inc()
    logger.debug("Camera returned no frame", extra={"event": "frame_drop"})


def record_frame(capture_time: Optional[float] = None) -> None:
    with _STATE_LOCK:
        _STATE.last_frame_timestamp = capture_time or time.time()


def get_health_snapshot() -> Dict[str, Any]:
    """Return a serialisable snapshot of verification health and alerts."""

    with _STATE_LOCK:
        camera = {
            "running": _STATE.camera_running,
            "last_error": _STATE.last_camera_error,
            "last_frame_timestamp": _format_timestamp(_STATE.last_frame_timestamp),
        }
        stages = {
            stage: {"last_duration": duration} for stage, duration in _STATE.stage_durations.items()
        }
        last_outcome = dict(_STATE.last_outcome) if _STATE.last_outcome else None
        alerts = list(_ALERTS)

    metrics = {
        "verified": _metric_value(
            "biometrics_verification_total", {"result": "verified", "reason": "none"}
        )
        or 0,
        "camera_start_failure": _metric_value(
            "biometrics_camera_start_total", {"status": "failure"}
        )
        or 0,
        "frame_drop_total": _metric_value("biometrics_frame_drop_total") or 0,
    }
    return {
        "camera": camera,
        "stages": stages,
        "last_outcome": last_outcome,
        "alerts": alerts,
        "metrics": metrics,
        "thresholds": {key: get_threshold(key) for key in _THRESHOLD_SETTING_NAMES},
    }


def export_metrics() -> bytes:
    """Serialise the Prometheus metrics registry."""

    return generate_latest(REGISTRY)


def prometheus_content_type() -> str:
    return CONTENT_TYPE_LATEST


__all__ = [
    "export_metrics",
    "get_health_snapshot",
    "get_threshold",
    "observe_stage_duration",
    "prometheus_content_type",
    "record_camera_start",
    "record_camera_stop",
    "record_frame",
    "record_frame_drop",
    "record_liveness",
    "record_outcome",
    "record_quality",
    "reset_for_tests",
]
