"""Thread-safe shared camera used as the verification frame source."""

from __future__ import annotations

import atexit
import logging
import threading
import time
from typing import Optional, Tuple

from django.conf import settings

import numpy as np
from imutils.video import VideoStream

from . import monitoring

logger = logging.getLogger(__name__)


class CameraFrameSource:
    """Frame source handed out by :class:`CameraManager`.

    ``read`` returns ``None`` while the camera is still warming up or when no
    new frame arrived within ``timeout``; the orchestrator treats that as
    "camera not ready" and retries.
    """

    def __init__(self, manager: "CameraManager", timeout: float = 0.5) -> None:
        self._manager = manager
        self._timeout = timeout
        self._last_frame_id = -1
        self._active = False

    def __enter__(self) -> "CameraFrameSource":  # pragma: no cover - trivial
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # pragma: no cover - trivial
        self.close()

    def open(self) -> None:
        if not self._active:
            self._manager._register_consumer()
            self._active = True

    def close(self) -> None:
        if self._active:
            self._manager._release_consumer()
            self._active = False

    def read(self) -> Optional[np.ndarray]:
        if not self._active:
            return None

        frame, frame_id = self._manager._wait_for_frame(self._last_frame_id, self._timeout)
        if frame is not None:
            self._last_frame_id = frame_id
        return frame


class CameraManager:
    """Shared camera so each verification does not reinitialise the device."""

    def __init__(self, src: int = 0, warmup_time: float = 2.0) -> None:
        self._src = src
        self._warmup_time = max(0.0, warmup_time)
        self._stream: Optional[VideoStream] = None
        self._thread: Optional[threading.Thread] = None
        self._running = False
        self._ready_at = 0.0
        self._frame_lock = threading.Condition()
        self._latest_frame: Optional[np.ndarray] = None
        self._latest_frame_id = 0
        self._consumer_lock = threading.Lock()
        self._consumer_count = 0

    @property
    def running(self) -> bool:
        return self._running

    @property
    def consumer_count(self) -> int:
        return self._consumer_count

    # -- lifecycle -----------------------------------------------------

    def start(self) -> None:
        if self._running:
            return

        start_time = time.perf_counter()
        try:
            self._stream = VideoStream(src=self._src).start()
            self._ready_at = time.monotonic() + self._warmup_time
            self._running = True
            self._thread = threading.Thread(target=self._capture_loop, daemon=True)
            self._thread.start()
        except Exception as exc:
            self._running = False
            monitoring.record_camera_start(False, time.perf_counter() - start_time, error=str(exc))
            raise
        else:
            monitoring.record_camera_start(True, time.perf_counter() - start_time)

    def shutdown(self) -> None:
        if not self._running:
            return

        self._running = False
        with self._frame_lock:
            self._frame_lock.notify_all()

        if self._thread:
            self._thread.join(timeout=1.0)
            self._thread = None

        try:
            if self._stream:
                self._stream.stop()
        finally:
            self._stream = None
            self._latest_frame = None
            self._latest_frame_id = 0
            monitoring.record_camera_stop()

    # -- consumer helpers ---------------------------------------------

    def frame_source(self, timeout: float = 0.5) -> CameraFrameSource:
        self.start()
        source = CameraFrameSource(self, timeout=timeout)
        source.open()
        return source

    def _register_consumer(self) -> None:
        with self._consumer_lock:
            self._consumer_count += 1

    def _release_consumer(self) -> None:
        with self._consumer_lock:
            self._consumer_count = max(0, self._consumer_count - 1)

    # -- frame handling ------------------------------------------------

    def _capture_loop(self) -> None:
        assert self._stream is not None  # pragma: no cover

        while self._running and self._stream is not None:
            frame = self._stream.read()
            if frame is None:
                monitoring.record_frame_drop()
                time.sleep(0.01)
                continue
            if time.monotonic() < self._ready_at:
                # Discard warm-up frames while exposure settles.
                time.sleep(0.01)
                continue

            monitoring.record_frame(capture_time=time.time())
            with self._frame_lock:
                self._latest_frame = frame.copy()
                self._latest_frame_id += 1
                self._frame_lock.notify_all()

    def _wait_for_frame(
        self, after_frame_id: int, timeout: Optional[float]
    ) -> Tuple[Optional[np.ndarray], int]:
        end_time = None if timeout is None else time.time() + max(timeout, 0.0)

        with self._frame_lock:
            while self._running and self._latest_frame_id <= after_frame_id:
                if end_time is None:
                    self._frame_lock.wait()
                    continue

                remaining = end_time - time.time()
                if remaining <= 0:
                    break
                self._frame_lock.wait(timeout=remaining)

            if self._latest_frame is None or self._latest_frame_id <= after_frame_id:
                return None, after_frame_id

            return self._latest_frame.copy(), self._latest_frame_id


_manager_lock = threading.Lock()
_manager_instance: Optional[CameraManager] = None


def get_camera_manager() -> CameraManager:
    """Return the shared :class:`CameraManager` instance."""

    global _manager_instance
    if _manager_instance is None:
        with _manager_lock:
            if _manager_instance is None:
                _manager_instance = CameraManager(
                    src=int(getattr(settings, "BIOMETRICS_CAMERA_SOURCE", 0)),
                    warmup_time=float(getattr(settings, "BIOMETRICS_CAMERA_WARMUP", 2.0)),
                )
    return _manager_instance


def reset_camera_manager() -> None:
    """Shutdown the shared manager and remove the singleton reference."""

    global _manager_instance
    if _manager_instance is not None:
        _manager_instance.shutdown()
    _manager_instance = None


atexit.register(reset_camera_manager)


__all__ = [
    "CameraFrameSource",
    "CameraManager",
    "get_camera_manager",
    "reset_camera_manager",
]
