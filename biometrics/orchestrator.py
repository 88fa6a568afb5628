"""Verification orchestrator shared by login and clock-in/out.

A :class:`VerificationSession` owns exactly one verification attempt and
walks it through a fixed sequence of states::

    READY -> DETECTING -> MULTI_FACE_CHECK -> QUALITY_CHECK -> EXTRACTING
          -> LIVENESS_CHECK -> COMPARING -> SUCCESS | FAILED

(``CANCELLED`` is reachable from any non-terminal state.) Every failure is
converted into a :class:`~biometrics.types.FailureReason` on the returned
:class:`~biometrics.types.VerificationOutcome`; no exception escapes
:meth:`VerificationSession.run`. The session never writes anything: recording
attendance or completing a login is the caller's decision.

Collaborators may be synchronous or asynchronous. Plain callables are run in
a worker thread so camera reads, detection, extraction and reference lookups
are all bounded by ``asyncio.wait_for``.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, List, Optional, Sequence, Tuple

from django.conf import settings

import numpy as np

from . import monitoring
from .descriptors import coerce_descriptor
from .exceptions import SessionStateError
from .interfaces import DescriptorExtractor, FaceDetector, FrameSource, ReferenceStore
from .liveness import LivenessBuffer, check_liveness
from .multi_face import evaluate_detections, filter_faces_by_size
from .quality import assess
from .similarity import get_match_threshold, is_match, similarity
from .types import (
    FaceDetection,
    FailureReason,
    LivenessResult,
    MultiFaceResult,
    QualityMetrics,
    VerificationOutcome,
    VerificationState,
)

logger = logging.getLogger(__name__)

DEFAULT_MIN_CAPTURE_QUALITY = 0.55

# Reason reported when an unexpected error escapes the step running in a state.
_REASON_BY_STATE = {
    VerificationState.DETECTING: FailureReason.NO_FACE,
    VerificationState.MULTI_FACE_CHECK: FailureReason.NO_FACE,
    VerificationState.QUALITY_CHECK: FailureReason.LOW_QUALITY,
    VerificationState.EXTRACTING: FailureReason.EXTRACTOR_ERROR,
    VerificationState.COMPARING: FailureReason.NO_REFERENCE_DATA,
}


@dataclass(frozen=True)
class VerificationConfig:
    """Tunable limits for one verification attempt.

    ``match_threshold`` trades security for usability; 0.55 is intentionally
    permissive. ``min_capture_quality`` gates frames before extraction and is
    independent of the match threshold.
    """

    match_threshold: float = 0.55
    min_capture_quality: float = DEFAULT_MIN_CAPTURE_QUALITY
    max_frame_attempts: int = 10
    frame_retry_interval: float = 0.2
    frame_timeout: float = 2.0
    detect_timeout: float = 2.0
    extract_timeout: float = 5.0
    reference_timeout: float = 2.0
    liveness_window: int = 5
    liveness_min_frames: int = 2
    multi_face_min_size: int = 40

    @classmethod
    def from_settings(cls, **overrides: Any) -> "VerificationConfig":
        """Build a config from ``BIOMETRICS_*`` Django settings."""

        config = cls(
            match_threshold=get_match_threshold(),
            min_capture_quality=float(
                getattr(settings, "BIOMETRICS_MIN_CAPTURE_QUALITY", DEFAULT_MIN_CAPTURE_QUALITY)
            ),
            max_frame_attempts=int(getattr(settings, "BIOMETRICS_MAX_FRAME_ATTEMPTS", 10)),
            frame_retry_interval=float(getattr(settings, "BIOMETRICS_FRAME_RETRY_INTERVAL", 0.2)),
            frame_timeout=float(getattr(settings, "BIOMETRICS_FRAME_TIMEOUT", 2.0)),
            detect_timeout=float(getattr(settings, "BIOMETRICS_DETECT_TIMEOUT", 2.0)),
            extract_timeout=float(getattr(settings, "BIOMETRICS_EXTRACT_TIMEOUT", 5.0)),
            reference_timeout=float(getattr(settings, "BIOMETRICS_REFERENCE_TIMEOUT", 2.0)),
            liveness_window=int(getattr(settings, "BIOMETRICS_LIVENESS_WINDOW", 5)),
            liveness_min_frames=int(getattr(settings, "BIOMETRICS_LIVENESS_MIN_FRAMES", 2)),
            multi_face_min_size=int(getattr(settings, "BIOMETRICS_MULTI_FACE_MIN_SIZE", 40)),
        )
        return replace(config, **overrides) if overrides else config


async def _call(func: Callable[..., Any], *args: Any, timeout: float) -> Any:
    """Invoke a sync or async collaborator with a bounded wait."""

    if inspect.iscoroutinefunction(func):
        result = await asyncio.wait_for(func(*args), timeout)
    else:
        result = await asyncio.wait_for(asyncio.to_thread(func, *args), timeout)
    if inspect.isawaitable(result):
        result = await asyncio.wait_for(result, timeout)
    return result


def match_descriptors(
    probe: Any, reference: Any, threshold: Optional[float] = None
) -> VerificationOutcome:
    """Compare a probe descriptor with a reference descriptor.

    This is the comparison step on its own. It is shared by the session and
    by the server-side re-verification endpoint, which recomputes the decision
    from a submitted probe instead of trusting a client-reported result.
    """

    if threshold is None:
        threshold = get_match_threshold()

    if reference is None:
        return VerificationOutcome.failure(
            FailureReason.NO_REFERENCE_DATA,
            threshold=threshold,
            detail="No reference descriptor enrolled",
        )
    reference_vector = coerce_descriptor(reference)
    if reference_vector is None or not np.any(reference_vector):
        return VerificationOutcome.failure(
            FailureReason.NO_REFERENCE_DATA,
            threshold=threshold,
            detail="Stored reference descriptor is malformed",
        )

    probe_vector = coerce_descriptor(probe)
    if probe_vector is None or not np.any(probe_vector):
        return VerificationOutcome.failure(
            FailureReason.EXTRACTOR_ERROR,
            threshold=threshold,
            detail="Probe descriptor is malformed",
        )

    score = similarity(probe_vector, reference_vector)
    if is_match(score, threshold):
        return VerificationOutcome(verified=True, similarity=score, threshold=threshold)
    return VerificationOutcome.failure(
        FailureReason.BELOW_THRESHOLD, similarity=score, threshold=threshold
    )


class _StepFailed(Exception):
    """Internal signal carrying the outcome of a failed step."""

    def __init__(self, outcome: VerificationOutcome) -> None:
        super().__init__(outcome.reason)
        self.outcome = outcome


class VerificationSession:
    """A single verification attempt for one claimed identity.

    The session runs at most once; calling :meth:`run` again raises
    :class:`~biometrics.exceptions.SessionStateError`. Retrying means creating
    a new session.
    """

    def __init__(
        self,
        claimed_user_id: Any,
        *,
        frame_source: FrameSource,
        detector: FaceDetector,
        extractor: DescriptorExtractor,
        reference_store: ReferenceStore,
        config: Optional[VerificationConfig] = None,
    ) -> None:
        self.claimed_user_id = claimed_user_id
        self.frame_source = frame_source
        self.detector = detector
        self.extractor = extractor
        self.reference_store = reference_store
        self.config = config or VerificationConfig.from_settings()

        self._state = VerificationState.READY
        self._trail: List[VerificationState] = [VerificationState.READY]
        self._buffer = LivenessBuffer(maxlen=self.config.liveness_window)
        self._task: Optional[asyncio.Task] = None
        self._cancel_requested = False

        self.quality: Optional[QualityMetrics] = None
        self.liveness: Optional[LivenessResult] = None
        self.multi_face: Optional[MultiFaceResult] = None

    # -- state ---------------------------------------------------------

    @property
    def state(self) -> VerificationState:
        return self._state

    def _transition(self, state: VerificationState) -> None:
        logger.debug(
            "Verification %s -> %s",
            self._state.value,
            state.value,
            extra={"event": "verification_state", "user_id": self.claimed_user_id},
        )
        self._state = state
        self._trail.append(state)
        if self._cancel_requested and not state.is_terminal:
            raise asyncio.CancelledError()

    def _fail(self, reason: FailureReason, **kwargs: Any) -> _StepFailed:
        kwargs.setdefault("threshold", self.config.match_threshold)
        kwargs.setdefault("quality", self.quality)
        kwargs.setdefault("liveness", self.liveness)
        if self.multi_face is not None:
            kwargs.setdefault("faces", self.multi_face.count)
        return _StepFailed(VerificationOutcome.failure(reason, **kwargs))

    # -- public API ----------------------------------------------------

    def cancel(self) -> bool:
        """Request cancellation; returns ``False`` once the attempt has finished."""

        if self._state.is_terminal:
            return False
        self._cancel_requested = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        return True

    def run_sync(self) -> VerificationOutcome:
        """Run the attempt from synchronous code."""

        return asyncio.run(self.run())

    async def run(self) -> VerificationOutcome:
        if self._state is not VerificationState.READY or self._task is not None:
            raise SessionStateError("A verification session can only be run once")

        self._task = asyncio.current_task()
        started = time.perf_counter()
        try:
            outcome = await self._run()
            self._transition(
                VerificationState.SUCCESS if outcome.verified else VerificationState.FAILED
            )
        except _StepFailed as failed:
            outcome = failed.outcome
            self._transition(VerificationState.FAILED)
        except asyncio.CancelledError:
            if not self._cancel_requested:
                raise
            outcome = VerificationOutcome.failure(
                FailureReason.CANCELLED, threshold=self.config.match_threshold
            )
            self._transition(VerificationState.CANCELLED)
        except Exception as exc:
            reason = _REASON_BY_STATE.get(self._state, FailureReason.EXTRACTOR_ERROR)
            logger.exception(
                "Unexpected error during verification",
                extra={"event": "verification", "state": self._state.value},
            )
            outcome = self._fail(reason, detail=str(exc)).outcome
            self._transition(VerificationState.FAILED)

        outcome.state_trail = list(self._trail)
        if outcome.quality is None:
            outcome.quality = self.quality
        if outcome.liveness is None:
            outcome.liveness = self.liveness

        duration = time.perf_counter() - started
        monitoring.observe_stage_duration("verification", duration, threshold_key="verification")
        monitoring.record_outcome(
            outcome.verified, outcome.reason.value if outcome.reason else None, outcome.similarity
        )
        logger.info(
            "Verification finished",
            extra={
                "event": "verification",
                "user_id": self.claimed_user_id,
                "verified": outcome.verified,
                "reason": outcome.reason.value if outcome.reason else None,
                "similarity": outcome.similarity,
                "duration_seconds": duration,
            },
        )
        return outcome

    # -- steps ---------------------------------------------------------

    async def _run(self) -> VerificationOutcome:
        self._transition(VerificationState.DETECTING)
        frame, detections, detector_error = await self._detect()

        self._transition(VerificationState.MULTI_FACE_CHECK)
        primary = self._check_multiple_faces(detections, detector_error)

        self._transition(VerificationState.QUALITY_CHECK)
        self._check_quality(frame, primary)

        self._transition(VerificationState.EXTRACTING)
        probe = await self._extract(frame)

        self._transition(VerificationState.LIVENESS_CHECK)
        await self._check_liveness(primary)

        self._transition(VerificationState.COMPARING)
        return await self._compare(probe)

    async def _read_frame(self) -> Optional[np.ndarray]:
        try:
            frame = await _call(self.frame_source.read, timeout=self.config.frame_timeout)
        except asyncio.TimeoutError:
            raise self._fail(FailureReason.TIMEOUT, detail="Camera frame wait exceeded")
        if not isinstance(frame, np.ndarray) or frame.size == 0:
            monitoring.record_frame_drop()
            return None
        return frame

    async def _detect(
        self,
    ) -> Tuple[np.ndarray, Optional[Sequence[FaceDetection]], Optional[str]]:
        for attempt in range(1, self.config.max_frame_attempts + 1):
            frame = await self._read_frame()
            if frame is None:
                logger.debug("Camera not ready (attempt %d)", attempt)
                await asyncio.sleep(self.config.frame_retry_interval)
                continue

            self._buffer.append(frame)
            try:
                detections = await _call(
                    self.detector.detect, frame, timeout=self.config.detect_timeout
                )
            except asyncio.TimeoutError:
                raise self._fail(FailureReason.TIMEOUT, detail="Face detection wait exceeded")
            except Exception as exc:
                # Fail open: continue with an undetected frame.
                logger.warning(
                    "Face detector failed; continuing without detections",
                    extra={"event": "face_detection", "status": "failure", "error": str(exc)},
                )
                return frame, None, str(exc)

            counted = filter_faces_by_size(list(detections or []), self.config.multi_face_min_size)
            if counted:
                return frame, counted, None
            await asyncio.sleep(self.config.frame_retry_interval)

        raise self._fail(
            FailureReason.NO_FACE,
            detail=f"No face detected in {self.config.max_frame_attempts} attempts",
        )

    def _check_multiple_faces(
        self, detections: Optional[Sequence[FaceDetection]], detector_error: Optional[str]
    ) -> Optional[FaceDetection]:
        if detections is None:
            self.multi_face = MultiFaceResult(multiple_faces=False, count=0, error=detector_error)
            return None

        self.multi_face = evaluate_detections(detections, self.config.multi_face_min_size)
        if self.multi_face.multiple_faces:
            raise self._fail(FailureReason.MULTIPLE_FACES, faces=self.multi_face.count)
        return max(detections, key=lambda detection: detection.width * detection.height)

    def _check_quality(self, frame: np.ndarray, primary: Optional[FaceDetection]) -> None:
        self.quality = assess(frame, primary)
        monitoring.record_quality(self.quality.score)
        if self.quality.score < self.config.min_capture_quality:
            raise self._fail(
                FailureReason.LOW_QUALITY,
                detail=f"Quality {self.quality.score:.2f} below {self.config.min_capture_quality:.2f}",
            )

    async def _extract(self, frame: np.ndarray) -> np.ndarray:
        started = time.perf_counter()
        try:
            raw = await _call(self.extractor.embed, frame, timeout=self.config.extract_timeout)
        except asyncio.TimeoutError:
            raise self._fail(FailureReason.TIMEOUT, detail="Descriptor extraction wait exceeded")
        except Exception as exc:
            logger.warning(
                "Descriptor extraction failed",
                extra={"event": "extraction", "status": "failure", "error": str(exc)},
            )
            raise self._fail(FailureReason.EXTRACTOR_ERROR, detail=str(exc))
        finally:
            monitoring.observe_stage_duration(
                "extraction", time.perf_counter() - started, threshold_key="extraction"
            )

        probe = coerce_descriptor(raw)
        if probe is None or not np.any(probe):
            raise self._fail(
                FailureReason.EXTRACTOR_ERROR, detail="Extractor returned no valid descriptor"
            )
        return probe

    async def _check_liveness(self, primary: Optional[FaceDetection]) -> None:
        # Advisory only: collect a few more frames if possible, never gate.
        attempts = self.config.max_frame_attempts
        while len(self._buffer) < self.config.liveness_min_frames and attempts > 0:
            attempts -= 1
            try:
                frame = await self._read_frame()
            except Exception as exc:
                logger.info(
                    "Liveness frame read failed; continuing",
                    extra={"event": "liveness_check", "status": "frame_error", "error": str(exc)},
                )
                break
            if frame is not None:
                self._buffer.append(frame)

        region = primary.as_region() if primary is not None else None
        try:
            self.liveness = await _call(
                lambda: check_liveness(self._buffer.snapshot(), face_region=region),
                timeout=self.config.extract_timeout,
            )
        except asyncio.TimeoutError:
            logger.info("Liveness check timed out; continuing", extra={"event": "liveness_check"})
            return
        except Exception as exc:
            logger.warning(
                "Liveness check failed; continuing",
                extra={"event": "liveness_check", "status": "failure", "error": str(exc)},
            )
            return

        monitoring.record_liveness(self.liveness.is_live)
        if not self.liveness.is_live:
            logger.info(
                "Low liveness confidence (advisory)",
                extra={
                    "event": "liveness_check",
                    "user_id": self.claimed_user_id,
                    "confidence": self.liveness.confidence,
                },
            )

    async def _compare(self, probe: np.ndarray) -> VerificationOutcome:
        try:
            reference = await _call(
                self.reference_store.get_reference_descriptor,
                self.claimed_user_id,
                timeout=self.config.reference_timeout,
            )
        except asyncio.TimeoutError:
            raise self._fail(FailureReason.TIMEOUT, detail="Reference lookup wait exceeded")
        except Exception as exc:
            logger.warning(
                "Reference descriptor lookup failed",
                extra={"event": "reference_lookup", "status": "failure", "error": str(exc)},
            )
            raise self._fail(FailureReason.NO_REFERENCE_DATA, detail=str(exc))

        outcome = match_descriptors(probe, reference, self.config.match_threshold)
        outcome.quality = self.quality
        outcome.liveness = self.liveness
        if self.multi_face is not None:
            outcome.faces = self.multi_face.count
        return outcome


class AutoCapture:
    """Polling loop that triggers one verification once a face is steady.

    Each poll reads a frame and counts faces; when ``required_detections``
    consecutive polls see exactly one face, a session is created from
    ``session_factory`` and run. Polls never overlap: the loop awaits each
    one before sleeping ``interval`` seconds, and :meth:`run` refuses to start
    while a previous run is still in flight.
    """

    def __init__(
        self,
        session_factory: Callable[[], VerificationSession],
        *,
        frame_source: FrameSource,
        detector: FaceDetector,
        interval: Optional[float] = None,
        required_detections: Optional[int] = None,
        max_polls: int = 60,
        min_face_size: Optional[int] = None,
        config: Optional[VerificationConfig] = None,
    ) -> None:
        self.session_factory = session_factory
        self.frame_source = frame_source
        self.detector = detector
        self.config = config or VerificationConfig.from_settings()
        self.interval = float(
            interval
            if interval is not None
            else getattr(settings, "BIOMETRICS_AUTO_CAPTURE_INTERVAL", 0.5)
        )
        self.required_detections = max(
            1,
            int(
                required_detections
                if required_detections is not None
                else getattr(settings, "BIOMETRICS_AUTO_CAPTURE_REQUIRED_DETECTIONS", 2)
            ),
        )
        self.max_polls = max(1, int(max_polls))
        self.min_face_size = (
            min_face_size if min_face_size is not None else self.config.multi_face_min_size
        )
        self.polls = 0
        self.session: Optional[VerificationSession] = None
        self._in_flight = False
        self._cancelled = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def cancel(self) -> None:
        self._cancelled = True
        if self.session is not None:
            self.session.cancel()

    async def _poll_once(self) -> int:
        try:
            frame = await _call(self.frame_source.read, timeout=self.config.frame_timeout)
            if not isinstance(frame, np.ndarray) or frame.size == 0:
                return 0
            detections = await _call(
                self.detector.detect, frame, timeout=self.config.detect_timeout
            )
        except Exception as exc:
            logger.debug("Auto-capture poll failed: %s", exc)
            return 0
        return len(filter_faces_by_size(list(detections or []), self.min_face_size))

    async def run(self) -> VerificationOutcome:
        if self._in_flight:
            raise SessionStateError("Auto-capture is already running")
        self._in_flight = True
        try:
            consecutive = 0
            while self.polls < self.max_polls:
                if self._cancelled:
                    return VerificationOutcome.failure(FailureReason.CANCELLED)
                self.polls += 1
                faces = await self._poll_once()
                consecutive = consecutive + 1 if faces == 1 else 0
                if consecutive >= self.required_detections:
                    logger.info(
                        "Face steady for %d polls; starting verification",
                        consecutive,
                        extra={"event": "auto_capture"},
                    )
                    self.session = self.session_factory()
                    if self._cancelled:
                        self.session.cancel()
                        return VerificationOutcome.failure(FailureReason.CANCELLED)
                    return await self.session.run()
                await asyncio.sleep(self.interval)
            return VerificationOutcome.failure(
                FailureReason.NO_FACE, detail=f"No steady face after {self.max_polls} polls"
            )
        finally:
            self._in_flight = False


__all__ = [
    "AutoCapture",
    "VerificationConfig",
    "VerificationSession",
    "match_descriptors",
]
