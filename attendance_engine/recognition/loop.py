"""Periodic sampling loop that turns camera frames into recognition events."""
from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional

from ..errors import (
    CameraUnavailable,
    EmptyGallery,
    InvalidEmbedding,
    ModelNotReady,
    PersistenceFailure,
    SessionStateError,
)
from ..inference.descriptor import DescriptorExtractor
from ..inference.gallery import FaceGallery
from ..inference.matcher import Matched, Matcher
from ..vision.camera_manager import CameraManager
from ..vision.pipeline import VisionFrame, VisionPipeline


class LoopState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"


@dataclass(frozen=True)
class RecognitionEvent:
    identity: str
    distance: float
    timestamp: datetime
    frame_id: str
    display_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identity": self.identity,
            "display_name": self.display_name,
            "distance": self.distance,
            "timestamp": self.timestamp.isoformat(),
            "frame_id": self.frame_id,
        }


EventHandler = Callable[[RecognitionEvent], Any]


class _SamplingTimer(threading.Thread):
    """Fixed-rate timer; slots missed while a tick was running are dropped."""

    def __init__(self, interval: float, callback: Callable[[], Any], on_missed: Callable[[int], None]):
        super().__init__(name="recognition-loop", daemon=True)
        self._interval = interval
        self._callback = callback
        self._on_missed = on_missed
        self._stop_event = threading.Event()

    def cancel(self) -> None:
        self._stop_event.set()

    def run(self) -> None:
        next_at = time.monotonic() + self._interval
        while not self._stop_event.wait(max(0.0, next_at - time.monotonic())):
            self._callback()
            next_at += self._interval
            now = time.monotonic()
            if now > next_at:
                missed = int((now - next_at) // self._interval) + 1
                next_at += missed * self._interval
                self._on_missed(missed)


class RecognitionLoop:
    """Drives sampling for one session.

    Owns the camera, the gallery snapshot and the set of identities already
    recognised. Only one tick runs at a time; a tick that finds another one
    in flight returns immediately instead of queueing.
    """

    def __init__(
        self,
        *,
        camera: CameraManager,
        extractor: DescriptorExtractor,
        matcher: Matcher,
        gallery: FaceGallery,
        on_event: EventHandler,
        interval: float = 1.0,
        initial_recognized: Iterable[str] = (),
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._camera = camera
        self._pipeline = VisionPipeline(camera)
        self._extractor = extractor
        self._matcher = matcher
        self._gallery: Optional[FaceGallery] = gallery
        self._on_event = on_event
        self._interval = float(interval)
        self._logger = logger or logging.getLogger(__name__)

        self._state = LoopState.IDLE
        self._state_lock = threading.RLock()
        self._tick_lock = threading.RLock()
        self._timer: Optional[_SamplingTimer] = None
        self._recognized = set(initial_recognized)
        self._stats: Dict[str, int] = {
            "ticks": 0,
            "skipped_overlap": 0,
            "skipped_missed": 0,
            "skipped_no_frame": 0,
            "frame_errors": 0,
            "faces": 0,
            "events": 0,
        }

    def __enter__(self) -> "RecognitionLoop":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def state(self) -> LoopState:
        with self._state_lock:
            return self._state

    @property
    def interval(self) -> float:
        return self._interval

    def recognized(self) -> FrozenSet[str]:
        with self._state_lock:
            return frozenset(self._recognized)

    @property
    def stats(self) -> Dict[str, int]:
        """Copy of the loop counters."""
        with self._state_lock:
            return dict(self._stats)

    def _count(self, key: str, amount: int = 1) -> None:
        with self._state_lock:
            self._stats[key] += amount

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    def start(self) -> None:
        with self._state_lock:
            if self._state is not LoopState.IDLE:
                raise SessionStateError(f"Cannot start a {self._state.value} recognition loop")
            if not self._extractor.is_ready():
                raise ModelNotReady("Face model is not loaded")
            if self._gallery is None or self._gallery.is_empty():
                raise EmptyGallery("Nobody in the gallery can be recognised")
            try:
                self._camera.open()
            except CameraUnavailable:
                self._camera.release()
                raise
            self._state = LoopState.RUNNING
            self._start_timer()
        self._logger.info(
            "[Recognition] Started: %d identities, every %.2fs",
            len(self._gallery),
            self._interval,
        )

    def pause(self) -> None:
        with self._state_lock:
            if self._state is not LoopState.RUNNING:
                raise SessionStateError(f"Cannot pause a {self._state.value} recognition loop")
            self._state = LoopState.PAUSED
            timer = self._detach_timer()
        self._join(timer)
        self._logger.info("[Recognition] Paused (%d recognised)", len(self._recognized))

    def resume(self) -> None:
        with self._state_lock:
            if self._state is not LoopState.PAUSED:
                raise SessionStateError(f"Cannot resume a {self._state.value} recognition loop")
            self._state = LoopState.RUNNING
            self._start_timer()
        self._logger.info("[Recognition] Resumed")

    def stop(self) -> None:
        """Terminal; releases the camera whatever state the loop was in."""
        with self._state_lock:
            already_stopped = self._state is LoopState.STOPPED
            self._state = LoopState.STOPPED
            timer = self._detach_timer()
        self._join(timer)

        with self._tick_lock:
            self._camera.release()
            with self._state_lock:
                self._recognized.clear()
                self._gallery = None

        if not already_stopped:
            self._logger.info("[Recognition] Stopped: %s", self.stats)

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------
    def tick(self) -> List[RecognitionEvent]:
        """Process the freshest frame once; returns the events emitted."""
        if not self._tick_lock.acquire(blocking=False):
            self._count("skipped_overlap")
            self._logger.debug("[Recognition] Previous tick still running, skipping")
            return []
        try:
            with self._state_lock:
                if self._state is not LoopState.RUNNING:
                    return []
                gallery = self._gallery
            self._count("ticks")

            try:
                frame = self._pipeline.next_frame()
            except CameraUnavailable as exc:
                self._logger.error("[Recognition] Camera lost, stopping: %s", exc)
                self.stop()
                return []
            if frame is None:
                self._count("skipped_no_frame")
                return []

            return self._process_frame(frame, gallery)
        finally:
            self._tick_lock.release()

    def _process_frame(self, frame: VisionFrame, gallery: FaceGallery) -> List[RecognitionEvent]:
        try:
            faces = self._extractor.detect_faces(frame.rgb)
        except Exception as exc:
            self._count("frame_errors")
            self._logger.warning(
                "[Recognition] Skipping %s, detection failed: %s", frame.frame_id, exc
            )
            return []

        self._count("faces", len(faces))
        if faces:
            self._logger.debug("[Recognition] %s: %d face(s)", frame.frame_id, len(faces))

        events: List[RecognitionEvent] = []
        for face in faces:
            try:
                result = self._matcher.match(face.embedding, gallery)
            except InvalidEmbedding as exc:
                self._logger.warning("[Recognition] Bad embedding in %s: %s", frame.frame_id, exc)
                continue
            if not isinstance(result, Matched):
                continue
            event = self._accept(result, frame)
            if event is not None:
                events.append(event)
        return events

    def _accept(self, result: Matched, frame: VisionFrame) -> Optional[RecognitionEvent]:
        with self._state_lock:
            if result.identity in self._recognized:
                return None
            self._recognized.add(result.identity)

        event = RecognitionEvent(
            identity=result.identity,
            distance=result.distance,
            timestamp=frame.timestamp,
            frame_id=frame.frame_id,
            display_name=result.display_name,
        )
        try:
            self._on_event(event)
        except PersistenceFailure as exc:
            with self._state_lock:
                self._recognized.discard(result.identity)
            self._logger.error(
                "[Recognition] Could not record %s, will retry on next sighting: %s",
                result.identity,
                exc,
            )
            return None
        except Exception:
            with self._state_lock:
                self._recognized.discard(result.identity)
            self._logger.exception("[Recognition] Event handler failed for %s", result.identity)
            return None

        self._count("events")
        self._logger.info(
            "[Recognition] Recognised %s (distance %.3f) in %s",
            result.display_name or result.identity,
            result.distance,
            frame.frame_id,
        )
        return event

    # ------------------------------------------------------------------
    # Timer helpers
    # ------------------------------------------------------------------
    def _start_timer(self) -> None:
        self._timer = _SamplingTimer(self._interval, self._safe_tick, self._record_missed)
        self._timer.start()

    def _detach_timer(self) -> Optional[_SamplingTimer]:
        timer = self._timer
        self._timer = None
        if timer is not None:
            timer.cancel()
        return timer

    def _join(self, timer: Optional[_SamplingTimer]) -> None:
        if timer is not None and timer is not threading.current_thread() and timer.is_alive():
            timer.join()

    def _safe_tick(self) -> None:
        try:
            self.tick()
        except Exception:
            self._logger.exception("[Recognition] Tick crashed")

    def _record_missed(self, missed: int) -> None:
        self._count("skipped_missed", missed)
        self._logger.debug("[Recognition] Tick overran, dropped %d slot(s)", missed)
