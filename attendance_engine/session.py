"""One attendance run for a course: gallery, recognition loop and ledger."""
from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from .attendance.ledger import AttendanceLedger, LedgerState
from .attendance.records import AttendanceRecord
from .errors import SessionStateError
from .inference.descriptor import DescriptorExtractor
from .inference.gallery import GalleryBuilder, GalleryBuildResult, RosterMember
from .inference.matcher import Matcher
from .recognition.loop import LoopState, RecognitionEvent, RecognitionLoop
from .vision.camera_manager import CameraManager

CameraFactory = Callable[[], CameraManager]
AttendanceListener = Callable[[RecognitionEvent, AttendanceRecord], Any]


class AttendanceSession:
    """Owns every resource of a running session and releases them on stop."""

    def __init__(
        self,
        *,
        course: str,
        roster_provider: Any,
        gallery_builder: GalleryBuilder,
        extractor: DescriptorExtractor,
        matcher: Matcher,
        ledger: AttendanceLedger,
        camera_factory: CameraFactory,
        interval: float = 1.0,
        require_complete_gallery: bool = False,
        on_event: Optional[AttendanceListener] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.course = course
        self._roster_provider = roster_provider
        self._gallery_builder = gallery_builder
        self._extractor = extractor
        self._matcher = matcher
        self._ledger = ledger
        self._camera_factory = camera_factory
        self._interval = interval
        self._require_complete = require_complete_gallery
        self._on_event = on_event
        self._logger = logger or logging.getLogger(__name__)

        self._lock = threading.RLock()
        self._loop: Optional[RecognitionLoop] = None
        self._roster: List[RosterMember] = []
        self._build: Optional[GalleryBuildResult] = None
        self._started_at: Optional[datetime] = None
        self._absentees: List[AttendanceRecord] = []

    @property
    def ledger(self) -> AttendanceLedger:
        return self._ledger

    @property
    def loop(self) -> Optional[RecognitionLoop]:
        return self._loop

    @property
    def build_result(self) -> Optional[GalleryBuildResult]:
        return self._build

    def loop_state(self) -> LoopState:
        with self._lock:
            return self._loop.state if self._loop is not None else LoopState.IDLE

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self, opened_by: Optional[str] = None) -> GalleryBuildResult:
        with self._lock:
            if self._loop is not None:
                raise SessionStateError(f"Session for {self.course} was already started")
            if self._ledger.state is not LedgerState.OPEN:
                raise SessionStateError(f"Attendance for {self.course} is already closed")

            roster = list(self._roster_provider.list_students(self.course))
            self._logger.info("[Session] Starting %s with %d enrolled", self.course, len(roster))

            build = self._gallery_builder.build(roster)
            warning = build.partial_failure()
            if warning is not None:
                if self._require_complete:
                    self._logger.error("[Session] Refusing to start %s: %s", self.course, warning)
                    raise warning
                self._logger.warning("[Session] %s", warning)

            self._ledger.open(opened_by=opened_by)
            loop = RecognitionLoop(
                camera=self._camera_factory(),
                extractor=self._extractor,
                matcher=self._matcher,
                gallery=build.gallery,
                on_event=self._handle_event,
                interval=self._interval,
                initial_recognized=self._ledger.present_identities(),
            )
            loop.start()

            self._roster = roster
            self._build = build
            self._loop = loop
            self._started_at = datetime.now()
            return build

    def pause(self) -> None:
        self._require_loop().pause()

    def resume(self) -> None:
        self._require_loop().resume()

    def stop(self) -> None:
        with self._lock:
            if self._loop is not None:
                self._loop.stop()

    def close(self) -> List[AttendanceRecord]:
        """Stop sampling and record everyone not seen as absent."""
        with self._lock:
            self.stop()
            roster = self._roster or list(self._roster_provider.list_students(self.course))
            absentees = self._ledger.close_session(roster)
            self._absentees.extend(absentees)
            return absentees

    def _require_loop(self) -> RecognitionLoop:
        with self._lock:
            if self._loop is None:
                raise SessionStateError(f"Session for {self.course} has not started")
            return self._loop

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------
    def _handle_event(self, event: RecognitionEvent) -> None:
        record = self._ledger.handle_event(event)
        if record is None or self._on_event is None:
            return
        try:
            self._on_event(event, record)
        except Exception:
            self._logger.exception("[Session] Attendance listener failed for %s", event.identity)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------
    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            loop = self._loop
            build = self._build
            roster: Sequence[RosterMember] = self._roster
            return {
                "course": self.course,
                "day": self._ledger.day.isoformat(),
                "loop_state": self.loop_state().value,
                "ledger_state": self._ledger.state.value,
                "started_at": self._started_at.isoformat() if self._started_at else None,
                "enrolled": len(roster),
                "gallery_size": len(build.gallery) if build else 0,
                "excluded": build.describe()["excluded"] if build else [],
                "recognized": sorted(loop.recognized()) if loop else [],
                "absent": [r.student_id for r in self._absentees],
                "stats": loop.stats if loop else {},
            }


__all__ = ["AttendanceSession", "AttendanceListener", "CameraFactory"]
