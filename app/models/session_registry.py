"""
Session registry
Keeps at most one AttendanceSession per course and wires each session to
the database, the camera and the SSE broadcaster.
"""
import logging
import threading
from datetime import date
from typing import Dict, List, Optional

from attendance_engine.attendance.ledger import AttendanceLedger, LedgerState
from attendance_engine.errors import SessionStateError
from attendance_engine.inference.gallery import GalleryBuilder
from attendance_engine.inference.matcher import Matcher
from attendance_engine.recognition.loop import LoopState
from attendance_engine.session import AttendanceSession
from attendance_engine.vision.camera_manager import CameraManager
from logging_config import recognition_logger


class SessionRegistry:
    """Course -> AttendanceSession; sessions of different courses share nothing"""

    def __init__(self, *, database, roster_provider, extractor, photo_store, camera_provider,
                 settings, broadcaster=None, logger=None):
        self.database = database
        self.roster_provider = roster_provider
        self.extractor = extractor
        self.photo_store = photo_store
        self.camera_provider = camera_provider
        self.settings = settings
        self.broadcaster = broadcaster
        self.logger = logger or logging.getLogger(__name__)
        self.matcher = Matcher(settings['FACE_DISTANCE_THRESHOLD'])
        self._sessions: Dict[str, AttendanceSession] = {}
        self._course_locks: Dict[str, threading.Lock] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------
    def _camera_factory(self):
        return CameraManager(
            index=self.settings['CAMERA_INDEX'],
            provider=self.camera_provider,
            width=self.settings['CAMERA_WIDTH'],
            height=self.settings['CAMERA_HEIGHT'],
            warmup_frames=self.settings['CAMERA_WARMUP_FRAMES'],
            buffer_size=self.settings['CAMERA_BUFFER_SIZE'],
        )

    def _new_session(self, course) -> AttendanceSession:
        builder = GalleryBuilder(
            self.extractor,
            self.photo_store,
            item_timeout=self.settings['GALLERY_FETCH_TIMEOUT'],
            max_workers=self.settings['GALLERY_BUILD_WORKERS'],
            prefer_stored_descriptors=self.settings['USE_STORED_DESCRIPTORS'],
        )
        return AttendanceSession(
            course=course,
            roster_provider=self.roster_provider,
            gallery_builder=builder,
            extractor=self.extractor,
            matcher=self.matcher,
            ledger=AttendanceLedger(store=self.database, course=course),
            camera_factory=self._camera_factory,
            interval=self.settings['RECOGNITION_INTERVAL_SECONDS'],
            require_complete_gallery=self.settings['REQUIRE_COMPLETE_GALLERY'],
            on_event=self._on_attendance,
        )

    def _on_attendance(self, event, record):
        recognition_logger.log_attendance_marked(
            event.display_name or event.identity, record.student_id, record.course, record.distance
        )
        if self.broadcaster:
            self.broadcaster.broadcast_attendance_marked(
                record.student_id,
                event.display_name,
                record.course,
                distance=record.distance,
                recorded_at=record.timestamp.isoformat(),
            )

    def _publish(self, session):
        if self.broadcaster:
            self.broadcaster.broadcast_session_update(session.snapshot())

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------
    def get(self, course) -> Optional[AttendanceSession]:
        with self._lock:
            return self._sessions.get(course)

    def require(self, course) -> AttendanceSession:
        session = self.get(course)
        if session is None:
            raise KeyError(course)
        return session

    def snapshots(self) -> List[dict]:
        with self._lock:
            sessions = list(self._sessions.values())
        return [s.snapshot() for s in sessions]

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    def _course_lock(self, course):
        with self._lock:
            return self._course_locks.setdefault(course, threading.Lock())

    def start(self, course, opened_by=None):
        with self._course_lock(course):
            current = self.get(course)
            today = date.today()
            if current is not None and current.ledger.day == today:
                if current.loop_state() in (LoopState.RUNNING, LoopState.PAUSED):
                    raise SessionStateError(f"A session for {course} is already running")
                if current.ledger.state is not LedgerState.OPEN:
                    raise SessionStateError(f"Attendance for {course} was already closed today")
            if self.database.has_closed_session(course, today):
                raise SessionStateError(f"Attendance for {course} was already closed today")

            session = self._new_session(course)
            build = session.start(opened_by=opened_by)
            with self._lock:
                self._sessions[course] = session

        excluded = build.describe()['excluded']
        recognition_logger.log_session(course, 'start', f"opened by {opened_by}" if opened_by else None)
        recognition_logger.log_gallery_built(course, len(build.gallery), [e['identity'] for e in excluded])
        if excluded and self.broadcaster:
            self.broadcaster.broadcast_gallery_warning(course, excluded)
        self._publish(session)
        return session, build

    def pause(self, course):
        session = self.require(course)
        session.pause()
        recognition_logger.log_session(course, 'pause')
        self._publish(session)
        return session

    def resume(self, course):
        session = self.require(course)
        session.resume()
        recognition_logger.log_session(course, 'resume')
        self._publish(session)
        return session

    def stop(self, course):
        session = self.require(course)
        session.stop()
        recognition_logger.log_session(course, 'stop')
        self._publish(session)
        return session

    def close(self, course):
        """Close the course's day; works without a running session"""
        with self._course_lock(course):
            session = self.get(course)
            if session is None or session.ledger.day != date.today():
                session = self._new_session(course)
                with self._lock:
                    self._sessions[course] = session
            absentees = session.close()
        recognition_logger.log_absentees(course, [r.student_id for r in absentees])
        self._publish(session)
        return session, absentees

    def shutdown(self):
        """Stop every session and release cameras"""
        with self._lock:
            sessions = list(self._sessions.values())
        for session in sessions:
            try:
                session.stop()
            except Exception:
                self.logger.exception(f"[Sessions] Failed to stop session {session.course}")
        self.logger.info(f"[Sessions] Stopped {len(sessions)} session(s)")
