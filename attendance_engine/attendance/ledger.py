"""Attendance ledger: exactly-once presence and the closing absentee sweep."""
from __future__ import annotations

import enum
import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..errors import DuplicatePresent, PersistenceFailure
from .records import (
    STATUS_ABSENT,
    STATUS_PENDING,
    STATUS_PRESENT,
    AttendanceRecord,
)

Clock = Callable[[], datetime]


class LedgerState(str, enum.Enum):
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class AttendanceLedger:
    """Thread-safe ledger for one (course, session-day).

    The store performs check-then-insert inside a single transaction; the
    ledger lock additionally orders ``record_present`` against
    ``close_session`` so a late recognition can never land beside an
    ``absent`` record.
    """

    def __init__(
        self,
        *,
        store: Any,
        course: str,
        clock: Clock = datetime.now,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._store = store
        self._course = course
        self._clock = clock
        self._day = clock().date()
        self._state = LedgerState.OPEN
        self._logger = logger or logging.getLogger(__name__)
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    @property
    def course(self) -> str:
        return self._course

    @property
    def day(self):
        return self._day

    @property
    def state(self) -> LedgerState:
        with self._lock:
            return self._state

    # ------------------------------------------------------------------
    # Presence
    # ------------------------------------------------------------------
    def open(self, opened_by: Optional[str] = None) -> None:
        """Register the session day with the store."""
        self._store.open_attendance_session(self._course, self._day, opened_by=opened_by)
        self._logger.info("[Ledger] Opened %s for %s", self._course, self._day.isoformat())

    def record_present(
        self,
        identity: str,
        *,
        distance: Optional[float] = None,
        student_name: Optional[str] = None,
    ) -> Optional[AttendanceRecord]:
        student_id = (identity or "").strip()
        if not student_id:
            raise ValueError("identity is required")

        with self._lock:
            if self._state is not LedgerState.OPEN:
                self._logger.warning(
                    "[Ledger] Ignoring presence for %s: ledger is %s",
                    student_id,
                    self._state.value,
                )
                return None
            try:
                row = self._store.mark_present_once(
                    student_id=student_id,
                    course=self._course,
                    attendance_date=self._day,
                    recorded_at=self._clock(),
                    distance=distance,
                )
            except DuplicatePresent as dup:
                self._logger.debug(
                    "[Ledger] %s already %s for %s, skipping",
                    student_id,
                    dup.existing_status,
                    self._course,
                )
                return None

        record = AttendanceRecord.from_row(row)
        self._logger.info(
            "[Ledger] Present: %s (%s) in %s%s",
            student_name or student_id,
            student_id,
            self._course,
            f", distance {distance:.3f}" if distance is not None else "",
        )
        return record

    def handle_event(self, event: Any) -> Optional[AttendanceRecord]:
        """``on_event`` adapter for the recognition loop."""
        return self.record_present(
            event.identity,
            distance=event.distance,
            student_name=getattr(event, "display_name", None),
        )

    # ------------------------------------------------------------------
    # Closing
    # ------------------------------------------------------------------
    def close_session(self, roster: Iterable[Any]) -> List[AttendanceRecord]:
        """Insert ``absent`` for every roster member never seen today.

        The ledger stays CLOSING if the store fails, so the operator can
        retry; absentees are re-derived from the store on every attempt.
        """
        roster_ids = _roster_ids(roster)
        with self._lock:
            if self._state is LedgerState.CLOSED:
                self._logger.info("[Ledger] %s already closed, nothing to do", self._course)
                return []
            self._state = LedgerState.CLOSING
            try:
                rows = self._store.close_attendance_day(
                    course=self._course,
                    attendance_date=self._day,
                    roster_ids=roster_ids,
                    recorded_at=self._clock(),
                )
            except PersistenceFailure as exc:
                self._logger.error(
                    "[Ledger] Closing %s failed, still closing: %s", self._course, exc
                )
                raise
            self._state = LedgerState.CLOSED

        records = [AttendanceRecord.from_row(row) for row in rows]
        if records:
            self._logger.info(
                "[Ledger] Closed %s: %d absent of %d",
                self._course,
                len(records),
                len(roster_ids),
            )
        else:
            self._logger.info("[Ledger] Closed %s: everyone present", self._course)
        return records

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------
    def records_today(self) -> List[AttendanceRecord]:
        rows = self._store.query_attendance(self._course, self._day, self._day)
        return [AttendanceRecord.from_row(row) for row in rows]

    def present_identities(self) -> List[str]:
        return [r.student_id for r in self.records_today() if r.status == STATUS_PRESENT]

    def status_board(self, roster: Iterable[Any]) -> Dict[str, str]:
        records = self.records_today()
        present = {r.student_id for r in records if r.status == STATUS_PRESENT}
        closed = self.state is LedgerState.CLOSED or self._store.has_closed_session(
            self._course, self._day
        )
        board = {}
        for student_id in _roster_ids(roster):
            if student_id in present:
                board[student_id] = STATUS_PRESENT
            elif closed:
                board[student_id] = STATUS_ABSENT
            else:
                board[student_id] = STATUS_PENDING
        return board

    def status_of(self, identity: str) -> str:
        return self.status_board([identity])[identity]


def _roster_ids(roster: Iterable[Any]) -> List[str]:
    ids: List[str] = []
    for member in roster:
        student_id = member if isinstance(member, str) else getattr(member, "identity")
        if student_id not in ids:
            ids.append(student_id)
    return ids
