"""
Database module for the attendance engine
SQLite storage for enrolled students, attendance records and session days
"""

import sqlite3
import threading
import time
from contextlib import contextmanager, nullcontext
from datetime import date, datetime
from pathlib import Path
import logging

from attendance_engine.attendance.records import STATUS_ABSENT, STATUS_PRESENT
from attendance_engine.embeddings import embedding_to_blob
from attendance_engine.errors import DuplicatePresent, PersistenceFailure, StudentAlreadyEnrolled
from logging_config import database_logger

logger = logging.getLogger(__name__)


def _iso(value):
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _public_student(row):
    """Student row without the raw embedding blob."""
    if row is None:
        return None
    student = dict(row)
    student['has_encoding'] = student.pop('face_encoding', None) is not None
    return student


class DatabaseManager:
    def __init__(self, db_path="attendance.db", timeout=30.0):
        self.db_path = str(db_path)
        self.timeout = timeout
        # Serialises check-then-insert inside this process; BEGIN IMMEDIATE covers other processes
        self._write_lock = threading.Lock()
        self._shared_conn = None
        self._shared_lock = threading.RLock()
        if self.db_path == ':memory:':
            # Every new connection to ':memory:' is a fresh empty database, so keep one open
            self._shared_conn = self._open_connection(check_same_thread=False)
        else:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.init_database()

    def _open_connection(self, **kwargs):
        conn = sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None, **kwargs)
        conn.row_factory = sqlite3.Row
        conn.execute('PRAGMA foreign_keys = ON')
        return conn

    def get_connection(self):
        """Open a connection in autocommit mode; writes use explicit transactions"""
        if self._shared_conn is not None:
            return self._shared_conn
        return self._open_connection()

    def close(self):
        if self._shared_conn is not None:
            self._shared_conn.close()
            self._shared_conn = None

    @contextmanager
    def _connect(self, operation, write=False):
        """Yield a connection; any sqlite3 error becomes PersistenceFailure."""
        guard = self._shared_lock if self._shared_conn is not None else nullcontext()
        with guard:
            conn = None
            try:
                conn = self.get_connection()
                if write:
                    conn.execute('BEGIN IMMEDIATE')
                yield conn
                if write:
                    conn.commit()
            except sqlite3.Error as exc:
                if conn is not None and conn.in_transaction:
                    conn.rollback()
                database_logger.log_error(operation, str(exc))
                raise PersistenceFailure(f"{operation} failed: {exc}") from exc
            except BaseException:
                if conn is not None and conn.in_transaction:
                    conn.rollback()
                raise
            finally:
                if conn is not None and conn is not self._shared_conn:
                    conn.close()

    def init_database(self):
        """Create tables and indexes"""
        if self.db_path != ':memory:':
            with self._connect('init_database') as conn:
                conn.execute('PRAGMA journal_mode=WAL')

        with self._connect('init_database', write=True) as conn:
            cursor = conn.cursor()

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS students (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    student_id VARCHAR(20) UNIQUE NOT NULL,
                    full_name VARCHAR(100) NOT NULL,
                    course VARCHAR(100) NOT NULL,
                    photo_ref VARCHAR(300),
                    face_encoding BLOB,
                    enrolled_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    is_active BOOLEAN DEFAULT 1
                )
            ''')

            # One outcome per (student, course, day); rows are never updated
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS attendance (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    student_id VARCHAR(20) NOT NULL,
                    course VARCHAR(100) NOT NULL,
                    status VARCHAR(10) NOT NULL CHECK (status IN ('present', 'absent')),
                    attendance_date DATE NOT NULL,
                    recorded_at TIMESTAMP NOT NULL,
                    distance REAL,
                    notes TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            ''')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS attendance_sessions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    course VARCHAR(100) NOT NULL,
                    session_date DATE NOT NULL,
                    opened_by VARCHAR(100),
                    opened_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    closed_at TIMESTAMP,
                    status VARCHAR(20) DEFAULT 'open',
                    UNIQUE (course, session_date)
                )
            ''')

            cursor.execute(
                'CREATE UNIQUE INDEX IF NOT EXISTS idx_attendance_once '
                'ON attendance(student_id, course, attendance_date)'
            )
            cursor.execute('CREATE INDEX IF NOT EXISTS idx_attendance_date ON attendance(attendance_date)')
            cursor.execute('CREATE INDEX IF NOT EXISTS idx_attendance_course ON attendance(course)')
            cursor.execute('CREATE INDEX IF NOT EXISTS idx_students_course ON students(course, is_active)')

        logger.info(f"Database initialized at {self.db_path}")

    # ------------------------------------------------------------------
    # Students
    # ------------------------------------------------------------------
    def insert_student(self, student_id, full_name, course, photo_ref, embedding):
        """Add an enrolled student; raises StudentAlreadyEnrolled on a duplicate id"""
        with self._connect('insert_student', write=True) as conn:
            try:
                conn.execute('''
                    INSERT INTO students (student_id, full_name, course, photo_ref, face_encoding)
                    VALUES (?, ?, ?, ?, ?)
                ''', (student_id, full_name, course, photo_ref, embedding_to_blob(embedding)))
            except sqlite3.IntegrityError as exc:
                logger.error(f"Student ID {student_id} already exists: {exc}")
                raise StudentAlreadyEnrolled(f"Student {student_id} is already enrolled") from exc
            row = conn.execute('SELECT * FROM students WHERE student_id = ?', (student_id,)).fetchone()
        logger.info(f"Added student: {full_name} ({student_id}) in {course}")
        return _public_student(row)

    def replace_enrollment(self, student_id, photo_ref, embedding):
        """Overwrite photo ref and embedding together"""
        with self._connect('replace_enrollment', write=True) as conn:
            cursor = conn.execute('''
                UPDATE students
                SET photo_ref = ?, face_encoding = ?, updated_at = CURRENT_TIMESTAMP
                WHERE student_id = ?
            ''', (photo_ref, embedding_to_blob(embedding), student_id))
            if cursor.rowcount == 0:
                raise KeyError(student_id)
            row = conn.execute('SELECT * FROM students WHERE student_id = ?', (student_id,)).fetchone()
        logger.info(f"Replaced enrollment photo for {student_id}")
        return _public_student(row)

    def get_student(self, student_id):
        with self._connect('get_student') as conn:
            row = conn.execute('SELECT * FROM students WHERE student_id = ?', (student_id,)).fetchone()
            return dict(row) if row else None

    def get_public_student(self, student_id):
        return _public_student(self.get_student(student_id))

    def list_students(self, course, active_only=True):
        """Students of a course in enrollment order (includes face_encoding)"""
        query = 'SELECT * FROM students WHERE course = ?'
        if active_only:
            query += ' AND is_active = 1'
        query += ' ORDER BY id'
        with self._connect('list_students') as conn:
            return [dict(r) for r in conn.execute(query, (course,)).fetchall()]

    def list_public_students(self, course):
        return [_public_student(row) for row in self.list_students(course)]

    def list_courses(self):
        with self._connect('list_courses') as conn:
            rows = conn.execute('''
                SELECT course, COUNT(*) AS student_count
                FROM students
                WHERE is_active = 1
                GROUP BY course
                ORDER BY course
            ''').fetchall()
            return [dict(r) for r in rows]

    # ------------------------------------------------------------------
    # Attendance
    # ------------------------------------------------------------------
    def insert_attendance(self, record):
        """Append one AttendanceRecord; returns the new row id"""
        with self._connect('insert_attendance', write=True) as conn:
            try:
                cursor = conn.execute('''
                    INSERT INTO attendance (student_id, course, status, attendance_date, recorded_at, distance)
                    VALUES (?, ?, ?, ?, ?, ?)
                ''', (record.student_id, record.course, record.status,
                      _iso(record.attendance_date), _iso(record.timestamp), record.distance))
            except sqlite3.IntegrityError as exc:
                existing = conn.execute('''
                    SELECT status FROM attendance
                    WHERE student_id = ? AND course = ? AND attendance_date = ?
                ''', (record.student_id, record.course, _iso(record.attendance_date))).fetchone()
                status = existing['status'] if existing else record.status
                raise DuplicatePresent(record.student_id, record.course, status) from exc
            return cursor.lastrowid

    def mark_present_once(self, student_id, course, attendance_date, recorded_at, distance=None):
        """
        Insert a present record unless any outcome already exists for the day.

        Returns:
            The inserted row as a dict

        Raises:
            DuplicatePresent: carrying the status already recorded
        """
        day = _iso(attendance_date)
        with self._write_lock:
            with self._connect('mark_present_once', write=True) as conn:
                existing = conn.execute('''
                    SELECT status FROM attendance
                    WHERE student_id = ? AND course = ? AND attendance_date = ?
                ''', (student_id, course, day)).fetchone()
                if existing:
                    raise DuplicatePresent(student_id, course, existing['status'])

                cursor = conn.execute('''
                    INSERT INTO attendance (student_id, course, status, attendance_date, recorded_at, distance)
                    VALUES (?, ?, ?, ?, ?, ?)
                ''', (student_id, course, STATUS_PRESENT, day, _iso(recorded_at), distance))
                row = conn.execute('SELECT * FROM attendance WHERE id = ?', (cursor.lastrowid,)).fetchone()
        logger.info(f"Marked attendance for {student_id} in {course}")
        return dict(row)

    def _insert_absentees(self, conn, course, day, roster_ids, recorded_at):
        recorded = {
            r['student_id'] for r in conn.execute('''
                SELECT student_id FROM attendance
                WHERE course = ? AND attendance_date = ?
            ''', (course, day)).fetchall()
        }
        inserted = []
        for student_id in roster_ids:
            if student_id in recorded:
                continue
            cursor = conn.execute('''
                INSERT INTO attendance (student_id, course, status, attendance_date, recorded_at)
                VALUES (?, ?, ?, ?, ?)
            ''', (student_id, course, STATUS_ABSENT, day, _iso(recorded_at)))
            inserted.append(cursor.lastrowid)
            recorded.add(student_id)
        if not inserted:
            return []
        placeholders = ','.join('?' for _ in inserted)
        rows = conn.execute(
            f'SELECT * FROM attendance WHERE id IN ({placeholders}) ORDER BY id', inserted
        ).fetchall()
        return [dict(r) for r in rows]

    def close_attendance_day(self, course, attendance_date, roster_ids, recorded_at=None):
        """Absentee sweep plus session close in a single transaction"""
        recorded_at = recorded_at or datetime.now()
        day = _iso(attendance_date)
        with self._write_lock:
            with self._connect('close_attendance_day', write=True) as conn:
                rows = self._insert_absentees(conn, course, day, list(roster_ids), recorded_at)
                self._close_session_row(conn, course, day, recorded_at)
        logger.info(f"Closed attendance for {course} on {day}: {len(rows)} absent")
        return rows

    def query_attendance(self, course=None, start_date=None, end_date=None):
        """Attendance rows joined with student names, oldest first"""
        clauses, params = [], []
        if course:
            clauses.append('a.course = ?')
            params.append(course)
        if start_date:
            clauses.append('a.attendance_date >= ?')
            params.append(_iso(start_date))
        if end_date:
            clauses.append('a.attendance_date <= ?')
            params.append(_iso(end_date))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ''

        started = time.perf_counter()
        with self._connect('query_attendance') as conn:
            rows = conn.execute(f'''
                SELECT a.*, s.full_name
                FROM attendance a
                LEFT JOIN students s ON a.student_id = s.student_id
                {where}
                ORDER BY a.attendance_date, a.recorded_at, a.id
            ''', params).fetchall()
        database_logger.log_query('SELECT', 'attendance', time.perf_counter() - started)
        return [dict(r) for r in rows]

    def get_today_attendance(self, course=None):
        today = date.today()
        return self.query_attendance(course, today, today)

    # ------------------------------------------------------------------
    # Session days
    # ------------------------------------------------------------------
    def open_attendance_session(self, course, session_date=None, opened_by=None):
        """Register a session day; re-opening an existing day returns the same row"""
        day = _iso(session_date or date.today())
        with self._connect('open_attendance_session', write=True) as conn:
            conn.execute('''
                INSERT OR IGNORE INTO attendance_sessions (course, session_date, opened_by)
                VALUES (?, ?, ?)
            ''', (course, day, opened_by))
            row = conn.execute('''
                SELECT * FROM attendance_sessions WHERE course = ? AND session_date = ?
            ''', (course, day)).fetchone()
            return dict(row)

    def _close_session_row(self, conn, course, day, closed_at):
        conn.execute('''
            INSERT OR IGNORE INTO attendance_sessions (course, session_date)
            VALUES (?, ?)
        ''', (course, day))
        conn.execute('''
            UPDATE attendance_sessions
            SET status = 'closed', closed_at = COALESCE(closed_at, ?)
            WHERE course = ? AND session_date = ?
        ''', (_iso(closed_at), course, day))

    def has_closed_session(self, course, session_date=None):
        day = _iso(session_date or date.today())
        with self._connect('has_closed_session') as conn:
            row = conn.execute('''
                SELECT 1 FROM attendance_sessions
                WHERE course = ? AND session_date = ? AND status = 'closed'
            ''', (course, day)).fetchone()
            return row is not None

