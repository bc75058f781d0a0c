"""
Roster provider
Reads the enrolled students of a course from the database and hands them to
the gallery builder as RosterMember values.
"""
import logging

from attendance_engine.embeddings import embedding_from_blob
from attendance_engine.errors import InvalidEmbedding
from attendance_engine.inference.gallery import RosterMember

logger = logging.getLogger(__name__)


class DatabaseRosterProvider:
    def __init__(self, db, embedding_size=128):
        self.db = db
        self.embedding_size = embedding_size

    def list_students(self, course):
        """Active students of ``course`` in enrollment order."""
        members = []
        for row in self.db.list_students(course):
            members.append(RosterMember(
                identity=row['student_id'],
                photo_refs=(row['photo_ref'],) if row.get('photo_ref') else (),
                display_name=row.get('full_name'),
                stored_embedding=self._decode(row),
            ))
        logger.debug(f"[Roster] {course}: {len(members)} student(s)")
        return members

    def list_courses(self):
        return self.db.list_courses()

    def _decode(self, row):
        try:
            return embedding_from_blob(row.get('face_encoding'), self.embedding_size)
        except InvalidEmbedding as exc:
            logger.warning(f"[Roster] Ignoring stored encoding for {row['student_id']}: {exc}")
            return None
