"""Student enrollment: photo upload, descriptor extraction and persistence."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from .errors import PhotoStoreError, StudentAlreadyEnrolled
from .inference.descriptor import DescriptorExtractor

logger = logging.getLogger(__name__)


class EnrollmentService:
    """Enrolls students so that no record exists without a usable embedding.

    The photo is stored first so its reference can be saved with the student;
    every failure after that point deletes the stored photo again.
    """

    def __init__(self, extractor: DescriptorExtractor, photo_store: Any, database: Any):
        self.extractor = extractor
        self.photo_store = photo_store
        self.database = database

    def enroll(
        self,
        student_id: str,
        full_name: str,
        course: str,
        image_bytes: bytes,
    ) -> Dict[str, Any]:
        """
        Enroll a new student from a single photo.

        Args:
            student_id: Unique student number
            full_name: Display name
            course: Course the student attends
            image_bytes: Encoded photo (JPEG/PNG)

        Returns:
            The stored student row (without the embedding blob)

        Raises:
            StudentAlreadyEnrolled, NoFaceDetected, ModelNotReady,
            PhotoStoreError, PersistenceFailure
        """
        student_id = (student_id or "").strip()
        full_name = (full_name or "").strip()
        course = (course or "").strip()
        if not student_id or not full_name or not course:
            raise ValueError("student_id, full_name and course are required")

        if self.database.get_student(student_id) is not None:
            raise StudentAlreadyEnrolled(f"Student {student_id} is already enrolled")

        photo_ref = self.photo_store.store(image_bytes, prefix=student_id)
        try:
            embedding = self.extractor.extract(image_bytes)
            student = self.database.insert_student(
                student_id=student_id,
                full_name=full_name,
                course=course,
                photo_ref=photo_ref,
                embedding=embedding,
            )
        except Exception as exc:
            logger.warning("[Enrollment] Enrolling %s failed, rolling back photo: %s", student_id, exc)
            self._discard(photo_ref)
            raise

        logger.info("[Enrollment] Enrolled %s (%s) in %s", full_name, student_id, course)
        return student

    def replace_photo(self, student_id: str, image_bytes: bytes) -> Dict[str, Any]:
        """Swap a student's reference photo and embedding in one update."""
        student = self.database.get_student(student_id)
        if student is None:
            raise KeyError(student_id)

        new_ref = self.photo_store.store(image_bytes, prefix=student_id)
        try:
            embedding = self.extractor.extract(image_bytes)
            updated = self.database.replace_enrollment(student_id, new_ref, embedding)
        except Exception as exc:
            logger.warning("[Enrollment] Photo replacement for %s failed: %s", student_id, exc)
            self._discard(new_ref)
            raise

        old_ref: Optional[str] = student.get("photo_ref")
        if old_ref and old_ref != new_ref:
            self._discard(old_ref)
        logger.info("[Enrollment] Replaced photo for %s", student_id)
        return updated

    def _discard(self, photo_ref: str) -> None:
        try:
            self.photo_store.delete(photo_ref)
        except PhotoStoreError as exc:
            logger.error("[Enrollment] Could not delete photo %s: %s", photo_ref, exc)
