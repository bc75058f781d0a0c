"""Error taxonomy shared by the attendance engine."""
from __future__ import annotations

from typing import Optional, Sequence


class AttendanceEngineError(RuntimeError):
    """Base class for every engine failure."""


class ModelNotReady(AttendanceEngineError):
    """Raised when the embedding model is used before it has been loaded."""


class NoFaceDetected(AttendanceEngineError):
    """Raised when an image contains no detectable face."""


class CameraUnavailable(AttendanceEngineError):
    """Raised when the capture device cannot be opened or has been lost."""


class EmptyGallery(AttendanceEngineError):
    """Raised when a recognition session has nobody to recognise."""


class PartialGalleryBuild(AttendanceEngineError):
    """Some roster members could not be added to the gallery.

    Normally handed back to the operator as a warning; only raised when the
    deployment requires a complete gallery before starting a session.
    """

    def __init__(self, exclusions: Sequence, message: Optional[str] = None) -> None:
        self.exclusions = list(exclusions)
        if message is None:
            ids = ", ".join(str(getattr(item, "identity", item)) for item in self.exclusions)
            message = f"{len(self.exclusions)} roster member(s) excluded from gallery: {ids}"
        super().__init__(message)


class PersistenceFailure(AttendanceEngineError):
    """Transient storage failure; the caller may retry."""


class DuplicatePresent(AttendanceEngineError):
    """An attendance outcome already exists for (student, course, day)."""

    def __init__(self, student_id: str, course: str, existing_status: str = "present") -> None:
        self.student_id = student_id
        self.course = course
        self.existing_status = existing_status
        super().__init__(
            f"{student_id} already recorded {existing_status} for {course} today"
        )


class StudentAlreadyEnrolled(AttendanceEngineError):
    """Raised when enrolling a student id that already exists."""


class SessionStateError(AttendanceEngineError):
    """Raised on an illegal state-machine transition."""


class PhotoStoreError(AttendanceEngineError):
    """Raised when a photo cannot be stored, fetched or deleted."""


class InvalidEmbedding(ValueError):
    """Raised when a vector is not a valid face embedding."""


__all__ = [
    "AttendanceEngineError",
    "ModelNotReady",
    "NoFaceDetected",
    "CameraUnavailable",
    "EmptyGallery",
    "PartialGalleryBuild",
    "PersistenceFailure",
    "DuplicatePresent",
    "StudentAlreadyEnrolled",
    "SessionStateError",
    "PhotoStoreError",
    "InvalidEmbedding",
]
