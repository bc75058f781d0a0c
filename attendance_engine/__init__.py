"""
Facial-recognition classroom attendance engine.

Enrollment turns a photo into a 128-d face embedding, a recognition loop
matches faces in camera frames against a per-session gallery, and the
attendance ledger records each student present at most once per day before
sweeping the rest of the roster into ``absent`` when the session closes.
"""

from .attendance import AttendanceLedger, AttendanceRecord, LedgerState
from .enrollment import EnrollmentService
from .errors import (
    AttendanceEngineError,
    CameraUnavailable,
    DuplicatePresent,
    EmptyGallery,
    InvalidEmbedding,
    ModelNotReady,
    NoFaceDetected,
    PartialGalleryBuild,
    PersistenceFailure,
    PhotoStoreError,
    SessionStateError,
    StudentAlreadyEnrolled,
)
from .inference import (
    DescriptorExtractor,
    FaceGallery,
    GalleryBuilder,
    GalleryBuildResult,
    Matched,
    Matcher,
    RosterMember,
    Unknown,
)
from .recognition import LoopState, RecognitionEvent, RecognitionLoop
from .session import AttendanceSession
from .vision import CameraManager, DefaultCameraProvider

__version__ = "1.0.0"

__all__ = [
    "AttendanceLedger",
    "AttendanceRecord",
    "LedgerState",
    "EnrollmentService",
    "AttendanceEngineError",
    "CameraUnavailable",
    "DuplicatePresent",
    "EmptyGallery",
    "InvalidEmbedding",
    "ModelNotReady",
    "NoFaceDetected",
    "PartialGalleryBuild",
    "PersistenceFailure",
    "PhotoStoreError",
    "SessionStateError",
    "StudentAlreadyEnrolled",
    "DescriptorExtractor",
    "FaceGallery",
    "GalleryBuilder",
    "GalleryBuildResult",
    "Matched",
    "Matcher",
    "RosterMember",
    "Unknown",
    "LoopState",
    "RecognitionEvent",
    "RecognitionLoop",
    "AttendanceSession",
    "CameraManager",
    "DefaultCameraProvider",
]
