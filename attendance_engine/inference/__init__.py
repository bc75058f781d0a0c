"""
Face inference: descriptor extraction, gallery building and matching.

The face_recognition/dlib model is imported lazily by
``DescriptorExtractor.load_model()`` so importing this package stays cheap.
"""

from .descriptor import DescriptorExtractor, DetectedFace, select_prominent_face
from .gallery import (
    FaceGallery,
    GalleryBuilder,
    GalleryBuildResult,
    GalleryEntry,
    GalleryExclusion,
    RosterMember,
)
from .matcher import Matched, Matcher, MatchResult, Unknown, is_match

__all__ = [
    "DescriptorExtractor",
    "DetectedFace",
    "select_prominent_face",
    "FaceGallery",
    "GalleryBuilder",
    "GalleryBuildResult",
    "GalleryEntry",
    "GalleryExclusion",
    "RosterMember",
    "Matched",
    "Matcher",
    "MatchResult",
    "Unknown",
    "is_match",
]
