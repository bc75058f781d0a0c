"""
Face descriptor extraction backed by the ``face_recognition`` library.

Wraps dlib's ResNet face encoder (128-dimensional embeddings). The same
extractor serves enrollment (one face per photo) and the live recognition
loop (every face in a frame).
"""
from __future__ import annotations

import io
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Tuple, Union

import numpy as np

from ..embeddings import DEFAULT_EMBEDDING_SIZE, as_embedding
from ..errors import ModelNotReady, NoFaceDetected

logger = logging.getLogger(__name__)

# (top, right, bottom, left), the order face_recognition uses
FaceLocation = Tuple[int, int, int, int]
ImageInput = Union[bytes, bytearray, str, Path, np.ndarray]


@dataclass(frozen=True)
class DetectedFace:
    location: FaceLocation
    embedding: np.ndarray

    @property
    def area(self) -> int:
        return face_area(self.location)


def face_area(location: FaceLocation) -> int:
    top, right, bottom, left = location
    return max(0, bottom - top) * max(0, right - left)


class DescriptorExtractor:
    """Computes face embeddings from images."""

    def __init__(
        self,
        backend: Any = None,
        detection_model: str = "hog",
        num_jitters: int = 1,
        embedding_size: int = DEFAULT_EMBEDDING_SIZE,
    ):
        """
        Args:
            backend: Object exposing the ``face_recognition`` API
                (``load_image_file``, ``face_locations``, ``face_encodings``).
                Defaults to the real library, imported on ``load_model()``.
            detection_model: ``"hog"`` (CPU) or ``"cnn"`` (GPU) face detector.
            num_jitters: Re-sampling count when encoding; higher is slower.
            embedding_size: Expected embedding dimension.
        """
        self.detection_model = detection_model
        self.num_jitters = max(1, int(num_jitters))
        self.embedding_size = embedding_size

        # Lazy loading
        self._backend = backend
        self._ready = False
        self._lock = threading.Lock()

    def load_model(self) -> None:
        """Import the face model; safe to call more than once."""
        with self._lock:
            if self._ready:
                return
            if self._backend is None:
                try:
                    import face_recognition
                except ImportError as exc:
                    raise ModelNotReady(
                        "face_recognition (dlib) is not installed"
                    ) from exc
                self._backend = face_recognition
            self._ready = True
        logger.info(
            "[Descriptor] Face model ready (detector=%s, jitters=%s)",
            self.detection_model,
            self.num_jitters,
        )

    def is_ready(self) -> bool:
        return self._ready

    def _require_ready(self):
        if not self._ready:
            raise ModelNotReady("Face model has not been loaded")
        return self._backend

    def load_image(self, image: ImageInput) -> np.ndarray:
        """Decode ``image`` into an RGB array."""
        backend = self._require_ready()
        if isinstance(image, np.ndarray):
            return image
        if isinstance(image, (bytes, bytearray)):
            return backend.load_image_file(io.BytesIO(bytes(image)))
        return backend.load_image_file(str(image))

    def extract(self, image: ImageInput) -> np.ndarray:
        """
        Embedding of the most prominent face in ``image``.

        Args:
            image: Encoded image bytes, a file path or an RGB array.

        Returns:
            Read-only embedding of ``embedding_size`` dimensions.

        Raises:
            ModelNotReady: ``load_model()`` has not completed.
            NoFaceDetected: The image contains no face.
        """
        backend = self._require_ready()
        rgb = self.load_image(image)

        locations = list(backend.face_locations(rgb, model=self.detection_model) or [])
        if not locations:
            raise NoFaceDetected("No face detected in the image")

        chosen = select_prominent_face(locations)
        if len(locations) > 1:
            logger.warning(
                "[Descriptor] %d faces found in enrollment image, using the largest at %s",
                len(locations),
                chosen,
            )

        encodings = backend.face_encodings(
            rgb, known_face_locations=[chosen], num_jitters=self.num_jitters
        )
        if not encodings:
            raise NoFaceDetected("Face detected but could not be encoded")
        return as_embedding(encodings[0], size=self.embedding_size)

    def detect_faces(self, rgb: np.ndarray) -> List[DetectedFace]:
        """Every face in a live frame with its embedding."""
        backend = self._require_ready()
        locations = list(backend.face_locations(rgb, model=self.detection_model) or [])
        if not locations:
            return []
        encodings = backend.face_encodings(
            rgb, known_face_locations=locations, num_jitters=self.num_jitters
        )
        return [
            DetectedFace(location=tuple(location), embedding=as_embedding(encoding, size=self.embedding_size))
            for location, encoding in zip(locations, encodings)
        ]


def select_prominent_face(locations: List[FaceLocation]) -> FaceLocation:
    """Largest bounding box; the first one wins on equal area."""
    best: Optional[FaceLocation] = None
    best_area = -1
    for location in locations:
        area = face_area(location)
        if area > best_area:
            best = tuple(location)
            best_area = area
    return best
