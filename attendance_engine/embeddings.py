"""Embedding validation and (de)serialisation helpers."""
from __future__ import annotations

from typing import Any, Optional

import numpy as np

from .errors import InvalidEmbedding

DEFAULT_EMBEDDING_SIZE = 128
EMBEDDING_DTYPE = np.float64


def as_embedding(values: Any, size: int = DEFAULT_EMBEDDING_SIZE) -> np.ndarray:
    """Validate ``values`` and return a read-only 1-D float64 embedding.

    Every path that brings a vector into the engine goes through here, so a
    model swap or a corrupt database row surfaces as ``InvalidEmbedding``
    instead of a shape error deep inside the matcher.
    """
    if values is None:
        raise InvalidEmbedding("Embedding is missing")
    try:
        vector = np.array(values, dtype=EMBEDDING_DTYPE)
    except (TypeError, ValueError) as exc:
        raise InvalidEmbedding(f"Embedding is not numeric: {exc}") from exc

    if vector.ndim != 1:
        raise InvalidEmbedding(f"Embedding must be 1-D, got shape {vector.shape}")
    if vector.shape[0] != size:
        raise InvalidEmbedding(
            f"Embedding must have {size} dimensions, got {vector.shape[0]}"
        )
    if not np.all(np.isfinite(vector)):
        raise InvalidEmbedding("Embedding contains NaN or infinite values")

    vector.flags.writeable = False
    return vector


def embedding_to_blob(embedding: np.ndarray) -> bytes:
    return np.asarray(embedding, dtype=EMBEDDING_DTYPE).tobytes()


def embedding_from_blob(blob: Optional[bytes], size: int = DEFAULT_EMBEDDING_SIZE) -> Optional[np.ndarray]:
    """Decode a stored BLOB; ``None`` stays ``None``."""
    if blob is None:
        return None
    if len(blob) != size * np.dtype(EMBEDDING_DTYPE).itemsize:
        raise InvalidEmbedding(
            f"Stored embedding has {len(blob)} bytes, expected {size} float64 values"
        )
    return as_embedding(np.frombuffer(blob, dtype=EMBEDDING_DTYPE), size=size)


def euclidean_distances(references: np.ndarray, embedding: np.ndarray) -> np.ndarray:
    """Distances from ``embedding`` to each row of ``references``."""
    if len(references) == 0:
        return np.empty((0,), dtype=EMBEDDING_DTYPE)
    return np.linalg.norm(np.asarray(references) - embedding, axis=1)
