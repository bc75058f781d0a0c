"""Nearest-neighbour identity matching over a face gallery."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional, Union

import numpy as np

from ..embeddings import as_embedding, euclidean_distances
from .gallery import FaceGallery

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.6
# Candidates closer than this to the best distance count as a tie. Real
# embeddings essentially never tie; when they do the first identity in
# gallery (roster) order wins, with no secondary criterion.
TIE_TOLERANCE = 1e-9


@dataclass(frozen=True)
class Matched:
    identity: str
    distance: float
    display_name: Optional[str] = None


@dataclass(frozen=True)
class Unknown:
    distance: float


MatchResult = Union[Matched, Unknown]


def is_match(result: MatchResult) -> bool:
    return isinstance(result, Matched)


class Matcher:
    """Accepts the closest identity when its distance is within the threshold."""

    def __init__(self, threshold: float = DEFAULT_THRESHOLD):
        threshold = float(threshold)
        if not math.isfinite(threshold) or threshold <= 0:
            raise ValueError(f"Distance threshold must be a positive number, got {threshold}")
        self._threshold = threshold

    @property
    def threshold(self) -> float:
        return self._threshold

    def match(self, embedding, gallery: FaceGallery) -> MatchResult:
        if gallery.is_empty():
            return Unknown(distance=math.inf)

        entries = list(gallery)
        live = as_embedding(embedding, size=entries[0].embeddings[0].shape[0])

        per_identity = np.array(
            [float(euclidean_distances(entry.matrix(), live).min()) for entry in entries]
        )
        best_distance = float(per_identity.min())
        best_index = int(np.flatnonzero(per_identity <= best_distance + TIE_TOLERANCE)[0])
        best_entry = entries[best_index]

        if best_distance <= self._threshold:
            return Matched(
                identity=best_entry.identity,
                distance=best_distance,
                display_name=best_entry.display_name,
            )
        logger.debug(
            "[Matcher] Closest %s at %.4f exceeds threshold %.3f",
            best_entry.identity,
            best_distance,
            self._threshold,
        )
        return Unknown(distance=best_distance)
