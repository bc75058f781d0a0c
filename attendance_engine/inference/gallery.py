"""Per-session face gallery built from a course roster."""
from __future__ import annotations

import logging
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from ..embeddings import as_embedding
from ..errors import (
    InvalidEmbedding,
    ModelNotReady,
    NoFaceDetected,
    PartialGalleryBuild,
    PhotoStoreError,
)
from .descriptor import DescriptorExtractor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RosterMember:
    identity: str
    photo_refs: Tuple[str, ...] = ()
    display_name: Optional[str] = None
    stored_embedding: Optional[np.ndarray] = field(default=None, compare=False)

    @property
    def name(self) -> str:
        return self.display_name or self.identity


@dataclass(frozen=True)
class GalleryEntry:
    identity: str
    embeddings: Tuple[np.ndarray, ...]
    display_name: Optional[str] = None

    def matrix(self) -> np.ndarray:
        return np.vstack(self.embeddings)


class FaceGallery:
    """Read-only snapshot of reference embeddings for one session."""

    def __init__(self, entries: Iterable[GalleryEntry] = ()):
        self._entries: Tuple[GalleryEntry, ...] = tuple(entries)
        self._by_identity: Dict[str, GalleryEntry] = {e.identity: e for e in self._entries}

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[GalleryEntry]:
        return iter(self._entries)

    def __contains__(self, identity: object) -> bool:
        return identity in self._by_identity

    def identities(self) -> List[str]:
        return [entry.identity for entry in self._entries]

    def entry(self, identity: str) -> Optional[GalleryEntry]:
        return self._by_identity.get(identity)

    def is_empty(self) -> bool:
        return not self._entries


@dataclass(frozen=True)
class GalleryExclusion:
    identity: str
    reason: str
    detail: str = ""


@dataclass
class GalleryBuildResult:
    gallery: FaceGallery
    exclusions: List[GalleryExclusion] = field(default_factory=list)

    def excluded_identities(self) -> List[str]:
        return [item.identity for item in self.exclusions]

    def partial_failure(self) -> Optional[PartialGalleryBuild]:
        if not self.exclusions:
            return None
        return PartialGalleryBuild(self.exclusions)

    def describe(self) -> Dict[str, Any]:
        return {
            "count": len(self.gallery),
            "excluded": [
                {"identity": item.identity, "reason": item.reason, "detail": item.detail}
                for item in self.exclusions
            ],
        }


class _MemberFailed(Exception):
    def __init__(self, reason: str, detail: str):
        super().__init__(detail)
        self.reason = reason
        self.detail = detail


class GalleryBuilder:
    """Runs the descriptor extractor over every roster member's photo(s)."""

    def __init__(
        self,
        extractor: DescriptorExtractor,
        photo_store: Any,
        item_timeout: float = 10.0,
        max_workers: int = 4,
        prefer_stored_descriptors: bool = False,
    ):
        self.extractor = extractor
        self.photo_store = photo_store
        self.item_timeout = item_timeout
        self.max_workers = max(1, int(max_workers))
        self.prefer_stored_descriptors = prefer_stored_descriptors

    def build(self, roster: Sequence[RosterMember]) -> GalleryBuildResult:
        if not self.extractor.is_ready():
            raise ModelNotReady("Cannot build a gallery before the face model is loaded")

        members = self._unique_members(roster)
        logger.info("[Gallery] Building gallery for %d roster member(s)", len(members))

        if not members:
            return GalleryBuildResult(FaceGallery(), [])

        outcomes = self._run(members)
        ordered = [outcomes[member.identity] for member in members]
        entries = [item for item in ordered if isinstance(item, GalleryEntry)]
        exclusions = [item for item in ordered if isinstance(item, GalleryExclusion)]

        for item in exclusions:
            logger.warning(
                "[Gallery] Excluded %s (%s): %s", item.identity, item.reason, item.detail
            )
        logger.info(
            "[Gallery] Gallery ready: %d identities, %d excluded",
            len(entries),
            len(exclusions),
        )
        return GalleryBuildResult(FaceGallery(entries), exclusions)

    def _run(self, members: List[RosterMember]) -> Dict[str, Any]:
        """Embed every member, at most ``max_workers`` at a time.

        Each member's timeout counts from the moment it is handed to a
        worker. A member that times out gives up its slot, so members
        queued behind a hung fetch still get their full timeout.
        """
        # Abandoned workers keep their thread, so the pool may need one per member
        executor = ThreadPoolExecutor(max_workers=len(members), thread_name_prefix="gallery-build")
        waiting = list(members)
        running: Dict[Future, Tuple[RosterMember, float]] = {}
        outcomes: Dict[str, Any] = {}
        try:
            while waiting or running:
                while waiting and len(running) < self.max_workers:
                    member = waiting.pop(0)
                    running[executor.submit(self._embed_member, member)] = (member, time.monotonic())

                deadline = min(started for _, started in running.values()) + self.item_timeout
                done, _ = wait(
                    list(running),
                    timeout=max(0.0, deadline - time.monotonic()),
                    return_when=FIRST_COMPLETED,
                )
                for future in done:
                    member, _ = running.pop(future)
                    outcomes[member.identity] = self._outcome(member, future)

                now = time.monotonic()
                for future, (member, started) in list(running.items()):
                    if now - started >= self.item_timeout:
                        running.pop(future)
                        future.cancel()
                        outcomes[member.identity] = GalleryExclusion(
                            member.identity, "timeout", f"no result within {self.item_timeout}s"
                        )
        finally:
            # A hung fetch must not hold the build hostage
            executor.shutdown(wait=False, cancel_futures=True)
        return outcomes

    def _outcome(self, member: RosterMember, future: Future):
        try:
            embeddings = future.result()
        except _MemberFailed as failure:
            return GalleryExclusion(member.identity, failure.reason, failure.detail)
        return GalleryEntry(
            identity=member.identity,
            embeddings=tuple(embeddings),
            display_name=member.display_name,
        )

    def _unique_members(self, roster: Sequence[RosterMember]) -> List[RosterMember]:
        seen = set()
        members = []
        for member in roster:
            if member.identity in seen:
                logger.warning("[Gallery] Duplicate roster identity %s ignored", member.identity)
                continue
            seen.add(member.identity)
            members.append(member)
        return members

    def _embed_member(self, member: RosterMember) -> List[np.ndarray]:
        if self.prefer_stored_descriptors and member.stored_embedding is not None:
            try:
                return [as_embedding(member.stored_embedding, size=self.extractor.embedding_size)]
            except InvalidEmbedding as exc:
                logger.warning(
                    "[Gallery] Stored descriptor for %s is invalid, recomputing: %s",
                    member.identity,
                    exc,
                )

        if not member.photo_refs:
            raise _MemberFailed("no_photo", "roster member has no enrollment photo")

        embeddings: List[np.ndarray] = []
        failures: List[Tuple[str, str]] = []
        for ref in member.photo_refs:
            try:
                image_bytes = self.photo_store.fetch(ref)
                embeddings.append(self.extractor.extract(image_bytes))
            except ModelNotReady:
                raise
            except NoFaceDetected as exc:
                failures.append(("no_face", f"{ref}: {exc}"))
            except PhotoStoreError as exc:
                failures.append(("fetch_failed", f"{ref}: {exc}"))
            except InvalidEmbedding as exc:
                failures.append(("invalid_embedding", f"{ref}: {exc}"))
            except Exception as exc:
                logger.debug("[Gallery] Unexpected error for %s", ref, exc_info=True)
                failures.append(("error", f"{ref}: {exc}"))

        if not embeddings:
            reason = failures[0][0] if failures else "error"
            raise _MemberFailed(reason, "; ".join(detail for _, detail in failures))
        for reason, detail in failures:
            logger.info("[Gallery] %s: skipped reference photo (%s) %s", member.identity, reason, detail)
        return embeddings
