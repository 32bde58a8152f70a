"""
Similarity Retrieval

Two-stage lookup of catalog photos that show the same subject as a source
photo: vector nearest neighbours first, then geometric verification of the
segmented images. Falls back to vector scores when verification is not
available.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass

from ..metrics import record_similarity_request
from .exceptions import ArtifactFetchError, PhotoNotFoundError, SimilarityPreconditionError
from .photos import NearestPhoto

logger = logging.getLogger(__name__)

UNKNOWN_CONFIDENCE = "unknown"


@dataclass
class SimilarityCandidate:
    """A ranked similar photo."""
    photo: NearestPhoto
    vector_distance: float
    final_score: float
    confidence_label: str
    is_same_subject: bool
    match_count: int
    inlier_count: int


def vector_score(distance: float) -> float:
    """Score in [0, 1] from cosine distance."""
    return max(0.0, min(1.0, 1.0 - distance))


class SimilarityService:
    """Finds up to `limit` photos similar to a source photo."""

    def __init__(self, repository, storage, vision, limit: int = 4):
        self.repository = repository
        self.storage = storage
        self.vision = vision
        self.limit = limit

    async def find_similar(self, photo_id: uuid.UUID, owner_id: str) -> list[SimilarityCandidate]:
        """
        Rank the owner's photos by similarity to photo_id.

        Raises:
            PhotoNotFoundError: source missing or not owned
            SimilarityPreconditionError: source has no embedding or segmented image
        """
        source = await self.repository.find_photo_for_owner(photo_id, owner_id)
        if source is None:
            raise PhotoNotFoundError("Photo not found")

        if not await self.repository.has_embedding(source.id):
            raise SimilarityPreconditionError("Photo does not have an embedding vector")
        if not source.segmented_url:
            raise SimilarityPreconditionError("Photo does not have a segmented image")

        neighbours = await self.repository.query_nearest_by_embedding(owner_id, source.id, self.limit)
        neighbours = [n for n in neighbours if n.id != source.id and n.segmented_url][: self.limit]

        if not neighbours:
            record_similarity_request("empty")
            return []

        try:
            query_image, candidate_images = await self._fetch_images(source.segmented_url, neighbours)
        except ArtifactFetchError as e:
            logger.warning("Could not load images for verification of %s: %s", source.id, e)
            return self._fallback(neighbours)

        verification = await self.vision.verify(query_image, candidate_images)
        if not verification.success or not verification.results:
            logger.warning(
                "Verification unavailable for %s (%s), using vector similarity scores",
                source.id, verification.error or verification.status.value,
            )
            return self._fallback(neighbours)

        candidates = self._verified(neighbours, verification.results)
        if not candidates:
            logger.warning("No usable verify results for %s, using vector similarity scores", source.id)
            return self._fallback(neighbours)

        record_similarity_request("verified")
        return candidates

    async def _fetch_images(self, query_url: str, neighbours: list[NearestPhoto]) -> tuple[bytes, list[bytes]]:
        """Read the query and candidate segmented images; candidate order follows neighbours."""
        images = await asyncio.gather(
            asyncio.to_thread(self.storage.fetch, query_url),
            *(asyncio.to_thread(self.storage.fetch, n.segmented_url) for n in neighbours),
        )
        return images[0], list(images[1:])

    def _fallback(self, neighbours: list[NearestPhoto]) -> list[SimilarityCandidate]:
        record_similarity_request("fallback")
        # Neighbours are already distance-ascending, i.e. score-descending
        return [
            SimilarityCandidate(
                photo=n,
                vector_distance=n.distance,
                final_score=vector_score(n.distance),
                confidence_label=UNKNOWN_CONFIDENCE,
                is_same_subject=False,
                match_count=0,
                inlier_count=0,
            )
            for n in neighbours
        ]

    def _verified(self, neighbours: list[NearestPhoto], matches) -> list[SimilarityCandidate]:
        candidates = []
        seen = set()
        for match in matches:
            index = match.candidate_index
            if not 0 <= index < len(neighbours) or index in seen:
                logger.warning("Ignoring verify result with candidate_index=%s", index)
                continue
            seen.add(index)
            photo = neighbours[index]
            candidates.append(
                SimilarityCandidate(
                    photo=photo,
                    vector_distance=photo.distance,
                    final_score=match.score,
                    confidence_label=match.confidence_label,
                    is_same_subject=match.is_same,
                    match_count=match.match_count,
                    inlier_count=match.inlier_count,
                )
            )
        candidates.sort(key=lambda c: c.final_score, reverse=True)
        return candidates
