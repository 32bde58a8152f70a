"""
Photo Processor

Runs one photo through detect -> segment -> embed and replaces its derived
state in storage and the database.
"""

import asyncio
import logging
import re
import uuid
from dataclasses import dataclass
from typing import Awaitable, Optional

from .exceptions import ArtifactFetchError
from .imaging import TransformProfiles, transform_image
from .photos import DerivedState
from .storage import sanitize_for_log

logger = logging.getLogger(__name__)

JPEG = "image/jpeg"


@dataclass
class ProcessOutcome:
    """Per-photo result of a reprocessing pass. Returned to the caller, never stored."""
    photo_id: uuid.UUID
    success: bool
    error: Optional[str] = None
    subject_detected: bool = False
    has_cropped: bool = False
    has_segmented: bool = False
    has_embedding: bool = False


def derived_name(original_name: str, suffix: str) -> str:
    """'IMG_0042.JPG' -> 'IMG_0042-cropped.jpg'."""
    base = re.sub(r"[\\/]", "_", original_name or "photo")
    stem = re.sub(r"\.\w+$", "", base) or "photo"
    return f"{stem}-{suffix}.jpg"


async def settle_all(*aws: Awaitable) -> list[BaseException]:
    """
    Wait for every awaitable to finish and return the failures.

    Nothing is cancelled when one of them fails.
    """
    results = await asyncio.gather(*aws, return_exceptions=True)
    return [r for r in results if isinstance(r, BaseException)]


class PhotoProcessor:
    """
    Reprocesses a single photo.

    Pipeline:
    1. Fetch original and resize to working size
    2. Detect and crop the subject
    3. Delete the previous cropped/segmented artifacts
    4. Upload the new cropped artifact
    5. Segment, upload, and embed the segmented artifact
    6. Overwrite derived state and embedding in one transaction

    Degraded vision stages leave their fields empty but still count as
    success. Only the original fetch and unexpected errors fail the photo.
    """

    def __init__(
        self,
        repository,
        storage,
        vision,
        profiles: TransformProfiles,
        embedding_dim: int = 384,
        confidence_threshold: Optional[float] = None,
    ):
        self.repository = repository
        self.storage = storage
        self.vision = vision
        self.profiles = profiles
        self.embedding_dim = embedding_dim
        self.confidence_threshold = confidence_threshold

    async def process(self, photo) -> ProcessOutcome:
        """Reprocess one photo; never raises."""
        try:
            original = await asyncio.to_thread(self.storage.fetch, photo.url)
        except ArtifactFetchError as e:
            logger.error("Failed to fetch original for photo %s: %s", photo.id, e)
            return ProcessOutcome(photo_id=photo.id, success=False, error="Failed to fetch original image")
        except Exception as e:
            logger.error("Unexpected error fetching original for photo %s: %s", photo.id, e, exc_info=True)
            return ProcessOutcome(photo_id=photo.id, success=False, error=str(e) or type(e).__name__)

        try:
            outcome = await self._reprocess(photo, original)
        except Exception as e:
            logger.error("Failed to process photo %s: %s", photo.id, e, exc_info=True)
            await self._rollback(photo.id)
            return ProcessOutcome(photo_id=photo.id, success=False, error=str(e) or type(e).__name__)

        logger.info(
            "Processed photo %s: detected=%s cropped=%s segmented=%s embedding=%s",
            photo.id, outcome.subject_detected, outcome.has_cropped,
            outcome.has_segmented, outcome.has_embedding,
        )
        return outcome

    async def _reprocess(self, photo, original: bytes) -> ProcessOutcome:
        working = transform_image(original, self.profiles.working)

        crop = await self.vision.detect_and_crop(working, self.confidence_threshold)

        # Old artifacts go before new ones are written; a photo reuses its own keys
        await self._delete_stale_artifacts(photo)

        state = DerivedState(
            subject_detected=crop.detected,
            crop_confidence=crop.confidence,
        )
        vector: Optional[list[float]] = None

        if crop.detected:
            cropped = transform_image(crop.cropped_image, self.profiles.cropped)
            state.cropped_url = await self._upload(
                photo.id, cropped, derived_name(photo.original_name, "cropped"),
            )
            state.cropped_file_size = len(cropped)
            state.is_cropped = True

            segment = await self.vision.segment(working)
            if segment.detected:
                segmented = transform_image(segment.segmented_image, self.profiles.segmented)
                state.segmented_url = await self._upload(
                    photo.id, segmented, derived_name(photo.original_name, "segmented"),
                )
                state.segmented_file_size = len(segmented)

                embed = await self.vision.embed(segmented)
                state.embedding_dim = embed.dim
                state.embed_model = embed.model
                vector = self._accepted_vector(photo.id, embed)

        await self.repository.update_photo_derived_state(photo.id, state)
        # Always written so a stale vector never survives new metadata
        await self.repository.set_embedding_vector(photo.id, vector)
        await self.repository.commit()

        return ProcessOutcome(
            photo_id=photo.id,
            success=True,
            subject_detected=state.subject_detected,
            has_cropped=state.cropped_url is not None,
            has_segmented=state.segmented_url is not None,
            has_embedding=vector is not None,
        )

    def _accepted_vector(self, photo_id, embed) -> Optional[list[float]]:
        """The embedding vector if it has the expected dimension, else None."""
        if not embed.success or embed.vector is None:
            return None
        if len(embed.vector) != self.embedding_dim or embed.dim != self.embedding_dim:
            logger.warning(
                "Discarding embedding for photo %s: got %d values (dim=%s), expected %d",
                photo_id, len(embed.vector), embed.dim, self.embedding_dim,
            )
            return None
        return embed.vector

    async def _delete_stale_artifacts(self, photo):
        urls = [url for url in (photo.cropped_url, photo.segmented_url) if url]
        if not urls:
            return
        failures = await settle_all(
            *(asyncio.to_thread(self.storage.delete, url) for url in urls)
        )
        for failure in failures:
            logger.warning("Stale artifact cleanup failed for photo %s: %s", photo.id, failure)

    async def _upload(self, photo_id, data: bytes, name: str) -> str:
        url = await asyncio.to_thread(self.storage.put, data, JPEG, name, scope=str(photo_id))
        logger.debug("Stored %s", sanitize_for_log(name))
        return url

    async def _rollback(self, photo_id):
        try:
            await self.repository.rollback()
        except Exception as e:
            logger.error("Rollback failed for photo %s: %s", photo_id, e)
