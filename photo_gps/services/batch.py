"""
Batch Processing

Ownership preflight and one-at-a-time reprocessing of a set of photos.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Sequence

from ..metrics import batch_size, record_photo_processed
from .exceptions import BatchOwnershipError
from .processor import PhotoProcessor, ProcessOutcome

logger = logging.getLogger(__name__)

# The vision service is shared and rate limited; one photo in flight per batch
BATCH_CONCURRENCY = 1

BUDGET_EXHAUSTED = "Batch time budget exhausted"


@dataclass
class BatchResult:
    """Aggregated outcomes of a batch run."""
    processed_count: int = 0
    failed_count: int = 0
    outcomes: list[ProcessOutcome] = field(default_factory=list)


class BatchProcessor:
    """
    Reprocesses a caller-owned set of photos.

    The whole batch is rejected before any side effect if a single photo is
    missing or owned by someone else. After that, every photo gets exactly
    one outcome, whether it succeeds, fails, or is skipped because the time
    budget ran out.
    """

    def __init__(
        self,
        repository,
        processor: PhotoProcessor,
        time_budget_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.repository = repository
        self.processor = processor
        self.time_budget_seconds = time_budget_seconds
        self.clock = clock

    async def process_batch(self, photo_ids: Sequence[uuid.UUID], owner_id: str) -> BatchResult:
        """
        Reprocess photos owned by owner_id.

        Raises:
            ValueError: if photo_ids is empty
            BatchOwnershipError: if any photo is missing or not owned
        """
        if not photo_ids:
            raise ValueError("At least one photo ID is required")

        photos = await self.repository.find_photos_by_ids_and_owner(photo_ids, owner_id)
        if len(photos) != len(photo_ids):
            logger.warning(
                "Rejecting batch: %d of %d photos found for owner",
                len(photos), len(photo_ids),
            )
            raise BatchOwnershipError(requested=len(photo_ids), found=len(photos))

        batch_size.observe(len(photos))
        deadline = self.clock() + self.time_budget_seconds
        slot = asyncio.Semaphore(BATCH_CONCURRENCY)

        async def run(photo) -> ProcessOutcome:
            async with slot:
                if self.clock() >= deadline:
                    return ProcessOutcome(photo_id=photo.id, success=False, error=BUDGET_EXHAUSTED)
                return await self.processor.process(photo)

        outcomes = await asyncio.gather(*(run(photo) for photo in photos))

        result = BatchResult(outcomes=list(outcomes))
        for outcome in result.outcomes:
            record_photo_processed(outcome.success)
            if outcome.success:
                result.processed_count += 1
            else:
                result.failed_count += 1

        logger.info(
            "Batch complete: %d processed, %d failed",
            result.processed_count, result.failed_count,
        )
        return result
