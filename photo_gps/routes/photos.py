"""
Photo Routes

Endpoints for reprocessing photos and finding similar photos.
"""

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import get_current_owner
from ..config import get_settings
from ..database import get_db
from ..schemas import (
    BulkProcessRequest,
    BulkProcessResponse,
    ProcessOutcomeResponse,
    SimilarPhotoResponse,
)
from ..services.batch import BatchProcessor
from ..services.exceptions import (
    BatchOwnershipError,
    PhotoNotFoundError,
    SimilarityPreconditionError,
)
from ..services.imaging import TransformProfiles
from ..services.photos import PhotoRepository
from ..services.processor import PhotoProcessor
from ..services.similarity import SimilarityCandidate, SimilarityService
from ..services.storage import get_storage_service
from ..services.vision import get_vision_client

logger = logging.getLogger(__name__)
settings = get_settings()
router = APIRouter(prefix="/photos", tags=["photos"])


# ============================================================================
# Dependencies
# ============================================================================

def get_batch_processor(db: AsyncSession = Depends(get_db)) -> BatchProcessor:
    """Wire a batch processor to this request's session."""
    repository = PhotoRepository(db)
    processor = PhotoProcessor(
        repository=repository,
        storage=get_storage_service(),
        vision=get_vision_client(),
        profiles=TransformProfiles.from_settings(settings),
        embedding_dim=settings.embedding_dim,
        confidence_threshold=settings.crop_confidence_threshold,
    )
    return BatchProcessor(
        repository=repository,
        processor=processor,
        time_budget_seconds=settings.batch_time_budget_seconds,
    )


def get_similarity_service(db: AsyncSession = Depends(get_db)) -> SimilarityService:
    """Wire a similarity service to this request's session."""
    return SimilarityService(
        repository=PhotoRepository(db),
        storage=get_storage_service(),
        vision=get_vision_client(),
        limit=settings.similar_photos_limit,
    )


# ============================================================================
# Helper functions
# ============================================================================

def candidate_to_response(candidate: SimilarityCandidate) -> SimilarPhotoResponse:
    """Convert a ranked candidate to response schema."""
    photo = candidate.photo
    return SimilarPhotoResponse(
        id=photo.id,
        filename=photo.filename,
        url=photo.url,
        cropped_url=photo.cropped_url,
        segmented_url=photo.segmented_url,
        title=photo.title,
        description=photo.description,
        taken_at=photo.taken_at,
        latitude=photo.latitude,
        longitude=photo.longitude,
        vector_distance=candidate.vector_distance,
        final_score=candidate.final_score,
        confidence_label=candidate.confidence_label,
        is_same_subject=candidate.is_same_subject,
        match_count=candidate.match_count,
        inlier_count=candidate.inlier_count,
    )


# ============================================================================
# Bulk processing
# ============================================================================

@router.post("/bulk-process", response_model=BulkProcessResponse)
async def bulk_process(
    data: BulkProcessRequest,
    owner_id: str = Depends(get_current_owner),
    batch: BatchProcessor = Depends(get_batch_processor),
) -> BulkProcessResponse:
    """
    Re-run detection, segmentation and embedding for a set of photos.

    The request is rejected without side effects if any photo is missing
    or belongs to another user. Individual photo failures are reported in
    the results and do not fail the request.
    """
    try:
        result = await batch.process_batch(data.photo_ids, owner_id)
    except BatchOwnershipError as e:
        logger.warning("Bulk process rejected: %s", e)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Some photos were not found or do not belong to you",
        )
    except Exception:
        logger.error("Bulk process error", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to process photos",
        )

    return BulkProcessResponse(
        processed_count=result.processed_count,
        failed_count=result.failed_count,
        results=[
            ProcessOutcomeResponse(
                photo_id=o.photo_id,
                success=o.success,
                error=o.error,
                subject_detected=o.subject_detected,
                has_cropped=o.has_cropped,
                has_segmented=o.has_segmented,
                has_embedding=o.has_embedding,
            )
            for o in result.outcomes
        ],
    )


# ============================================================================
# Similarity
# ============================================================================

@router.get("/{photo_id}/similar", response_model=list[SimilarPhotoResponse])
async def find_similar(
    photo_id: uuid.UUID,
    owner_id: str = Depends(get_current_owner),
    similarity: SimilarityService = Depends(get_similarity_service),
) -> list[SimilarPhotoResponse]:
    """
    Find up to four of the caller's photos showing the same subject.

    Requires the source photo to have an embedding and a segmented image.
    """
    try:
        candidates = await similarity.find_similar(photo_id, owner_id)
    except PhotoNotFoundError:
        raise HTTPException(status_code=404, detail="Photo not found")
    except SimilarityPreconditionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception:
        logger.error("Error finding similar photos", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to find similar photos",
        )

    return [candidate_to_response(c) for c in candidates]
