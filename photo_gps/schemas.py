"""
Pydantic Schemas

Request/Response models for the API. JSON uses camelCase field names.
"""
from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from photo_gps.config import get_settings


class CamelModel(BaseModel):
    """Base model serialising to camelCase and accepting either case."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


# ============================================================================
# Bulk processing
# ============================================================================

class BulkProcessRequest(CamelModel):
    """Request to reprocess a set of photos."""
    photo_ids: list[UUID] = Field(
        min_length=1,
        description="Photos to re-run through detection, segmentation and embedding",
    )

    @field_validator("photo_ids")
    @classmethod
    def check_photo_ids(cls, v: list[UUID]) -> list[UUID]:
        max_size = get_settings().max_batch_size
        if len(v) > max_size:
            raise ValueError(f"Cannot process more than {max_size} photos at once")
        if len(set(v)) != len(v):
            raise ValueError("Duplicate photo IDs")
        return v


class ProcessOutcomeResponse(CamelModel):
    """Outcome of reprocessing one photo."""
    photo_id: UUID
    success: bool
    error: str | None = None
    subject_detected: bool = False
    has_cropped: bool = False
    has_segmented: bool = False
    has_embedding: bool = False


class BulkProcessResponse(CamelModel):
    """Aggregated batch result. Returned even when every photo failed."""
    success: bool = True
    processed_count: int
    failed_count: int
    results: list[ProcessOutcomeResponse]


# ============================================================================
# Similarity
# ============================================================================

class SimilarPhotoResponse(CamelModel):
    """A similar photo with its ranking scores."""
    id: UUID
    filename: str
    url: str
    cropped_url: str | None = None
    segmented_url: str | None = None
    title: str | None = None
    description: str | None = None
    taken_at: datetime | None = None
    latitude: float | None = None
    longitude: float | None = None
    vector_distance: float
    final_score: float
    confidence_label: str
    is_same_subject: bool
    match_count: int
    inlier_count: int


# ============================================================================
# Health/Status Schemas
# ============================================================================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str = "healthy"
    version: str
    services: dict[str, str] = {}
