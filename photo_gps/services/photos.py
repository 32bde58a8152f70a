"""
Photo Repository

Persistence operations used by the reprocessing pipeline and similarity
retrieval. Every query is scoped to the owning user.
"""

import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Photo

logger = logging.getLogger(__name__)


@dataclass
class DerivedState:
    """
    Pipeline-owned columns of a photo.

    Written as a whole on every reprocessing pass, never merged.
    """
    cropped_url: Optional[str] = None
    cropped_file_size: Optional[int] = None
    segmented_url: Optional[str] = None
    segmented_file_size: Optional[int] = None
    is_cropped: bool = False
    crop_confidence: Optional[float] = None
    subject_detected: bool = False
    embedding_dim: Optional[int] = None
    embed_model: Optional[str] = None


@dataclass
class PhotoRef:
    """
    Snapshot of the columns the pipeline reads before overwriting.

    Plain values rather than ORM instances, so a per-photo rollback cannot
    expire photos still waiting in the same batch.
    """
    id: uuid.UUID
    user_id: str
    url: str
    original_name: str
    cropped_url: Optional[str]
    segmented_url: Optional[str]


@dataclass
class NearestPhoto:
    """Display projection of a photo returned by the vector index."""
    id: uuid.UUID
    filename: str
    url: str
    cropped_url: Optional[str]
    segmented_url: Optional[str]
    title: Optional[str]
    description: Optional[str]
    taken_at: Optional[datetime]
    latitude: Optional[float]
    longitude: Optional[float]
    distance: float


def _select_refs():
    return select(
        Photo.id,
        Photo.user_id,
        Photo.url,
        Photo.original_name,
        Photo.cropped_url,
        Photo.segmented_url,
    )


class PhotoRepository:
    """SQLAlchemy-backed photo persistence."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_photos_by_ids_and_owner(
        self,
        photo_ids: Sequence[uuid.UUID],
        owner_id: str,
    ) -> list[PhotoRef]:
        """Load the requested photos that belong to the owner, in request order."""
        result = await self.session.execute(
            _select_refs().where(Photo.id.in_(photo_ids), Photo.user_id == owner_id)
        )
        by_id = {row.id: PhotoRef(**row._asdict()) for row in result.all()}
        return [by_id[pid] for pid in photo_ids if pid in by_id]

    async def find_photo_for_owner(self, photo_id: uuid.UUID, owner_id: str) -> Optional[PhotoRef]:
        """Load one photo if the owner has it."""
        result = await self.session.execute(
            _select_refs().where(Photo.id == photo_id, Photo.user_id == owner_id)
        )
        row = result.one_or_none()
        return PhotoRef(**row._asdict()) if row else None

    async def has_embedding(self, photo_id: uuid.UUID) -> bool:
        """Whether a stored embedding vector exists for the photo."""
        result = await self.session.execute(
            select(Photo.embedding.isnot(None)).where(Photo.id == photo_id)
        )
        return bool(result.scalar())

    async def update_photo_derived_state(self, photo_id: uuid.UUID, state: DerivedState):
        """Overwrite all derived columns in one statement."""
        await self.session.execute(
            update(Photo)
            .where(Photo.id == photo_id)
            .values(**asdict(state), updated_at=datetime.utcnow())
        )

    async def set_embedding_vector(self, photo_id: uuid.UUID, vector: Optional[list[float]]):
        """Store the embedding vector, or clear it with None."""
        await self.session.execute(
            update(Photo).where(Photo.id == photo_id).values(embedding=vector)
        )

    async def query_nearest_by_embedding(
        self,
        owner_id: str,
        source_id: uuid.UUID,
        k: int,
    ) -> list[NearestPhoto]:
        """
        Nearest photos to the source by cosine distance.

        Only the owner's photos with both an embedding and a segmented image
        are considered; the source itself is excluded. Results are ordered by
        ascending distance.
        """
        source_embedding = (
            select(Photo.embedding).where(Photo.id == source_id).scalar_subquery()
        )
        distance = Photo.embedding.cosine_distance(source_embedding).label("distance")

        result = await self.session.execute(
            select(
                Photo.id,
                Photo.filename,
                Photo.url,
                Photo.cropped_url,
                Photo.segmented_url,
                Photo.title,
                Photo.description,
                Photo.taken_at,
                Photo.latitude,
                Photo.longitude,
                distance,
            )
            .where(
                Photo.user_id == owner_id,
                Photo.id != source_id,
                Photo.embedding.isnot(None),
                Photo.segmented_url.isnot(None),
            )
            .order_by(distance)
            .limit(k)
        )
        return [NearestPhoto(**row._asdict()) for row in result.all()]

    async def commit(self):
        await self.session.commit()

    async def rollback(self):
        await self.session.rollback()
