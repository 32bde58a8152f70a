"""
Photo Model

Uploaded wildlife photos with GPS/EXIF metadata and pipeline-derived state.
"""

import uuid
from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID

from photo_gps.database import Base

EMBEDDING_DIM = 384


class Photo(Base):
    """
    Catalog photo model.

    Each photo is owned by exactly one user and tracks:
    - Original upload location and EXIF/GPS metadata
    - Derived artifacts (cropped subject, background-removed subject)
    - Detection and embedding state written by the reprocessing pipeline
    """

    __tablename__ = "photos"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String(64), nullable=False, index=True)

    # File info
    filename = Column(String(255), nullable=False)
    original_name = Column(String(255), nullable=False)
    file_size = Column(Integer, nullable=True)  # In bytes
    mime_type = Column(String(100), nullable=True)
    url = Column(Text, nullable=False)

    # Derived artifacts
    cropped_url = Column(Text, nullable=True)
    cropped_file_size = Column(Integer, nullable=True)
    segmented_url = Column(Text, nullable=True)
    segmented_file_size = Column(Integer, nullable=True)

    # EXIF / GPS
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    taken_at = Column(DateTime, nullable=True)
    camera_make = Column(String(100), nullable=True)
    camera_model = Column(String(100), nullable=True)

    # User editable
    title = Column(String(200), nullable=True)
    description = Column(Text, nullable=True)

    # Detection state
    is_cropped = Column(Boolean, default=False, nullable=False)
    crop_confidence = Column(Float, nullable=True)
    subject_detected = Column(Boolean, default=False, nullable=False)

    # Embedding state
    embedding = Column(Vector(EMBEDDING_DIM), nullable=True)
    embedding_dim = Column(Integer, nullable=True)
    embed_model = Column(String(100), nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<Photo {self.id} user={self.user_id} detected={self.subject_detected}>"
