"""
Database Models

SQLAlchemy ORM models for the photo catalog.
"""

from photo_gps.models.photo import Photo

__all__ = ["Photo"]
