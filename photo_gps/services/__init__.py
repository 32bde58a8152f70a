"""
Photo GPS Services

Reprocessing pipeline, similarity retrieval and external integrations.
"""

from .batch import BatchProcessor, BatchResult
from .photos import DerivedState, NearestPhoto, PhotoRef, PhotoRepository
from .processor import PhotoProcessor, ProcessOutcome
from .similarity import SimilarityCandidate, SimilarityService
from .storage import StorageService
from .vision import VisionClient

__all__ = [
    "BatchProcessor",
    "BatchResult",
    "DerivedState",
    "NearestPhoto",
    "PhotoRef",
    "PhotoRepository",
    "PhotoProcessor",
    "ProcessOutcome",
    "SimilarityCandidate",
    "SimilarityService",
    "StorageService",
    "VisionClient",
]
