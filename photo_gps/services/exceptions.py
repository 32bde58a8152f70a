"""
Service Exceptions

Request-level failures raised by the pipeline and retrieval services.
Stage-level degradations are never raised; see the vision client results.
"""


class PhotoCatalogError(Exception):
    """Base class for catalog service errors."""


class PhotoNotFoundError(PhotoCatalogError):
    """Photo does not exist or is not owned by the caller."""


class BatchOwnershipError(PhotoCatalogError):
    """Some requested photos were not found or belong to another user."""

    def __init__(self, requested: int, found: int):
        self.requested = requested
        self.found = found
        super().__init__(
            f"Only {found} of {requested} requested photos were found for this owner"
        )


class SimilarityPreconditionError(PhotoCatalogError):
    """Source photo lacks an embedding or a segmented image."""


class ArtifactFetchError(PhotoCatalogError):
    """Stored image bytes could not be read."""
