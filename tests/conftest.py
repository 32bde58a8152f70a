"""Shared fakes for pipeline and retrieval tests."""

import io
import uuid
from dataclasses import asdict, dataclass, field
from typing import Optional

import pytest
from PIL import Image

from photo_gps.services.exceptions import ArtifactFetchError
from photo_gps.services.imaging import TransformConfig, TransformProfiles
from photo_gps.services.storage import artifact_key
from photo_gps.services.vision import (
    CropResult,
    EmbedResult,
    SegmentResult,
    VerifyResult,
    VisionStatus,
)

OWNER = "user-1"
OTHER_OWNER = "user-2"


def make_jpeg(width: int = 64, height: int = 48, color=(120, 160, 90)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="JPEG")
    return buf.getvalue()


@dataclass
class FakePhoto:
    id: uuid.UUID
    user_id: str
    url: str
    original_name: str = "IMG_0001.JPG"
    filename: str = "img_0001.jpg"
    cropped_url: Optional[str] = None
    cropped_file_size: Optional[int] = None
    segmented_url: Optional[str] = None
    segmented_file_size: Optional[int] = None
    is_cropped: bool = False
    crop_confidence: Optional[float] = None
    subject_detected: bool = False
    embedding: Optional[list[float]] = None
    embedding_dim: Optional[int] = None
    embed_model: Optional[str] = None


class FakeRepository:
    """In-memory stand-in for PhotoRepository."""

    def __init__(self):
        self.photos: dict[uuid.UUID, FakePhoto] = {}
        self.nearest = []
        self.calls: list[str] = []
        self.writes = 0
        self.commits = 0
        self.rollbacks = 0
        self.fail_update = False

    def add(self, photo: FakePhoto) -> FakePhoto:
        self.photos[photo.id] = photo
        return photo

    async def find_photos_by_ids_and_owner(self, photo_ids, owner_id):
        self.calls.append("find_many")
        return [
            self.photos[pid] for pid in photo_ids
            if pid in self.photos and self.photos[pid].user_id == owner_id
        ]

    async def find_photo_for_owner(self, photo_id, owner_id):
        self.calls.append("find_one")
        photo = self.photos.get(photo_id)
        if photo is None or photo.user_id != owner_id:
            return None
        return photo

    async def has_embedding(self, photo_id):
        return self.photos[photo_id].embedding is not None

    async def update_photo_derived_state(self, photo_id, state):
        if self.fail_update:
            raise RuntimeError("database unavailable")
        self.writes += 1
        photo = self.photos[photo_id]
        for name, value in asdict(state).items():
            setattr(photo, name, value)

    async def set_embedding_vector(self, photo_id, vector):
        self.writes += 1
        self.photos[photo_id].embedding = vector

    async def query_nearest_by_embedding(self, owner_id, source_id, k):
        self.calls.append(f"nearest:{k}")
        return list(self.nearest)

    async def commit(self):
        self.commits += 1

    async def rollback(self):
        self.rollbacks += 1


class FakeStorage:
    """In-memory artifact store recording every put and delete in order."""

    def __init__(self):
        self.blobs: dict[str, bytes] = {}
        self.events: list[tuple[str, str]] = []
        self.fail_deletes = False

    def put(self, data: bytes, content_type: str = "image/jpeg", name: str = "artifact.jpg", *,
            scope: str) -> str:
        url = f"http://blobs.test/bucket/{artifact_key(scope, data, name)}"
        self.blobs[url] = data
        self.events.append(("put", url))
        return url

    def delete(self, url: str) -> bool:
        self.events.append(("delete", url))
        if self.fail_deletes:
            raise RuntimeError("delete failed")
        self.blobs.pop(url, None)
        return True

    def fetch(self, url: str) -> bytes:
        if url not in self.blobs:
            raise ArtifactFetchError(f"Failed to fetch image: {url}")
        return self.blobs[url]


class FakeVision:
    """Vision client returning canned results."""

    def __init__(self):
        self.crop_result = CropResult(status=VisionStatus.NOT_DETECTED)
        self.segment_result = SegmentResult(status=VisionStatus.NOT_DETECTED)
        self.embed_result = EmbedResult(status=VisionStatus.UNAVAILABLE)
        self.verify_result = VerifyResult(status=VisionStatus.UNAVAILABLE)
        self.calls: list[str] = []
        self.verify_candidates: list[bytes] = []

    async def detect_and_crop(self, image, confidence_threshold=None):
        self.calls.append("crop")
        return self.crop_result

    async def segment(self, image):
        self.calls.append("segment")
        return self.segment_result

    async def embed(self, image):
        self.calls.append("embed")
        return self.embed_result

    async def verify(self, query, candidates):
        self.calls.append("verify")
        self.verify_candidates = list(candidates)
        return self.verify_result


def full_detection(vision: FakeVision, vector_len: int = 384, confidence: float = 0.82):
    """Configure the fake for a subject found at every stage."""
    vision.crop_result = CropResult(
        status=VisionStatus.DETECTED,
        cropped_image=make_jpeg(300, 200),
        confidence=confidence,
    )
    vision.segment_result = SegmentResult(
        status=VisionStatus.DETECTED,
        segmented_image=make_jpeg(300, 200, color=(0, 0, 0)),
    )
    vision.embed_result = EmbedResult(
        status=VisionStatus.OK,
        vector=[0.01] * vector_len,
        dim=vector_len,
        model="dinov2-small",
    )


@pytest.fixture
def repository():
    return FakeRepository()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def vision():
    return FakeVision()


@pytest.fixture
def profiles():
    return TransformProfiles(
        working=TransformConfig(600, 600, 70),
        cropped=TransformConfig(400, 400, 70),
        segmented=TransformConfig(400, 400, 70),
    )


@pytest.fixture
def add_photo(repository, storage):
    """Create a stored original and its photo row."""

    def _add(owner: str = OWNER, **fields) -> FakePhoto:
        photo_id = fields.pop("id", None) or uuid.uuid4()
        url = f"http://blobs.test/bucket/originals/{photo_id}.jpg"
        storage.blobs[url] = make_jpeg(1200, 900)
        return repository.add(FakePhoto(id=photo_id, user_id=owner, url=url, **fields))

    return _add
