import uuid
from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from photo_gps import main
from photo_gps.main import app
from photo_gps.routes.photos import get_batch_processor, get_similarity_service
from photo_gps.services.batch import BatchResult
from photo_gps.services.exceptions import (
    BatchOwnershipError,
    PhotoNotFoundError,
    SimilarityPreconditionError,
)
from photo_gps.services.photos import NearestPhoto
from photo_gps.services.processor import ProcessOutcome
from photo_gps.services.similarity import SimilarityCandidate

HEADERS = {"X-User-Id": "user-1"}


class StubBatch:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []

    async def process_batch(self, photo_ids, owner_id):
        self.calls.append((list(photo_ids), owner_id))
        if self.error:
            raise self.error
        return self.result


class StubSimilarity:
    def __init__(self, candidates=None, error=None):
        self.candidates = candidates or []
        self.error = error

    async def find_similar(self, photo_id, owner_id):
        if self.error:
            raise self.error
        return self.candidates


@pytest.fixture
def client():
    # No context manager: the lifespan would connect to the database
    yield TestClient(app)
    app.dependency_overrides.clear()


def use(dependency, stub):
    app.dependency_overrides[dependency] = lambda: stub
    return stub


def test_bulk_process_returns_camel_case_counts(client):
    ok_id, bad_id = uuid.uuid4(), uuid.uuid4()
    stub = use(get_batch_processor, StubBatch(BatchResult(
        processed_count=1,
        failed_count=1,
        outcomes=[
            ProcessOutcome(photo_id=ok_id, success=True, subject_detected=True,
                           has_cropped=True, has_segmented=True, has_embedding=True),
            ProcessOutcome(photo_id=bad_id, success=False, error="Failed to fetch original image"),
        ],
    )))

    response = client.post(
        "/api/photos/bulk-process",
        json={"photoIds": [str(ok_id), str(bad_id)]},
        headers=HEADERS,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["processedCount"] == 1
    assert body["failedCount"] == 1
    assert body["results"][0]["photoId"] == str(ok_id)
    assert body["results"][0]["hasEmbedding"] is True
    assert body["results"][1]["error"] == "Failed to fetch original image"
    assert stub.calls == [([ok_id, bad_id], "user-1")]


def test_bulk_process_ownership_failure_is_forbidden(client):
    use(get_batch_processor, StubBatch(error=BatchOwnershipError(requested=2, found=1)))

    response = client.post(
        "/api/photos/bulk-process",
        json={"photoIds": [str(uuid.uuid4()), str(uuid.uuid4())]},
        headers=HEADERS,
    )

    assert response.status_code == 403


def test_bulk_process_requires_owner(client):
    stub = use(get_batch_processor, StubBatch())

    response = client.post("/api/photos/bulk-process", json={"photoIds": [str(uuid.uuid4())]})

    assert response.status_code == 401
    assert stub.calls == []


@pytest.mark.parametrize("photo_ids", [
    [],
    ["not-a-uuid"],
    ["3f1c8f0e-5a57-4d4e-9d0a-2f0b6f0c1a11", "3f1c8f0e-5a57-4d4e-9d0a-2f0b6f0c1a11"],
])
def test_bulk_process_validates_ids(client, photo_ids):
    stub = use(get_batch_processor, StubBatch())

    response = client.post("/api/photos/bulk-process", json={"photoIds": photo_ids}, headers=HEADERS)

    assert response.status_code == 422
    assert stub.calls == []


def test_bulk_process_unexpected_error_is_500(client):
    use(get_batch_processor, StubBatch(error=RuntimeError("boom")))

    response = client.post(
        "/api/photos/bulk-process",
        json={"photoIds": [str(uuid.uuid4())]},
        headers=HEADERS,
    )

    assert response.status_code == 500
    assert response.json()["detail"] == "Failed to process photos"


def test_similar_returns_ranked_photos(client):
    photo_id = uuid.uuid4()
    nearest = NearestPhoto(
        id=photo_id,
        filename="newt.jpg",
        url="http://minio.test/photos/newt.jpg",
        cropped_url="http://minio.test/photos/artifacts/a/newt-cropped.jpg",
        segmented_url="http://minio.test/photos/artifacts/b/newt-segmented.jpg",
        title="Pond newt",
        description=None,
        taken_at=datetime(2024, 4, 2, 9, 30),
        latitude=52.1,
        longitude=4.3,
        distance=0.12,
    )
    use(get_similarity_service, StubSimilarity([
        SimilarityCandidate(
            photo=nearest,
            vector_distance=0.12,
            final_score=87.5,
            confidence_label="high",
            is_same_subject=True,
            match_count=140,
            inlier_count=62,
        )
    ]))

    response = client.get(f"/api/photos/{uuid.uuid4()}/similar", headers=HEADERS)

    assert response.status_code == 200
    [item] = response.json()
    assert item["id"] == str(photo_id)
    assert item["segmentedUrl"].endswith("newt-segmented.jpg")
    assert item["vectorDistance"] == 0.12
    assert item["finalScore"] == 87.5
    assert item["confidenceLabel"] == "high"
    assert item["isSameSubject"] is True
    assert item["matchCount"] == 140
    assert item["inlierCount"] == 62


def test_similar_not_found(client):
    use(get_similarity_service, StubSimilarity(error=PhotoNotFoundError("Photo not found")))

    response = client.get(f"/api/photos/{uuid.uuid4()}/similar", headers=HEADERS)

    assert response.status_code == 404


def test_similar_precondition_failure_is_bad_request(client):
    use(get_similarity_service, StubSimilarity(
        error=SimilarityPreconditionError("Photo does not have an embedding vector")
    ))

    response = client.get(f"/api/photos/{uuid.uuid4()}/similar", headers=HEADERS)

    assert response.status_code == 400
    assert response.json()["detail"] == "Photo does not have an embedding vector"


def test_similar_requires_owner(client):
    use(get_similarity_service, StubSimilarity())

    response = client.get(f"/api/photos/{uuid.uuid4()}/similar")

    assert response.status_code == 401


def test_liveness(client):
    response = client.get("/health/live")

    assert response.status_code == 200
    assert response.json() == {"status": "alive"}


class StubBucketStore:
    def __init__(self):
        self.ensured = 0

    def ensure_bucket(self):
        self.ensured += 1


def test_startup_ensures_storage_bucket(monkeypatch):
    store = StubBucketStore()

    async def noop():
        return None

    monkeypatch.setattr(main, "init_db", noop)
    monkeypatch.setattr(main, "close_db", noop)
    monkeypatch.setattr(main, "get_storage_service", lambda: store)

    with TestClient(app) as started:
        assert started.get("/health/live").status_code == 200

    assert store.ensured == 1
