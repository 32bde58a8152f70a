import uuid
from collections import namedtuple

from sqlalchemy.dialects import postgresql

from photo_gps.services.photos import DerivedState, PhotoRef, PhotoRepository


class EmptyResult:
    def all(self):
        return []


class RecordingSession:
    """Captures statements instead of running them."""

    def __init__(self):
        self.statements = []

    async def execute(self, statement):
        self.statements.append(statement)
        return EmptyResult()


def sql(statement) -> str:
    return str(statement.compile(dialect=postgresql.dialect()))


async def test_nearest_query_orders_by_cosine_distance_within_owner():
    session = RecordingSession()
    repository = PhotoRepository(session)

    assert await repository.query_nearest_by_embedding("user-1", uuid.uuid4(), 4) == []

    text = sql(session.statements[0])
    assert "<=>" in text
    assert "photos.user_id =" in text
    assert "photos.id !=" in text
    assert "photos.embedding IS NOT NULL" in text
    assert "photos.segmented_url IS NOT NULL" in text
    assert "ORDER BY distance" in text
    assert "LIMIT" in text


async def test_derived_state_update_writes_every_column():
    session = RecordingSession()
    repository = PhotoRepository(session)

    await repository.update_photo_derived_state(uuid.uuid4(), DerivedState())

    text = sql(session.statements[0])
    for column in ("cropped_url", "cropped_file_size", "segmented_url", "segmented_file_size",
                   "is_cropped", "crop_confidence", "subject_detected", "embedding_dim",
                   "embed_model", "updated_at"):
        assert f"{column}=" in text


class RowsResult:
    def __init__(self, rows):
        self.rows = rows

    def all(self):
        return self.rows


async def test_owned_photos_come_back_in_request_order():
    Row = namedtuple("Row", "id user_id url original_name cropped_url segmented_url")
    first, second, missing = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
    rows = [
        Row(second, "user-1", "http://x/2.jpg", "2.jpg", None, None),
        Row(first, "user-1", "http://x/1.jpg", "1.jpg", "http://x/c.jpg", None),
    ]

    class Session(RecordingSession):
        async def execute(self, statement):
            self.statements.append(statement)
            return RowsResult(rows)

    repository = PhotoRepository(Session())

    photos = await repository.find_photos_by_ids_and_owner([first, missing, second], "user-1")

    assert [p.id for p in photos] == [first, second]
    assert isinstance(photos[0], PhotoRef)
    assert photos[0].cropped_url == "http://x/c.jpg"
