import pytest

from database import MemoryBackend, WallStore
from database.errors import BackendUnavailable, EntityValidationError
from database.manager import matches_query
from database.entities import ImageEntity, NoteEntity


class _BrokenBackend(MemoryBackend):
    name = "broken"

    def load_entities(self, user_id=None):
        raise BackendUnavailable("connection refused")

    def replace_entities(self, docs, user_id=None):
        raise RuntimeError("disk full")

    def load_background(self):
        raise BackendUnavailable("connection refused")


def _store():
    return WallStore(MemoryBackend(), clock=lambda: "2024-05-01T10:00:00+00:00")


def test_replace_then_get_returns_same_wire_without_metadata():
    store = _store()
    items = [
        {"id": "1", "type": "note", "title": "A", "x": 1, "y": 2, "width": 250, "height": 200},
        {"id": "2", "type": "image", "src": "data:image/png;base64,AAAA"},
    ]
    assert store.replace_collection(items) == 2
    got = store.get_collection()
    assert [g["id"] for g in got] == ["1", "2"]
    assert all("updatedAt" not in g and "userId" not in g for g in got)


def test_second_replace_wins_entirely():
    store = _store()
    store.replace_collection([{"id": "1"}, {"id": "2"}])
    store.replace_collection([{"id": "3"}])
    assert [g["id"] for g in store.get_collection()] == ["3"]


def test_invalid_collection_leaves_storage_untouched():
    store = _store()
    store.replace_collection([{"id": "1"}])
    with pytest.raises(EntityValidationError):
        store.replace_collection([{"id": "2"}, {"id": "2"}])
    assert [g["id"] for g in store.get_collection()] == ["1"]


def test_search_is_case_insensitive_over_title_content_and_tags():
    store = _store()
    store.replace_collection([
        {"id": "1", "title": "Beach", "content": "", "tags": ["vacation"]},
        {"id": "2", "title": "Groceries", "content": "milk"},
        {"id": "3", "title": "x", "content": "Summer VACATION plans"},
        {"id": "4", "type": "image", "src": "data:vacation"},
    ])
    assert [r["id"] for r in store.search("VACATION")] == ["1", "3"]
    assert store.search("   ") == []


def test_matches_query_ignores_images():
    assert not matches_query(ImageEntity(id="1", src="data:x"), "data")
    assert matches_query(NoteEntity(id="1", tags=["Work"]), "wor")


def test_export_carries_count_timestamp_and_updated_at():
    store = _store()
    store.replace_collection([{"id": "1"}, {"id": "2"}])
    snap = store.export()
    assert snap["noteCount"] == 2
    assert snap["exportedAt"] == "2024-05-01T10:00:00+00:00"
    assert snap["notes"][0]["updatedAt"] == "2024-05-01T10:00:00+00:00"


def test_scoped_store_stamps_owner():
    store = _store()
    store.replace_collection([{"id": "1", "isPublic": False}], user_id="usr_a")
    assert store.get_collection("usr_b") == []
    assert [g["id"] for g in store.get_collection("usr_a")] == ["1"]
    assert store.backend.load_entities()[0]["userId"] == "usr_a"


def test_read_failure_degrades_to_empty():
    store = WallStore(_BrokenBackend())
    assert store.get_collection() == []
    assert store.search("x") == []
    assert store.export()["noteCount"] == 0
    assert store.get_background().to_dict() == {"type": "color", "value": "#f5f5f5"}


def test_write_failure_is_backend_unavailable():
    store = WallStore(_BrokenBackend())
    with pytest.raises(BackendUnavailable):
        store.replace_collection([{"id": "1"}])


def test_stored_invalid_entity_is_skipped():
    backend = MemoryBackend()
    backend.replace_entities([{"id": "1", "type": "sticker"}, {"id": "2", "type": "note"}])
    assert [g["id"] for g in WallStore(backend).get_collection()] == ["2"]


def test_background_round_trip():
    store = _store()
    assert store.get_background().to_dict() == {"type": "color", "value": "#f5f5f5"}
    store.set_background({"type": "color", "value": "#4CAF50"})
    assert store.get_background().value == "#4CAF50"
    with pytest.raises(EntityValidationError):
        store.set_background({"type": "video", "value": "x"})


def test_stored_note_with_legacy_color_survives_round_trip():
    backend = MemoryBackend()
    backend.replace_entities([{"id": "1", "type": "note", "title": "old", "color": "#FFEB3B"}])
    store = WallStore(backend)
    got = store.get_collection()
    assert [(g["id"], g["color"]) for g in got] == [("1", "#fff176")]
    store.replace_collection(got)
    assert [d["title"] for d in backend.load_entities()] == ["old"]


def test_unreadable_stored_doc_is_kept_by_replace():
    backend = MemoryBackend()
    backend.replace_entities([{"id": "1", "type": "sticker"}, {"id": "2", "type": "note"}])
    store = WallStore(backend)
    assert store.replace_collection([]) == 0
    assert [d["id"] for d in backend.load_entities()] == ["1"]


def test_unreadable_doc_of_other_user_is_left_to_backend_scoping():
    backend = MemoryBackend()
    backend.replace_entities([{"id": "x", "type": "sticker", "userId": "usr_b"}], "usr_b")
    store = WallStore(backend)
    assert store.replace_collection([{"id": "1"}], user_id="usr_a") == 1
    assert sorted(d["id"] for d in backend.load_entities()) == ["1", "x"]


def test_close_releases_mongo_client():
    from database.backends import MongoBackend
    from tests._fakes import StubMongoClient, StubMongoDB

    client = StubMongoClient()
    WallStore(MongoBackend(StubMongoDB(), client=client)).close()
    assert client.closed
    # memory backend has nothing to close
    WallStore(MemoryBackend()).close()
