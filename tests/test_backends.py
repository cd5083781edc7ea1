import json

import pytest
from pymongo.errors import OperationFailure

from database.backends import JsonFileBackend, MemoryBackend, MongoBackend, build_backend
from database.errors import BackendUnavailable
from config import load_config
from tests._fakes import StubMongoClient, StubMongoDB


def _doc(id_, owner=None, public=True):
    d = {"id": id_, "type": "note", "title": id_, "isPublic": public}
    if owner is not None:
        d["userId"] = owner
    return d


@pytest.fixture(params=["memory", "file", "mongo"])
def backend(request, tmp_path):
    if request.param == "memory":
        return MemoryBackend()
    if request.param == "file":
        return JsonFileBackend(tmp_path / "notes.json")
    return MongoBackend(StubMongoDB())


def test_replace_is_whole_collection(backend):
    backend.replace_entities([_doc("a"), _doc("b")])
    backend.replace_entities([_doc("c")])
    assert [d["id"] for d in backend.load_entities()] == ["c"]


def test_scoped_load_returns_own_and_public(backend):
    backend.replace_entities([_doc("a1", "alice", public=False)], "alice")
    backend.replace_entities([_doc("b1", "bob", public=True), _doc("b2", "bob", public=False)], "bob")
    assert sorted(d["id"] for d in backend.load_entities("alice")) == ["a1", "b1"]
    assert sorted(d["id"] for d in backend.load_entities("bob")) == ["b1", "b2"]


def test_scoped_replace_keeps_other_users_and_skips_their_ids(backend):
    backend.replace_entities([_doc("b1", "bob")], "bob")
    # alice echoes bob's public note back in her full push
    stored = backend.replace_entities([_doc("a1", "alice"), _doc("b1", "alice")], "alice")
    assert stored == 1
    docs = {d["id"]: d for d in backend.load_entities()}
    assert docs["b1"]["userId"] == "bob"
    assert docs["a1"]["userId"] == "alice"


def test_background_and_users(backend):
    assert backend.load_background() is None
    backend.save_background({"type": "color", "value": "#000000"})
    assert backend.load_background() == {"type": "color", "value": "#000000"}
    assert backend.create_user({"username": "dana", "userId": "u1", "passwordHash": "h"})
    assert not backend.create_user({"username": "dana", "userId": "u2", "passwordHash": "h"})
    assert backend.get_user("dana")["userId"] == "u1"
    assert backend.get_user("nobody") is None


def test_file_backend_writes_plain_array(tmp_path):
    path = tmp_path / "notes.json"
    JsonFileBackend(path).replace_entities([_doc("a")])
    with open(path, encoding="utf-8") as fh:
        assert json.load(fh) == [_doc("a")]
    leftovers = [p.name for p in tmp_path.iterdir() if p.name.endswith(".tmp")]
    assert leftovers == []


def test_file_backend_corrupt_file_is_unavailable(tmp_path):
    path = tmp_path / "notes.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(BackendUnavailable):
        JsonFileBackend(path).load_entities()


def test_mongo_replace_uses_transaction_when_supported():
    db, client = StubMongoDB(), StubMongoClient()
    backend = MongoBackend(db, client=client)
    backend.replace_entities([_doc("a")])
    assert client.transactions == 1
    assert all(s is not None for s in db["notes"].sessions)
    assert "_id" not in backend.load_entities()[0]


def test_mongo_falls_back_without_transaction_support():
    db = StubMongoDB()
    client = StubMongoClient(OperationFailure("Transaction numbers are only allowed on a replica set member", code=20))
    backend = MongoBackend(db, client=client)
    backend.replace_entities([_doc("a")])
    backend.replace_entities([_doc("b")])
    assert [d["id"] for d in backend.load_entities()] == ["b"]
    assert client.transactions == 0


def test_mongo_write_error_is_backend_unavailable():
    db = StubMongoDB()
    db["notes"].fail_inserts = True
    with pytest.raises(BackendUnavailable):
        MongoBackend(db).replace_entities([_doc("a")])


def test_mongo_creates_unique_username_index():
    db = StubMongoDB()
    MongoBackend(db)
    assert any(unique for _keys, _name, unique in db["users"].indexes)


def test_build_backend_from_config(tmp_path):
    assert build_backend(load_config(STORAGE_BACKEND="memory")).name == "memory"
    file_backend = build_backend(load_config(STORAGE_BACKEND="file", NOTES_FILE=str(tmp_path / "w.json")))
    assert file_backend.name == "file"
    with pytest.raises(BackendUnavailable):
        build_backend(load_config(STORAGE_BACKEND="mongo"))
