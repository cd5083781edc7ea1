"""
Test doubles shared by the wall tests.

- ManualTimers: deterministic replacement for threading.Timer
- FlaskSession: requests.Session look-alike that routes calls into a Flask test client
- StubMongoDB / StubCollection: the subset of PyMongo used by MongoBackend
"""
from __future__ import annotations

import copy
import json
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlsplit


class _ManualTimer:
    def __init__(self, owner: "ManualTimers", delay: float, fn: Callable[[], None]):
        self.owner = owner
        self.delay = float(delay)
        self.fn = fn
        self.due: Optional[float] = None
        self.cancelled = False
        self.fired = False

    def start(self) -> None:
        self.due = self.owner.now + self.delay
        self.owner.timers.append(self)

    def cancel(self) -> None:
        self.cancelled = True


class ManualTimers:
    """Timer factory whose clock only moves on advance()."""

    def __init__(self) -> None:
        self.now = 0.0
        self.timers: List[_ManualTimer] = []

    def __call__(self, delay: float, fn: Callable[[], None]) -> _ManualTimer:
        return _ManualTimer(self, delay, fn)

    def active(self) -> List[_ManualTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def advance(self, seconds: float) -> None:
        target = self.now + float(seconds)
        while True:
            due = [t for t in self.active() if t.due is not None and t.due <= target + 1e-9]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            self.now = max(self.now, timer.due)
            timer.fired = True
            timer.fn()
        self.now = target


class _FlaskResponse:
    def __init__(self, resp) -> None:
        self.status_code = resp.status_code
        self.headers = dict(resp.headers)
        self._data = resp.get_data()

    def json(self) -> Any:
        return json.loads(self._data.decode("utf-8"))


class FlaskSession:
    """Enough of requests.Session for WallApiClient, backed by app.test_client()."""

    def __init__(self, app) -> None:
        self.client = app.test_client()
        self.calls: List[tuple] = []
        self.fail_next: Optional[Exception] = None

    def request(self, method: str, url: str, timeout: Any = None, json: Any = None, params: Any = None, **_kw):
        self.calls.append((method, url))
        if self.fail_next is not None:
            exc, self.fail_next = self.fail_next, None
            raise exc
        path = urlsplit(url).path
        resp = self.client.open(path, method=method, json=json, query_string=params)
        return _FlaskResponse(resp)


class RecordingApi:
    """In-memory stand-in for WallApiClient used by pusher/reconciler tests."""

    def __init__(self) -> None:
        self.pushed: List[List[Dict[str, Any]]] = []
        self.server_items: List[Dict[str, Any]] = []
        self.server_background: Dict[str, Any] = {"type": "color", "value": "#f5f5f5"}
        self.fail_with: Optional[Exception] = None
        self.fetches = 0
        self.on_fetch: Optional[Callable[[], None]] = None

    def push_collection(self, items):
        if self.fail_with is not None:
            raise self.fail_with
        self.pushed.append(copy.deepcopy(items))
        self.server_items = copy.deepcopy(items)
        return {"ok": True, "count": len(items)}

    def fetch_collection(self):
        if self.fail_with is not None:
            raise self.fail_with
        self.fetches += 1
        if self.on_fetch is not None:
            self.on_fetch()
        return copy.deepcopy(self.server_items)

    def fetch_background(self):
        if self.fail_with is not None:
            raise self.fail_with
        return dict(self.server_background)


def _match(doc: Dict[str, Any], query: Dict[str, Any]) -> bool:
    for key, cond in query.items():
        if key == "$or":
            if not any(_match(doc, sub) for sub in cond):
                return False
            continue
        value = doc.get(key)
        if isinstance(cond, dict):
            if "$in" in cond and value not in cond["$in"]:
                return False
            if "$ne" in cond and value == cond["$ne"]:
                return False
        elif value != cond:
            return False
    return True


class StubCollection:
    def __init__(self) -> None:
        self.docs: List[Dict[str, Any]] = []
        self.indexes: List[tuple] = []
        self.unique_keys: List[str] = []
        self.sessions: List[Any] = []
        self.fail_inserts = False

    def create_index(self, keys, name=None, unique=False, **_kw):
        self.indexes.append((tuple(keys), name, unique))
        if unique:
            self.unique_keys.append(keys[0][0])
        return name

    def find(self, query=None, projection=None, session=None):
        self.sessions.append(session)
        return [copy.deepcopy(d) for d in self.docs if _match(d, query or {})]

    def find_one(self, query=None, session=None):
        found = self.find(query, session=session)
        return found[0] if found else None

    def delete_many(self, query, session=None):
        self.sessions.append(session)
        self.docs = [d for d in self.docs if not _match(d, query or {})]

    def insert_many(self, docs, session=None):
        self.sessions.append(session)
        if self.fail_inserts:
            raise RuntimeError("insert failed")
        for d in docs:
            self.docs.append(copy.deepcopy(d))

    def insert_one(self, doc, session=None):
        from pymongo.errors import DuplicateKeyError

        for key in self.unique_keys:
            if any(d.get(key) == doc.get(key) for d in self.docs):
                raise DuplicateKeyError(f"duplicate {key}")
        self.docs.append(copy.deepcopy(doc))

    def replace_one(self, query, doc, upsert=False, session=None):
        for i, d in enumerate(self.docs):
            if _match(d, query):
                self.docs[i] = copy.deepcopy(doc)
                return
        if upsert:
            self.docs.append(copy.deepcopy(doc))


class StubMongoDB:
    def __init__(self) -> None:
        self._colls: Dict[str, StubCollection] = {}

    def __getitem__(self, name: str) -> StubCollection:
        return self._colls.setdefault(name, StubCollection())


class _StubSession:
    def __init__(self, client: "StubMongoClient") -> None:
        self.client = client

    def __enter__(self):
        return self

    def __exit__(self, *_exc):
        return False

    def with_transaction(self, callback):
        if self.client.transaction_error is not None:
            raise self.client.transaction_error
        self.client.transactions += 1
        return callback(self)


class StubMongoClient:
    def __init__(self, transaction_error: Optional[Exception] = None) -> None:
        self.transaction_error = transaction_error
        self.transactions = 0
        self.closed = False

    def start_session(self):
        return _StubSession(self)

    def close(self):
        self.closed = True
