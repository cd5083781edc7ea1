"""
Persistence backends for the wall: memory, JSON file, MongoDB.

כל ה-backends עובדים על מסמכים (dict) בפורמט ה-wire, בתוספת מטא-דאטה של
השרת: `userId` (בעלים, בגרסה המאומתת) ו-`updatedAt`.
"""
from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Set, Tuple

from observability import emit_event

from .errors import BackendUnavailable

logger = logging.getLogger(__name__)

Doc = Dict[str, Any]


class CollectionLike(Protocol):
    def insert_many(self, *args: Any, **kwargs: Any) -> Any: ...
    def insert_one(self, *args: Any, **kwargs: Any) -> Any: ...
    def replace_one(self, *args: Any, **kwargs: Any) -> Any: ...
    def delete_many(self, *args: Any, **kwargs: Any) -> Any: ...
    def find_one(self, *args: Any, **kwargs: Any) -> Any: ...
    def find(self, *args: Any, **kwargs: Any) -> Any: ...
    def create_index(self, *args: Any, **kwargs: Any) -> Any: ...


class WallBackend(Protocol):
    name: str

    def load_entities(self, user_id: Optional[str] = None) -> List[Doc]: ...
    def replace_entities(self, docs: List[Doc], user_id: Optional[str] = None) -> int: ...
    def load_background(self) -> Optional[Doc]: ...
    def save_background(self, doc: Doc) -> None: ...
    def get_user(self, username: str) -> Optional[Doc]: ...
    def create_user(self, doc: Doc) -> bool: ...


def visible_to(doc: Doc, user_id: Optional[str]) -> bool:
    """Scoping rule: everything when anonymous, else own entities plus public ones."""
    if user_id is None:
        return True
    return doc.get("userId") == user_id or bool(doc.get("isPublic", True))


def foreign_ids(existing: Iterable[Doc], user_id: Optional[str]) -> Set[str]:
    """Ids already stored under a different owner; these are read-only for `user_id`."""
    if user_id is None:
        return set()
    # ownerless legacy entities count as foreign too
    return {str(doc.get("id")) for doc in existing if doc.get("userId") != user_id}


def _owned_by(doc: Doc, user_id: Optional[str]) -> bool:
    if user_id is None:
        return True
    return doc.get("userId") == user_id


def _merge_replacement(existing: List[Doc], docs: List[Doc], user_id: Optional[str]) -> Tuple[List[Doc], int]:
    """Return (new stored list, inserted count) for an owner-scoped whole replace."""
    blocked = foreign_ids(existing, user_id)
    kept = [d for d in existing if not _owned_by(d, user_id)]
    incoming = [d for d in docs if str(d.get("id")) not in blocked]
    return kept + incoming, len(incoming)


class MemoryBackend:
    """In-process backend; state lives only as long as the object."""

    name = "memory"

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entities: List[Doc] = []
        self._background: Optional[Doc] = None
        self._users: Dict[str, Doc] = {}

    def load_entities(self, user_id: Optional[str] = None) -> List[Doc]:
        with self._lock:
            return [copy.deepcopy(d) for d in self._entities if visible_to(d, user_id)]

    def replace_entities(self, docs: List[Doc], user_id: Optional[str] = None) -> int:
        with self._lock:
            self._entities, count = _merge_replacement(self._entities, copy.deepcopy(docs), user_id)
            return count

    def load_background(self) -> Optional[Doc]:
        with self._lock:
            return dict(self._background) if self._background else None

    def save_background(self, doc: Doc) -> None:
        with self._lock:
            self._background = dict(doc)

    def get_user(self, username: str) -> Optional[Doc]:
        with self._lock:
            user = self._users.get(username)
            return dict(user) if user else None

    def create_user(self, doc: Doc) -> bool:
        with self._lock:
            if doc["username"] in self._users:
                return False
            self._users[doc["username"]] = dict(doc)
            return True


class JsonFileBackend:
    """
    The Collection array in a single JSON file.

    Every write goes to a temp file in the same directory and is moved into
    place with os.replace, so readers never observe a half-written file.
    Background and users live in sibling files next to the notes file.
    """

    name = "file"

    def __init__(self, path: str | os.PathLike) -> None:
        self.path = Path(path)
        self.background_path = self.path.with_name(self.path.stem + ".background.json")
        self.users_path = self.path.with_name(self.path.stem + ".users.json")
        self._lock = threading.Lock()

    def _read(self, path: Path, default: Any) -> Any:
        try:
            with open(path, "r", encoding="utf-8") as fh:
                return json.load(fh)
        except FileNotFoundError:
            return default
        except (OSError, ValueError) as e:
            raise BackendUnavailable(f"cannot read {path.name}: {e}") from e

    def _write(self, path: Path, payload: Any) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(prefix=path.name + ".", suffix=".tmp", dir=str(path.parent))
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(payload, fh, ensure_ascii=False, indent=2)
                os.replace(tmp, path)
            except BaseException:
                try:
                    os.unlink(tmp)
                except OSError:
                    pass
                raise
        except OSError as e:
            raise BackendUnavailable(f"cannot write {path.name}: {e}") from e

    def _entities(self) -> List[Doc]:
        data = self._read(self.path, [])
        if not isinstance(data, list):
            raise BackendUnavailable(f"{self.path.name} does not hold a JSON array")
        return [d for d in data if isinstance(d, dict)]

    def load_entities(self, user_id: Optional[str] = None) -> List[Doc]:
        with self._lock:
            return [d for d in self._entities() if visible_to(d, user_id)]

    def replace_entities(self, docs: List[Doc], user_id: Optional[str] = None) -> int:
        with self._lock:
            existing = self._entities() if user_id is not None else []
            merged, count = _merge_replacement(existing, docs, user_id)
            self._write(self.path, merged)
            return count

    def load_background(self) -> Optional[Doc]:
        with self._lock:
            data = self._read(self.background_path, None)
            return data if isinstance(data, dict) else None

    def save_background(self, doc: Doc) -> None:
        with self._lock:
            self._write(self.background_path, doc)

    def get_user(self, username: str) -> Optional[Doc]:
        with self._lock:
            users = self._read(self.users_path, {})
            user = users.get(username) if isinstance(users, dict) else None
            return dict(user) if isinstance(user, dict) else None

    def create_user(self, doc: Doc) -> bool:
        with self._lock:
            users = self._read(self.users_path, {})
            if not isinstance(users, dict):
                users = {}
            if doc["username"] in users:
                return False
            users[doc["username"]] = doc
            self._write(self.users_path, users)
            return True


class MongoBackend:
    """
    MongoDB backend: collections `notes`, `users` and `settings`.

    replace_entities מריץ מחיקה+הכנסה בתוך טרנזקציה כאשר ה-deployment תומך
    (replica set / mongos). על שרת standalone חוזרים ל-delete-then-insert
    ומתעדים את הסיכון: קריסה בין השלבים יכולה להשאיר את האוסף ריק.
    """

    name = "mongo"

    def __init__(self, db: Any, client: Any = None) -> None:
        self.db = db
        self.client = client
        self.notes: CollectionLike = db["notes"]
        self.users: CollectionLike = db["users"]
        self.settings: CollectionLike = db["settings"]
        self._transactions_supported: Optional[bool] = None if client is not None else False
        self._ensure_indexes()

    @classmethod
    def from_uri(cls, uri: str, database_name: str, server_selection_timeout_ms: int = 5000) -> "MongoBackend":
        from pymongo import MongoClient

        client = MongoClient(
            uri,
            serverSelectionTimeoutMS=server_selection_timeout_ms,
            tz_aware=True,
        )
        return cls(client[database_name], client=client)

    def _ensure_indexes(self) -> None:
        try:
            from pymongo import ASCENDING

            self.users.create_index([("username", ASCENDING)], name="username_unique", unique=True)
            self.notes.create_index([("userId", ASCENDING)], name="user_idx")
            self.notes.create_index([("id", ASCENDING)], name="note_id_idx")
        except Exception as e:
            # Never fail startup because of index creation
            emit_event("mongo_index_setup_failed", severity="warning", error=str(e))

    @staticmethod
    def _strip_id(doc: Doc) -> Doc:
        doc = dict(doc)
        doc.pop("_id", None)
        return doc

    def _owner_filter(self, user_id: Optional[str]) -> Doc:
        return {} if user_id is None else {"userId": user_id}

    def load_entities(self, user_id: Optional[str] = None) -> List[Doc]:
        query: Doc = {}
        if user_id is not None:
            query = {"$or": [{"userId": user_id}, {"isPublic": True}]}
        try:
            cursor = self.notes.find(query)
            return [self._strip_id(d) for d in cursor]
        except Exception as e:
            raise BackendUnavailable(str(e)) from e

    def _blocked_ids(self, docs: List[Doc], user_id: Optional[str], session: Any = None) -> Set[str]:
        if user_id is None or not docs:
            return set()
        ids = [str(d.get("id")) for d in docs]
        cursor = self.notes.find(
            {"id": {"$in": ids}, "userId": {"$ne": user_id}},
            {"id": 1},
            session=session,
        )
        return {str(d.get("id")) for d in cursor}

    def _replace(self, docs: List[Doc], user_id: Optional[str], session: Any = None) -> int:
        blocked = self._blocked_ids(docs, user_id, session=session)
        incoming = [dict(d) for d in docs if str(d.get("id")) not in blocked]
        self.notes.delete_many(self._owner_filter(user_id), session=session)
        if incoming:
            self.notes.insert_many(incoming, session=session)
        return len(incoming)

    def replace_entities(self, docs: List[Doc], user_id: Optional[str] = None) -> int:
        try:
            if self._transactions_supported is not False:
                count = self._replace_in_transaction(docs, user_id)
                if count is not None:
                    return count
            return self._replace(docs, user_id)
        except BackendUnavailable:
            raise
        except Exception as e:
            raise BackendUnavailable(str(e)) from e

    def _replace_in_transaction(self, docs: List[Doc], user_id: Optional[str]) -> Optional[int]:
        from pymongo.errors import ConfigurationError, OperationFailure

        try:
            with self.client.start_session() as session:
                return session.with_transaction(lambda s: self._replace(docs, user_id, session=s))
        except (OperationFailure, ConfigurationError) as e:
            # IllegalOperation (20): standalone server without transaction support
            code = getattr(e, "code", None)
            if isinstance(e, ConfigurationError) or code == 20:
                self._transactions_supported = False
                emit_event(
                    "mongo_transactions_unavailable",
                    severity="anomaly",
                    error=str(e),
                    fallback="delete_then_insert",
                )
                return None
            raise

    def load_background(self) -> Optional[Doc]:
        try:
            doc = self.settings.find_one({"key": "background"})
        except Exception as e:
            raise BackendUnavailable(str(e)) from e
        if not doc:
            return None
        return {"type": doc.get("type"), "value": doc.get("value")}

    def save_background(self, doc: Doc) -> None:
        try:
            self.settings.replace_one(
                {"key": "background"},
                {"key": "background", "type": doc.get("type"), "value": doc.get("value")},
                upsert=True,
            )
        except Exception as e:
            raise BackendUnavailable(str(e)) from e

    def get_user(self, username: str) -> Optional[Doc]:
        try:
            doc = self.users.find_one({"username": username})
        except Exception as e:
            raise BackendUnavailable(str(e)) from e
        return self._strip_id(doc) if doc else None

    def create_user(self, doc: Doc) -> bool:
        from pymongo.errors import DuplicateKeyError

        try:
            self.users.insert_one(dict(doc))
        except DuplicateKeyError:
            return False
        except Exception as e:
            raise BackendUnavailable(str(e)) from e
        return True

    def close(self) -> None:
        if self.client is not None:
            try:
                self.client.close()
            except Exception:
                logger.exception("Failed to close MongoClient")


def build_backend(config: Any) -> WallBackend:
    """Choose a backend from WallConfig.resolved_backend."""
    kind = config.resolved_backend
    if kind == "memory":
        return MemoryBackend()
    if kind == "file":
        return JsonFileBackend(config.NOTES_FILE)
    if kind == "mongo":
        if not config.MONGODB_URI:
            raise BackendUnavailable("MONGODB_URI is not configured")
        return MongoBackend.from_uri(
            config.MONGODB_URI,
            config.DATABASE_NAME,
            server_selection_timeout_ms=config.MONGODB_SERVER_SELECTION_TIMEOUT_MS,
        )
    raise BackendUnavailable(f"unknown backend: {kind}")
