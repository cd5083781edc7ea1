"""
WallStore: האובייקט שמחזיק את מצב הקיר ומוזרק ל-request handlers.

עוטף backend (memory/file/mongo) ומוסיף: scoping לפי משתמש, חיפוש, export,
וכלל ה-degrade: כשל backend בקריאה מחזיר תוצאה ריקה במקום שגיאה.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Set

from observability import emit_event

from .backends import Doc, WallBackend
from .entities import (
    Background,
    NoteEntity,
    collection_to_wire,
    entity_from_dict,
    entity_to_dict,
    now_iso,
    parse_collection,
)
from .errors import BackendUnavailable, EntityValidationError

logger = logging.getLogger(__name__)


def matches_query(entity: Any, query: str) -> bool:
    """Case-insensitive substring match on title, content or any tag. Images never match."""
    if not isinstance(entity, NoteEntity):
        return False
    needle = query.casefold()
    if needle in entity.title.casefold() or needle in entity.content.casefold():
        return True
    return any(needle in tag.casefold() for tag in entity.tags)


class WallStore:
    """Owned store object for one wall; no module-level state."""

    def __init__(self, backend: WallBackend, clock: Optional[Callable[[], str]] = None) -> None:
        self.backend = backend
        self._clock = clock or now_iso

    @property
    def backend_name(self) -> str:
        return str(getattr(self.backend, "name", type(self.backend).__name__))

    # --- Collection ---

    def _load_docs(self, user_id: Optional[str], operation: str) -> List[Doc]:
        try:
            return list(self.backend.load_entities(user_id))
        except Exception as e:
            emit_event(
                "wall_backend_read_failed",
                severity="error",
                operation=operation,
                backend=self.backend_name,
                error=str(e),
            )
            return []

    def _load_entities(self, user_id: Optional[str], operation: str) -> List[tuple]:
        """Return (entity, doc) pairs; stored docs that no longer validate are skipped."""
        pairs = []
        for doc in self._load_docs(user_id, operation):
            try:
                pairs.append((entity_from_dict(doc, strict=False), doc))
            except EntityValidationError as e:
                emit_event("wall_stored_entity_invalid", severity="anomaly", entity_id=str(doc.get("id")), error=str(e))
        return pairs

    def get_collection(self, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        return [entity_to_dict(entity) for entity, _doc in self._load_entities(user_id, "get_collection")]

    def _unreadable_docs(self, user_id: Optional[str], incoming_ids: Set[str]) -> List[Doc]:
        """Stored docs of the caller that do not parse; clients never saw them, so a push cannot drop them."""
        kept: List[Doc] = []
        for doc in self._load_docs(user_id, "replace_collection"):
            if user_id is not None and doc.get("userId") != user_id:
                continue
            if str(doc.get("id")) in incoming_ids:
                continue
            try:
                entity_from_dict(doc, strict=False)
            except EntityValidationError:
                kept.append(doc)
        return kept

    def replace_collection(self, items: Any, user_id: Optional[str] = None) -> int:
        """Replace the caller's whole Collection. Raises EntityValidationError / BackendUnavailable."""
        entities = parse_collection(items)
        stamp = self._clock()
        docs: List[Doc] = []
        for wire in collection_to_wire(entities):
            wire["updatedAt"] = stamp
            if user_id is not None:
                wire["userId"] = user_id
            docs.append(wire)
        preserved = self._unreadable_docs(user_id, {e.id for e in entities})
        if preserved:
            emit_event(
                "wall_unreadable_entities_preserved",
                severity="anomaly",
                ids=[str(d.get("id")) for d in preserved],
            )
        try:
            count = self.backend.replace_entities(docs + preserved, user_id)
        except BackendUnavailable:
            raise
        except Exception as e:
            raise BackendUnavailable(str(e)) from e
        count = max(0, int(count) - len(preserved))
        emit_event(
            "wall_collection_replaced",
            backend=self.backend_name,
            received=len(entities),
            stored=count,
            scoped=user_id is not None,
        )
        return count

    def search(self, query: str, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        q = str(query or "").strip()
        if not q:
            return []
        pairs = self._load_entities(user_id, "search")
        return [entity_to_dict(entity) for entity, _doc in pairs if matches_query(entity, q)]

    def export(self, user_id: Optional[str] = None) -> Dict[str, Any]:
        notes = []
        for entity, doc in self._load_entities(user_id, "export"):
            item = entity_to_dict(entity)
            if doc.get("updatedAt"):
                item["updatedAt"] = doc.get("updatedAt")
            notes.append(item)
        return {
            "exportedAt": self._clock(),
            "noteCount": len(notes),
            "notes": notes,
        }

    # --- Background ---

    def get_background(self) -> Background:
        try:
            doc = self.backend.load_background()
        except Exception as e:
            emit_event("wall_background_read_failed", severity="error", backend=self.backend_name, error=str(e))
            doc = None
        if not doc:
            return Background()
        try:
            return Background.from_dict(doc)
        except EntityValidationError:
            return Background()

    def set_background(self, data: Any) -> Background:
        background = Background.from_dict(data)
        try:
            self.backend.save_background(background.to_dict())
        except BackendUnavailable:
            raise
        except Exception as e:
            raise BackendUnavailable(str(e)) from e
        return background

    def close(self) -> None:
        """Release backend resources (MongoClient); no-op for memory/file backends."""
        close = getattr(self.backend, "close", None)
        if callable(close):
            close()
