"""
Client state store: the in-memory Collection of one editing session.

כל שינוי שמקורו במשתמש (יצירה, עריכה, הזזה, שינוי גודל, מחיקה) קורא ל-hook
`on_mutation`, שמחובר ל-DebouncedPusher.schedule_push. רק replace_all, שמשמש
את ה-reconciler, אינו מפעיל push.
"""
from __future__ import annotations

import copy
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Union

from database.entities import (
    DEFAULT_NOTE_COLOR,
    Entity,
    ImageEntity,
    NoteEntity,
    check_asset_size,
    entity_from_dict,
    entity_to_dict,
)
from database.errors import AssetTooLargeError, EntityNotFound, EntityValidationError

# patch keys that can never change after creation
_IMMUTABLE_KEYS = {"id", "type", "createdAt"}
# local edits that the DOM already shows; no full re-render needed
_NO_RENDER_KEYS = {"title", "content", "x", "y", "width", "height"}

StatusCallback = Callable[[str, str], None]


@dataclass(frozen=True)
class FocusSnapshot:
    entity_id: str
    field: str
    selection_start: Optional[int] = None
    selection_end: Optional[int] = None


class Renderer(Protocol):
    def render(self, entities: List[Entity]) -> None: ...
    def focused(self) -> Optional[FocusSnapshot]: ...
    def restore_focus(self, snapshot: FocusSnapshot) -> None: ...


class NullRenderer:
    """Renderer for headless sessions."""

    def render(self, entities: List[Entity]) -> None:
        return None

    def focused(self) -> Optional[FocusSnapshot]:
        return None

    def restore_focus(self, snapshot: FocusSnapshot) -> None:
        return None


class IdFactory:
    """Millisecond-timestamp ids, bumped past every id already issued or present."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._last = 0
        self._lock = threading.Lock()

    def __call__(self, taken: Iterable[str] = ()) -> str:
        taken_set = set(taken)
        with self._lock:
            candidate = max(int(self._clock() * 1000), self._last + 1)
            while str(candidate) in taken_set:
                candidate += 1
            self._last = candidate
            return str(candidate)


class ClientStateStore:
    def __init__(
        self,
        renderer: Optional[Renderer] = None,
        on_mutation: Optional[Callable[[], None]] = None,
        id_factory: Optional[Callable[[Iterable[str]], str]] = None,
        on_status: Optional[StatusCallback] = None,
    ) -> None:
        self.renderer: Renderer = renderer or NullRenderer()
        self.on_mutation = on_mutation
        self._new_id = id_factory or IdFactory()
        self._on_status = on_status
        self._lock = threading.RLock()
        self._entities: List[Entity] = []
        # bumped by every user mutation, never by replace_all
        self._generation = 0

    # --- reads ---

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def __len__(self) -> int:
        with self._lock:
            return len(self._entities)

    def get(self, entity_id: str) -> Entity:
        with self._lock:
            for entity in self._entities:
                if entity.id == entity_id:
                    return copy.deepcopy(entity)
        raise EntityNotFound(entity_id)

    def snapshot(self) -> List[Entity]:
        with self._lock:
            return copy.deepcopy(self._entities)

    def to_wire(self) -> List[Dict[str, Any]]:
        """Serialize the Collection as it is right now."""
        with self._lock:
            return [entity_to_dict(e) for e in self._entities]

    # --- helpers ---

    def _status(self, message: str, kind: str = "") -> None:
        if self._on_status is not None:
            self._on_status(message, kind)

    def _mutated(self) -> None:
        if self.on_mutation is not None:
            self.on_mutation()

    def _render(self) -> None:
        with self._lock:
            entities = copy.deepcopy(self._entities)
        self.renderer.render(entities)

    def _index(self, entity_id: str) -> int:
        for i, entity in enumerate(self._entities):
            if entity.id == entity_id:
                return i
        raise EntityNotFound(entity_id)

    def _checked_asset(self, data_url: str, what: str = "Image") -> None:
        try:
            check_asset_size(data_url, what=what)
        except AssetTooLargeError as e:
            self._status(str(e), "updating")
            raise

    # --- user mutations ---

    def create_note(self, x: int = 50, y: int = 50, color: Optional[str] = None) -> NoteEntity:
        with self._lock:
            note = NoteEntity(
                id=self._new_id(e.id for e in self._entities),
                x=x,
                y=y,
                color=color or DEFAULT_NOTE_COLOR,
            )
            self._entities.append(note)
            self._generation += 1
        self._render()
        self._mutated()
        self._status("New note created!")
        return copy.deepcopy(note)

    def create_image(self, src: str, x: int = 100, y: int = 100) -> ImageEntity:
        self._checked_asset(src)
        with self._lock:
            image = ImageEntity(id=self._new_id(e.id for e in self._entities), x=x, y=y, src=src)
            self._entities.append(image)
            self._generation += 1
        self._render()
        self._mutated()
        self._status("Image added to wall!")
        return copy.deepcopy(image)

    def update(self, entity_id: str, patch: Dict[str, Any]) -> Entity:
        """Apply wire-format fields to one entity; the result is re-validated as a whole."""
        changes = {k: v for k, v in (patch or {}).items() if k not in _IMMUTABLE_KEYS}
        if changes.get("image"):
            self._checked_asset(changes["image"])
        if changes.get("src"):
            self._checked_asset(changes["src"])
        with self._lock:
            i = self._index(entity_id)
            merged = entity_to_dict(self._entities[i])
            merged.update(changes)
            updated = entity_from_dict(merged)
            self._entities[i] = updated
            self._generation += 1
        if not set(changes) <= _NO_RENDER_KEYS:
            self._render()
        self._mutated()
        return copy.deepcopy(updated)

    def move(self, entity_id: str, x: int, y: int) -> Entity:
        return self.update(entity_id, {"x": x, "y": y})

    def resize(self, entity_id: str, width: int, height: int) -> Entity:
        """Sizes below the 200x150 floor are clamped, never rejected."""
        return self.update(entity_id, {"width": width, "height": height})

    def set_tags(self, entity_id: str, tags: Union[str, List[str]]) -> Entity:
        entity = self.update(entity_id, {"tags": tags})
        self._status("Tags updated")
        return entity

    def set_color(self, entity_id: str, color: str) -> Entity:
        return self.update(entity_id, {"color": color})

    def attach_image(self, entity_id: str, data_url: str) -> Entity:
        entity = self.update(entity_id, {"image": data_url})
        self._status("Image added to note!")
        return entity

    def delete(self, entity_id: str) -> bool:
        with self._lock:
            removed = [e for e in self._entities if e.id == entity_id]
            self._entities = [e for e in self._entities if e.id != entity_id]
            if removed:
                self._generation += 1
        if not removed:
            return False
        self._render()
        self._mutated()
        self._status("Image deleted" if isinstance(removed[0], ImageEntity) else "Note deleted")
        return True

    # --- reconciler ---

    def replace_all(
        self,
        entities: Iterable[Union[Entity, Dict[str, Any]]],
        expected_generation: Optional[int] = None,
    ) -> bool:
        """Swap in a whole Collection (server state) and re-render, keeping focus/selection.

        With `expected_generation`, nothing is replaced (returns False) when a
        user mutation happened since that generation was read.
        """
        parsed: List[Entity] = []
        seen = set()
        for item in entities:
            entity = item if isinstance(item, (NoteEntity, ImageEntity)) else entity_from_dict(item)
            if entity.id in seen:
                raise EntityValidationError(f"duplicate entity id: {entity.id}")
            seen.add(entity.id)
            parsed.append(copy.deepcopy(entity))
        focus = self.renderer.focused()
        with self._lock:
            if expected_generation is not None and expected_generation != self._generation:
                return False
            self._entities = parsed
        self._render()
        if focus is not None and focus.entity_id in seen:
            self.renderer.restore_focus(focus)
        return True
