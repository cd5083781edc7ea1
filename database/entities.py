"""
מודל הנתונים של קיר הפתקים: פתק (note) ותמונה (image) כ-tagged union.

שדות ה-wire נשמרים שטוחים (x / y / width / height / type) כמו בלקוח הדפדפן,
ו-`position` / `size` זמינים כמאפיינים.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, Iterable, List, Optional, Union

from .errors import AssetTooLargeError, EntityValidationError

NOTE_KIND = "note"
IMAGE_KIND = "image"

MIN_WIDTH = 200
MIN_HEIGHT = 150

MAX_ASSET_BYTES = 5 * 1024 * 1024
MAX_BACKGROUND_BYTES = 10 * 1024 * 1024

DEFAULT_NOTE_COLOR = "#fff176"
NOTE_PALETTE = (
    "#fff176",
    "#ff8a80",
    "#80d8ff",
    "#ccff90",
    "#ea80fc",
    "#ffd180",
    "#ffffff",
)

DEFAULT_BACKGROUND_COLOR = "#f5f5f5"
BACKGROUND_PRESETS = {
    "default": "#f5f5f5",
    "black": "#000000",
    "white": "#ffffff",
    "blue": "#2196F3",
    "green": "#4CAF50",
}

_CONTROL_CHARS_RE = re.compile(r"[\u0000-\u0008\u000B\u000C\u000E-\u001F\u007F]")
_HEX_COLOR_RE = re.compile(r"^#[0-9a-fA-F]{3}(?:[0-9a-fA-F]{3})?$")


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _coerce_int(value: Any, default: int, min_v: Optional[int] = None) -> int:
    try:
        x = int(float(value))
    except Exception:
        x = int(default)
    if min_v is not None and x < min_v:
        x = min_v
    return x


def _sanitize_text(text: Any, max_length: int = 20000) -> str:
    if text is None:
        return ""
    s = str(text)
    s = s.replace("\r\n", "\n").replace("\r", "\n")
    s = _CONTROL_CHARS_RE.sub("", s)
    return s[:max_length]


def check_asset_size(data_url: Optional[str], limit: int = MAX_ASSET_BYTES, what: str = "Image") -> None:
    """Raise AssetTooLargeError when an encoded payload exceeds `limit` bytes."""
    if not data_url:
        return
    size = len(data_url.encode("utf-8"))
    if size > limit:
        raise AssetTooLargeError(what, size, limit)


def normalize_tags(raw: Any) -> List[str]:
    """Accept a list or a comma separated string; trims, drops empties, keeps first occurrence."""
    if raw is None:
        return []
    if isinstance(raw, str):
        items: Iterable[Any] = raw.split(",")
    elif isinstance(raw, (list, tuple)):
        items = raw
    else:
        raise EntityValidationError("tags must be a list of strings")
    seen = set()
    out: List[str] = []
    for item in items:
        tag = _sanitize_text(item, max_length=100).strip()
        if not tag or tag in seen:
            continue
        seen.add(tag)
        out.append(tag)
    return out


@dataclass(frozen=True)
class Position:
    x: int
    y: int


@dataclass(frozen=True)
class Size:
    width: int
    height: int

    @classmethod
    def clamped(cls, width: Any, height: Any) -> "Size":
        return cls(
            _coerce_int(width, MIN_WIDTH, MIN_WIDTH),
            _coerce_int(height, MIN_HEIGHT, MIN_HEIGHT),
        )


@dataclass
class _EntityBase:
    id: str
    x: int
    y: int
    width: int
    height: int
    is_public: bool
    created_at: str

    def _normalize_geometry(self) -> None:
        if not isinstance(self.id, str) or not self.id.strip():
            raise EntityValidationError("entity id must be a non-empty string")
        self.x = _coerce_int(self.x, 0)
        self.y = _coerce_int(self.y, 0)
        size = Size.clamped(self.width, self.height)
        self.width, self.height = size.width, size.height
        self.is_public = bool(self.is_public)
        if not self.created_at:
            self.created_at = now_iso()

    @property
    def position(self) -> Position:
        return Position(self.x, self.y)

    @property
    def size(self) -> Size:
        return Size(self.width, self.height)

    def move_to(self, x: Any, y: Any) -> None:
        self.x = _coerce_int(x, self.x)
        self.y = _coerce_int(y, self.y)

    def resize_to(self, width: Any, height: Any) -> None:
        size = Size.clamped(width, height)
        self.width, self.height = size.width, size.height


@dataclass
class NoteEntity(_EntityBase):
    """פתק טקסט עם כותרת, תוכן, צבע, תגיות ותמונה מוטמעת אופציונלית."""

    kind: ClassVar[str] = NOTE_KIND

    x: int = 50
    y: int = 50
    width: int = 250
    height: int = 200
    is_public: bool = True
    created_at: str = field(default_factory=now_iso)
    title: str = "New Note"
    content: str = "Type your note here..."
    color: str = DEFAULT_NOTE_COLOR
    tags: List[str] = field(default_factory=list)
    image: Optional[str] = None

    def __post_init__(self) -> None:
        self._normalize_geometry()
        self.title = _sanitize_text(self.title, max_length=500)
        self.content = _sanitize_text(self.content)
        color = str(self.color or DEFAULT_NOTE_COLOR).lower()
        if color not in NOTE_PALETTE:
            raise EntityValidationError(f"unsupported note color: {self.color}")
        self.color = color
        self.tags = normalize_tags(self.tags)
        self.image = self.image or None
        check_asset_size(self.image)


@dataclass
class ImageEntity(_EntityBase):
    """תמונה עצמאית על הקיר."""

    kind: ClassVar[str] = IMAGE_KIND

    x: int = 100
    y: int = 100
    width: int = 300
    height: int = 300
    is_public: bool = True
    created_at: str = field(default_factory=now_iso)
    src: str = ""

    def __post_init__(self) -> None:
        self._normalize_geometry()
        if not self.src:
            raise EntityValidationError("image entity requires src")
        check_asset_size(self.src)


Entity = Union[NoteEntity, ImageEntity]


def entity_from_dict(data: Dict[str, Any], strict: bool = True) -> Entity:
    """Parse one wire object into its variant. Unknown keys (e.g. userId) are ignored.

    With strict=False (stored data) a note color outside the palette falls back
    to the default color instead of failing the whole entity.
    """
    if not isinstance(data, dict):
        raise EntityValidationError("entity must be an object")
    kind = str(data.get("type") or NOTE_KIND).strip().lower()
    common = {
        "id": str(data.get("id") or ""),
        "x": data.get("x", 0),
        "y": data.get("y", 0),
        "width": data.get("width", MIN_WIDTH),
        "height": data.get("height", MIN_HEIGHT),
        "is_public": data.get("isPublic", True),
        "created_at": str(data.get("createdAt") or ""),
    }
    if kind == NOTE_KIND:
        color = str(data.get("color") or DEFAULT_NOTE_COLOR)
        if not strict and color.lower() not in NOTE_PALETTE:
            color = DEFAULT_NOTE_COLOR
        return NoteEntity(
            **common,
            title=data.get("title", ""),
            content=data.get("content", ""),
            color=color,
            tags=data.get("tags") or [],
            image=data.get("image") or None,
        )
    if kind == IMAGE_KIND:
        return ImageEntity(**common, src=str(data.get("src") or ""))
    raise EntityValidationError(f"unknown entity type: {kind}")


def entity_to_dict(entity: Entity) -> Dict[str, Any]:
    if not isinstance(entity, (NoteEntity, ImageEntity)):
        raise TypeError(f"not a wall entity: {type(entity).__name__}")
    base: Dict[str, Any] = {
        "id": entity.id,
        "type": entity.kind,
        "x": entity.x,
        "y": entity.y,
        "width": entity.width,
        "height": entity.height,
    }
    if isinstance(entity, NoteEntity):
        base.update({
            "title": entity.title,
            "content": entity.content,
            "color": entity.color,
            "tags": list(entity.tags),
            "image": entity.image,
        })
    else:
        base["src"] = entity.src
    base["isPublic"] = entity.is_public
    base["createdAt"] = entity.created_at
    return base


def parse_collection(items: Any) -> List[Entity]:
    """Parse a whole Collection body; ids must be unique."""
    if not isinstance(items, list):
        raise EntityValidationError("collection must be a JSON array")
    entities: List[Entity] = []
    seen = set()
    for i, item in enumerate(items):
        try:
            entity = entity_from_dict(item)
        except EntityValidationError as e:
            if isinstance(e, AssetTooLargeError):
                raise
            raise EntityValidationError(f"item {i}: {e}") from e
        if entity.id in seen:
            raise EntityValidationError(f"duplicate entity id: {entity.id}")
        seen.add(entity.id)
        entities.append(entity)
    return entities


def collection_to_wire(entities: Iterable[Entity]) -> List[Dict[str, Any]]:
    return [entity_to_dict(e) for e in entities]


@dataclass
class Background:
    """רקע הקיר המשותף: צבע או תמונה."""

    type: str = "color"
    value: str = DEFAULT_BACKGROUND_COLOR

    def __post_init__(self) -> None:
        if self.type not in ("color", "image"):
            raise EntityValidationError("background type must be 'color' or 'image'")
        self.value = str(self.value or "")
        if self.type == "color":
            if not _HEX_COLOR_RE.match(self.value):
                raise EntityValidationError(f"invalid background color: {self.value}")
        else:
            if not self.value:
                raise EntityValidationError("image background requires a value")
            check_asset_size(self.value, MAX_BACKGROUND_BYTES, what="Background image")

    @classmethod
    def from_dict(cls, data: Any) -> "Background":
        if not isinstance(data, dict):
            raise EntityValidationError("background must be an object")
        return cls(type=str(data.get("type") or ""), value=data.get("value") or "")

    @classmethod
    def preset(cls, name: str) -> "Background":
        return cls("color", BACKGROUND_PRESETS.get(name, DEFAULT_BACKGROUND_COLOR))

    def to_dict(self) -> Dict[str, str]:
        return {"type": self.type, "value": self.value}
