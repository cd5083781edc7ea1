from .backends import JsonFileBackend, MemoryBackend, MongoBackend, WallBackend, build_backend
from .entities import Background, Entity, ImageEntity, NoteEntity, entity_from_dict, entity_to_dict
from .errors import (
    AssetTooLargeError,
    AuthError,
    BackendUnavailable,
    EntityNotFound,
    EntityValidationError,
    WallError,
)
from .manager import WallStore


def init_store(config) -> WallStore:
    """בונה WallStore לפי הקונפיגורציה (backend נבחר לפי STORAGE_BACKEND)."""
    return WallStore(build_backend(config))
