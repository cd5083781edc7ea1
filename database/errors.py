"""Error types shared by the wall store, the API and the sync client."""


class WallError(Exception):
    """Base class for sticky wall errors."""


class EntityValidationError(WallError, ValueError):
    """A note/image payload failed validation."""


class AssetTooLargeError(EntityValidationError):
    """An embedded data URL exceeds the allowed encoded size."""

    def __init__(self, what: str, size: int, limit: int):
        self.what = what
        self.size = int(size)
        self.limit = int(limit)
        limit_mb = limit // (1024 * 1024)
        super().__init__(f"{what} too large! Max {limit_mb}MB allowed.")


class EntityNotFound(WallError, KeyError):
    pass


class BackendUnavailable(WallError):
    """The persistence backend could not be reached or failed mid-operation."""


class AuthError(WallError):
    """Authentication/registration failure with an HTTP status hint."""

    def __init__(self, message: str, status: int = 400):
        super().__init__(message)
        self.status = int(status)
