from __future__ import annotations

from typing import Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import (
    BaseSettings,
    DotEnvSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


class ConfigError(ValueError):
    """Raised when environment configuration fails validation."""


_BACKEND_CHOICES = {"auto", "memory", "file", "mongo"}


class _EnvChainSettings(BaseSettings):
    """בסיס משותף: קורא משתני סביבה, ואחריהם .env.local ו-.env."""

    model_config = SettingsConfigDict(
        case_sensitive=True,
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            # local overrides
            DotEnvSettingsSource(settings_cls, env_file=".env.local", case_sensitive=True),
            DotEnvSettingsSource(settings_cls, env_file=".env", case_sensitive=True),
            file_secret_settings,
        )


class WallConfig(_EnvChainSettings):
    """
    קונפיגורציית השרת של קיר הפתקים.

    - PORT / HOST לתהליך ה-HTTP
    - בחירת backend לאחסון: memory / file / mongo (או auto לפי MONGODB_URI)
    - SESSION_SECRET ו-AUTH_ENABLED עבור הגרסה המאומתת
    """

    PORT: int = Field(default=5000, ge=1, le=65535, description="HTTP listen port")
    HOST: str = Field(default="0.0.0.0", description="HTTP listen address")

    STORAGE_BACKEND: str = Field(
        default="auto", description="auto | memory | file | mongo"
    )
    NOTES_FILE: str = Field(
        default="notes.json", description="Collection file for the file backend"
    )
    MONGODB_URI: Optional[str] = Field(default=None, description="MongoDB connection string")
    DATABASE_NAME: str = Field(default="sticky_wall", description="MongoDB database name")
    MONGODB_SERVER_SELECTION_TIMEOUT_MS: int = Field(
        default=5_000,
        ge=100,
        le=600_000,
        description="MongoDB server selection timeout in ms (serverSelectionTimeoutMS)",
    )

    AUTH_ENABLED: bool = Field(default=False, description="Require a login session for wall routes")
    SESSION_SECRET: str = Field(
        default="dev-secret-key-change-in-production",
        description="Flask session signing key",
    )

    MAX_CONTENT_LENGTH_MB: int = Field(
        default=25, ge=1, le=512, description="Largest accepted request body"
    )

    LOG_LEVEL: str = Field(default="INFO", description="Minimum log level")
    LOG_FORMAT: str = Field(default="json", description="json | console")

    @field_validator("STORAGE_BACKEND", mode="before")
    @classmethod
    def _normalize_backend(cls, v):
        s = str(v or "auto").strip().lower()
        if s not in _BACKEND_CHOICES:
            raise ValueError(
                f"STORAGE_BACKEND must be one of: {', '.join(sorted(_BACKEND_CHOICES))}"
            )
        return s

    @field_validator("MONGODB_URI", mode="before")
    @classmethod
    def _validate_mongodb_uri(cls, v):
        if v is None or str(v).strip() == "":
            return None
        s = str(v).strip()
        if not s.startswith(("mongodb://", "mongodb+srv://")):
            raise ValueError("MONGODB_URI must start with mongodb:// or mongodb+srv://")
        return s

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def _upper_level(cls, v):
        return str(v or "INFO").strip().upper()

    @property
    def resolved_backend(self) -> str:
        if self.STORAGE_BACKEND != "auto":
            return self.STORAGE_BACKEND
        return "mongo" if self.MONGODB_URI else "file"


class SyncClientConfig(_EnvChainSettings):
    """Timing and endpoint settings for the synchronization client."""

    WALL_URL: str = Field(default="http://localhost:5000", description="Base URL of the wall server")
    PUSH_DEBOUNCE_MS: int = Field(default=500, ge=0, le=60_000)
    POLL_INTERVAL_MS: int = Field(default=3_000, ge=50, le=3_600_000)
    TYPING_IDLE_MS: int = Field(default=1_000, ge=0, le=60_000)
    HTTP_TIMEOUT: float = Field(default=10.0, gt=0, le=300)

    @field_validator("WALL_URL")
    @classmethod
    def _strip_slash(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("WALL_URL must start with http:// or https://")
        return v.rstrip("/")


def load_config(**overrides) -> WallConfig:
    """
    טוען את קונפיגורציית השרת.

    שגיאות Validation של Pydantic מומרות ל-ConfigError עם הודעה קריאה.
    """
    try:
        return WallConfig(**overrides)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc


def load_client_config(**overrides) -> SyncClientConfig:
    try:
        return SyncClientConfig(**overrides)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc
