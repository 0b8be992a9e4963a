"""Application settings loaded from environment variables and .env files."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_", env_file=".env", extra="ignore"
    )

    url: str = Field(
        default="sqlite+aiosqlite:///./tempokey.db",
        description="SQLAlchemy async database URL",
    )
    echo: bool = Field(default=False, description="Log every SQL statement")
    pool_size: int = Field(default=5, ge=1)
    max_overflow: int = Field(default=10, ge=0)
    pool_timeout: int = Field(default=30, ge=1)
    pool_recycle: int = Field(default=1800, ge=-1)
    pool_pre_ping: bool = True


class SpotifySettings(BaseSettings):
    """Spotify catalog credentials (client-credentials flow, app token only)."""

    model_config = SettingsConfigDict(
        env_prefix="SPOTIFY_", env_file=".env", extra="ignore"
    )

    client_id: str = Field(default="", description="Spotify app client id")
    client_secret: str = Field(default="", description="Spotify app client secret")

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)


# Hey future me - the analysis service is the thing that actually listens to the audio!
# We never run Essentia/Librosa ourselves. url is the service root (no trailing slash),
# identity_token is the bearer token sent on every call. max_confidence/debug_level are
# forwarded verbatim in the batch body - the service uses max_confidence to stop early
# once an algorithm is "sure enough".
class AnalysisServiceSettings(BaseSettings):
    """External tempo/key analysis service settings."""

    model_config = SettingsConfigDict(
        env_prefix="ANALYSIS_", env_file=".env", extra="ignore"
    )

    url: str = Field(default="", description="Base URL of the analysis service")
    identity_token: str = Field(
        default="", description="Bearer token scoped to the analysis service"
    )
    poll_interval: float = Field(default=1.0, gt=0)
    timeout: float = Field(default=120.0, gt=0, description="Hard poll timeout")
    request_timeout: float = Field(
        default=30.0, gt=0, description="Timeout for a single HTTP call"
    )
    max_confidence: float = Field(default=0.65, ge=0.0, le=1.0)
    debug_level: str = Field(default="normal")

    @field_validator("url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


class PreviewSettings(BaseSettings):
    """Preview provider cascade settings."""

    model_config = SettingsConfigDict(
        env_prefix="PREVIEW_", env_file=".env", extra="ignore"
    )

    default_market: str = Field(default="us", min_length=2, max_length=2)
    provider_timeout: float = Field(default=5.0, gt=0)
    search_limit: int = Field(default=10, ge=1, le=50)


class CacheSettings(BaseSettings):
    """Feature cache validity and lookup limits."""

    model_config = SettingsConfigDict(
        env_prefix="CACHE_", env_file=".env", extra="ignore"
    )

    ttl_days: int = Field(default=90, ge=1)
    batch_lookup_limit: int = Field(default=100, ge=1)
    isrc_lookup_limit: int = Field(default=200, ge=1)


class OrchestratorSettings(BaseSettings):
    """Batch/streaming orchestration settings."""

    model_config = SettingsConfigDict(
        env_prefix="ORCHESTRATOR_", env_file=".env", extra="ignore"
    )

    resolve_chunk_size: int = Field(default=5, ge=1)
    analysis_batch_size: int = Field(default=20, ge=1)
    stream_queue_size: int = Field(default=64, ge=1)


class ObservabilitySettings(BaseSettings):
    """Logging settings."""

    model_config = SettingsConfigDict(
        env_prefix="OBSERVABILITY_", env_file=".env", extra="ignore"
    )

    log_json_format: bool = Field(
        default=False, description="Emit JSON logs (recommended in production)"
    )


class Settings(BaseSettings):
    """Root settings object.

    Sub-settings read their own prefixed environment variables, so
    ``ANALYSIS_URL=https://...`` ends up in ``settings.analysis.url``.
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_name: str = "tempokey"
    debug: bool = False
    log_level: str = Field(default="INFO")

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    spotify: SpotifySettings = Field(default_factory=SpotifySettings)
    analysis: AnalysisServiceSettings = Field(default_factory=AnalysisServiceSettings)
    preview: PreviewSettings = Field(default_factory=PreviewSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    orchestrator: OrchestratorSettings = Field(default_factory=OrchestratorSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {value}")
        return level

    # Hey future me - returns None for Postgres! Lifecycle uses this to make sure the
    # SQLite parent directory exists before the engine opens the file.
    def _get_sqlite_db_path(self) -> Path | None:
        url = self.database.url
        if not url.startswith("sqlite"):
            return None
        _, _, path = url.partition(":///")
        if not path or path == ":memory:":
            return None
        return Path(path)


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
