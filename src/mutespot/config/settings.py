"""Application settings.

Hey future me - ALL configuration lives here! Business code never reads os.environ.
Components get the settings group they need passed into their constructor, so tests
can build a component with whatever limits they like without monkeypatching env vars.

Env vars use the MUTESPOT_ prefix and "__" for nesting:
    MUTESPOT_DATABASE__URL=sqlite+aiosqlite:///./mutespot.db
    MUTESPOT_RATE_LIMIT__MAX_ATTEMPTS=5
    MUTESPOT_ENFORCEMENT__PLAYLIST_TRACKS_CHUNK=100
"""

from functools import lru_cache

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseModel):
    """Database connection settings."""

    url: str = "sqlite+aiosqlite:///./mutespot.db"
    echo: bool = False
    pool_pre_ping: bool = True
    # Only applied for PostgreSQL (SQLite has no real pool)
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 3600


class SpotifySettings(BaseModel):
    """Spotify Web API settings.

    Hey future me - request_timeout is 30s on purpose. Playlist fetches with a few
    thousand tracks are SLOW, and a timeout counts as a recoverable failure anyway.
    """

    api_base_url: str = "https://api.spotify.com/v1"
    request_timeout: float = 30.0
    page_size: int = Field(default=50, ge=1, le=50)
    playlist_page_size: int = Field(default=100, ge=1, le=100)


class RateLimitSettings(BaseModel):
    """Per-provider quota window and retry/backoff policy."""

    requests_per_window: int = Field(default=100, ge=1)
    window_seconds: float = Field(default=30.0, gt=0)
    base_delay_seconds: float = Field(default=1.0, gt=0)
    max_delay_seconds: float = Field(default=60.0, gt=0)
    max_attempts: int = Field(default=5, ge=1)


class EnforcementSettings(BaseModel):
    """Chunk sizes and estimates for the batch engine.

    Chunk sizes are the documented Spotify maximums: 50 ids per liked-song, saved-album
    and follow call, 100 per playlist-track call. A smaller batch_size on a request
    can shrink them, never grow them.
    """

    liked_songs_chunk: int = Field(default=50, ge=1, le=50)
    albums_chunk: int = Field(default=50, ge=1, le=50)
    follows_chunk: int = Field(default=50, ge=1, le=50)
    playlist_tracks_chunk: int = Field(default=100, ge=1, le=100)
    plan_ttl_seconds: int = Field(default=3600, ge=1)
    worker_interval_seconds: float = Field(default=5.0, gt=0)
    estimated_call_ms: int = Field(default=750, ge=0)


class ObservabilitySettings(BaseModel):
    """Logging settings."""

    log_level: str = "INFO"
    json_logs: bool = False


class Settings(BaseSettings):
    """Root settings object."""

    model_config = SettingsConfigDict(
        env_prefix="MUTESPOT_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    app_name: str = "mutespot"
    debug: bool = False
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    spotify: SpotifySettings = Field(default_factory=SpotifySettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    enforcement: EnforcementSettings = Field(default_factory=EnforcementSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
