"""Application settings.

Hey future me - ALL tunables live here! Values come from environment variables
(prefix CHARTSPOT_, nested sections separated by "__") or an optional .env file.

Examples:
    CHARTSPOT_RANKING__REMOTE_URL=https://example.com/kworb.json
    CHARTSPOT_RANKING__CONCURRENCY_LIMIT=4
    CHARTSPOT_METADATA_CACHE__TTL_SECONDS=3600
    CHARTSPOT_OBSERVABILITY__LOG_LEVEL=DEBUG

Settings are READ-ONLY at runtime. Nothing in chartspot writes them back.
"""

import os
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_cache_dir() -> Path:
    """Return the per-user cache directory for chartspot."""
    xdg = os.environ.get("XDG_CACHE_HOME")
    base = Path(xdg) if xdg else Path.home() / ".cache"
    return base / "chartspot"


class RankingSettings(BaseModel):
    """Chart source and enrichment fan-out settings."""

    remote_url: str | None = Field(
        default=None, description="Optional HTTPS URL of a remote chart JSON file"
    )
    concurrency_limit: int = Field(
        default=6, ge=1, description="Enrichment requests in flight per batch"
    )
    top_n: int | None = Field(
        default=None, ge=1, description="Cap on the number of chart entries"
    )
    artwork_size: int = Field(
        default=600, ge=1, description="Pixel size requested from the artwork CDN"
    )
    max_remote_bytes: int = Field(default=2_000_000, ge=1)
    remote_timeout: float = Field(default=12.0, gt=0)
    local_filename: str = "kworb_top10.json"
    resource_dirs: list[Path] = Field(default_factory=list)


class ITunesSettings(BaseModel):
    """iTunes Search API settings."""

    search_url: str = "https://itunes.apple.com/search"
    country: str | None = None
    timeout: float = Field(default=15.0, gt=0)
    max_attempts: int = Field(default=3, ge=1)
    backoff_base: float = Field(default=0.5, ge=0)
    # Apple documents ~20 calls/minute but tolerates short bursts
    rate_limit_per_second: float = Field(default=5.0, gt=0)
    rate_limit_burst: int = Field(default=20, ge=1)


class MetadataCacheSettings(BaseModel):
    """Persistent lookup cache settings."""

    ttl_seconds: float = Field(default=24 * 60 * 60, gt=0)
    debounce_seconds: float = Field(default=1.0, ge=0)
    cache_dir: Path = Field(default_factory=_default_cache_dir)
    filename: str = "chartspot_metadata_cache.json"

    @property
    def path(self) -> Path:
        """Full path of the persisted snapshot."""
        return self.cache_dir / self.filename


class ImageCacheSettings(BaseModel):
    """Artwork cache settings."""

    cost_limit_bytes: int = Field(default=50 * 1024 * 1024, ge=1)
    max_concurrent_downloads: int = Field(default=6, ge=1)
    slot_poll_interval: float = Field(default=0.05, gt=0)
    download_timeout: float = Field(default=15.0, gt=0)
    small_pixel_size: int = Field(default=120, ge=1)
    full_pixel_size: int = Field(default=600, ge=1)


class ObservabilitySettings(BaseModel):
    """Logging settings."""

    log_level: str = "INFO"
    json_format: bool = False

    @field_validator("log_level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level


class Settings(BaseSettings):
    """Root settings object."""

    model_config = SettingsConfigDict(
        env_prefix="CHARTSPOT_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    ranking: RankingSettings = Field(default_factory=RankingSettings)
    itunes: ITunesSettings = Field(default_factory=ITunesSettings)
    metadata_cache: MetadataCacheSettings = Field(
        default_factory=MetadataCacheSettings
    )
    image_cache: ImageCacheSettings = Field(default_factory=ImageCacheSettings)
    observability: ObservabilitySettings = Field(
        default_factory=ObservabilitySettings
    )


# Hey future me, lru_cache means settings are read ONCE per process. Tests that need
# different values should build Settings(...) directly instead of poking the env,
# or call get_settings.cache_clear().
@lru_cache
def get_settings() -> Settings:
    """Get the process-wide settings instance."""
    return Settings()
