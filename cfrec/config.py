"""Engine configuration.

Settings are read from environment variables prefixed with ``CFREC_`` (and an
optional ``.env`` file). Defaults reproduce the reference tuning of the
collaborative filtering engine.
"""

import logging
from enum import Enum
from functools import lru_cache
from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class CacheBackend(str, Enum):
    """Available recommendation cache backends."""

    MEMORY = "memory"
    REDIS = "redis"


class EngineSettings(BaseSettings):
    """Typed settings for the recommendation engine and its API wrapper."""

    model_config = SettingsConfigDict(
        env_prefix="CFREC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Cache
    cache_backend: CacheBackend = CacheBackend.MEMORY
    cache_ttl_seconds: int = Field(default=3600, ge=1)
    cache_max_entries: int = Field(default=10000, ge=1)
    redis_url: str = "redis://localhost:6379/0"

    # Candidate selection
    similarity_threshold: float = Field(default=0.1, ge=0.0, le=1.0)
    min_user_events: int = Field(default=5, ge=0)
    min_product_events: int = Field(default=3, ge=0)
    max_similar_users: int = Field(default=20, ge=1)
    max_similar_items: int = Field(default=50, ge=1)
    recent_behavior_limit: int = Field(default=20, ge=1)

    # Hybrid blend
    user_based_weight: float = Field(default=0.6, ge=0.0)
    item_based_weight: float = Field(default=0.4, ge=0.0)

    # I/O
    store_timeout_seconds: float = Field(default=5.0, gt=0.0)
    store_max_workers: int = Field(default=8, ge=1)

    # Background similarity refresh
    refresh_queue_size: int = Field(default=1000, ge=1)
    refresh_workers: int = Field(default=1, ge=1, le=32)

    # Service
    log_level: str = "INFO"
    log_json: bool = True
    seed_csv: Optional[str] = None
    snapshot_dir: Optional[str] = None

    @model_validator(mode="after")
    def _check_weights(self) -> "EngineSettings":
        if self.user_based_weight + self.item_based_weight <= 0:
            raise ValueError("user_based_weight + item_based_weight must be positive")
        return self


@lru_cache(maxsize=1)
def get_settings() -> EngineSettings:
    """Return the process-wide settings read from the environment."""
    settings = EngineSettings()
    logger.debug(
        "Loaded engine settings",
        extra={
            "cache_backend": settings.cache_backend.value,
            "cache_ttl_seconds": settings.cache_ttl_seconds,
            "refresh_workers": settings.refresh_workers,
        },
    )
    return settings
