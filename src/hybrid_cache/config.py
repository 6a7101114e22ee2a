from __future__ import annotations

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# 30 days, the default lifetime of an entry in both tiers
DEFAULT_TTL = 30 * 24 * 60 * 60.0


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="HYBRID_CACHE_", env_file=".env", extra="ignore")

    # Redis
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        validation_alias=AliasChoices("HYBRID_CACHE_REDIS_URL", "REDIS_URL"),
    )
    socket_timeout: float | None = 5.0
    socket_connect_timeout: float | None = 5.0

    # Deployment namespace shared by all instances; falls back to the
    # instance id when unset, which isolates the instance
    namespace: str | None = None

    # Cache behaviour
    default_ttl: float = Field(default=DEFAULT_TTL, gt=0)
    fail_on_remote_error: bool = False
    fire_and_forget: bool = True
    local_max_entries: int | None = Field(default=None, gt=0)

    # Invalidation listener
    subscribe_poll_interval: float = Field(default=1.0, gt=0)

    # Observability
    enable_metrics: bool = True
    log_level: str = "INFO"
    log_json: bool = False


settings = Settings()
