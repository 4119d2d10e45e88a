"""
Configuration and settings for the Collective backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="")
    log_level: str = Field(default="INFO")

    # Database (Postgres expected)
    database_url: Optional[str] = Field(default=None)

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    # Profile cache (Redis)
    redis_url: Optional[str] = Field(default=None)
    profile_cache_ttl_seconds: int = Field(default=3600)
    profile_cache_prefix: str = Field(default="collective:profile:")

    # ATProto services
    pds_url: str = Field(default="https://bsky.social")
    appview_url: str = Field(default="https://public.api.bsky.app")
    http_timeout_seconds: float = Field(default=10.0)

    # Web client
    client_url: str = Field(default="http://127.0.0.1:5173")
    session_cookie_name: str = Field(default="sid")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
