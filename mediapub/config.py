"""
Configuration and settings for the media publishing backend.
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

    api_prefix: str = Field(default="/api")
    log_level: str = Field(default="INFO")

    # Relational store (Postgres expected; postgresql:// uses the psycopg driver)
    database_url: Optional[str] = Field(default=None)
    db_pool_size: int = Field(default=10, ge=1)
    db_max_overflow: int = Field(default=0, ge=0)
    # Seconds to wait for a pooled connection before failing the operation.
    db_pool_timeout: float = Field(default=30.0, gt=0)

    # Document store (MongoDB)
    mongodb_url: Optional[str] = Field(default=None)
    mongodb_database: str = Field(default="image")
    mongodb_collection: str = Field(default="post")
    mongodb_max_pool_size: int = Field(default=50, ge=1)
    mongodb_min_pool_size: int = Field(default=5, ge=0)

    # Uploaded files
    storage_root: str = Field(default="./tmp")

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    # Credential lifetimes
    session_ttl_seconds: int = Field(default=3600, gt=0)
    refresh_ttl_days: int = Field(default=30, gt=0)
    enforce_session_expiry: bool = Field(default=True)
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
