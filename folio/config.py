"""
Configuration and settings for the Folio backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_JWT_SECRET = "dev-insecure-secret"


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    api_prefix: str = Field(default="/api")

    # Database (any SQLAlchemy URL; Postgres expected in production)
    database_url: Optional[str] = Field(default=None)

    # Session tokens
    jwt_secret: str = Field(default=DEFAULT_JWT_SECRET)
    jwt_algorithm: str = Field(default="HS256")
    token_ttl_seconds: int = Field(default=3600, ge=60)
    # Older deployments sent "JWT <token>"; add "JWT" here to keep them working.
    auth_schemes: list[str] = Field(default_factory=lambda: ["Bearer"])
    bcrypt_rounds: int = Field(default=10, ge=4, le=31)

    # S3-compatible asset host
    media_bucket: Optional[str] = Field(default=None)
    media_region: Optional[str] = Field(default=None)
    media_endpoint: Optional[str] = Field(default=None)
    media_public_base_url: Optional[str] = Field(default=None)
    aws_access_key_id: Optional[str] = Field(default=None)
    aws_secret_access_key: Optional[str] = Field(default=None)
    media_folder: str = Field(default="portfolio")
    max_image_bytes: int = Field(default=10 * 1024 * 1024)
    max_video_bytes: int = Field(default=100 * 1024 * 1024)

    # Listing
    default_page_size: int = Field(default=10, ge=1)
    max_page_size: int = Field(default=100, ge=1)

    # HTTP
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080)
    log_level: str = Field(default="INFO")

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False, validation_alias="FOLIO_USE_IN_MEMORY_BACKENDS"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
