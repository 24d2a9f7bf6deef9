"""
Configuration and settings for the Atelier backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Identity provider (Supabase GoTrue)
    supabase_url: Optional[str] = Field(default=None)
    supabase_service_role_key: Optional[str] = Field(default=None)
    recover_redirect_url: str = Field(
        default="https://dguedes03.github.io/Persona/"
    )

    # Database (Postgres expected)
    database_url: Optional[str] = Field(default=None)

    # S3-compatible storage
    storage_endpoint: Optional[str] = Field(default=None)
    storage_region: Optional[str] = Field(default=None)
    storage_access_key_id: Optional[str] = Field(default=None)
    storage_secret_access_key: Optional[str] = Field(default=None)
    # Base for public object URLs, e.g. https://<project>.supabase.co/storage/v1/object/public
    storage_public_url: Optional[str] = Field(default=None)
    products_bucket: str = Field(default="products")
    photos_bucket: str = Field(default="photos")

    # Upload limits
    max_upload_bytes: int = Field(default=5 * 1024 * 1024)
    max_product_files: int = Field(default=10)

    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    log_level: str = Field(default="INFO")

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False, validation_alias="ATELIER_USE_IN_MEMORY_BACKENDS"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
