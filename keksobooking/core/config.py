from functools import lru_cache
import os
from pathlib import Path
from typing import Optional, List

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import logging


def _normalize_database_url(url: Optional[str]) -> Optional[str]:
    """Ensure postgres URLs use the psycopg v3 dialect."""

    if not url:
        return url

    if url.startswith("postgresql+psycopg://"):
        return url

    if url.startswith("postgresql+psycopg2://"):
        return url.replace("postgresql+psycopg2://", "postgresql+psycopg://", 1)

    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)

    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)

    return url


def _default_database_url() -> str:
    explicit = os.getenv("DATABASE_URL")
    if explicit:
        return _normalize_database_url(explicit)
    return "sqlite:///./keksobooking.db"


class Settings(BaseSettings):
    """Application configuration pulled from environment variables or `.env`."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    app_name: str = "Keksobooking API"
    environment: str = os.getenv("ENVIRONMENT") or "local"

    database_url: str = _default_database_url()

    storage_dir: Path = Path(os.getenv("STORAGE_DIR") or "./storage")
    image_storage_backend: str = "local"
    image_s3_bucket: Optional[str] = None
    image_s3_prefix: str = "offer-images/"
    image_s3_region: Optional[str] = None
    image_s3_endpoint_url: Optional[str] = None
    image_storage_timeout_seconds: float = 20.0
    avatar_chunk_size: int = 64 * 1024

    offers_default_limit: int = 20
    # Off by default: a failed attachment write leaves the saved record in place.
    offers_rollback_on_attachment_failure: bool = False

    log_buffer_size: int = 500
    log_request_event_size: int = 200
    log_buffer_file: Optional[Path] = None

    cors_allow_all: bool = True
    cors_allowed_origins: List[str] = []

    @field_validator("database_url", mode="before")
    @classmethod
    def _coerce_database_url(cls, value: Optional[str]) -> Optional[str]:
        return _normalize_database_url(value)

    @field_validator("log_buffer_file", mode="before")
    @classmethod
    def _coerce_log_buffer_file(cls, value: Optional[str]) -> Optional[Path]:
        if value in (None, "", "None"):
            return None
        return Path(value)

    @field_validator("image_storage_backend", mode="before")
    @classmethod
    def _normalize_image_backend(cls, value: Optional[str]) -> str:
        normalized = (value or "local").strip().lower()
        if normalized not in {"local", "s3"}:
            raise ValueError("image_storage_backend must be 'local' or 's3'")
        return normalized


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    settings = Settings()
    try:
        settings.storage_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:  # pragma: no cover - defensive
        logging.getLogger("keksobooking.startup").exception(
            "Failed to ensure storage dir %s: %s", settings.storage_dir, exc
        )
    return settings


settings = get_settings()
