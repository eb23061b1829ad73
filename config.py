"""
Application configuration loaded from environment variables.
"""
import tempfile
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Wavespeed image generation API
    wavespeed_api_key: str = ""
    wavespeed_base_url: str = "https://api.wavespeed.ai/api/v3"

    # Gemini prompt enhancement (optional)
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.5-flash"

    # Prodigi print fulfillment (optional)
    prodigi_api_key: Optional[str] = None
    prodigi_sandbox: bool = True

    # Timeouts and retries
    api_timeout_seconds: int = 120
    polling_interval_seconds: int = 5
    max_retries: int = 3
    rate_limit_base_wait_seconds: float = 10.0

    # Blob storage: S3 (or S3-compatible) when a bucket is set, local files otherwise
    blob_bucket: Optional[str] = None
    blob_region: str = "us-east-1"
    blob_endpoint_url: Optional[str] = None
    blob_access_key_id: Optional[str] = None
    blob_secret_access_key: Optional[str] = None
    blob_public_base_url: Optional[str] = None
    blob_dir: Optional[str] = None

    # Public base URL (Magic Links, webhook dispatch, local blob URLs)
    public_base_url: Optional[str] = None

    # Shared secrets
    webhook_secret: Optional[str] = None
    cleanup_secret: Optional[str] = None
    cron_secret: Optional[str] = None
    signature_tolerance_seconds: int = 300

    # Galleries
    gallery_ttl_days: int = 30
    generation_mode: Literal["background", "webhook", "poll"] = "background"
    metadata_write_retries: int = 5
    cleanup_interval_hours: int = 24

    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    return Settings()


def get_blob_dir(settings: Settings) -> Path:
    """Directory backing the local blob store."""
    if settings.blob_dir:
        p = Path(settings.blob_dir)
    else:
        p = Path(tempfile.gettempdir()) / "omoide_blobs"
    p.mkdir(parents=True, exist_ok=True)
    return p
