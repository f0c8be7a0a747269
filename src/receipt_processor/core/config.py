from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    environment: str = "dev"
    base_url: str = "http://localhost:8000"

    database_url: str = "sqlite:///./receipts.db"
    redis_url: str = "redis://localhost:6379/0"

    cors_allow_origins: list[str] = ["*"]

    upload_dir: Path = Path("uploads")
    accepted_extensions: list[str] = [".pdf"]
    validate_pdf_header: bool = False

    gemini_api_key: str | None = None
    gemini_model: str = "gemini-2.5-flash"
    gemini_base_url: str = "https://generativelanguage.googleapis.com"
    extraction_timeout_seconds: float = 60.0

    processing_stale_after_minutes: int = 30

    retry_queue_enabled: bool = True
    retry_queue_backend: Literal["thread", "celery"] = "thread"
    retry_queue_interval_seconds: float = 30.0
    retry_queue_batch_size: int = 5
    retry_queue_max_retries: int = 5
    retry_base_delay_seconds: float = 10.0
    retry_max_delay_seconds: float = 600.0


settings = Settings()
