"""Configuration settings for the work-order sync backend."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings

DEFAULT_DB_PATH = Path(__file__).resolve().parent / "db" / "internal.db"


class Settings(BaseSettings):
    """Application settings loaded from environment (prefix WOSYNC_)."""

    # Canonical store
    database_path: Path = DEFAULT_DB_PATH

    # Export job queue
    default_batch_limit: int = 10
    max_attempts: int = 5
    # Capped exponential backoff: 5m, 15m, 1h, 6h, 24h
    backoff_delays_seconds: list[int] = [300, 900, 3600, 21600, 86400]

    # Legacy store (Google Sheets values API)
    sheets_api_base_url: str = "https://sheets.googleapis.com/v4/spreadsheets"
    sheets_timeout_seconds: float = 20.0
    default_sheet_name: str = "Work_Orders"
    signed_review_sheet_name: str = "Signed_Needs_Review"
    header_cache_ttl_seconds: float = 300.0
    google_access_token: str | None = None  # Optional, sessions route can set it too

    # Read router
    db_primary_reads: bool = False  # Off unless explicitly enabled; when off every workspace reads LEGACY

    # Reconciliation sampler
    reconcile_fields: list[str] = ["status", "signed_at", "amount", "scheduled_date"]
    reconcile_compare_limit: int = 20
    reconcile_max_entries: int = 50
    reconcile_display_limit: int = 20

    # App
    log_level: str = "INFO"
    cors_origins: list[str] = [
        "http://localhost:8080",
        "http://127.0.0.1:8080",
    ]

    class Config:
        env_prefix = "WOSYNC_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
