"""
Application configuration using Pydantic Settings.
All environment-specific values are centralized here.
"""

from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ── App ──────────────────────────────────────────────
    app_name: str = "Compliance Requirements Tracker"
    debug: bool = True

    # ── Slice storage ────────────────────────────────────
    storage_backend: str = "local"  # "local" | "memory" | "mongo"
    local_storage_path: str = "./storage/slices"

    # ── MongoDB ──────────────────────────────────────────
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_database: str = "compliance_tracker"
    mongodb_collection: str = "dashboard_slices"

    # ── Store behaviour ──────────────────────────────────
    purge_confirmation_token: str = "DELETE"
    search_history_limit: int = 10

    # ── CSV ──────────────────────────────────────────────
    csv_list_delimiter: str = ";"
    csv_import_chunk_size: int = 500

    # ── Logging ──────────────────────────────────────────
    log_level: str = "INFO"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }


@lru_cache()
def get_settings() -> Settings:
    """Return cached application settings (singleton)."""
    return Settings()
