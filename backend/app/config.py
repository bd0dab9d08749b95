"""Application configuration."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings are loaded in this priority order (highest to lowest):
    1. Environment variables
    2. .env file (for local development)
    3. Default values
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # =========================================================================
    # Application
    # =========================================================================
    app_name: str = "Roadmap Ledger API"
    debug: bool = False

    # =========================================================================
    # Database
    # =========================================================================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./roadmap_ledger.db",
        description="Async SQLAlchemy URL (sqlite+aiosqlite or postgresql+asyncpg)",
    )

    # =========================================================================
    # CORS
    # =========================================================================
    cors_origins: list[str] = ["http://localhost:3000"]

    # =========================================================================
    # API Settings
    # =========================================================================
    api_v1_prefix: str = "/api/v1"

    # =========================================================================
    # Identity resolution
    # =========================================================================
    # Placeholder deliverables carry this marker in their title. Their UUIDs
    # are the only usable identity.
    unannounced_marker: str = "Unannounced"

    # Announced deliverables whose UUID changed are matched by exact title.
    # Two distinct deliverables sharing a title would have their histories
    # merged, so this can be switched off.
    match_announced_by_title: bool = Field(
        default=True,
        description="Fall back to exact title matching for announced deliverables",
    )

    # =========================================================================
    # Workload heuristic
    # =========================================================================
    # HARDCODED ASSUMPTION: ~80 engineer-hours per task, 60% focus factor,
    # 8 hour working day. Load is an approximation, not a measurement.
    load_hours_per_task: float = 80.0
    load_focus_factor: float = 0.6
    load_hours_per_day: float = 8.0

    # =========================================================================
    # Batch fetch
    # =========================================================================
    fetch_page_size: int = 20
    fetch_timeout_seconds: float = 30.0
    fetch_concurrency: int = 8

    # =========================================================================
    # Paths
    # =========================================================================
    export_dir: Path = Path("data_exports")
    seed_dir: Path = Path("initialization_data")


settings = Settings()
