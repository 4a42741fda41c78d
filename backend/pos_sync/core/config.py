"""Application configuration using pydantic-settings.

All environment variables should be accessed through the settings object
rather than using os.getenv() directly. Provider credentials are stored per
client (see PosClientConfig); only process-wide defaults live here.
"""

from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra env vars
    )

    # Database - defaults to relative path for Docker, override via env for local dev
    database_url: str = "sqlite:///./data/pos_sync.db"

    # CORS - comma-separated origins or "*" for development only
    cors_origins: str = "http://localhost:3000,http://localhost:8000"

    # ==========================================================================
    # POS synchronization
    # ==========================================================================
    sync_default_batch_size: int = 100
    sync_batch_delay_ms: int = 1000  # pause between batches of one run
    sync_default_window_hours: int = 24  # used when the provider has no last sync
    pos_request_timeout_seconds: float = 30.0
    pos_max_range_days: int = 30
    pos_default_timezone: str = "America/Argentina/Buenos_Aires"

    # Auto-pause after repeated failures
    sync_max_consecutive_failures: int = 3
    sync_base_backoff_seconds: int = 30
    sync_max_backoff_seconds: int = 3600  # 1 hour
    sync_max_retries: int = 5

    # ==========================================================================
    # Odoo ERP
    # ==========================================================================
    odoo_url: Optional[str] = None
    odoo_database: str = ""
    odoo_username: str = ""
    odoo_password: str = ""
    odoo_timeout_seconds: float = 30.0
    odoo_retry_attempts: int = 3
    odoo_retry_delay_ms: int = 1000
    odoo_batch_size: int = 50
    odoo_batch_delay_ms: int = 100
    odoo_enable_deduplication: bool = True
    odoo_cleanup_days: int = 90

    # Server
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # API
    api_v1_prefix: str = "/api/v1"

    @field_validator("sync_default_batch_size", "odoo_batch_size")
    @classmethod
    def validate_batch_size(cls, v: int) -> int:
        if v < 1:
            raise ValueError("batch size must be at least 1")
        return v

    @field_validator("odoo_retry_attempts")
    @classmethod
    def validate_retry_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("odoo_retry_attempts must be at least 1")
        return v

    @field_validator(
        "sync_batch_delay_ms", "odoo_retry_delay_ms", "odoo_batch_delay_ms"
    )
    @classmethod
    def validate_delay(cls, v: int) -> int:
        if v < 0:
            raise ValueError("delays cannot be negative")
        return v

    @property
    def odoo_configured(self) -> bool:
        return bool(self.odoo_url and self.odoo_database and self.odoo_username)

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins into a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
