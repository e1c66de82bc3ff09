"""Application configuration using pydantic-settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    app_name: str = "Donation Ledger"
    debug: bool = False
    api_v1_prefix: str = "/api/v1"
    log_level: str = "INFO"

    # Database
    database_url: str = "sqlite+aiosqlite:///./donation_ledger.db"
    db_pool_size: int = 10
    db_pool_timeout: float = 30.0  # seconds to wait for a pooled connection
    transaction_timeout: float = 15.0  # seconds a unit of work may run

    # Reporting
    timezone: str = "UTC"  # used to resolve "today" windows

    # Security
    secret_key: str = "change-me-in-production"
    access_token_expire_minutes: int = 60 * 24
    algorithm: str = "HS256"
    bcrypt_rounds: int = 12

    # CORS
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]

    # Rate Limiting
    rate_limit: str = "100/minute"

    # Bootstrap admin, created at startup when both are set
    admin_email: str | None = None
    admin_password: str | None = None

    # Notifications
    notification_webhook_url: str | None = None
    notification_timeout: float = 10.0


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
