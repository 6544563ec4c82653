"""Runtime settings for the ledger service, read from the environment and .env."""

from typing import Optional
from urllib.parse import quote

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Database, timezone, alert and scheduler settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database configuration
    postgres_user: str = "postgres"
    postgres_password: str = "postgres"
    postgres_db: str = "cafestock"
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    # Full SQLAlchemy URL; takes precedence over the postgres_* fields when set
    database_url_override: Optional[str] = Field(
        None, validation_alias=AliasChoices("DATABASE_URL", "database_url_override")
    )

    # Application settings
    debug: bool = False
    cors_origins: str = "http://localhost:5173,http://127.0.0.1:5173"

    # Ledger behaviour
    timezone: str = "Asia/Manila"
    default_alert_threshold: float = 10
    expiring_soon_days: int = 3
    system_actor_email: str = "system@inventory.local"

    # Expiration job schedule (crontab syntax, evaluated in `timezone`)
    scheduler_enabled: bool = True
    expiration_hourly_cron: str = "0 * * * *"
    expiration_daily_cron: str = "0 6 * * *"
    startup_check_delay_seconds: int = 30

    @property
    def database_url(self) -> str:
        """asyncpg URL built from the postgres_* parts unless DATABASE_URL is set."""
        if self.database_url_override:
            return self.database_url_override
        base_url = (
            f"postgresql+asyncpg://{quote(self.postgres_user, safe='')}:{quote(self.postgres_password, safe='')}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )
        # Azure-hosted Postgres only accepts TLS connections
        if "azure" in self.postgres_host.lower() or "postgres.database" in self.postgres_host.lower():
            return f"{base_url}?ssl=require"
        return base_url

    @property
    def allowed_origins(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


settings = Settings()
