from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ALLOWED_HOSTS = ["localhost", "127.0.0.1", "testserver"]
DEFAULT_SECRET_KEY = "change-this-secret-key-in-production"


def _normalize_allowed_hosts(value: Any) -> list[str]:
    """Accept comma-separated string or list-like and normalize hosts."""
    if value is None or value == "":
        return []

    if isinstance(value, str):
        parts = [part.strip() for part in value.split(",")]
    elif isinstance(value, (list, tuple, set)):
        parts = [str(part).strip() for part in value]
    else:
        return []

    return [part for part in parts if part]


class Settings(BaseSettings):
    """Application settings."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./pocketwise.db"
    ALLOWED_HOSTS: list[str] = Field(default_factory=lambda: DEFAULT_ALLOWED_HOSTS.copy())

    # Application
    ENV: str = "development"
    SECRET_KEY: str = DEFAULT_SECRET_KEY
    APP_NAME: str = "Pocketwise"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Scheduled endpoint shared secret (empty rejects every call)
    CRON_SECRET: str = ""

    # Redis
    REDIS_URL: str = ""
    USE_REDIS_RATE_LIMIT: bool = True

    # Insight generation
    INSIGHTS_CACHE_TTL_SECONDS: int = 60 * 60
    INSIGHTS_CACHE_RETENTION_SECONDS: int = 40 * 24 * 60 * 60
    INSIGHTS_TRIGGER_TRANSACTION_THRESHOLD: int = 10
    INSIGHTS_TRIGGER_MAX_ATTEMPTS: int = 3
    INSIGHTS_TRIGGER_RETRY_DELAY_SECONDS: float = 2.0
    INSIGHTS_LOOKBACK_MONTHS: int = 2

    # Monthly sweep
    INSIGHTS_BATCH_SIZE: int = 20
    INSIGHTS_MAX_USERS_PER_RUN: int = 1000
    INSIGHTS_ERROR_REPORT_LIMIT: int = 10
    INSIGHTS_BATCH_SOFT_DEADLINE_SECONDS: float = 0
    INSIGHTS_SCHEDULER_ENABLED: bool = False

    # On-demand generation rate limit
    RATE_LIMIT_MAX: int = 10
    RATE_LIMIT_WINDOW_SECONDS: int = 60

    # Pydantic v2 compatible settings: read .env and ignore extra env vars
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("ALLOWED_HOSTS", mode="before")
    @classmethod
    def parse_allowed_hosts(cls, value: Any) -> list[str] | Any:
        """Support comma-separated ALLOWED_HOSTS from environment."""
        return _normalize_allowed_hosts(value)

    @property
    def redis_enabled(self) -> bool:
        return bool(self.REDIS_URL) and self.USE_REDIS_RATE_LIMIT


def _validate_security() -> None:
    """Fail fast when running production with insecure defaults."""
    env = settings.ENV.lower()
    if env != "production":
        return

    secret = settings.SECRET_KEY
    if not secret or secret == DEFAULT_SECRET_KEY or len(secret) < 32:
        raise ValueError("SECRET_KEY must be set to a strong value in production.")

    if not settings.CRON_SECRET or len(settings.CRON_SECRET) < 16:
        raise ValueError("CRON_SECRET must be set to a strong value in production.")

    if not settings.ALLOWED_HOSTS or settings.ALLOWED_HOSTS == DEFAULT_ALLOWED_HOSTS:
        raise ValueError("ALLOWED_HOSTS must be configured explicitly in production.")

    if settings.DATABASE_URL.startswith("sqlite"):
        raise ValueError("Use PostgreSQL in production; sqlite is only for local/dev.")


settings = Settings()


_validate_security()
