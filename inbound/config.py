import json
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration, read from the environment or a local ``.env``."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    APP_NAME: str = "Inbound Receiving Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # postgresql://... in deployments, sqlite+aiosqlite://... under test
    DATABASE_URL: str

    # Pool sizing, PostgreSQL only
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800

    # JSON array or comma-separated string
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    DEFAULT_PAGE_SIZE: int = 50
    MAX_PAGE_SIZE: int = 200

    # Expiry inside this many days is a warning, not an error
    NEAR_EXPIRY_DAYS: int = 30
    # Minutes an ASN or receipt session may sit in RECEIVING before it is flagged
    RECEIVING_SLA_MINUTES: int = 240
    SLA_CHECK_INTERVAL_MINUTES: int = 15

    SCHEDULER_ENABLED: bool = True
    SCHEDULER_TIMEZONE: str = "UTC"

    IDEMPOTENCY_TTL_HOURS: int = 24

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def split_origins(cls, value):
        if not isinstance(value, str):
            return value
        if value.lstrip().startswith("["):
            return json.loads(value)
        return [part.strip() for part in value.split(",") if part.strip()]


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
