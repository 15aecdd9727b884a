import os
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SECRET_KEY = "change-this-in-production-use-long-random-string"


class Settings(BaseSettings):
    ENVIRONMENT: str = "development"
    BASE_URL: str = "http://localhost:8030"

    # Database (falls back to a local SQLite file when empty)
    DATABASE_URL: str = ""
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 3600  # Recycle connections after 1 hour

    # JWT (tokens are issued by the auth service, we only verify them)
    SECRET_KEY: str = DEFAULT_SECRET_KEY
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_SECONDS: int = 900

    # Geolocation
    GEO_API_URL: str = "http://ip-api.com/json"
    GEO_TIMEOUT_SECONDS: float = 3.0
    GEO_BACKFILL_DELAY_SECONDS: float = 1.5  # ip-api free tier: 45 requests/minute
    GEO_BACKFILL_INTERVAL_MINUTES: int = 0  # 0 disables the scheduled sweep

    # Extra (network, kind, provider) rules appended to the built-in IP table
    IP_RULES_FILE: Optional[str] = None

    # Shared store for rate limiting; in-memory store when unset
    REDIS_URL: Optional[str] = None

    # Rate limiting
    PIXEL_RATE_LIMIT_MAX_REQUESTS: int = 60
    PIXEL_RATE_LIMIT_WINDOW_SECONDS: int = 60
    API_RATE_LIMIT_MAX_REQUESTS: int = 100
    API_RATE_LIMIT_WINDOW_SECONDS: int = 900  # 15 minutes

    # Attachment storage (Cloudflare R2 / any S3-compatible endpoint)
    R2_ENDPOINT_URL: Optional[str] = None
    R2_ACCESS_KEY_ID: Optional[str] = None
    R2_SECRET_ACCESS_KEY: Optional[str] = None
    R2_BUCKET: Optional[str] = None
    R2_KEY_PREFIX: str = "attachments"
    MAX_ATTACHMENT_BYTES: int = 25 * 1024 * 1024

    ALLOWED_ORIGINS: str = "*"

    # Use absolute path to make sure .env is found
    model_config = SettingsConfigDict(
        env_file=os.path.join(os.path.dirname(__file__), ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )


def validate_settings(current: Settings) -> None:
    """Refuse to run a production deployment with development defaults."""
    if current.ENVIRONMENT != "production":
        return
    if current.SECRET_KEY == DEFAULT_SECRET_KEY:
        raise ValueError("SECRET_KEY must be changed in production")
    if current.BASE_URL.startswith("http://localhost"):
        raise ValueError("BASE_URL must be set in production")


# Create the settings instance
settings = Settings()
