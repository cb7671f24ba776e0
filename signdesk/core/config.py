# =====================================================
# FILE: signdesk/core/config.py
# Application settings loaded from the environment
# =====================================================

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # App
    APP_NAME: str = "SignDesk"
    DEBUG: bool = False
    PUBLIC_BASE_URL: str = "http://localhost:8000"
    SECRET_KEY: str = "change-me-in-production"

    # Database
    DATABASE_URL: str = "sqlite:///./signdesk.db"
    DB_ECHO: bool = False
    DB_POOL_PRE_PING: bool = True

    # Object storage (local filesystem bucket)
    STORAGE_ROOT: str = "./storage/contracts"
    STORAGE_URL_TTL_SECONDS: int = 3600

    # Access tokens
    TOKEN_TTL_DAYS: int = 30

    # Admin JWT
    JWT_ALGORITHM: str = "HS256"

    # Rate limiting (requests per window, per client IP)
    RATE_LIMIT_WINDOW_SECONDS: int = 60
    RATE_LIMIT_SEND: int = 5
    RATE_LIMIT_VIEW: int = 10
    RATE_LIMIT_SIGN: int = 3
    RATE_LIMIT_REVIEW_VIEW: int = 10
    RATE_LIMIT_REVIEW_APPROVE: int = 3
    RATE_LIMIT_ADMIN_READ: int = 30
    RATE_LIMIT_ADMIN_WRITE: int = 10

    # Mail
    MAIL_SERVER: Optional[str] = None
    MAIL_PORT: int = 587
    MAIL_USERNAME: str = ""
    MAIL_PASSWORD: str = ""
    MAIL_FROM: Optional[str] = None
    MAIL_FROM_NAME: str = "SignDesk"
    MAIL_STARTTLS: bool = True
    MAIL_SSL_TLS: bool = False
    MAIL_SUPPRESS_SEND: bool = False
    OWNER_NOTIFICATION_EMAIL: Optional[str] = None

    # Provider identity printed on agreements
    PROVIDER_NAME: str = "SignDesk"
    PROVIDER_DESCRIPTION: str = "Subscription Management Platform"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
