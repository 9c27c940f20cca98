"""Application configuration using pydantic-settings."""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Smile Stars"
    app_env: Literal["development", "staging", "production", "test"] = "development"
    app_secret_key: str = "change-me"
    app_base_url: str = "http://localhost:8000"
    app_debug: bool = False
    app_log_level: str = "INFO"

    # Database
    database_url: str = "postgresql+asyncpg://localhost/smilestars"
    database_pool_size: int = 20
    database_max_overflow: int = 10

    # JWT Authentication
    jwt_secret_key: str | None = None
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_minutes: int = 1440  # 24 hours

    # Magic tokens
    login_token_expire_minutes: int = 15
    invite_token_expire_hours: int = 48
    agreement_token_expire_days: int = 7
    agreement_session_expire_minutes: int = 60

    # Entity-class agreements
    franchise_agreement_code: str = "FRANCHISE_AGREEMENT"
    school_agreement_code: str = "SCHOOL_AGREEMENT"

    # Email (SMTP)
    email_enabled: bool = False
    email_from_address: str = "no-reply@smilestars.in"
    email_from_name: str = "Smile Stars India"
    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_use_tls: bool = True

    @property
    def effective_jwt_secret(self) -> str:
        """Get the JWT secret key, falling back to app secret key."""
        return self.jwt_secret_key or self.app_secret_key

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"

    @property
    def async_database_url(self) -> str:
        """Get database URL with asyncpg driver for async SQLAlchemy."""
        url = self.database_url
        # Convert postgresql:// to postgresql+asyncpg://
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        elif url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql+asyncpg://", 1)
        return url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
