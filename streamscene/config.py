"""
Application configuration using environment variables.
"""
import os
import secrets
from functools import lru_cache
from pydantic_settings import BaseSettings
from typing import List

_GENERATED_SECRET = secrets.token_urlsafe(32)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "Stream Scene API"
    debug: bool = False
    environment: str = "development"

    # Security
    secret_key: str = os.getenv("SECRET_KEY", _GENERATED_SECRET)
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60  # 1 hour
    refresh_token_expire_days: int = 7
    auth_cookie_name: str = "access_token"

    # Database
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./streamscene.db")

    # CORS
    cors_origins: List[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "https://streamscene.net",
    ]

    # Rate limiting
    login_rate_limit: str = "5/minute"
    publish_rate_limit: str = "30/minute"

    # Threads Graph API
    threads_graph_base: str = "https://graph.threads.net"
    threads_api_version: str = "v1.0"
    threads_http_timeout: float = 30.0
    threads_poll_interval: float = 2.0
    threads_poll_timeout: float = 120.0  # videos can take a while
    threads_text_limit: int = 500

    # Publish dispatcher
    dispatcher_enabled: bool = False
    dispatch_interval_seconds: int = 60
    dispatch_batch_size: int = 20
    dispatch_max_attempts: int = 3
    dispatch_backoff_base_seconds: int = 60
    dispatch_backoff_max_seconds: int = 3600
    dispatch_lease_seconds: int = 900  # must outlast one publish: 20 carousel items, polling, publish

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Validate secret key on startup
settings = get_settings()
if settings.environment == "production" and settings.secret_key == _GENERATED_SECRET:
    raise ValueError(
        "SECRET_KEY must be set in production! "
        "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(32))\""
    )
