"""Runtime settings resolved from the environment (prefix ``PACE_``) and ``.env``."""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from pace_app.constants.network_constants import DEFAULT_CORS_ORIGINS, DEFAULT_HOST, DEFAULT_PORT
from pace_app.constants.session_constants import (
    DEFAULT_CLEANUP_INTERVAL_SECONDS,
    DEFAULT_RATE_LIMIT_MAX_ATTEMPTS,
    DEFAULT_RATE_LIMIT_WINDOW_SECONDS,
    DEFAULT_SESSION_TIMEOUT_MINUTES,
)

BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    environment: str = "local"
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    log_level: str = "INFO"
    # Comma-separated; "*" allows any origin
    cors_allowed_origins: str = DEFAULT_CORS_ORIGINS

    # Credentials
    enable_password_hashing: bool = False

    # Rate limiting
    enable_rate_limiting: bool = True
    rate_limit_max_attempts: int = DEFAULT_RATE_LIMIT_MAX_ATTEMPTS
    rate_limit_window_seconds: float = DEFAULT_RATE_LIMIT_WINDOW_SECONDS
    # Key clients by X-Forwarded-For; only enable behind a proxy that sets it
    trust_forwarded_for: bool = False

    # Session lifetime; 0 disables expiry
    session_timeout_minutes: float = DEFAULT_SESSION_TIMEOUT_MINUTES
    session_cleanup_interval_seconds: float = DEFAULT_CLEANUP_INTERVAL_SECONDS

    max_presenters: int | None = None

    model_config = SettingsConfigDict(
        env_prefix="PACE_",
        env_file=str(BASE_DIR / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.cors_allowed_origins.split(",") if origin.strip()]

    @property
    def session_timeout_seconds(self) -> float:
        return self.session_timeout_minutes * 60


def load_settings() -> Settings:
    return Settings()
