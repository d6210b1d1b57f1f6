"""
Application settings.
Read from environment (PADDOCK_ prefix) or a local .env file.
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_PACKAGE_DIR = Path(__file__).resolve().parent


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="PADDOCK_",
        case_sensitive=False,
        extra="ignore",
    )

    environment: str = Field(default="development")
    log_level: str = Field(default="INFO", description="DEBUG, INFO, WARNING, ERROR")

    # ---------- Storage ----------
    db_path: Path = Field(default=_PACKAGE_DIR.parent / "data" / "paddock.db")
    catalog_path: Path | None = Field(
        default=_PACKAGE_DIR / "data" / "catalog.json",
        description="Drivers, teams and tracks loaded on startup",
    )

    # ---------- Auth ----------
    jwt_secret_key: str = Field(default="paddock-dev-secret-change-in-production")
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24 * 7
    reset_token_expire_minutes: int = 30
    admin_email_domain: str = "@whosonpole.org"
    auth_rate_limit_max: int = 5
    auth_rate_limit_window_seconds: int = 15 * 60

    # ---------- HTTP ----------
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://127.0.0.1:3000"],
    )

    # ---------- Live chat ----------
    chat_batch_interval_ms: int = Field(default=250, ge=0)
    chat_batch_max_size: int = Field(default=50, ge=1)
    chat_history_limit: int = Field(default=100, ge=1)
    chat_max_message_length: int = Field(default=500, ge=1)
    chat_default_slow_mode_ms: int = Field(default=0, ge=0)
    chat_read_only_grace_hours: int = Field(default=24, ge=0)

    # ---------- Polls ----------
    vote_min_interval_seconds: float = 1.0
    poll_sweep_interval_seconds: int = Field(default=60, ge=0, description="0 disables the expiry sweep")


@lru_cache
def get_settings() -> Settings:
    return Settings()
