from __future__ import annotations

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="GYMGO_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    database_url: str = "sqlite+aiosqlite:///./gymgo.db"

    # For local development
    auto_create_db: bool = False

    # Used when an organization has no timezone of its own.
    default_timezone: str = "America/Mexico_City"
    default_generation_period: str = "week"

    log_level: str = "INFO"
    log_json: bool = False
    log_http_requests: bool = True

    # Cache/view invalidation after a generation run (optional)
    view_invalidation_webhook_url: SecretStr | None = None
    view_invalidation_timeout_seconds: float = 5.0


def get_settings() -> Settings:
    return Settings()
