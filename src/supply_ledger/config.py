"""Application configuration objects."""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_ACCESS_SECRET = "supply-ledger-access-token-secret-change-me"
_DEFAULT_REFRESH_SECRET = "supply-ledger-refresh-token-secret-change-me"


class Settings(BaseSettings):
    """Pydantic settings used to configure the application."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    app_name: str = Field(
        default="Supply Ledger Service",
        description="Human friendly name for the API.",
    )
    environment: Literal["development", "staging", "production", "test"] = Field(
        default="development",
        description="Deployment environment; production hides internal error detail.",
    )
    database_url: str = Field(
        default="sqlite+aiosqlite:///./supply_ledger.db",
        description="SQLAlchemy compatible database URL.",
    )
    echo_sql: bool = Field(
        default=False,
        description="Enable SQL echo logging for debugging.",
    )
    log_level: str = Field(default="INFO", description="Root logging level.")
    access_token_secret: str = Field(default=_DEFAULT_ACCESS_SECRET)
    refresh_token_secret: str = Field(default=_DEFAULT_REFRESH_SECRET)
    access_token_ttl: int = Field(
        default=3600, gt=0, description="Access token lifetime in seconds."
    )
    refresh_token_ttl: int = Field(
        default=60 * 60 * 24 * 7, gt=0, description="Refresh token lifetime in seconds."
    )
    jwt_algorithm: str = Field(default="HS256")
    location_code_attempts: int = Field(
        default=5, ge=1, description="Attempts before location code generation gives up."
    )
    default_page_size: int = Field(default=10, ge=1)
    max_page_size: int = Field(default=100, ge=1)

    @field_validator("database_url")
    @classmethod
    def _validate_sqlite_path(cls, value: str) -> str:
        if value.startswith("sqlite") and ":memory:" not in value and "///" not in value:
            raise ValueError(
                "SQLite database URLs should be in the form sqlite+aiosqlite:///path/to/db"
            )
        return value

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {value}")
        return level

    @model_validator(mode="after")
    def _require_secrets_in_production(self) -> "Settings":
        if self.environment == "production" and (
            self.access_token_secret == _DEFAULT_ACCESS_SECRET
            or self.refresh_token_secret == _DEFAULT_REFRESH_SECRET
        ):
            raise ValueError("Token secrets must be configured in production")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return a cached instance of :class:`Settings`."""

    return Settings()


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


__all__ = ["Settings", "configure_logging", "get_settings"]
