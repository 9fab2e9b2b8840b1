"""Configuration for hiztery, loaded from HIZTERY_* environment variables."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def default_db_path() -> Path:
    """Default database location under the user's data directory."""
    return Path.home() / ".local" / "share" / "hiztery" / "history.db"


class Settings(BaseSettings):
    """Store and CLI settings."""

    model_config = SettingsConfigDict(
        env_prefix="HIZTERY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    db_path: Path = Field(default_factory=default_db_path)
    pool_size: int = Field(default=4, ge=1)
    busy_timeout: float = Field(default=5.0, gt=0)
    wal_mode: bool = Field(default=True)

    # Session id used for CLI writes when none is given explicitly
    session_id: int = Field(default=0)

    # Logging
    log_file: Path | None = Field(default=None)
    log_level: str = Field(default="WARNING")

    @field_validator("db_path", "log_file", mode="after")
    @classmethod
    def expand_user(cls, v: Path | None) -> Path | None:
        """Expand ~ in configured paths."""
        if v is None or str(v) == ":memory:":
            return v
        return v.expanduser()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and check the log level name."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            msg = f"Invalid log level: {v}"
            raise ValueError(msg)
        return level


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
