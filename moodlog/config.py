"""
Runtime configuration for the Moodlog service and CLI.

Values come from ``MOODLOG_*`` environment variables or a ``.env`` file.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Moodlog settings."""

    model_config = SettingsConfigDict(env_prefix="MOODLOG_", env_file=".env")

    database_path: str = Field(
        "moodlog.db", description="SQLite database file, or :memory:"
    )
    host: str = Field("0.0.0.0", description="Host for the HTTP server")
    port: int = Field(8000, description="Port for the HTTP server")
    reload: bool = Field(False, description="Restart the server on code changes")
    log_level: str = Field("info", description="Log level for the server")
    base_url: str = Field(
        "http://localhost:8000", description="Base URL the CLI talks to"
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
