"""Application configuration and logging setup."""

import logging
from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    debug: bool = False

    # Database
    database_url: str | None = None
    data_dir: str = "data"

    # Saved filter definitions (YAML)
    filters_dir: str = "filters"

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def configure_logging(level: str | None = None) -> None:
    """Apply the configured log level to the package logger."""
    settings = get_settings()
    level = (level or settings.log_level).upper()
    if settings.debug:
        level = "DEBUG"
    logging.basicConfig(level=logging.WARNING)
    logging.getLogger("timetravel").setLevel(level)
