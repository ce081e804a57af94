"""Application configuration, read from environment variables and an optional .env file."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings

DEFAULT_PROJECT_DIR = ".pluqqy"


class Settings(BaseSettings):
    """Process-level settings. Project-level settings live in settings.yaml."""

    project_dir: Path = Path(DEFAULT_PROJECT_DIR)
    log_level: str = "WARNING"
    log_file: Path | None = None
    editor: str = Field(default="", validation_alias=AliasChoices("PLUQQY_EDITOR", "EDITOR"))

    model_config = {
        "env_prefix": "PLUQQY_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
