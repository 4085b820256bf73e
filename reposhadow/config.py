"""Configuration loaded from environment variables and ``.env``."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Shadow database synchronization settings."""

    model_config = SettingsConfigDict(
        env_prefix="REPOSHADOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    debug: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///data/db/reposhadow.db"

    # Pipeline
    queue_capacity: int = Field(default=1000, ge=1)
    insert_batch_size: int = Field(default=500, ge=1)

    # Verifier
    max_reported_mismatches: int = Field(default=10, ge=0)

    # Compute and report the deltas, then roll back.
    dry_run: bool = False
