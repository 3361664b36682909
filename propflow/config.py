"""Configuration utilities for the workflow service."""

from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Runtime settings, read from ``PROPFLOW_*`` environment variables or ``.env``."""

    model_config = SettingsConfigDict(
        env_prefix="PROPFLOW_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    app_name: str = "propflow-workflows"
    cors_origins: List[str] = ["http://localhost:3000"]
    redis_url: str = "redis://localhost:6379/0"

    # Hard ceiling for one run of the driver loop
    execution_timeout_seconds: float = 300.0
    webhook_timeout_seconds: float = 10.0
    # Archive finished executions through the Redis state manager
    persist_executions: bool = False
    execution_retention_days: int = 30


@lru_cache
def get_settings() -> EngineSettings:
    """Return cached EngineSettings to avoid repeated environment parsing."""

    return EngineSettings()
