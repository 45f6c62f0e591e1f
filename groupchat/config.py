"""Application configuration."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven settings validated at startup."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    openrouter_api_key: str = Field(..., alias="OPENROUTER_API_KEY")
    openrouter_base_url: str = Field(
        default="https://openrouter.ai/api/v1",
        alias="OPENROUTER_BASE_URL",
    )
    database_path: Path = Field(default=Path("groupchat.db"), alias="DATABASE_PATH")
    request_timeout_seconds: float = Field(default=60.0, alias="REQUEST_TIMEOUT_SECONDS")
    # Consecutive supervisor-driven batches before a human message is required; 0 disables the limit.
    max_autonomous_rounds: int = Field(default=10, alias="MAX_AUTONOMOUS_ROUNDS")
    user_nickname: str = Field(default="", alias="USER_NICKNAME")
    group_id: str = Field(default="default", alias="GROUP_ID")
    topic_id: str | None = Field(default=None, alias="TOPIC_ID")


def load_settings() -> Settings:
    """Load and validate settings."""

    return Settings()
