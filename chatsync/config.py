from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings, read from the environment and .env."""

    mongo_url: str = "mongodb://localhost:27017"
    mongo_db: str = "chatsync"

    # Without a Redis URL the in-process bus is used
    redis_url: Optional[str] = None

    fcm_service_account_file: Optional[str] = None
    fcm_project_id: Optional[str] = None

    jwt_secret: str = "change-me-to-a-long-random-secret-value"
    jwt_algorithm: str = "HS256"

    log_level: str = "INFO"

    message_max_length: int = 500
    grouping_window_seconds: int = 300

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
