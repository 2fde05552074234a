from __future__ import annotations

from enum import Enum

from pydantic import ConfigDict, SecretStr, field_validator
from pydantic_settings import BaseSettings


class StorageType(str, Enum):
    MEMORY = "memory"
    REDIS = "redis"


class Settings(BaseSettings):
    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Rate limiting
    rate_limit_enabled: bool = True
    rate_limit_global: bool = True
    rate_limit_window_ms: int = 60000
    rate_limit_max: int = 100
    rate_limit_message: str = "Too many requests, please try again later."
    rate_limit_status_code: int = 429
    rate_limit_count_failed: bool = True
    rate_limit_count_successful: bool = True

    # Storage
    storage_type: StorageType = StorageType.MEMORY
    redis_url: SecretStr = SecretStr("redis://localhost:6379/0")
    redis_key_prefix: str = "ratelimit:"

    # Store call policy
    store_retry_attempts: int = 1
    store_retry_min_wait_seconds: float = 0.0
    store_retry_max_wait_seconds: float = 1.0
    store_timeout_seconds: float | None = None

    # App
    log_level: str = "INFO"
    log_json: bool | None = None

    @field_validator("storage_type", mode="before")
    @classmethod
    def normalize_storage_type(cls, v: str) -> str:
        if isinstance(v, str):
            return v.lower()
        return v


def get_settings() -> Settings:
    return Settings()
