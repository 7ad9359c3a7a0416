from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict
from upload_service.schemas import MIB


class Settings(BaseSettings):
    SESSION_BACKEND: Literal["memory", "redis"] = "memory"

    STORAGE_PROTOCOL: str = "memory"
    STORAGE_ROOT: str = "uploads"
    S3_ENDPOINT_URL: str | None = None
    S3_ACCESS_KEY: str | None = None
    S3_SECRET_KEY: str | None = None

    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str | None = None
    REDIS_KEY_PREFIX: str = ""

    DEFAULT_CHUNK_SIZE: int = 5 * MIB
    MAX_CHUNK_SIZE: int = 64 * MIB
    MAX_FILE_SIZE: int = 5 * 1024 * MIB
    MAX_TOTAL_CHUNKS: int = 10_000
    ADAPTIVE_CHUNK_SIZE: bool = False
    SESSION_TTL_SEC: int = 3600
    SESSION_RETENTION_SEC: int = 7 * 24 * 3600
    FINAL_KEY_PREFIX: str = "uploads"
    SWEEP_INTERVAL_SEC: float = 60.0

    HOST: str = "0.0.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env")


@lru_cache()  # no need to recreate Settings object
def get_settings() -> Settings:
    return Settings()
