import os
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_load_workers() -> int:
    return max(4, (os.cpu_count() or 1) * 2)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=(".env", "metricbridge/.env"), env_ignore_empty=True, extra="ignore"
    )
    PROJECT_NAME: str = "metricbridge"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: Literal["local", "staging", "development", "production"] = "local"
    CORS_ENABLED: bool = True

    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "./"
    LOG_FILE: str = "metricbridge.log"

    # YAML catalog of logical tables and metrics loaded at start-up
    CATALOG_PATH: str | None = None
    # sqlglot read dialect; None uses sqlglot's default dialect
    SQL_DIALECT: str | None = None

    FETCH_TIMEOUT_SECONDS: float = 30.0
    METRIC_LOAD_WORKERS: int = _default_load_workers()

    METRIC_CACHE_MAX_ENTRIES: int = 100
    METRIC_CACHE_TTL_SECONDS: float = 60 * 60  # 1 hour
    QUERY_CACHE_MAX_ENTRIES: int = 100
    QUERY_CACHE_TTL_SECONDS: float = 60 * 60

    RESULT_BATCH_SIZE: int = 8192

    HOST: str = "0.0.0.0"
    PORT: int = 8000
    UVICORN_RELOAD: bool = False


settings = Settings()
