from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .application.dto import CoordinatorSettings

DEFAULT_MAX_FILE_SIZE = 10_737_418_240  # 10 GiB
DEFAULT_CHUNK_SIZE = 157_286_400  # 150 MiB
DEFAULT_MAX_CHUNK_INDEX = 9_999
DEFAULT_VERSION_CONFLICT_RETRIES = 5


def _load_repo_env() -> None:
    """Load the nearest .env starting from this file upward."""
    current = Path(__file__).resolve()
    for candidate in [current.parent, *current.parents]:
        env_file = candidate / ".env"
        if env_file.exists():
            load_dotenv(env_file)
            return


_load_repo_env()


def _require_env(name: str) -> str:
    value = os.getenv(name)
    if value is None or value == "":
        raise ValueError(f"Environment variable {name} is required")
    return value


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer") from exc


def _env_list(name: str, default: str) -> tuple[str, ...]:
    raw = os.getenv(name, default)
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class UploadConfig:
    max_file_size: int
    chunk_size: int
    max_chunk_index: int
    version_conflict_retries: int
    storage_access_key: str
    storage_bucket: str
    storage_endpoint_url: str
    storage_region: str
    storage_secret_key: str
    storage_timeout_seconds: int
    database_url: str
    event_sink: str
    redis_host: str
    redis_port: int
    redis_db: int
    redis_channel: str
    cors_allow_origins: tuple[str, ...]
    log_level: str

    @property
    def coordinator_settings(self) -> CoordinatorSettings:
        return CoordinatorSettings(
            max_file_size=self.max_file_size,
            chunk_size=self.chunk_size,
            max_chunk_index=self.max_chunk_index,
            version_conflict_retries=self.version_conflict_retries,
        )

    @property
    def sqlalchemy_dsn(self) -> str:
        dsn = self.database_url
        if dsn.startswith("postgresql://"):
            return dsn.replace("postgresql://", "postgresql+psycopg://", 1)
        return dsn


def load_config() -> UploadConfig:
    event_sink = os.getenv("UPLOADS_EVENT_SINK", "logging").strip().lower()
    if event_sink not in ("logging", "redis"):
        raise ValueError("Environment variable UPLOADS_EVENT_SINK must be logging or redis")
    return UploadConfig(
        max_file_size=_env_int("UPLOADS_MAX_FILE_SIZE", DEFAULT_MAX_FILE_SIZE),
        chunk_size=_env_int("UPLOADS_CHUNK_SIZE", DEFAULT_CHUNK_SIZE),
        max_chunk_index=_env_int("UPLOADS_MAX_CHUNK_INDEX", DEFAULT_MAX_CHUNK_INDEX),
        version_conflict_retries=_env_int(
            "UPLOADS_VERSION_CONFLICT_RETRIES", DEFAULT_VERSION_CONFLICT_RETRIES
        ),
        storage_access_key=_require_env("UPLOADS_STORAGE_ACCESS_KEY"),
        storage_bucket=_require_env("UPLOADS_STORAGE_BUCKET"),
        storage_endpoint_url=_require_env("UPLOADS_STORAGE_ENDPOINT_URL"),
        storage_region=os.getenv("UPLOADS_STORAGE_REGION", "us-east-1"),
        storage_secret_key=_require_env("UPLOADS_STORAGE_SECRET_KEY"),
        storage_timeout_seconds=_env_int("UPLOADS_STORAGE_TIMEOUT_SECONDS", 60),
        database_url=_require_env("UPLOADS_DATABASE_URL"),
        event_sink=event_sink,
        redis_host=os.getenv("UPLOADS_REDIS_HOST", "localhost"),
        redis_port=_env_int("UPLOADS_REDIS_PORT", 6379),
        redis_db=_env_int("UPLOADS_REDIS_DB", 0),
        redis_channel=os.getenv("UPLOADS_REDIS_CHANNEL", "upload_events"),
        cors_allow_origins=_env_list("UPLOADS_CORS_ALLOW_ORIGINS", "*"),
        log_level=os.getenv("UPLOADS_LOG_LEVEL", "INFO").upper(),
    )
