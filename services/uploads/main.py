from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.errors import install_error_handlers
from .api.routes import create_router
from .api.validation import HEADER_CHUNK_INDEX, HEADER_UPLOAD_ID
from .application.coordinator import UploadCoordinator
from .application.interfaces import UploadEventSink
from .config import UploadConfig, load_config
from .infrastructure.db import create_session_factory
from .infrastructure.events import LoggingUploadEventSink, RedisUploadEventSink
from .infrastructure.ids import TimestampedIdProvider
from .infrastructure.minio_uploads import MinioMultipartStorage, create_s3_client
from .infrastructure.sessions import SqlAlchemyUploadSessionStore

SERVICE_NAME = "chunked-upload-service"


def build_event_sink(cfg: UploadConfig) -> UploadEventSink:
    if cfg.event_sink == "redis":
        return RedisUploadEventSink(
            host=cfg.redis_host,
            port=cfg.redis_port,
            db=cfg.redis_db,
            channel=cfg.redis_channel,
        )
    return LoggingUploadEventSink()


def build_coordinator(cfg: UploadConfig) -> UploadCoordinator:
    s3_client = create_s3_client(
        endpoint_url=cfg.storage_endpoint_url,
        region_name=cfg.storage_region,
        access_key=cfg.storage_access_key,
        secret_key=cfg.storage_secret_key,
        timeout_seconds=cfg.storage_timeout_seconds,
    )
    return UploadCoordinator(
        store=SqlAlchemyUploadSessionStore(
            session_factory=create_session_factory(cfg.sqlalchemy_dsn)
        ),
        storage=MinioMultipartStorage(client=s3_client, bucket_name=cfg.storage_bucket),
        id_provider=TimestampedIdProvider(),
        events=build_event_sink(cfg),
        settings=cfg.coordinator_settings,
    )


def build_app(
    config: UploadConfig | None = None, coordinator: UploadCoordinator | None = None
) -> FastAPI:
    cfg = config or load_config()
    logging.basicConfig(
        level=cfg.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    app = FastAPI(title="Chunked Upload Service")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(cfg.cors_allow_origins),
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", HEADER_UPLOAD_ID, HEADER_CHUNK_INDEX],
    )
    install_error_handlers(app)

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "service": SERVICE_NAME,
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        }

    app.include_router(create_router(coordinator or build_coordinator(cfg)))
    return app


app = build_app()
