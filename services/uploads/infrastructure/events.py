from __future__ import annotations

import json
import logging

from redis import Redis
from redis.exceptions import RedisError

from ..application.interfaces import UploadEventSink
from ..domain.events import SUCCEEDED, UploadEvent

LOGGER = logging.getLogger(__name__)


class LoggingUploadEventSink(UploadEventSink):
    def publish(self, event: UploadEvent) -> None:
        level = logging.INFO if event.outcome == SUCCEEDED else logging.WARNING
        LOGGER.log(level, event.as_payload())


class RedisUploadEventSink(UploadEventSink):
    def __init__(
        self,
        *,
        host: str,
        port: int,
        db: int,
        channel: str,
        client: Redis | None = None,
    ) -> None:
        self._redis = client or Redis(host=host, port=port, db=db, decode_responses=False)
        self._channel = channel

    def publish(self, event: UploadEvent) -> None:
        try:
            self._redis.publish(self._channel, json.dumps(event.as_payload()))
        except RedisError as exc:
            LOGGER.error(
                "Failed to publish %s event for %s: %s",
                event.operation,
                event.upload_id,
                exc,
            )
