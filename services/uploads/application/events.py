from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from ..domain.errors import UploadError
from ..domain.events import SUCCEEDED, UploadEvent
from .interfaces import UploadEventSink

LOGGER = logging.getLogger(__name__)


def publish_event(
    sink: UploadEventSink,
    *,
    operation: str,
    upload_id: Optional[str],
    outcome: str = SUCCEEDED,
    details: Mapping[str, Any] | None = None,
) -> None:
    event = UploadEvent.now(
        operation=operation, outcome=outcome, upload_id=upload_id, details=details
    )
    try:
        sink.publish(event)
    except Exception:
        LOGGER.exception("Failed to publish %s event for %s", operation, upload_id)


def publish_failure(
    sink: UploadEventSink,
    *,
    operation: str,
    upload_id: Optional[str],
    error: UploadError,
) -> None:
    publish_event(
        sink,
        operation=operation,
        upload_id=upload_id,
        outcome=error.code,
        details={"message": error.message},
    )
