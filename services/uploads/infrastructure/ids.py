from __future__ import annotations

import uuid
from datetime import datetime, timezone


class TimestampedIdProvider:
    """Upload ids of the form ``{epoch_millis}-{uuid4 hex}``, sortable by time."""

    def generate(self) -> str:
        millis = int(datetime.now(timezone.utc).timestamp() * 1000)
        return f"{millis}-{uuid.uuid4().hex}"
