from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

SUCCEEDED = "succeeded"


@dataclass(frozen=True)
class UploadEvent:
    operation: str
    outcome: str
    upload_id: Optional[str]
    occurred_at: datetime
    details: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def now(
        cls,
        *,
        operation: str,
        outcome: str,
        upload_id: Optional[str],
        details: Mapping[str, Any] | None = None,
    ) -> "UploadEvent":
        return cls(
            operation=operation,
            outcome=outcome,
            upload_id=upload_id,
            occurred_at=datetime.now(timezone.utc),
            details=dict(details or {}),
        )

    def as_payload(self) -> dict[str, Any]:
        return {
            "event": f"upload.{self.operation}",
            "outcome": self.outcome,
            "upload_id": self.upload_id,
            "occurred_at": self.occurred_at.isoformat().replace("+00:00", "Z"),
            "details": dict(self.details),
        }
