"""Error taxonomy shared by the coordinator, the stores and the HTTP layer."""

from __future__ import annotations

from typing import Any, Dict, Optional

from .upload import UploadSession, UploadStatus


class UploadError(Exception):
    """Base error carrying a stable machine-readable code."""

    code = "INTERNAL_ERROR"
    http_status = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class MissingFieldError(UploadError):
    code = "MISSING_FIELD"
    http_status = 400

    def __init__(self, field: str):
        super().__init__(f"Missing required field: {field}", {"field": field})
        self.field = field


class InvalidFieldError(UploadError):
    code = "INVALID_FIELD"
    http_status = 400

    def __init__(self, field: str, reason: str):
        super().__init__(
            f"Invalid field '{field}': {reason}", {"field": field, "reason": reason}
        )
        self.field = field
        self.reason = reason


class FileTooLargeError(UploadError):
    code = "FILE_TOO_LARGE"
    http_status = 413

    def __init__(self, size: int, max_size: int):
        super().__init__(
            f"File size {size} exceeds maximum allowed {max_size}",
            {"size": size, "max_size": max_size},
        )


class UploadNotFoundError(UploadError):
    code = "UPLOAD_NOT_FOUND"
    http_status = 404

    def __init__(self, upload_id: str):
        super().__init__(f"Upload not found: {upload_id}", {"upload_id": upload_id})
        self.upload_id = upload_id


class UploadCompletedError(UploadError):
    code = "UPLOAD_COMPLETED"
    http_status = 409

    def __init__(self, upload_id: str, storage_key: Optional[str] = None):
        details: Dict[str, Any] = {"upload_id": upload_id}
        if storage_key:
            details["storage_key"] = storage_key
        super().__init__(f"Upload already completed: {upload_id}", details)
        self.upload_id = upload_id
        self.storage_key = storage_key


class UploadCancelledError(UploadError):
    code = "UPLOAD_CANCELLED"
    http_status = 409

    def __init__(self, upload_id: str):
        super().__init__(f"Upload cancelled: {upload_id}", {"upload_id": upload_id})
        self.upload_id = upload_id


class StorageError(UploadError):
    """The remote object store rejected or failed a multipart call."""

    code = "STORAGE_ERROR"
    http_status = 502


class PersistenceError(UploadError):
    """The session store failed or stayed contended past the retry budget."""

    code = "PERSISTENCE_ERROR"
    http_status = 503


class VersionConflictError(PersistenceError):
    def __init__(self, upload_id: str, expected_version: int):
        super().__init__(
            f"Upload {upload_id} was modified concurrently",
            {"upload_id": upload_id, "expected_version": expected_version},
        )
        self.upload_id = upload_id
        self.expected_version = expected_version


class SessionAlreadyExistsError(PersistenceError):
    def __init__(self, upload_id: str):
        super().__init__(
            f"Upload session already exists: {upload_id}", {"upload_id": upload_id}
        )
        self.upload_id = upload_id


def raise_for_terminal(session: UploadSession) -> None:
    """Raise the conflict error matching a terminal session status."""
    if session.status is UploadStatus.COMPLETED:
        raise UploadCompletedError(session.upload_id, session.storage_key)
    if session.status is UploadStatus.CANCELLED:
        raise UploadCancelledError(session.upload_id)
