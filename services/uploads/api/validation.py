from __future__ import annotations

from typing import Optional

from ..domain.errors import InvalidFieldError, MissingFieldError

HEADER_UPLOAD_ID = "X-Upload-Id"
HEADER_CHUNK_INDEX = "X-Chunk-Index"
DEFAULT_CONTENT_TYPE = "application/octet-stream"

ALLOWED_CONTENT_TYPES = (
    "image/",
    "video/",
    "audio/",
    "text/",
    "application/json",
    "application/pdf",
    "application/zip",
)


def validate_content_type(content_type: str) -> None:
    normalized = (content_type or "").strip().lower()
    if not any(normalized.startswith(allowed) for allowed in ALLOWED_CONTENT_TYPES):
        raise InvalidFieldError("content_type", "Unsupported file type")


def parse_chunk_headers(
    upload_id: Optional[str], chunk_index: Optional[str]
) -> tuple[str, int]:
    if upload_id is None or not upload_id.strip():
        raise MissingFieldError(f"{HEADER_UPLOAD_ID} header")
    if chunk_index is None or not chunk_index.strip():
        raise MissingFieldError(f"{HEADER_CHUNK_INDEX} header")
    try:
        index = int(chunk_index.strip())
    except ValueError as exc:
        raise InvalidFieldError(HEADER_CHUNK_INDEX, "Must be a valid number") from exc
    return upload_id.strip(), index
