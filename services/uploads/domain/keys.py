from __future__ import annotations

import hashlib
import re
import unicodedata
from datetime import datetime, timezone
from pathlib import PurePosixPath

MAX_STEM_LENGTH = 100
MAX_EXTENSION_LENGTH = 16
MAX_USER_ID_LENGTH = 50
SUFFIX_LENGTH = 8
DEFAULT_STEM = "file"

_UNSAFE_FILENAME_CHARS = re.compile(r'[\\/:*?"<>|]')
_UNSAFE_COMPONENT_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def categorize_content_type(content_type: str) -> str:
    normalized = (content_type or "").strip().lower()
    primary = normalized.split("/", 1)[0]
    if primary in ("image", "video", "audio"):
        return primary
    if primary == "text" or normalized.split(";", 1)[0] == "application/json":
        return "document"
    return "other"


def sanitize_path_component(component: str, max_length: int = MAX_USER_ID_LENGTH) -> str:
    safe = _UNSAFE_COMPONENT_CHARS.sub("", component or "")
    return safe[:max_length].lower() or "unknown"


def uniqueness_suffix(upload_id: str) -> str:
    return hashlib.sha256(upload_id.encode("utf-8")).hexdigest()[:SUFFIX_LENGTH]


def _strip_control_chars(value: str) -> str:
    return "".join(ch for ch in value if unicodedata.category(ch)[0] != "C")


def sanitize_filename(filename: str, upload_id: str) -> str:
    """Return a storage-safe file name carrying a per-upload suffix.

    Directory parts and ``..`` sequences are dropped, control and reserved
    characters removed, whitespace collapsed to ``_`` and the stem bounded
    before ``_<suffix>`` is inserted ahead of the extension.
    """
    cleaned = _strip_control_chars((filename or "").replace("\\", "/")).strip()
    name = PurePosixPath(cleaned).name if cleaned else ""
    name = name.replace("..", "")
    name = _UNSAFE_FILENAME_CHARS.sub("", name).lstrip(".")

    path = PurePosixPath(name) if name else None
    stem = path.stem if path else ""
    extension = path.suffix if path else ""
    if len(extension) > MAX_EXTENSION_LENGTH:
        extension = ""

    stem = re.sub(r"\s+", "_", stem).strip("_")[:MAX_STEM_LENGTH] or DEFAULT_STEM
    return f"{stem}_{uniqueness_suffix(upload_id)}{extension}"


def derive_storage_key(
    *,
    user_role: str,
    user_id: str,
    uploaded_at: datetime,
    content_type: str,
    file_name: str,
    upload_id: str,
) -> str:
    """Build ``{role}/{user_id}/{YYYYMMDD}/{category}/{file_name}``."""
    if uploaded_at.tzinfo is not None:
        uploaded_at = uploaded_at.astimezone(timezone.utc)
    segments = [
        sanitize_path_component(user_role),
        sanitize_path_component(user_id),
        uploaded_at.strftime("%Y%m%d"),
        categorize_content_type(content_type),
        sanitize_filename(file_name, upload_id),
    ]
    return "/".join(segments)
