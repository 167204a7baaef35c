from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class CoordinatorSettings:
    max_file_size: int
    chunk_size: int
    max_chunk_index: int
    version_conflict_retries: int


@dataclass(frozen=True)
class InitUploadCommand:
    file_name: str
    total_size: int
    content_type: str
    user_id: str
    user_role: str


@dataclass(frozen=True)
class UploadChunkCommand:
    upload_id: str
    chunk_index: int
    data: bytes


@dataclass(frozen=True)
class CompletionPart:
    part_no: int
    etag: str


@dataclass(frozen=True)
class CompleteUploadCommand:
    upload_id: str
    parts: Optional[List[CompletionPart]] = None


@dataclass(frozen=True)
class CancelUploadCommand:
    upload_id: str
