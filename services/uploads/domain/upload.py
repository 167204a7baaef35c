from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Mapping, Tuple


class UserRole(str, Enum):
    CREATOR = "creator"
    MEMBER = "member"
    SUBSCRIBER = "subscriber"

    @classmethod
    def parse(cls, raw: str) -> "UserRole":
        """Case-insensitive lookup; raises ValueError for unknown roles."""
        return cls((raw or "").strip().lower())


class UploadStatus(str, Enum):
    INITIATED = "initiated"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (UploadStatus.COMPLETED, UploadStatus.CANCELLED)


# Chunk indices are 0-based, remote part numbers are 1-based.
FIRST_CHUNK_INDEX = 0


def part_number_for(chunk_index: int) -> int:
    return chunk_index + 1


@dataclass(frozen=True)
class UploadSession:
    upload_id: str
    file_name: str
    total_size: int
    content_type: str
    user_id: str
    user_role: UserRole
    storage_key: str
    remote_multipart_id: str
    status: UploadStatus
    created_at: datetime
    updated_at: datetime
    version: int = 0

    def transition(self, status: UploadStatus, now: datetime) -> "UploadSession":
        return replace(self, status=status, updated_at=max(now, self.updated_at))

    def touch(self, now: datetime) -> "UploadSession":
        return replace(self, updated_at=max(now, self.updated_at))


@dataclass(frozen=True)
class ChunkRecord:
    upload_id: str
    chunk_index: int
    chunk_size: int
    etag: str
    uploaded_at: datetime

    @property
    def part_number(self) -> int:
        return part_number_for(self.chunk_index)


@dataclass(frozen=True)
class StoredUpload:
    session: UploadSession
    chunks: Tuple[ChunkRecord, ...] = ()

    @property
    def chunks_by_index(self) -> Mapping[int, ChunkRecord]:
        return {chunk.chunk_index: chunk for chunk in self.chunks}

    @property
    def chunk_indices(self) -> list[int]:
        return sorted(chunk.chunk_index for chunk in self.chunks)


@dataclass(frozen=True)
class SessionMutation:
    """Result of a mutator passed to ``UploadSessionStore.compare_and_update``.

    The store writes ``session`` (bumping its version itself), upserts
    ``upsert_chunks`` and removes ``delete_chunk_indices``. When
    ``delete_all_chunks`` is set every chunk of the session is removed.
    """

    session: UploadSession
    upsert_chunks: Tuple[ChunkRecord, ...] = ()
    delete_chunk_indices: Tuple[int, ...] = ()
    delete_all_chunks: bool = False


@dataclass(frozen=True)
class UploadStatusView:
    upload_id: str
    file_name: str
    total_size: int
    content_type: str
    user_id: str
    user_role: UserRole
    storage_key: str
    status: UploadStatus
    chunks: list[int]
    uploaded_bytes: int
    chunk_size: int
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class InitiatedUpload:
    upload_id: str
    storage_key: str
    status: UploadStatus
    chunk_size: int


@dataclass(frozen=True)
class UploadedChunk:
    upload_id: str
    chunk_index: int
    etag: str
    status: UploadStatus


@dataclass(frozen=True)
class CompletedUpload:
    upload_id: str
    storage_key: str
    status: UploadStatus


@dataclass(frozen=True)
class CancelledUpload:
    upload_id: str
    status: UploadStatus
