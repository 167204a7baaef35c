from __future__ import annotations

from typing import Callable, Mapping, Protocol, Sequence

from ..domain.events import UploadEvent
from ..domain.upload import ChunkRecord, SessionMutation, StoredUpload, UploadSession

Mutator = Callable[[UploadSession, Mapping[int, ChunkRecord]], SessionMutation]


class IdProvider(Protocol):
    def generate(self) -> str: ...


class MultipartStorage(Protocol):
    """Remote multipart object store. Every failure surfaces as StorageError."""

    def open(self, *, storage_key: str, content_type: str) -> str: ...

    def put_part(
        self,
        *,
        storage_key: str,
        remote_multipart_id: str,
        part_number: int,
        data: bytes,
    ) -> str: ...

    def finalize(
        self,
        *,
        storage_key: str,
        remote_multipart_id: str,
        parts: Sequence[tuple[int, str]],
    ) -> None: ...

    def abort(self, *, storage_key: str, remote_multipart_id: str) -> None: ...


class UploadSessionStore(Protocol):
    def get(self, upload_id: str) -> StoredUpload: ...

    def create(self, session: UploadSession) -> StoredUpload: ...

    def compare_and_update(
        self, upload_id: str, expected_version: int, mutator: Mutator
    ) -> StoredUpload: ...

    def delete(self, upload_id: str) -> None: ...


class UploadEventSink(Protocol):
    def publish(self, event: UploadEvent) -> None: ...
