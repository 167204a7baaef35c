from __future__ import annotations

import threading
from dataclasses import replace
from typing import Dict

from ..application.interfaces import Mutator
from ..domain.errors import (
    SessionAlreadyExistsError,
    UploadNotFoundError,
    VersionConflictError,
)
from ..domain.upload import ChunkRecord, StoredUpload, UploadSession


class InMemoryUploadSessionStore:
    """Process-local session store for tests and single-node runs.

    Entries are immutable snapshots swapped under a short internal lock, so
    a mutator always sees a consistent session and chunk set.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: Dict[str, StoredUpload] = {}

    def get(self, upload_id: str) -> StoredUpload:
        with self._lock:
            entry = self._entries.get(upload_id)
        if entry is None:
            raise UploadNotFoundError(upload_id)
        return entry

    def create(self, session: UploadSession) -> StoredUpload:
        entry = StoredUpload(session=session)
        with self._lock:
            if session.upload_id in self._entries:
                raise SessionAlreadyExistsError(session.upload_id)
            self._entries[session.upload_id] = entry
        return entry

    def compare_and_update(
        self, upload_id: str, expected_version: int, mutator: Mutator
    ) -> StoredUpload:
        current = self.get(upload_id)
        if current.session.version != expected_version:
            raise VersionConflictError(upload_id, expected_version)

        chunks: Dict[int, ChunkRecord] = dict(current.chunks_by_index)
        mutation = mutator(current.session, dict(chunks))
        if mutation.delete_all_chunks:
            chunks.clear()
        for index in mutation.delete_chunk_indices:
            chunks.pop(index, None)
        for chunk in mutation.upsert_chunks:
            chunks[chunk.chunk_index] = chunk

        updated = StoredUpload(
            session=replace(mutation.session, version=expected_version + 1),
            chunks=tuple(sorted(chunks.values(), key=lambda c: c.chunk_index)),
        )
        with self._lock:
            stored = self._entries.get(upload_id)
            if stored is None:
                raise UploadNotFoundError(upload_id)
            if stored.session.version != expected_version:
                raise VersionConflictError(upload_id, expected_version)
            self._entries[upload_id] = updated
        return updated

    def delete(self, upload_id: str) -> None:
        with self._lock:
            self._entries.pop(upload_id, None)
