from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Mapping

from ..domain.errors import (
    InvalidFieldError,
    MissingFieldError,
    UploadError,
    raise_for_terminal,
)
from ..domain.upload import (
    ChunkRecord,
    SessionMutation,
    UploadedChunk,
    UploadSession,
    UploadStatus,
    part_number_for,
)
from .concurrency import update_with_retry
from .dto import CoordinatorSettings, UploadChunkCommand
from .events import publish_event, publish_failure
from .interfaces import MultipartStorage, UploadEventSink, UploadSessionStore

LOGGER = logging.getLogger(__name__)


class UploadChunkUseCase:
    def __init__(
        self,
        *,
        store: UploadSessionStore,
        storage: MultipartStorage,
        events: UploadEventSink,
        settings: CoordinatorSettings,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._store = store
        self._storage = storage
        self._events = events
        self._settings = settings
        self._clock = clock

    def execute(self, command: UploadChunkCommand) -> UploadedChunk:
        try:
            result = self._upload(command)
        except UploadError as exc:
            publish_failure(
                self._events, operation="chunk", upload_id=command.upload_id, error=exc
            )
            raise
        publish_event(
            self._events,
            operation="chunk",
            upload_id=command.upload_id,
            details={
                "chunk_index": command.chunk_index,
                "chunk_size": len(command.data),
                "etag": result.etag,
            },
        )
        return result

    def _upload(self, command: UploadChunkCommand) -> UploadedChunk:
        self._validate(command)
        current = self._store.get(command.upload_id)
        raise_for_terminal(current.session)

        chunk_size = len(command.data)
        existing = current.chunks_by_index.get(command.chunk_index)
        if existing is not None:
            _ensure_same_size(existing, chunk_size)
            LOGGER.info(
                "Chunk %s of upload %s already recorded, returning stored etag",
                command.chunk_index,
                command.upload_id,
            )
            return UploadedChunk(
                upload_id=command.upload_id,
                chunk_index=command.chunk_index,
                etag=existing.etag,
                status=current.session.status,
            )

        session = current.session
        etag = self._storage.put_part(
            storage_key=session.storage_key,
            remote_multipart_id=session.remote_multipart_id,
            part_number=part_number_for(command.chunk_index),
            data=command.data,
        )
        record = ChunkRecord(
            upload_id=command.upload_id,
            chunk_index=command.chunk_index,
            chunk_size=chunk_size,
            etag=etag,
            uploaded_at=self._clock(),
        )

        def record_chunk(
            session: UploadSession, chunks: Mapping[int, ChunkRecord]
        ) -> SessionMutation:
            raise_for_terminal(session)
            previous = chunks.get(record.chunk_index)
            if previous is not None:
                _ensure_same_size(previous, record.chunk_size)
            status = (
                UploadStatus.IN_PROGRESS
                if session.status is UploadStatus.INITIATED
                else session.status
            )
            return SessionMutation(
                session=session.transition(status, record.uploaded_at),
                upsert_chunks=(record,),
            )

        updated = update_with_retry(
            self._store,
            command.upload_id,
            record_chunk,
            attempts=self._settings.version_conflict_retries,
            current=current,
        )
        return UploadedChunk(
            upload_id=command.upload_id,
            chunk_index=command.chunk_index,
            etag=etag,
            status=updated.session.status,
        )

    def _validate(self, command: UploadChunkCommand) -> None:
        if not command.upload_id:
            raise MissingFieldError("upload_id")
        if command.chunk_index is None:
            raise MissingFieldError("chunk_index")
        if isinstance(command.chunk_index, bool) or not isinstance(
            command.chunk_index, int
        ):
            raise InvalidFieldError("chunk_index", "Must be an integer")
        if command.chunk_index < 0:
            raise InvalidFieldError("chunk_index", "Must not be negative")
        if command.chunk_index > self._settings.max_chunk_index:
            raise InvalidFieldError(
                "chunk_index",
                f"Must not exceed {self._settings.max_chunk_index}",
            )
        if not command.data:
            raise InvalidFieldError("chunk", "Chunk body is empty")


def _ensure_same_size(existing: ChunkRecord, chunk_size: int) -> None:
    if existing.chunk_size != chunk_size:
        raise InvalidFieldError(
            "chunk_index",
            f"Chunk {existing.chunk_index} was already uploaded with "
            f"{existing.chunk_size} bytes, got {chunk_size}",
        )
