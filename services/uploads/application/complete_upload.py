from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Mapping, Sequence

from ..domain.errors import (
    InvalidFieldError,
    MissingFieldError,
    PersistenceError,
    UploadError,
    raise_for_terminal,
)
from ..domain.upload import (
    FIRST_CHUNK_INDEX,
    ChunkRecord,
    CompletedUpload,
    SessionMutation,
    UploadSession,
    UploadStatus,
)
from .concurrency import update_with_retry
from .dto import CompleteUploadCommand, CompletionPart, CoordinatorSettings
from .events import publish_event, publish_failure
from .interfaces import MultipartStorage, UploadEventSink, UploadSessionStore

LOGGER = logging.getLogger(__name__)


class CompleteUploadUseCase:
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

    def execute(self, command: CompleteUploadCommand) -> CompletedUpload:
        try:
            result, details = self._complete(command)
        except UploadError as exc:
            publish_failure(
                self._events,
                operation="complete",
                upload_id=command.upload_id,
                error=exc,
            )
            raise
        publish_event(
            self._events,
            operation="complete",
            upload_id=command.upload_id,
            details=details,
        )
        return result

    def _complete(self, command: CompleteUploadCommand):
        if not command.upload_id:
            raise MissingFieldError("upload_id")

        current = self._store.get(command.upload_id)
        session = current.session
        raise_for_terminal(session)

        parts = collect_parts(current.chunks)
        if command.parts is not None:
            _cross_check(parts, command.parts)

        self._storage.finalize(
            storage_key=session.storage_key,
            remote_multipart_id=session.remote_multipart_id,
            parts=parts,
        )

        uploaded_bytes = sum(chunk.chunk_size for chunk in current.chunks)
        if uploaded_bytes != session.total_size:
            LOGGER.warning(
                "Upload %s completed with %s bytes but declared %s",
                session.upload_id,
                uploaded_bytes,
                session.total_size,
            )

        completed_at = self._clock()
        finalized_indices = frozenset(chunk.chunk_index for chunk in current.chunks)

        def mark_completed(
            session: UploadSession, chunks: Mapping[int, ChunkRecord]
        ) -> SessionMutation:
            raise_for_terminal(session)
            late = tuple(sorted(set(chunks) - finalized_indices))
            if late:
                LOGGER.warning(
                    "Dropping chunks %s of upload %s recorded after finalize",
                    list(late),
                    session.upload_id,
                )
            return SessionMutation(
                session=session.transition(UploadStatus.COMPLETED, completed_at),
                delete_chunk_indices=late,
            )

        try:
            updated = update_with_retry(
                self._store,
                command.upload_id,
                mark_completed,
                attempts=self._settings.version_conflict_retries,
                current=current,
            )
        except PersistenceError:
            LOGGER.error(
                "Upload %s was finalized remotely at %s but could not be marked completed",
                session.upload_id,
                session.storage_key,
            )
            raise

        result = CompletedUpload(
            upload_id=updated.session.upload_id,
            storage_key=updated.session.storage_key,
            status=updated.session.status,
        )
        details = {
            "storage_key": result.storage_key,
            "parts": len(parts),
            "uploaded_bytes": uploaded_bytes,
            "declared_bytes": session.total_size,
        }
        return result, details


def collect_parts(chunks: Iterable[ChunkRecord]) -> List[tuple[int, str]]:
    """Order recorded chunks into ``(part_number, etag)`` pairs.

    Raises InvalidFieldError when nothing was uploaded or when the chunk
    indices are not contiguous from the first index.
    """
    ordered = sorted(chunks, key=lambda chunk: chunk.chunk_index)
    if not ordered:
        raise InvalidFieldError("chunks", "No uploaded chunks to finalize")

    expected = range(FIRST_CHUNK_INDEX, FIRST_CHUNK_INDEX + len(ordered))
    indices = [chunk.chunk_index for chunk in ordered]
    if indices != list(expected):
        present = set(indices)
        missing = [
            index
            for index in range(FIRST_CHUNK_INDEX, indices[-1] + 1)
            if index not in present
        ]
        raise InvalidFieldError(
            "chunks", f"Incomplete upload, missing chunk indices {missing}"
        )
    return [(chunk.part_number, chunk.etag) for chunk in ordered]


def _normalize_etag(etag: str) -> str:
    return (etag or "").strip().strip('"')


def _cross_check(
    server_parts: Sequence[tuple[int, str]], client_parts: Sequence[CompletionPart]
) -> None:
    claimed = sorted(
        (part.part_no, _normalize_etag(part.etag)) for part in client_parts
    )
    recorded = [(part_no, _normalize_etag(etag)) for part_no, etag in server_parts]
    if claimed != recorded:
        raise InvalidFieldError(
            "parts", "Parts list does not match the chunks recorded for this upload"
        )
