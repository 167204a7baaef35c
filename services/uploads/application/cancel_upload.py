from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Mapping

from ..domain.errors import MissingFieldError, UploadError, raise_for_terminal
from ..domain.upload import (
    CancelledUpload,
    ChunkRecord,
    SessionMutation,
    UploadSession,
    UploadStatus,
)
from .concurrency import update_with_retry
from .dto import CancelUploadCommand, CoordinatorSettings
from .events import publish_event, publish_failure
from .interfaces import MultipartStorage, UploadEventSink, UploadSessionStore


class CancelUploadUseCase:
    """Abort the remote multipart upload and mark the session cancelled.

    The session row is kept (status ``cancelled``, no chunk records) so the
    upload id stays reserved and later calls fail with UploadCancelled.
    """

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

    def execute(self, command: CancelUploadCommand) -> CancelledUpload:
        try:
            result = self._cancel(command)
        except UploadError as exc:
            publish_failure(
                self._events, operation="cancel", upload_id=command.upload_id, error=exc
            )
            raise
        publish_event(self._events, operation="cancel", upload_id=command.upload_id)
        return result

    def _cancel(self, command: CancelUploadCommand) -> CancelledUpload:
        if not command.upload_id:
            raise MissingFieldError("upload_id")

        current = self._store.get(command.upload_id)
        session = current.session
        raise_for_terminal(session)

        self._storage.abort(
            storage_key=session.storage_key,
            remote_multipart_id=session.remote_multipart_id,
        )
        cancelled_at = self._clock()

        def mark_cancelled(
            session: UploadSession, chunks: Mapping[int, ChunkRecord]
        ) -> SessionMutation:
            raise_for_terminal(session)
            return SessionMutation(
                session=session.transition(UploadStatus.CANCELLED, cancelled_at),
                delete_all_chunks=True,
            )

        updated = update_with_retry(
            self._store,
            command.upload_id,
            mark_cancelled,
            attempts=self._settings.version_conflict_retries,
            current=current,
        )
        return CancelledUpload(
            upload_id=updated.session.upload_id, status=updated.session.status
        )
