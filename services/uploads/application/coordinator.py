from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, List, Optional

from ..domain.upload import (
    CancelledUpload,
    CompletedUpload,
    InitiatedUpload,
    UploadedChunk,
    UploadStatusView,
)
from .cancel_upload import CancelUploadUseCase
from .complete_upload import CompleteUploadUseCase
from .dto import (
    CancelUploadCommand,
    CompleteUploadCommand,
    CompletionPart,
    CoordinatorSettings,
    InitUploadCommand,
    UploadChunkCommand,
)
from .get_upload_status import GetUploadStatusUseCase
from .init_upload import InitUploadUseCase
from .interfaces import IdProvider, MultipartStorage, UploadEventSink, UploadSessionStore
from .upload_chunk import UploadChunkUseCase


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UploadCoordinator:
    """Lifecycle of multi-chunk uploads: init, chunk, complete, cancel, status.

    Holds no lock of its own. Every mutation goes through the session
    store's version check, so instances can be shared freely between
    concurrent requests.
    """

    def __init__(
        self,
        *,
        store: UploadSessionStore,
        storage: MultipartStorage,
        id_provider: IdProvider,
        events: UploadEventSink,
        settings: CoordinatorSettings,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.settings = settings
        self._init = InitUploadUseCase(
            store=store,
            storage=storage,
            id_provider=id_provider,
            events=events,
            settings=settings,
            clock=clock,
        )
        self._chunk = UploadChunkUseCase(
            store=store, storage=storage, events=events, settings=settings, clock=clock
        )
        self._complete = CompleteUploadUseCase(
            store=store, storage=storage, events=events, settings=settings, clock=clock
        )
        self._cancel = CancelUploadUseCase(
            store=store, storage=storage, events=events, settings=settings, clock=clock
        )
        self._status = GetUploadStatusUseCase(store=store, settings=settings)

    def init(
        self,
        *,
        file_name: str,
        total_size: int,
        content_type: str,
        user_id: str,
        user_role: str,
    ) -> InitiatedUpload:
        return self._init.execute(
            InitUploadCommand(
                file_name=file_name,
                total_size=total_size,
                content_type=content_type,
                user_id=user_id,
                user_role=user_role,
            )
        )

    def chunk(self, upload_id: str, chunk_index: int, data: bytes) -> UploadedChunk:
        return self._chunk.execute(
            UploadChunkCommand(upload_id=upload_id, chunk_index=chunk_index, data=data)
        )

    def complete(
        self, upload_id: str, parts: Optional[List[CompletionPart]] = None
    ) -> CompletedUpload:
        return self._complete.execute(
            CompleteUploadCommand(upload_id=upload_id, parts=parts)
        )

    def cancel(self, upload_id: str) -> CancelledUpload:
        return self._cancel.execute(CancelUploadCommand(upload_id=upload_id))

    def status(self, upload_id: str) -> UploadStatusView:
        return self._status.execute(upload_id)
