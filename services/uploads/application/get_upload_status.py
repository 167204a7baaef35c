from __future__ import annotations

from ..domain.errors import MissingFieldError
from ..domain.upload import UploadStatusView
from .dto import CoordinatorSettings
from .interfaces import UploadSessionStore


class GetUploadStatusUseCase:
    def __init__(
        self, *, store: UploadSessionStore, settings: CoordinatorSettings
    ) -> None:
        self._store = store
        self._settings = settings

    def execute(self, upload_id: str) -> UploadStatusView:
        if not upload_id:
            raise MissingFieldError("upload_id")
        current = self._store.get(upload_id)
        session = current.session
        return UploadStatusView(
            upload_id=session.upload_id,
            file_name=session.file_name,
            total_size=session.total_size,
            content_type=session.content_type,
            user_id=session.user_id,
            user_role=session.user_role,
            storage_key=session.storage_key,
            status=session.status,
            chunks=current.chunk_indices,
            uploaded_bytes=sum(chunk.chunk_size for chunk in current.chunks),
            chunk_size=self._settings.chunk_size,
            created_at=session.created_at,
            updated_at=session.updated_at,
        )
