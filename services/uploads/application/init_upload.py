from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from ..domain.errors import (
    FileTooLargeError,
    InvalidFieldError,
    MissingFieldError,
    PersistenceError,
    UploadError,
)
from ..domain.keys import derive_storage_key
from ..domain.upload import InitiatedUpload, UploadSession, UploadStatus, UserRole
from .dto import CoordinatorSettings, InitUploadCommand
from .events import publish_event, publish_failure
from .interfaces import IdProvider, MultipartStorage, UploadEventSink, UploadSessionStore

LOGGER = logging.getLogger(__name__)


class InitUploadUseCase:
    def __init__(
        self,
        *,
        store: UploadSessionStore,
        storage: MultipartStorage,
        id_provider: IdProvider,
        events: UploadEventSink,
        settings: CoordinatorSettings,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._store = store
        self._storage = storage
        self._id_provider = id_provider
        self._events = events
        self._settings = settings
        self._clock = clock

    def execute(self, command: InitUploadCommand) -> InitiatedUpload:
        try:
            result = self._initiate(command)
        except UploadError as exc:
            publish_failure(self._events, operation="init", upload_id=None, error=exc)
            raise
        publish_event(
            self._events,
            operation="init",
            upload_id=result.upload_id,
            details={
                "storage_key": result.storage_key,
                "total_size": command.total_size,
                "content_type": command.content_type,
            },
        )
        return result

    def _initiate(self, command: InitUploadCommand) -> InitiatedUpload:
        role = self._validate(command)

        upload_id = self._id_provider.generate()
        now = self._clock()
        storage_key = derive_storage_key(
            user_role=role.value,
            user_id=command.user_id,
            uploaded_at=now,
            content_type=command.content_type,
            file_name=command.file_name,
            upload_id=upload_id,
        )
        remote_multipart_id = self._storage.open(
            storage_key=storage_key, content_type=command.content_type
        )

        session = UploadSession(
            upload_id=upload_id,
            file_name=command.file_name,
            total_size=command.total_size,
            content_type=command.content_type,
            user_id=command.user_id,
            user_role=role,
            storage_key=storage_key,
            remote_multipart_id=remote_multipart_id,
            status=UploadStatus.INITIATED,
            created_at=now,
            updated_at=now,
            version=0,
        )
        try:
            self._store.create(session)
        except PersistenceError:
            # The remote store expires incomplete multipart uploads on its own.
            LOGGER.warning(
                "Abandoning multipart upload for %s after persistence failure",
                upload_id,
            )
            raise

        return InitiatedUpload(
            upload_id=upload_id,
            storage_key=storage_key,
            status=session.status,
            chunk_size=self._settings.chunk_size,
        )

    def _validate(self, command: InitUploadCommand) -> UserRole:
        for name in ("file_name", "content_type", "user_id", "user_role"):
            value = getattr(command, name)
            if value is None or not str(value).strip():
                raise MissingFieldError(name)
        if command.total_size is None:
            raise MissingFieldError("total_size")
        if isinstance(command.total_size, bool) or not isinstance(
            command.total_size, int
        ):
            raise InvalidFieldError("total_size", "Must be an integer")
        if command.total_size <= 0:
            raise InvalidFieldError("total_size", "Must be greater than zero")
        if command.total_size > self._settings.max_file_size:
            raise FileTooLargeError(command.total_size, self._settings.max_file_size)
        try:
            return UserRole.parse(command.user_role)
        except ValueError as exc:
            raise InvalidFieldError(
                "user_role", "Must be one of creator, member, subscriber"
            ) from exc
