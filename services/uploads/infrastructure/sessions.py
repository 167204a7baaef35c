from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, Iterator

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    delete,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..application.interfaces import Mutator
from ..domain.errors import (
    PersistenceError,
    SessionAlreadyExistsError,
    UploadNotFoundError,
    VersionConflictError,
)
from ..domain.upload import (
    ChunkRecord,
    StoredUpload,
    UploadSession,
    UploadStatus,
    UserRole,
)
from .db import Base

LOGGER = logging.getLogger(__name__)


class UploadSessionRecord(Base):
    __tablename__ = "uploads"

    upload_id = Column(String, primary_key=True)
    file_name = Column(String, nullable=False)
    total_size = Column(BigInteger, nullable=False)
    content_type = Column(String, nullable=False)
    user_id = Column(String, nullable=False, index=True)
    user_role = Column(String, nullable=False, index=True)
    storage_key = Column(String, nullable=False)
    remote_multipart_id = Column(String, nullable=False)
    status = Column(String, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    version = Column(Integer, nullable=False, default=0)


class UploadChunkRecord(Base):
    __tablename__ = "upload_chunks"

    upload_id = Column(
        String,
        ForeignKey("uploads.upload_id", ondelete="CASCADE"),
        primary_key=True,
    )
    chunk_index = Column(Integer, primary_key=True)
    chunk_size = Column(BigInteger, nullable=False)
    etag = Column(String, nullable=False)
    uploaded_at = Column(DateTime(timezone=True), nullable=False)


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _session_from_record(record: UploadSessionRecord) -> UploadSession:
    return UploadSession(
        upload_id=record.upload_id,
        file_name=record.file_name,
        total_size=record.total_size,
        content_type=record.content_type,
        user_id=record.user_id,
        user_role=UserRole(record.user_role),
        storage_key=record.storage_key,
        remote_multipart_id=record.remote_multipart_id,
        status=UploadStatus(record.status),
        created_at=_aware(record.created_at),
        updated_at=_aware(record.updated_at),
        version=record.version,
    )


def _chunk_from_record(record: UploadChunkRecord) -> ChunkRecord:
    return ChunkRecord(
        upload_id=record.upload_id,
        chunk_index=record.chunk_index,
        chunk_size=record.chunk_size,
        etag=record.etag,
        uploaded_at=_aware(record.uploaded_at),
    )


class SqlAlchemyUploadSessionStore:
    """Session store on a relational database with a version column.

    ``compare_and_update`` issues ``UPDATE ... WHERE version = :expected`` and
    writes the chunk changes in the same transaction.
    """

    def __init__(self, session_factory) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _db(self) -> Iterator:
        try:
            with self._session_factory() as db:
                yield db
        except SQLAlchemyError as exc:
            LOGGER.error("Session store operation failed: %s", exc)
            raise PersistenceError("Session store operation failed") from exc

    def get(self, upload_id: str) -> StoredUpload:
        with self._db() as db:
            record = db.get(UploadSessionRecord, upload_id)
            if record is None:
                raise UploadNotFoundError(upload_id)
            chunks = self._load_chunks(db, upload_id)
            return StoredUpload(
                session=_session_from_record(record),
                chunks=tuple(sorted(chunks.values(), key=lambda c: c.chunk_index)),
            )

    def create(self, session: UploadSession) -> StoredUpload:
        record = UploadSessionRecord(
            upload_id=session.upload_id,
            file_name=session.file_name,
            total_size=session.total_size,
            content_type=session.content_type,
            user_id=session.user_id,
            user_role=session.user_role.value,
            storage_key=session.storage_key,
            remote_multipart_id=session.remote_multipart_id,
            status=session.status.value,
            created_at=session.created_at,
            updated_at=session.updated_at,
            version=session.version,
        )
        with self._db() as db:
            if db.get(UploadSessionRecord, session.upload_id) is not None:
                raise SessionAlreadyExistsError(session.upload_id)
            db.add(record)
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise SessionAlreadyExistsError(session.upload_id) from exc
        return StoredUpload(session=session)

    def compare_and_update(
        self, upload_id: str, expected_version: int, mutator: Mutator
    ) -> StoredUpload:
        with self._db() as db:
            record = db.get(UploadSessionRecord, upload_id)
            if record is None:
                raise UploadNotFoundError(upload_id)
            if record.version != expected_version:
                raise VersionConflictError(upload_id, expected_version)

            chunks = self._load_chunks(db, upload_id)
            mutation = mutator(_session_from_record(record), dict(chunks))
            updated = replace(mutation.session, version=expected_version + 1)

            result = db.execute(
                update(UploadSessionRecord)
                .where(
                    UploadSessionRecord.upload_id == upload_id,
                    UploadSessionRecord.version == expected_version,
                )
                .values(
                    status=updated.status.value,
                    updated_at=updated.updated_at,
                    version=updated.version,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                raise VersionConflictError(upload_id, expected_version)

            if mutation.delete_all_chunks:
                db.execute(
                    delete(UploadChunkRecord).where(
                        UploadChunkRecord.upload_id == upload_id
                    )
                )
                chunks.clear()
            elif mutation.delete_chunk_indices:
                db.execute(
                    delete(UploadChunkRecord).where(
                        UploadChunkRecord.upload_id == upload_id,
                        UploadChunkRecord.chunk_index.in_(
                            mutation.delete_chunk_indices
                        ),
                    )
                )
                for index in mutation.delete_chunk_indices:
                    chunks.pop(index, None)

            for chunk in mutation.upsert_chunks:
                db.merge(
                    UploadChunkRecord(
                        upload_id=upload_id,
                        chunk_index=chunk.chunk_index,
                        chunk_size=chunk.chunk_size,
                        etag=chunk.etag,
                        uploaded_at=chunk.uploaded_at,
                    )
                )
                chunks[chunk.chunk_index] = chunk

            db.commit()
            return StoredUpload(
                session=updated,
                chunks=tuple(sorted(chunks.values(), key=lambda c: c.chunk_index)),
            )

    def delete(self, upload_id: str) -> None:
        with self._db() as db:
            db.execute(
                delete(UploadChunkRecord).where(UploadChunkRecord.upload_id == upload_id)
            )
            db.execute(
                delete(UploadSessionRecord).where(
                    UploadSessionRecord.upload_id == upload_id
                )
            )
            db.commit()

    def _load_chunks(self, db, upload_id: str) -> Dict[int, ChunkRecord]:
        rows = db.scalars(
            select(UploadChunkRecord)
            .where(UploadChunkRecord.upload_id == upload_id)
            .order_by(UploadChunkRecord.chunk_index)
        ).all()
        return {row.chunk_index: _chunk_from_record(row) for row in rows}
